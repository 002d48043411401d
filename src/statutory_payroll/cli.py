"""Operational command line interface.

Usage:
    statutory-payroll init-db
    statutory-payroll dispatch-notifications --batch-size 100
    statutory-payroll serve --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Callable

from statutory_payroll.config import get_settings
from statutory_payroll.database import create_tables, get_engine, make_session_factory
from statutory_payroll.services.notifications import (
    LoggingEmailTransport,
    OutboxRelay,
    PayslipEmailService,
)

logger = logging.getLogger(__name__)


class PayrollCli:
    """Payroll command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="statutory-payroll",
            description="Statutory payroll operational tools",
        )
        parser.add_argument(
            "--database-url",
            help="Database URL (defaults to DATABASE_URL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create database tables")

        dispatch = subparsers.add_parser(
            "dispatch-notifications",
            help="Deliver pending outbox events (payslip emails)",
        )
        dispatch.add_argument(
            "--batch-size",
            type=int,
            default=50,
            help="Maximum events to deliver in this pass",
        )

        serve = subparsers.add_parser("serve", help="Run the HTTP API")
        serve.add_argument("--host", help="Bind address (defaults to HOST)")
        serve.add_argument("--port", type=int, help="Port (defaults to PORT)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        logging.basicConfig(level=get_settings().log_level)

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "init-db": self._cmd_init_db,
            "dispatch-notifications": self._cmd_dispatch_notifications,
            "serve": self._cmd_serve,
        }
        return handlers[parsed.command](parsed)

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        async def _init() -> None:
            engine = get_engine(args.database_url)
            try:
                await create_tables(engine)
            finally:
                await engine.dispose()

        asyncio.run(_init())
        print("Database tables created")
        return 0

    def _cmd_dispatch_notifications(self, args: argparse.Namespace) -> int:
        async def _dispatch() -> int:
            engine = get_engine(args.database_url)
            try:
                factory = make_session_factory(engine)
                email_service = PayslipEmailService(
                    factory,
                    LoggingEmailTransport(),
                    currency=get_settings().currency,
                )
                relay = OutboxRelay(factory, email_service, batch_size=args.batch_size)
                return await relay.process_pending()
            finally:
                await engine.dispose()

        delivered = asyncio.run(_dispatch())
        print(f"Delivered {delivered} event(s)")
        return 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        import uvicorn

        from statutory_payroll.api.app import create_app

        settings = get_settings()
        session_factory = None
        if args.database_url:
            session_factory = make_session_factory(get_engine(args.database_url))
        uvicorn.run(
            create_app(session_factory=session_factory),
            host=args.host or settings.host,
            port=args.port or settings.port,
        )
        return 0


def main() -> int:
    """CLI entry point."""
    cli = PayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
