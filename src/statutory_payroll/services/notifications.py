"""Payslip email delivery and the outbox relay that triggers it.

Email results are per recipient: a failed send is logged and recorded in
``notification_log`` but never undoes or fails the committed run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import ColumnElement, and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statutory_payroll import models
from statutory_payroll.events.types import EventMetadata, PayslipEmailsDispatched
from statutory_payroll.exceptions import NotificationFailure
from statutory_payroll.services.ports import (
    EmailTransport,
    EventPublisher,
    PayslipEmailRequest,
    PayslipEmailResult,
)
from statutory_payroll.services.store import RunNotFoundError

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE = "payslip"


class LoggingEmailTransport:
    """Transport that only logs; used where no mail server is configured."""

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Sequence[tuple[str, bytes]] = (),
    ) -> None:
        logger.info("Email to %s: %s (%d attachments)", to, subject, len(attachments))


def format_money(amount: Decimal, currency: str) -> str:
    return f"{currency} {amount:,.2f}"


def render_payslip_email(
    payslip: models.Payslip,
    employee: models.Employee,
    company_name: str,
    pay_period: str,
    currency: str,
) -> str:
    """Plain-text payslip summary."""
    lines = [
        f"Dear {employee.first_name},",
        "",
        f"Your payslip for {pay_period} from {company_name} is ready.",
        "",
        f"Basic salary:    {format_money(payslip.basic_salary, currency)}",
    ]
    for item in payslip.allowances:
        lines.append(f"  + {item['name']}: {format_money(Decimal(item['amount']), currency)}")
    lines.append(f"Gross salary:    {format_money(payslip.gross_salary, currency)}")
    for item in payslip.deductions:
        lines.append(f"  - {item['name']}: {format_money(Decimal(item['amount']), currency)}")
    lines += [
        f"Net salary:      {format_money(payslip.net_salary, currency)}",
        "",
        f"Employer EPF:    {format_money(payslip.epf_employer, currency)}",
        f"Employer ETF:    {format_money(payslip.etf_employer, currency)}",
    ]
    return "\n".join(lines)


class PayslipEmailService:
    """Emails payslips of a committed run and logs every outcome.

    Recipients are skipped when they have no email address or have turned
    off payroll emails (``email_payroll_updates`` is False).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transport: EmailTransport,
        *,
        currency: str = "LKR",
        events: EventPublisher | None = None,
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.currency = currency
        self.events = events

    async def send_payslips(self, request: PayslipEmailRequest) -> PayslipEmailResult:
        result = PayslipEmailResult()

        async with self.session_factory() as session:
            run = await session.get(models.PayrollRun, request.payroll_run_id)
            if run is None:
                raise RunNotFoundError(request.payroll_run_id)
            company = await session.get(models.Company, run.company_id)
            company_name = (company.name if company else None) or "Your employer"
            pay_period = run.period_start.strftime("%B %Y")

            query = (
                select(models.Payslip, models.Employee)
                .join(models.Employee, models.Employee.employee_id == models.Payslip.employee_id)
                .where(models.Payslip.payroll_run_id == run.payroll_run_id)
            )
            if request.employee_ids is not None:
                query = query.where(models.Payslip.employee_id.in_(request.employee_ids))
            rows = (await session.execute(query)).all()

            for payslip, employee in rows:
                subject = f"Your Payslip for {pay_period} - {company_name}"
                status, error = await self._deliver(
                    payslip, employee, subject, company_name, pay_period
                )
                setattr(result, status, getattr(result, status) + 1)
                result.details.append(
                    {
                        "employee_id": str(employee.employee_id),
                        "email": employee.email,
                        "status": status,
                        "error": error,
                    }
                )
                session.add(
                    models.NotificationLog(
                        company_id=run.company_id,
                        payroll_run_id=run.payroll_run_id,
                        employee_id=employee.employee_id,
                        notification_type=NOTIFICATION_TYPE,
                        channel="email",
                        recipient=employee.email,
                        subject=subject,
                        status=status,
                        error_message=error,
                    )
                )
            await session.commit()

        logger.info(
            "Payslip emails for run %s: %d sent, %d failed, %d skipped",
            request.payroll_run_id,
            result.sent,
            result.failed,
            result.skipped,
        )
        if self.events is not None:
            self.events.emit(
                PayslipEmailsDispatched(
                    metadata=EventMetadata.create(
                        company_id=run.company_id,
                        correlation_id=run.payroll_run_id,
                        source_service="notifications",
                    ),
                    payroll_run_id=run.payroll_run_id,
                    sent=result.sent,
                    failed=result.failed,
                    skipped=result.skipped,
                )
            )
        return result

    async def _deliver(
        self,
        payslip: models.Payslip,
        employee: models.Employee,
        subject: str,
        company_name: str,
        pay_period: str,
    ) -> tuple[str, str | None]:
        if not employee.email:
            return "skipped", "No email address"
        if not employee.wants_payroll_emails:
            return "skipped", "Notifications disabled"

        body = render_payslip_email(payslip, employee, company_name, pay_period, self.currency)
        try:
            await self.transport.send(employee.email, subject, body)
        except Exception as exc:
            failure = NotificationFailure(employee.email, str(exc) or type(exc).__name__)
            logger.warning("%s", failure)
            return "failed", failure.reason
        return "sent", None


class OutboxRelay:
    """Delivers pending outbox events to their consumers.

    A committed run triggers payslip emails for every employee in it. Each
    event is claimed (``pending`` -> ``processing``) with a conditional
    update before delivery, so relays running side by side never deliver
    the same event twice. A claim older than ``claim_timeout`` is treated
    as abandoned and can be taken again. An event that fails goes back to
    pending with its attempt count raised; after ``max_attempts`` it is
    parked as dead.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email_service: PayslipEmailService,
        *,
        batch_size: int = 50,
        max_attempts: int = 5,
        claim_timeout: timedelta = timedelta(minutes=10),
    ):
        self.session_factory = session_factory
        self.email_service = email_service
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.claim_timeout = claim_timeout

    async def process_pending(self) -> int:
        """Deliver one batch of pending events; returns how many were delivered."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.OutboxEvent)
                .where(self._claimable(datetime.now(timezone.utc)))
                .order_by(models.OutboxEvent.created_at)
                .limit(self.batch_size)
            )
            candidates = list(result.scalars())

        delivered = 0
        for event in candidates:
            if not await self._claim(event.event_id):
                logger.debug("Outbox event %s claimed by another relay", event.event_id)
                continue
            try:
                await self._dispatch(event.event_type, event.payload)
            except Exception as exc:
                logger.exception("Delivery of outbox event %s failed", event.event_id)
                await self._record_failure(event.event_id, str(exc))
            else:
                await self._mark_delivered(event.event_id)
                delivered += 1
        return delivered

    def _claimable(self, now: datetime) -> ColumnElement[bool]:
        return or_(
            models.OutboxEvent.status == "pending",
            and_(
                models.OutboxEvent.status == "processing",
                models.OutboxEvent.claimed_at < now - self.claim_timeout,
            ),
        )

    async def _claim(self, event_id: UUID) -> bool:
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(models.OutboxEvent)
                    .where(models.OutboxEvent.event_id == event_id, self._claimable(now))
                    .values(status="processing", claimed_at=now)
                    .execution_options(synchronize_session=False)
                )
        return result.rowcount == 1

    async def _dispatch(self, event_type: str, payload: dict[str, Any]) -> None:
        if event_type == "PayrollRunCommitted":
            request = PayslipEmailRequest(
                payroll_run_id=UUID(payload["payroll_run_id"]),
                employee_ids=tuple(UUID(e) for e in payload.get("employee_ids", [])),
            )
            await self.email_service.send_payslips(request)
        else:
            logger.debug("No consumer for outbox event type %s", event_type)

    async def _mark_delivered(self, event_id: UUID) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(models.OutboxEvent, event_id)
                row.status = "delivered"
                row.attempts += 1
                row.delivered_at = datetime.now(timezone.utc)

    async def _record_failure(self, event_id: UUID, error: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(models.OutboxEvent, event_id)
                row.attempts += 1
                row.last_error = error
                row.claimed_at = None
                row.status = "pending"
                if row.attempts >= self.max_attempts:
                    row.status = "dead"
                    logger.error(
                        "Outbox event %s gave up after %d attempts", event_id, row.attempts
                    )
