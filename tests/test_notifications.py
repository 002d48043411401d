"""Tests for payslip emails and the outbox relay."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from statutory_payroll import models
from statutory_payroll.calculators.aggregator import RunTotals
from statutory_payroll.calculators.types import PayPeriod
from statutory_payroll.events import PayslipEmailsDispatched
from statutory_payroll.services.notifications import (
    OutboxRelay,
    PayslipEmailService,
    format_money,
)
from statutory_payroll.services.ports import NewPayrollRun, PayslipEmailRequest
from statutory_payroll.services.store import RunNotFoundError, SqlPayrollStore, outbox_row
from statutory_payroll.services.workflow import PayrollRunWorkflow
from tests.conftest import RecordingTransport


async def _commit_march(session_factory, company_id):
    store = SqlPayrollStore(session_factory)
    workflow = PayrollRunWorkflow(company_id, store, store)
    workflow.select_period(3, 2024)
    await workflow.advance()
    await workflow.advance()
    await workflow.advance()
    return await workflow.commit()


async def _logs(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(models.NotificationLog))
        return {log.employee_id: log for log in result.scalars()}


async def _outbox(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(models.OutboxEvent))
        return list(result.scalars())


async def _set_claim(session_factory, claimed_at):
    """Mark every outbox event as taken by some other relay."""
    async with session_factory() as session:
        await session.execute(
            update(models.OutboxEvent).values(status="processing", claimed_at=claimed_at)
        )
        await session.commit()


def test_format_money():
    assert format_money(Decimal("40480"), "LKR") == "LKR 40,480.00"


class TestPayslipEmailService:
    async def test_sends_and_skips(self, session_factory, seeded, publisher):
        run_id = await _commit_march(session_factory, seeded["company_id"])
        transport = RecordingTransport()
        service = PayslipEmailService(session_factory, transport, events=publisher)

        result = await service.send_payslips(PayslipEmailRequest(run_id))

        assert (result.sent, result.failed, result.skipped) == (1, 0, 2)
        (to, subject, body) = transport.sent[0]
        assert to == "alice@example.com"
        assert subject == "Your Payslip for March 2024 - Lanka Widgets (Pvt) Ltd"
        assert "Dear Alice," in body
        assert "Net salary:      LKR 40,480.00" in body
        assert "  - PAYE Tax: LKR 0.00" in body

        logs = await _logs(session_factory)
        assert logs[seeded["alice"]].status == "sent"
        assert logs[seeded["bob"]].status == "skipped"
        assert logs[seeded["bob"]].error_message == "Notifications disabled"
        assert logs[seeded["carol"]].error_message == "No email address"
        assert logs[seeded["alice"]].payroll_run_id == run_id

        (event,) = publisher.events
        assert isinstance(event, PayslipEmailsDispatched)
        assert (event.sent, event.skipped) == (1, 2)

    async def test_transport_failure_recorded(self, session_factory, seeded):
        run_id = await _commit_march(session_factory, seeded["company_id"])
        service = PayslipEmailService(
            session_factory, RecordingTransport(fail_for=["alice@example.com"])
        )

        result = await service.send_payslips(PayslipEmailRequest(run_id))

        assert (result.sent, result.failed, result.skipped) == (0, 1, 2)
        log = (await _logs(session_factory))[seeded["alice"]]
        assert log.status == "failed"
        assert log.error_message == "SMTP connection refused"

    async def test_selected_employees_only(self, session_factory, seeded):
        run_id = await _commit_march(session_factory, seeded["company_id"])
        service = PayslipEmailService(session_factory, RecordingTransport())

        result = await service.send_payslips(
            PayslipEmailRequest(run_id, employee_ids=(seeded["carol"],))
        )

        assert (result.sent, result.skipped) == (0, 1)
        assert result.details[0]["employee_id"] == str(seeded["carol"])

    async def test_unknown_run(self, session_factory):
        service = PayslipEmailService(session_factory, RecordingTransport())

        with pytest.raises(RunNotFoundError):
            await service.send_payslips(PayslipEmailRequest(uuid4()))


class TestOutboxRelay:
    async def test_committed_run_triggers_emails(self, session_factory, seeded):
        await _commit_march(session_factory, seeded["company_id"])
        transport = RecordingTransport()
        relay = OutboxRelay(session_factory, PayslipEmailService(session_factory, transport))

        assert await relay.process_pending() == 1
        assert [m[0] for m in transport.sent] == ["alice@example.com"]

        (event,) = await _outbox(session_factory)
        assert event.status == "delivered"
        assert event.attempts == 1
        assert event.delivered_at is not None

        # Nothing left to deliver
        assert await relay.process_pending() == 0
        assert len(transport.sent) == 1

    async def test_email_failure_does_not_fail_event(self, session_factory, seeded):
        await _commit_march(session_factory, seeded["company_id"])
        transport = RecordingTransport(fail_for=["alice@example.com"])
        relay = OutboxRelay(session_factory, PayslipEmailService(session_factory, transport))

        assert await relay.process_pending() == 1
        (event,) = await _outbox(session_factory)
        assert event.status == "delivered"

    async def test_undeliverable_event_goes_dead(self, session_factory, seeded):
        company_id = seeded["company_id"]
        orphan = NewPayrollRun(
            company_id=company_id,
            period=PayPeriod.for_month(2024, 1, date(2024, 1, 31)),
            employee_ids=(),
            totals=RunTotals(),
        )
        async with session_factory() as session:
            session.add(outbox_row(orphan.committed_event, orphan.run_id))
            await session.commit()

        relay = OutboxRelay(
            session_factory,
            PayslipEmailService(session_factory, RecordingTransport()),
            max_attempts=2,
        )

        assert await relay.process_pending() == 0
        (event,) = await _outbox(session_factory)
        assert (event.status, event.attempts) == ("pending", 1)
        assert "not found" in event.last_error

        assert await relay.process_pending() == 0
        (event,) = await _outbox(session_factory)
        assert (event.status, event.attempts) == ("dead", 2)

    async def test_events_without_consumer_are_delivered(self, session_factory, seeded):
        run_id = await _commit_march(session_factory, seeded["company_id"])
        await SqlPayrollStore(session_factory).transition_status(run_id, "approved")
        transport = RecordingTransport()
        relay = OutboxRelay(session_factory, PayslipEmailService(session_factory, transport))

        assert await relay.process_pending() == 2
        assert {e.status for e in await _outbox(session_factory)} == {"delivered"}

    async def test_side_by_side_relays_deliver_once(self, session_factory, seeded):
        await _commit_march(session_factory, seeded["company_id"])
        transport = RecordingTransport()
        relays = [
            OutboxRelay(session_factory, PayslipEmailService(session_factory, transport))
            for _ in range(2)
        ]

        counts = await asyncio.gather(*(relay.process_pending() for relay in relays))

        assert sum(counts) == 1
        assert [m[0] for m in transport.sent] == ["alice@example.com"]
        (event,) = await _outbox(session_factory)
        assert (event.status, event.attempts) == ("delivered", 1)

    async def test_claimed_event_is_left_alone(self, session_factory, seeded):
        await _commit_march(session_factory, seeded["company_id"])
        await _set_claim(session_factory, datetime.now(timezone.utc))
        transport = RecordingTransport()
        relay = OutboxRelay(session_factory, PayslipEmailService(session_factory, transport))

        assert await relay.process_pending() == 0
        assert transport.sent == []
        (event,) = await _outbox(session_factory)
        assert event.status == "processing"

    async def test_abandoned_claim_is_taken_over(self, session_factory, seeded):
        await _commit_march(session_factory, seeded["company_id"])
        await _set_claim(session_factory, datetime.now(timezone.utc) - timedelta(hours=1))
        transport = RecordingTransport()
        relay = OutboxRelay(
            session_factory,
            PayslipEmailService(session_factory, transport),
            claim_timeout=timedelta(minutes=5),
        )

        assert await relay.process_pending() == 1
        assert [m[0] for m in transport.sent] == ["alice@example.com"]
        (event,) = await _outbox(session_factory)
        assert event.status == "delivered"
