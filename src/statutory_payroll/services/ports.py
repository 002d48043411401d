"""Collaborator interfaces consumed by the payroll run workflow.

The workflow depends only on these protocols. ``SqlPayrollStore`` in
``services.store`` is the production implementation; tests substitute
in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from functools import cached_property
from typing import Any, Mapping, Protocol, Sequence
from uuid import UUID, uuid4

from statutory_payroll.calculators.aggregator import RunTotals
from statutory_payroll.calculators.types import (
    AttendanceSummary,
    Employee,
    LoanDeduction,
    OvertimeEntry,
    PayPeriod,
    PaySlip,
    TaxSlab,
)
from statutory_payroll.events.types import DomainEvent, EventMetadata, PayrollRunCommitted
from statutory_payroll.services.company_profile import CompanyProfile
from statutory_payroll.services.state_machine import PayrollRunStatus

LOANS_ENABLED = "loans_enabled"
OVERTIME_ENABLED = "overtime_enabled"


@dataclass(frozen=True)
class NewPayrollRun:
    """A run ready to be written together with its payslips."""

    company_id: UUID
    period: PayPeriod
    employee_ids: tuple[UUID, ...]
    totals: RunTotals
    status: str = PayrollRunStatus.PENDING_APPROVAL.value
    created_by: UUID | None = None
    run_id: UUID = field(default_factory=uuid4)

    @cached_property
    def committed_event(self) -> PayrollRunCommitted:
        """The event recorded when this run is committed.

        Built once so the outbox row and the in-process event share an id.
        """
        return PayrollRunCommitted(
            metadata=EventMetadata.create(
                company_id=self.company_id,
                correlation_id=self.run_id,
                actor_id=self.created_by,
                actor_type="user" if self.created_by else "system",
            ),
            payroll_run_id=self.run_id,
            company_id=self.company_id,
            period_start=self.period.start,
            period_end=self.period.end,
            pay_date=self.period.pay_date,
            employee_ids=tuple(self.employee_ids),
            total_net=self.totals.total_net,
        )


@dataclass(frozen=True)
class PayslipEmailRequest:
    """Request to email payslips of a committed run.

    ``employee_ids`` of None means every payslip in the run.
    """

    payroll_run_id: UUID
    employee_ids: tuple[UUID, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payroll_run_id": str(self.payroll_run_id),
            "employee_ids": (
                None if self.employee_ids is None else [str(e) for e in self.employee_ids]
            ),
        }


@dataclass
class PayslipEmailResult:
    """Per-recipient outcome counts of a payslip email request."""

    sent: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)


class PayrollStore(Protocol):
    async def list_active_employees(self, company_id: UUID) -> list[Employee]:
        ...

    async def get_attendance_summary(
        self, employee_ids: Sequence[UUID], month: int, year: int
    ) -> Mapping[UUID, AttendanceSummary]:
        """Employees without attendance records are absent from the result."""
        ...

    async def get_active_loan_deductions(
        self, employee_ids: Sequence[UUID]
    ) -> Mapping[UUID, list[LoanDeduction]]:
        ...

    async def get_approved_overtime(
        self, employee_ids: Sequence[UUID], period_start: date, period_end: date
    ) -> Mapping[UUID, list[OvertimeEntry]]:
        ...

    async def get_active_tax_slabs(self, company_id: UUID) -> list[TaxSlab]:
        ...

    async def get_company_profile(self, company_id: UUID) -> CompanyProfile | None:
        ...

    async def create_payroll_run(
        self, run: NewPayrollRun, payslips: Sequence[PaySlip]
    ) -> UUID:
        """Persist the run and all payslips atomically.

        Raises DuplicateRunForPeriod or PersistenceFailure; on failure
        nothing is saved.
        """
        ...

    async def get_existing_run(
        self, company_id: UUID, period_start: date, period_end: date
    ) -> UUID | None:
        ...


class FeatureFlags(Protocol):
    async def is_feature_enabled(self, company_id: UUID, name: str) -> bool:
        ...


class EventPublisher(Protocol):
    def emit(self, event: DomainEvent) -> Any:
        """Fire-and-forget; failures must not reach the caller."""
        ...


class EmailTransport(Protocol):
    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Sequence[tuple[str, bytes]] = (),
    ) -> None:
        """Deliver one message, raising on failure."""
        ...
