"""Typed exceptions for the payroll run engine.

Every error carries a class-level ``code`` (machine-readable, API-safe) and
keeps its context as attributes rather than only in the message.

    PayrollError (base)
    |
    +-- CalculationError
    |   +-- InvalidAmount
    |   +-- InvalidTaxTable
    |
    +-- WorkflowError
    |   +-- WorkflowStateError
    |   +-- InvalidPayPeriod
    |   +-- InvalidTransitionError
    |   +-- IncompleteCompanyProfile
    |   +-- DuplicateRunForPeriod
    |   +-- PreviewOutdated
    |
    +-- PersistenceFailure
    +-- NotificationFailure

Calculation errors abort the payslip that depends on the bad input. Workflow
errors block the confirm step and are distinguishable so callers can render
the right remediation. ``NotificationFailure`` is recorded per recipient and
never escalated to the run.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID


class PayrollError(Exception):
    """Base class for all payroll engine errors."""

    code: str = "PAYROLL_ERROR"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


# =============================================================================
# Calculation errors
# =============================================================================


class CalculationError(PayrollError):
    code = "CALCULATION_ERROR"


class InvalidAmount(CalculationError):
    """A monetary input was negative or not a finite number."""

    code = "INVALID_AMOUNT"

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        super().__init__(f"Invalid amount for '{field}': {value!r}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field, "value": str(self.value)}


class InvalidTaxTable(CalculationError):
    """Tax slab configuration has gaps, overlaps or bad ordering."""

    code = "INVALID_TAX_TABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid tax table: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "reason": self.reason}


# =============================================================================
# Workflow errors
# =============================================================================


class WorkflowError(PayrollError):
    code = "WORKFLOW_ERROR"


class WorkflowStateError(WorkflowError):
    """An operation was attempted in a wizard step that does not allow it."""

    code = "WORKFLOW_STATE"

    def __init__(self, state: str, operation: str, reason: str | None = None):
        self.state = state
        self.operation = operation
        self.reason = reason
        msg = f"Cannot {operation} while in state '{state}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvalidPayPeriod(WorkflowError):
    """Month, year or pay date do not form a valid pay period."""

    code = "INVALID_PAY_PERIOD"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid pay period: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "reason": self.reason}


class InvalidTransitionError(WorkflowError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class IncompleteCompanyProfile(WorkflowError):
    """Commit blocked: required statutory profile fields are missing."""

    code = "INCOMPLETE_COMPANY_PROFILE"

    def __init__(self, missing_fields: list[str], labels: list[str] | None = None):
        self.missing_fields = list(missing_fields)
        self.labels = list(labels) if labels else list(missing_fields)
        super().__init__(
            "Company profile is incomplete; missing: " + ", ".join(self.labels)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "missing_fields": self.missing_fields,
            "labels": self.labels,
        }


class DuplicateRunForPeriod(WorkflowError):
    """Commit blocked: a payroll run already exists for the pay period."""

    code = "DUPLICATE_RUN_FOR_PERIOD"

    def __init__(
        self,
        company_id: UUID,
        period_start: date,
        period_end: date,
        existing_run_id: UUID | None = None,
    ):
        self.company_id = company_id
        self.period_start = period_start
        self.period_end = period_end
        self.existing_run_id = existing_run_id
        super().__init__(
            f"A payroll run already exists for company {company_id} "
            f"for {period_start} to {period_end}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "company_id": str(self.company_id),
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "existing_run_id": str(self.existing_run_id) if self.existing_run_id else None,
        }


class PreviewOutdated(WorkflowError):
    """Commit blocked: inputs changed since the calculations were reviewed.

    The workflow is back in review with a recalculated preview.
    """

    code = "PREVIEW_OUTDATED"

    def __init__(self, changed_employee_ids: list[UUID]):
        self.changed_employee_ids = list(changed_employee_ids)
        super().__init__(
            f"Payslips changed for {len(self.changed_employee_ids)} employee(s) "
            "since review; review the recalculated run before committing"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "changed_employee_ids": [str(e) for e in self.changed_employee_ids],
        }


# =============================================================================
# Collaborator errors
# =============================================================================


class PersistenceFailure(PayrollError):
    """The atomic run write did not succeed; nothing was saved."""

    code = "PERSISTENCE_FAILURE"


class NotificationFailure(PayrollError):
    """A payslip email could not be delivered to one recipient."""

    code = "NOTIFICATION_FAILURE"

    def __init__(self, recipient: str, reason: str):
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Notification to {recipient} failed: {reason}")
