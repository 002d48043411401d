"""Payroll run status state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from statutory_payroll.exceptions import InvalidTransitionError


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    PROCESSING = "processing"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PAID = "paid"


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft -> processing
    - processing -> pending_approval
    - pending_approval -> approved
    - approved -> paid
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.PROCESSING],
        PayrollRunStatus.PROCESSING: [PayrollRunStatus.PENDING_APPROVAL],
        PayrollRunStatus.PENDING_APPROVAL: [PayrollRunStatus.APPROVED],
        PayrollRunStatus.APPROVED: [PayrollRunStatus.PAID],
        PayrollRunStatus.PAID: [],  # Terminal state
    }

    # Once out of draft the employee set and payslips are frozen
    RESULTS_IMMUTABLE = {
        PayrollRunStatus.PROCESSING,
        PayrollRunStatus.PENDING_APPROVAL,
        PayrollRunStatus.APPROVED,
        PayrollRunStatus.PAID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        return status in cls.RESULTS_IMMUTABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def commit_path(cls) -> list[str]:
        """Statuses a run passes through when it is committed."""
        path = [PayrollRunStatus.DRAFT.value]
        for target in (PayrollRunStatus.PROCESSING, PayrollRunStatus.PENDING_APPROVAL):
            cls.validate_transition(path[-1], target)
            path.append(target.value)
        return path
