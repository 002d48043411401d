"""Domain event types for payroll run operations.

All events are:
- Immutable (frozen dataclasses)
- Traceable via metadata
- Serializable for the outbox table
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PAYROLL_RUN = "payroll_run"
    NOTIFICATION = "notification"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    company_id: UUID
    correlation_id: UUID
    actor_id: UUID | None
    actor_type: str  # 'user', 'system', 'cli'
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        company_id: UUID,
        correlation_id: UUID | None = None,
        actor_id: UUID | None = None,
        actor_type: str = "system",
        source_service: str = "payroll_run",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            company_id=company_id,
            correlation_id=correlation_id or uuid4(),
            actor_id=actor_id,
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        return _serialize_dict(asdict(self))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


@dataclass(frozen=True)
class PayrollRunCommitted(DomainEvent):
    """A payroll run and its payslips were persisted."""

    payroll_run_id: UUID
    company_id: UUID
    period_start: date
    period_end: date
    pay_date: date
    employee_ids: tuple[UUID, ...]
    total_net: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYROLL_RUN


@dataclass(frozen=True)
class PayrollRunStatusChanged(DomainEvent):
    """A committed run moved along its approval lifecycle."""

    payroll_run_id: UUID
    from_status: str
    to_status: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYROLL_RUN


@dataclass(frozen=True)
class PayslipEmailsDispatched(DomainEvent):
    """Payslip emails for a run were attempted."""

    payroll_run_id: UUID
    sent: int
    failed: int
    skipped: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.NOTIFICATION


EVENT_TYPES: dict[str, type[DomainEvent]] = {
    cls.__name__: cls
    for cls in (PayrollRunCommitted, PayrollRunStatusChanged, PayslipEmailsDispatched)
}
