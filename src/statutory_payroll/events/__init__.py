"""Payroll domain events and the in-process emitter."""

from statutory_payroll.events.emitter import EventEmitter, EventHandler
from statutory_payroll.events.types import (
    EVENT_TYPES,
    DomainEvent,
    EventCategory,
    EventMetadata,
    PayrollRunCommitted,
    PayrollRunStatusChanged,
    PayslipEmailsDispatched,
)

__all__ = [
    "EVENT_TYPES",
    "DomainEvent",
    "EventCategory",
    "EventEmitter",
    "EventHandler",
    "EventMetadata",
    "PayrollRunCommitted",
    "PayrollRunStatusChanged",
    "PayslipEmailsDispatched",
]
