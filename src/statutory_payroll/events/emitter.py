"""In-process publisher for payroll domain events.

Durable delivery (payslip emails) goes through the outbox table; the emitter
only fans events out to in-process subscribers such as audit logging.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

from statutory_payroll.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)


@runtime_checkable
class EventHandler(Protocol):
    """Protocol for event handlers."""

    def __call__(self, event: DomainEvent) -> None:
        ...


@dataclass(frozen=True)
class Subscription:
    """A handler and the events it wants. Empty filters match everything."""

    handler: EventHandler
    event_types: frozenset[str] = frozenset()
    categories: frozenset[EventCategory] = frozenset()

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


class EventEmitter:
    """Synchronous event emitter.

    A handler that raises is logged and skipped; the others still receive
    the event and the caller gets the collected errors back.

    Usage:
        emitter = EventEmitter()
        emitter.on(PayrollRunCommitted, audit_log)
        emitter.on_category(EventCategory.NOTIFICATION, track_emails)
        emitter.emit(event)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def on(self, event_type: type[T] | list[type[T]], handler: EventHandler) -> None:
        """Subscribe to one or more event classes."""
        classes = event_type if isinstance(event_type, list) else [event_type]
        self._subscriptions.append(
            Subscription(handler, event_types=frozenset(c.__name__ for c in classes))
        )

    def on_category(
        self, category: EventCategory | list[EventCategory], handler: EventHandler
    ) -> None:
        """Subscribe to every event in one or more categories."""
        categories = category if isinstance(category, list) else [category]
        self._subscriptions.append(Subscription(handler, categories=frozenset(categories)))

    def on_all(self, handler: EventHandler) -> None:
        self._subscriptions.append(Subscription(handler))

    def off(self, handler: EventHandler) -> None:
        """Drop every subscription of a handler."""
        self._subscriptions = [s for s in self._subscriptions if s.handler is not handler]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver an event to matching handlers; returns handler errors."""
        errors: list[Exception] = []
        for subscription in self._subscriptions:
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
            except Exception as exc:
                logger.exception(
                    "Handler %r failed for event %s (%s)",
                    subscription.handler,
                    event.event_type,
                    event.metadata.event_id,
                )
                errors.append(exc)
        return errors
