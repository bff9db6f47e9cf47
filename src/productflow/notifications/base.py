"""Notification collaborator contract and in-process notifiers.

The engine informs interested parties after a successful transition and
when a bulk campaign finishes. Notification is fire-and-forget from the
engine's perspective: a notifier failure is logged and never rolls back
the change that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


class NotificationEventType(str, Enum):
    """Kinds of events sent to notifiers."""

    TRANSITION_COMPLETED = "transition_completed"
    REVIEW_REQUESTED = "review_requested"
    CAMPAIGN_FINISHED = "campaign_finished"


@dataclass
class NotificationEvent:
    """Payload handed to notifiers."""

    event_type: NotificationEventType
    timestamp: datetime
    actor_id: str
    record_id: str | None = None
    action: str | None = None
    from_state: str | None = None
    to_state: str | None = None
    campaign_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert the event to a JSON-ready dictionary."""
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "record_id": self.record_id,
            "action": self.action,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "campaign_id": self.campaign_id,
            "data": self.data,
        }


@runtime_checkable
class Notifier(Protocol):
    """Notification collaborator."""

    async def notify(self, event: NotificationEvent) -> None:
        """Deliver one event. May raise; callers log and continue."""
        ...


class LoggingNotifier:
    """Writes each event to the structured log."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="LoggingNotifier")

    async def notify(self, event: NotificationEvent) -> None:
        self._logger.info("notification", **event.to_dict())


class InMemoryNotifier:
    """Keeps every event in a list. Useful for tests and demos."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    async def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: NotificationEventType) -> list[NotificationEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


class CompositeNotifier:
    """Fans an event out to several notifiers.

    Each notifier is isolated: one failing does not stop the rest.
    """

    def __init__(self, notifiers: list[Notifier]) -> None:
        self.notifiers = list(notifiers)
        self._logger = logger.bind(component="CompositeNotifier")

    async def notify(self, event: NotificationEvent) -> None:
        for notifier in self.notifiers:
            try:
                await notifier.notify(event)
            except Exception as exc:
                self._logger.warning(
                    "notifier_failed",
                    notifier=type(notifier).__name__,
                    event_type=event.event_type.value,
                    error=str(exc),
                )
