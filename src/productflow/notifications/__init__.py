"""Notification collaborators for Productflow."""

from productflow.notifications.base import (
    CompositeNotifier,
    InMemoryNotifier,
    LoggingNotifier,
    NotificationEvent,
    NotificationEventType,
    Notifier,
)
from productflow.notifications.webhook import WebhookDeliveryError, WebhookNotifier

__all__ = [
    "CompositeNotifier",
    "InMemoryNotifier",
    "LoggingNotifier",
    "NotificationEvent",
    "NotificationEventType",
    "Notifier",
    "WebhookDeliveryError",
    "WebhookNotifier",
]
