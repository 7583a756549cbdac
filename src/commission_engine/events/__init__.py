"""Post-commit notifications."""

from commission_engine.events.emitter import (
    NotificationBatch,
    NotificationDispatcher,
    Notifier,
    notify_safely,
)
from commission_engine.events.types import EventCategory, Notification, NotificationEvent

__all__ = [
    "EventCategory",
    "Notification",
    "NotificationBatch",
    "NotificationDispatcher",
    "NotificationEvent",
    "Notifier",
    "notify_safely",
]
