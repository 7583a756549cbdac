"""Notification event types.

Notifications are:
- Immutable (frozen dataclasses)
- Emitted only after the triggering change is committed
- Serializable for delivery by outbound channels (email, chat, in-app)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from commission_engine.records import utcnow


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    COMMISSION = "commission"
    COMPLIANCE = "compliance"


class NotificationEvent(str, Enum):
    """Events the engine notifies about."""

    SUBMITTED = "submitted"
    REJECTED_COMMISSION_REVISED = "rejected_commission_revised"
    COMPLIANCE_APPROVED = "compliance_approved"
    ADMIN_APPROVED = "admin_approved"
    ACCOUNTING_APPROVED = "accounting_approved"
    PAID = "paid"
    REJECTED = "rejected"
    DENIED = "denied"
    REVERTED = "reverted"
    DRAW_CLOSED_OUT = "draw_closed_out"
    DELETED = "deleted"
    VIOLATION_LOGGED = "violation_logged"
    HOLD_APPLIED = "hold_applied"
    HOLD_RELEASED = "hold_released"
    VIOLATION_ESCALATED = "violation_escalated"
    VIOLATION_RESOLVED = "violation_resolved"
    ESCALATION_DECIDED = "escalation_decided"

    @property
    def category(self) -> EventCategory:
        if self in _COMPLIANCE_EVENTS:
            return EventCategory.COMPLIANCE
        return EventCategory.COMMISSION


_COMPLIANCE_EVENTS = frozenset(
    {
        NotificationEvent.VIOLATION_LOGGED,
        NotificationEvent.HOLD_APPLIED,
        NotificationEvent.HOLD_RELEASED,
        NotificationEvent.VIOLATION_ESCALATED,
        NotificationEvent.VIOLATION_RESOLVED,
        NotificationEvent.ESCALATION_DECIDED,
    }
)


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@dataclass(frozen=True)
class Notification:
    """One notification and its payload."""

    event: NotificationEvent
    payload: dict[str, Any]
    notification_id: UUID = field(default_factory=uuid4)
    actor_id: UUID | None = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def category(self) -> EventCategory:
        return self.event.category

    def to_dict(self) -> dict[str, Any]:
        return {
            "notification_id": str(self.notification_id),
            "event": self.event.value,
            "category": self.category.value,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=_json_default)
