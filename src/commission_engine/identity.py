"""Actors and roles.

The current user is always passed explicitly into service calls; the
HTTP layer resolves it from request headers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ActorRole(str, Enum):
    """Roles recognized by the approval chain."""

    USER = "user"
    MANAGER = "manager"
    COMPLIANCE = "compliance"
    ACCOUNTING = "accounting"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """The user performing an action."""

    id: UUID
    role: ActorRole


# Roles whose submissions route straight to the admin queue
MANAGER_SUBMITTER_ROLES = frozenset({ActorRole.MANAGER, ActorRole.ADMIN})

# Roles allowed to mark approved commissions paid
PAYOUT_ROLES = frozenset({ActorRole.ACCOUNTING, ActorRole.ADMIN})

# Roles allowed to act on violations and holds
COMPLIANCE_ROLES = frozenset({ActorRole.COMPLIANCE, ActorRole.ADMIN})
