"""Error taxonomy for commission and compliance operations.

Every error carries a stable ``kind`` for programmatic handling and a
human-readable message for display. Only ``ConflictError`` is recovered
locally (see ``with_conflict_retry``); everything else is surfaced.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommissionEngineError(Exception):
    """Base class for all engine errors."""

    kind = "engine_error"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Structured form for API responses and logs."""
        return {"code": self.kind, "detail": self.message, "retryable": self.retryable}


class ValidationError(CommissionEngineError):
    """Malformed or negative input, or a missing required field."""

    kind = "validation_error"

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationError:
        return cls("; ".join(errors), errors)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = list(self.errors)
        return data


class AuthorizationError(CommissionEngineError):
    """Actor role does not match the approver set for the action."""

    kind = "authorization_error"


class NotFoundError(CommissionEngineError):
    """Requested record does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidTransitionError(CommissionEngineError):
    """Raised when an action is not allowed from the current state."""

    kind = "invalid_transition"

    def __init__(self, from_state: str, action: str, reason: str | None = None):
        self.from_state = from_state
        self.action = action
        self.reason = reason
        msg = f"Cannot {action} from '{from_state}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class EligibilityIncompleteError(CommissionEngineError):
    """Draw eligibility checklist has unchecked items."""

    kind = "eligibility_incomplete"

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            "All eligibility requirements must be confirmed before requesting a draw"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["missing"] = list(self.missing)
        return data


class CapExceededError(CommissionEngineError):
    """Requested draw exceeds the cap derived from the estimated commission."""

    kind = "cap_exceeded"

    def __init__(self, requested: Any, cap: Any):
        self.requested = requested
        self.cap = cap
        super().__init__(
            f"Draw amount {requested} exceeds the maximum draw of {cap} "
            "(50% of estimated commission)"
        )


class NeedsEstimateError(CommissionEngineError):
    """Draw above the flat ceiling requested without an estimated commission."""

    kind = "needs_estimate"

    def __init__(self, requested: Any, ceiling: Any):
        self.requested = requested
        self.ceiling = ceiling
        super().__init__(
            f"Enter contract and commission details to request more than {ceiling}"
        )


class JobDeniedError(CommissionEngineError):
    """Job number is on the permanent deny-list."""

    kind = "job_denied"

    def __init__(self, job_number: str):
        self.job_number = job_number
        super().__init__(f"Job {job_number} has been denied and cannot be resubmitted")


class ComplianceBlockedError(CommissionEngineError):
    """An active compliance hold blocks the action."""

    kind = "compliance_blocked"

    def __init__(
        self,
        hold_id: UUID,
        hold_type: str,
        reason: str | None = None,
    ):
        self.hold_id = hold_id
        self.hold_type = hold_type
        self.reason = reason
        msg = f"Blocked by compliance hold {hold_id} ({hold_type})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {"hold_id": str(self.hold_id), "hold_type": self.hold_type, "reason": self.reason}
        )
        return data


class ConflictError(CommissionEngineError):
    """Record changed between read and conditional write."""

    kind = "conflict"

    def __init__(self, entity: str, entity_id: UUID | str, expected: str):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        super().__init__(
            f"{entity} {entity_id} is no longer in state '{expected}'; re-fetch and retry"
        )


class StoreUnavailableError(CommissionEngineError):
    """Backing store failed or timed out. Safe to retry with backoff."""

    kind = "store_unavailable"
    retryable = True


async def with_conflict_retry(operation: Callable[[], Awaitable[T]]) -> T:
    """Run ``operation``, re-running it once from a fresh read on conflict.

    ``operation`` must re-read state itself; stale guard results are never
    reused. A second conflict propagates to the caller.
    """
    try:
        return await operation()
    except ConflictError as exc:
        logger.info("Retrying after conflict: %s", exc.message)
        return await operation()
