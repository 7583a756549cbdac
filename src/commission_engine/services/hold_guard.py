"""Compliance hold guard for forward commission transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from commission_engine.errors import ComplianceBlockedError
from commission_engine.records import HoldType
from commission_engine.rules import is_valid_job_number
from commission_engine.stores.base import ComplianceStore, bounded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldCheckResult:
    """Outcome of a hold lookup for a job and/or user."""

    blocked: bool
    reason: str | None = None
    hold_id: UUID | None = None
    hold_type: HoldType | None = None


class HoldGuard:
    """Refuses forward progress while an active hold targets the job or submitter."""

    def __init__(self, store: ComplianceStore, timeout: float | None = None):
        self.store = store
        self.timeout = timeout

    async def check(self, job_id: str | None, user_id: UUID | None) -> HoldCheckResult:
        job = job_id if is_valid_job_number(job_id) else None
        if job is None and user_id is None:
            return HoldCheckResult(blocked=False)

        hold = await bounded(self.store.find_active_hold(job_id=job, user_id=user_id), self.timeout)
        if hold is None:
            return HoldCheckResult(blocked=False)

        target = f"job {hold.job_id}" if hold.job_id and hold.job_id == job else "user"
        return HoldCheckResult(
            blocked=True,
            reason=hold.reason or f"Active {hold.hold_type.value} on {target}",
            hold_id=hold.id,
            hold_type=hold.hold_type,
        )

    async def ensure_clear(self, job_id: str | None, user_id: UUID | None) -> None:
        """Raise ComplianceBlockedError if an active hold matches."""
        result = await self.check(job_id, user_id)
        if result.blocked:
            logger.info(
                "Blocked by hold %s (%s) for job=%s user=%s",
                result.hold_id,
                result.hold_type.value if result.hold_type else None,
                job_id,
                user_id,
            )
            raise ComplianceBlockedError(
                result.hold_id,  # type: ignore[arg-type]
                result.hold_type.value if result.hold_type else "hold",
                result.reason,
            )
