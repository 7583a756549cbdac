"""Store interfaces consumed by the services.

Stores speak in domain records (see ``commission_engine.records``). Every
write that must be atomic with another write happens inside
``unit_of_work()``; outside one, each call commits on its own.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Awaitable, Callable, Protocol, TypeVar
from uuid import UUID

from commission_engine.errors import StoreUnavailableError, ValidationError
from commission_engine.records import (
    ApprovalStage,
    CommissionRecord,
    CommissionState,
    CommissionStatus,
    ComplianceAuditEntry,
    ComplianceEntity,
    DeniedJobNumber,
    Hold,
    OverrideTracking,
    Page,
    RevisionLogEntry,
    StatusLogEntry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CommissionFilter:
    """Listing filter; ``None`` fields match everything."""

    status: CommissionStatus | None = None
    approval_stage: ApprovalStage | None = None
    submitted_by: UUID | None = None
    acculynx_job_id: str | None = None
    is_draw: bool | None = None

    def as_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


class CommissionStore(Protocol):
    """Row store for commission records and their logs."""

    async def get(self, commission_id: UUID) -> CommissionRecord:
        """Return the record or raise NotFoundError."""
        ...

    async def insert(self, record: CommissionRecord) -> UUID:
        ...

    async def update_where(
        self,
        commission_id: UUID,
        expected: CommissionState,
        fields: dict[str, Any],
    ) -> bool:
        """Apply ``fields`` only if the record is still in ``expected``.

        Returns False when the record moved on (or is gone).
        """
        ...

    async def delete(self, commission_id: UUID) -> bool:
        ...

    async def append_status_log(self, entry: StatusLogEntry) -> None:
        """Append a log entry. Re-appending the same entry id is a no-op."""
        ...

    async def list_status_log(self, commission_id: UUID) -> list[StatusLogEntry]:
        ...

    async def list_by_filter(
        self, filters: CommissionFilter, page: int = 1, page_size: int = 50
    ) -> Page[CommissionRecord]:
        ...

    async def add_denied_job(self, entry: DeniedJobNumber) -> bool:
        """Record a denied job number. Returns False if already denied."""
        ...

    async def is_job_denied(self, job_number: str) -> bool:
        ...

    async def append_revision_log(self, entry: RevisionLogEntry) -> None:
        ...

    async def list_revision_log(self, commission_id: UUID) -> list[RevisionLogEntry]:
        ...

    async def get_override_tracking(self, sales_rep_id: UUID) -> OverrideTracking | None:
        ...

    async def save_override_tracking(
        self, tracking: OverrideTracking, expected_count: int | None
    ) -> bool:
        """Write the row only if its stored count is still ``expected_count``.

        ``None`` means the row must not exist yet. False on a lost race.
        """
        ...

    def unit_of_work(self) -> AsyncContextManager[None]:
        ...


class ComplianceStore(Protocol):
    """Row store for violations, holds, escalations and the compliance audit log."""

    async def insert(self, entity: ComplianceEntity, record: Any) -> UUID:
        ...

    async def get(self, entity: ComplianceEntity, record_id: UUID) -> Any:
        """Return the record or raise NotFoundError."""
        ...

    async def update_where(
        self,
        entity: ComplianceEntity,
        record_id: UUID,
        expected_status: str,
        fields: dict[str, Any],
    ) -> bool:
        ...

    async def list_by_filter(
        self,
        entity: ComplianceEntity,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Page[Any]:
        ...

    async def find_active_hold(
        self, job_id: str | None = None, user_id: UUID | None = None
    ) -> Hold | None:
        """Oldest active hold on the job or the user, if any."""
        ...

    async def release_holds_for(self, related_entity_id: UUID, fields: dict[str, Any]) -> int:
        """Release every active hold linked to an entity. Returns the count."""
        ...

    async def append_audit(self, entry: ComplianceAuditEntry) -> None:
        ...

    async def list_audit(self, target_id: UUID | None = None) -> list[ComplianceAuditEntry]:
        ...

    def unit_of_work(self) -> AsyncContextManager[None]:
        ...


async def bounded(call: Awaitable[T], timeout: float | None) -> T:
    """Await a store call with a timeout, surfacing expiry as retryable."""
    if timeout is None:
        return await call
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError:
        raise StoreUnavailableError(f"Store call timed out after {timeout}s") from None


def matches(record: Any, filters: dict[str, Any]) -> bool:
    """True iff every filter value equals the record attribute."""
    return all(getattr(record, key, None) == value for key, value in filters.items())


def paginate(items: list[T], page: int, page_size: int) -> Page[T]:
    if page < 1 or page_size < 1:
        raise ValidationError("page and page_size must be positive")
    start = (page - 1) * page_size
    return Page(items=items[start : start + page_size], total=len(items), page=page, page_size=page_size)


async def append_with_retry(
    append: Callable[[], Awaitable[None]],
    retries: int,
    timeout: float | None = None,
    what: str = "audit entry",
) -> None:
    """Run an idempotent append, retrying on StoreUnavailableError.

    Appends carry client-generated ids, so a retry after an ambiguous
    failure cannot write the entry twice.
    """
    attempt = 0
    while True:
        try:
            await bounded(append(), timeout)
            return
        except StoreUnavailableError as exc:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning("Retrying %s write (%d/%d): %s", what, attempt, retries, exc.message)
