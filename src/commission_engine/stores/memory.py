"""In-process stores for tests and local demos.

Units of work are serialized by a lock and roll back to a snapshot of
the tables taken on entry.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from uuid import UUID

from commission_engine.errors import ConflictError, NotFoundError
from commission_engine.records import (
    CommissionRecord,
    CommissionState,
    ComplianceAuditEntry,
    ComplianceEntity,
    DeniedJobNumber,
    Hold,
    HoldStatus,
    OverrideTracking,
    Page,
    RevisionLogEntry,
    StatusLogEntry,
    utcnow,
)
from commission_engine.stores.base import CommissionFilter, matches, paginate


class _UnitOfWorkMixin:
    """Lock-and-snapshot transactions over the attributes in ``_tables``."""

    _tables: tuple[str, ...] = ()

    def _init_uow(self) -> None:
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task[Any] | None = None

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[None]:
        if self._owner is not None and self._owner is asyncio.current_task():
            # Nested: the outermost unit owns commit/rollback.
            yield
            return

        async with self._lock:
            saved = {name: copy.deepcopy(getattr(self, name)) for name in self._tables}
            self._owner = asyncio.current_task()
            try:
                yield
            except BaseException:
                for name, value in saved.items():
                    setattr(self, name, value)
                raise
            finally:
                self._owner = None


class InMemoryCommissionStore(_UnitOfWorkMixin):
    """Commission store backed by dicts."""

    _tables = ("_records", "_status_log", "_revision_log", "_denied", "_overrides")

    def __init__(self) -> None:
        self._records: dict[UUID, CommissionRecord] = {}
        self._status_log: dict[UUID, StatusLogEntry] = {}
        self._revision_log: list[RevisionLogEntry] = []
        self._denied: dict[str, DeniedJobNumber] = {}
        self._overrides: dict[UUID, OverrideTracking] = {}
        self._init_uow()

    async def get(self, commission_id: UUID) -> CommissionRecord:
        record = self._records.get(commission_id)
        if record is None:
            raise NotFoundError("Commission", commission_id)
        return dataclasses.replace(record)

    async def insert(self, record: CommissionRecord) -> UUID:
        if record.id in self._records:
            raise ConflictError("Commission", record.id, "absent")
        self._records[record.id] = dataclasses.replace(record)
        return record.id

    async def update_where(
        self,
        commission_id: UUID,
        expected: CommissionState,
        fields: dict[str, Any],
    ) -> bool:
        record = self._records.get(commission_id)
        if record is None or record.state != expected:
            return False
        self._records[commission_id] = dataclasses.replace(
            record, **{**fields, "updated_at": utcnow()}
        )
        return True

    async def delete(self, commission_id: UUID) -> bool:
        if self._records.pop(commission_id, None) is None:
            return False
        self._status_log = {
            k: v for k, v in self._status_log.items() if v.commission_id != commission_id
        }
        return True

    async def append_status_log(self, entry: StatusLogEntry) -> None:
        self._status_log.setdefault(entry.id, entry)

    async def list_status_log(self, commission_id: UUID) -> list[StatusLogEntry]:
        entries = [e for e in self._status_log.values() if e.commission_id == commission_id]
        return sorted(entries, key=lambda e: e.created_at)

    async def list_by_filter(
        self, filters: CommissionFilter, page: int = 1, page_size: int = 50
    ) -> Page[CommissionRecord]:
        wanted = filters.as_dict()
        rows = [r for r in self._records.values() if matches(r, wanted)]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return paginate([dataclasses.replace(r) for r in rows], page, page_size)

    async def add_denied_job(self, entry: DeniedJobNumber) -> bool:
        if entry.job_number in self._denied:
            return False
        self._denied[entry.job_number] = entry
        return True

    async def is_job_denied(self, job_number: str) -> bool:
        return job_number in self._denied

    async def append_revision_log(self, entry: RevisionLogEntry) -> None:
        if all(e.id != entry.id for e in self._revision_log):
            self._revision_log.append(entry)

    async def list_revision_log(self, commission_id: UUID) -> list[RevisionLogEntry]:
        return sorted(
            (e for e in self._revision_log if e.commission_id == commission_id),
            key=lambda e: e.revision_number,
        )

    async def get_override_tracking(self, sales_rep_id: UUID) -> OverrideTracking | None:
        return self._overrides.get(sales_rep_id)

    async def save_override_tracking(
        self, tracking: OverrideTracking, expected_count: int | None
    ) -> bool:
        current = self._overrides.get(tracking.sales_rep_id)
        seen = current.approved_commission_count if current is not None else None
        if seen != expected_count:
            return False
        self._overrides[tracking.sales_rep_id] = tracking
        return True


class InMemoryComplianceStore(_UnitOfWorkMixin):
    """Compliance store backed by dicts."""

    _tables = ("_rows", "_audit")

    def __init__(self) -> None:
        self._rows: dict[ComplianceEntity, dict[UUID, Any]] = {e: {} for e in ComplianceEntity}
        self._audit: list[ComplianceAuditEntry] = []
        self._init_uow()

    async def insert(self, entity: ComplianceEntity, record: Any) -> UUID:
        rows = self._rows[entity]
        if record.id in rows:
            raise ConflictError(entity.value, record.id, "absent")
        rows[record.id] = record
        return record.id

    async def get(self, entity: ComplianceEntity, record_id: UUID) -> Any:
        record = self._rows[entity].get(record_id)
        if record is None:
            raise NotFoundError(entity.value.capitalize(), record_id)
        return record

    async def update_where(
        self,
        entity: ComplianceEntity,
        record_id: UUID,
        expected_status: str,
        fields: dict[str, Any],
    ) -> bool:
        rows = self._rows[entity]
        record = rows.get(record_id)
        if record is None or record.status != expected_status:
            return False
        rows[record_id] = dataclasses.replace(record, **{**fields, "updated_at": utcnow()})
        return True

    async def list_by_filter(
        self,
        entity: ComplianceEntity,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Page[Any]:
        rows = [r for r in self._rows[entity].values() if matches(r, filters or {})]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return paginate(rows, page, page_size)

    async def find_active_hold(
        self, job_id: str | None = None, user_id: UUID | None = None
    ) -> Hold | None:
        candidates = [
            h
            for h in self._rows[ComplianceEntity.HOLD].values()
            if h.status == HoldStatus.ACTIVE
            and (
                (job_id is not None and h.job_id == job_id)
                or (user_id is not None and h.user_id == user_id)
            )
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda h: h.created_at)

    async def release_holds_for(self, related_entity_id: UUID, fields: dict[str, Any]) -> int:
        rows = self._rows[ComplianceEntity.HOLD]
        released = 0
        for hold_id, hold in list(rows.items()):
            if hold.related_entity_id == related_entity_id and hold.status == HoldStatus.ACTIVE:
                rows[hold_id] = dataclasses.replace(
                    hold, **{**fields, "status": HoldStatus.RELEASED, "updated_at": utcnow()}
                )
                released += 1
        return released

    async def append_audit(self, entry: ComplianceAuditEntry) -> None:
        if all(e.id != entry.id for e in self._audit):
            self._audit.append(entry)

    async def list_audit(self, target_id: UUID | None = None) -> list[ComplianceAuditEntry]:
        entries = [e for e in self._audit if target_id is None or e.target_id == target_id]
        return sorted(entries, key=lambda e: e.created_at)
