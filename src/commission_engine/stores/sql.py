"""SQLAlchemy-backed stores.

Outside a unit of work each call runs in its own short session and
commits. Inside ``unit_of_work()`` every call in the current task shares
one session and one transaction.
"""

from __future__ import annotations

import dataclasses
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterator
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commission_engine.errors import NotFoundError, StoreUnavailableError, ValidationError
from commission_engine.models import (
    ComplianceAuditLog,
    ComplianceEscalation,
    ComplianceHold,
    ComplianceViolation,
    CommissionRevisionLog,
    CommissionStatusLog,
    CommissionSubmission,
    DeniedJobNumberRow,
    SalesRepOverrideTracking,
)
from commission_engine.records import (
    COMPLIANCE_RECORD_TYPES,
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
from commission_engine.stores.base import CommissionFilter


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _column_values(fields: dict[str, Any]) -> dict[str, Any]:
    """Unwrap enums so drivers only see plain values."""
    return {k: _plain(v) for k, v in fields.items()}


def _record_values(record: Any) -> dict[str, Any]:
    return _column_values({f.name: getattr(record, f.name) for f in dataclasses.fields(record)})


@contextmanager
def translate_driver_errors() -> Iterator[None]:
    """Surface driver failures as engine errors."""
    try:
        yield
    except IntegrityError as exc:
        raise ValidationError(f"Constraint violated: {exc.orig}") from exc
    except (OperationalError, DBAPIError) as exc:
        raise StoreUnavailableError(f"Database unavailable: {exc.orig}") from exc


_INSERTS: dict[str, Callable[[Any], Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def _insert_if_absent(
    session: AsyncSession, model: type, values: dict[str, Any], key: str
) -> bool:
    """INSERT … ON CONFLICT DO NOTHING on ``key``. False if the row existed."""
    insert = _INSERTS.get(session.get_bind().dialect.name)
    if insert is None:
        if await session.get(model, values[key]) is not None:
            return False
        session.add(model(**values))
        await session.flush()
        return True
    result = await session.execute(
        insert(model).values(**values).on_conflict_do_nothing(index_elements=[key])
    )
    return result.rowcount == 1


class _SqlStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._factory = session_factory
        self._active: ContextVar[AsyncSession | None] = ContextVar(
            f"{type(self).__name__}_{id(self)}", default=None
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        active = self._active.get()
        if active is not None:
            with translate_driver_errors():
                yield active
            return

        with translate_driver_errors():
            async with self._factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[None]:
        if self._active.get() is not None:
            yield
            return

        with translate_driver_errors():
            async with self._factory() as session:
                token = self._active.set(session)
                try:
                    async with session.begin():
                        yield
                finally:
                    self._active.reset(token)


class SqlCommissionStore(_SqlStore):
    """Commission store over the commission_* tables."""

    async def get(self, commission_id: UUID) -> CommissionRecord:
        async with self._session() as session:
            row = await session.get(CommissionSubmission, commission_id, populate_existing=True)
            if row is None:
                raise NotFoundError("Commission", commission_id)
            return CommissionRecord.from_row(row.to_dict())

    async def insert(self, record: CommissionRecord) -> UUID:
        async with self._session() as session:
            session.add(CommissionSubmission(**_record_values(record)))
            await session.flush()
        return record.id

    async def update_where(
        self,
        commission_id: UUID,
        expected: CommissionState,
        fields: dict[str, Any],
    ) -> bool:
        stage = expected.stage.value if expected.stage is not None else None
        stmt = (
            update(CommissionSubmission)
            .where(
                CommissionSubmission.id == commission_id,
                CommissionSubmission.status == expected.status.value,
                CommissionSubmission.approval_stage.is_not_distinct_from(stage),
            )
            .values(**_column_values(fields), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def delete(self, commission_id: UUID) -> bool:
        async with self._session() as session:
            await session.execute(
                delete(CommissionStatusLog).where(
                    CommissionStatusLog.commission_id == commission_id
                )
            )
            await session.execute(
                delete(CommissionRevisionLog).where(
                    CommissionRevisionLog.commission_id == commission_id
                )
            )
            result = await session.execute(
                delete(CommissionSubmission).where(CommissionSubmission.id == commission_id)
            )
            return result.rowcount == 1

    async def append_status_log(self, entry: StatusLogEntry) -> None:
        async with self._session() as session:
            if await session.get(CommissionStatusLog, entry.id) is None:
                session.add(CommissionStatusLog(**_record_values(entry)))
                await session.flush()

    async def list_status_log(self, commission_id: UUID) -> list[StatusLogEntry]:
        async with self._session() as session:
            result = await session.execute(
                select(CommissionStatusLog)
                .where(CommissionStatusLog.commission_id == commission_id)
                .order_by(CommissionStatusLog.created_at)
            )
            return [StatusLogEntry.from_row(r.to_dict()) for r in result.scalars()]

    async def list_by_filter(
        self, filters: CommissionFilter, page: int = 1, page_size: int = 50
    ) -> Page[CommissionRecord]:
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive")
        conditions = [
            getattr(CommissionSubmission, key) == value
            for key, value in _column_values(filters.as_dict()).items()
        ]
        async with self._session() as session:
            total = await session.scalar(
                select(func.count()).select_from(CommissionSubmission).where(*conditions)
            )
            result = await session.execute(
                select(CommissionSubmission)
                .where(*conditions)
                .order_by(CommissionSubmission.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = [CommissionRecord.from_row(r.to_dict()) for r in result.scalars()]
        return Page(items=items, total=total or 0, page=page, page_size=page_size)

    async def add_denied_job(self, entry: DeniedJobNumber) -> bool:
        async with self._session() as session:
            return await _insert_if_absent(
                session, DeniedJobNumberRow, _record_values(entry), "job_number"
            )

    async def is_job_denied(self, job_number: str) -> bool:
        async with self._session() as session:
            return await session.get(DeniedJobNumberRow, job_number) is not None

    async def append_revision_log(self, entry: RevisionLogEntry) -> None:
        async with self._session() as session:
            if await session.get(CommissionRevisionLog, entry.id) is None:
                session.add(CommissionRevisionLog(**_record_values(entry)))
                await session.flush()

    async def list_revision_log(self, commission_id: UUID) -> list[RevisionLogEntry]:
        async with self._session() as session:
            result = await session.execute(
                select(CommissionRevisionLog)
                .where(CommissionRevisionLog.commission_id == commission_id)
                .order_by(CommissionRevisionLog.revision_number)
            )
            return [RevisionLogEntry.from_row(r.to_dict()) for r in result.scalars()]

    async def get_override_tracking(self, sales_rep_id: UUID) -> OverrideTracking | None:
        async with self._session() as session:
            row = await session.get(SalesRepOverrideTracking, sales_rep_id)
            return OverrideTracking.from_row(row.to_dict()) if row is not None else None

    async def save_override_tracking(
        self, tracking: OverrideTracking, expected_count: int | None
    ) -> bool:
        values = _record_values(tracking)
        async with self._session() as session:
            if expected_count is None:
                return await _insert_if_absent(
                    session, SalesRepOverrideTracking, values, "sales_rep_id"
                )
            result = await session.execute(
                update(SalesRepOverrideTracking)
                .where(
                    SalesRepOverrideTracking.sales_rep_id == tracking.sales_rep_id,
                    SalesRepOverrideTracking.approved_commission_count == expected_count,
                )
                .values(
                    manager_id=tracking.manager_id,
                    approved_commission_count=tracking.approved_commission_count,
                    phase_complete=tracking.phase_complete,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1


_COMPLIANCE_MODELS: dict[ComplianceEntity, type] = {
    ComplianceEntity.VIOLATION: ComplianceViolation,
    ComplianceEntity.HOLD: ComplianceHold,
    ComplianceEntity.ESCALATION: ComplianceEscalation,
}


class SqlComplianceStore(_SqlStore):
    """Compliance store over the compliance_* tables."""

    def _to_record(self, entity: ComplianceEntity, row: Any) -> Any:
        return COMPLIANCE_RECORD_TYPES[entity].from_row(row.to_dict())  # type: ignore[attr-defined]

    async def insert(self, entity: ComplianceEntity, record: Any) -> UUID:
        model = _COMPLIANCE_MODELS[entity]
        async with self._session() as session:
            session.add(model(**_record_values(record)))
            await session.flush()
        return record.id

    async def get(self, entity: ComplianceEntity, record_id: UUID) -> Any:
        async with self._session() as session:
            row = await session.get(
                _COMPLIANCE_MODELS[entity], record_id, populate_existing=True
            )
            if row is None:
                raise NotFoundError(entity.value.capitalize(), record_id)
            return self._to_record(entity, row)

    async def update_where(
        self,
        entity: ComplianceEntity,
        record_id: UUID,
        expected_status: str,
        fields: dict[str, Any],
    ) -> bool:
        model = _COMPLIANCE_MODELS[entity]
        stmt = (
            update(model)
            .where(model.id == record_id, model.status == _plain(expected_status))
            .values(**_column_values(fields), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def list_by_filter(
        self,
        entity: ComplianceEntity,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Page[Any]:
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive")
        model = _COMPLIANCE_MODELS[entity]
        conditions = [
            getattr(model, key) == value
            for key, value in _column_values(filters or {}).items()
        ]
        async with self._session() as session:
            total = await session.scalar(
                select(func.count()).select_from(model).where(*conditions)
            )
            result = await session.execute(
                select(model)
                .where(*conditions)
                .order_by(model.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = [self._to_record(entity, r) for r in result.scalars()]
        return Page(items=items, total=total or 0, page=page, page_size=page_size)

    async def find_active_hold(
        self, job_id: str | None = None, user_id: UUID | None = None
    ) -> Hold | None:
        targets = []
        if job_id is not None:
            targets.append(ComplianceHold.job_id == job_id)
        if user_id is not None:
            targets.append(ComplianceHold.user_id == user_id)
        if not targets:
            return None
        async with self._session() as session:
            row = await session.scalar(
                select(ComplianceHold)
                .where(ComplianceHold.status == HoldStatus.ACTIVE.value, or_(*targets))
                .order_by(ComplianceHold.created_at)
                .limit(1)
            )
            return Hold.from_row(row.to_dict()) if row is not None else None

    async def release_holds_for(self, related_entity_id: UUID, fields: dict[str, Any]) -> int:
        stmt = (
            update(ComplianceHold)
            .where(
                ComplianceHold.related_entity_id == related_entity_id,
                ComplianceHold.status == HoldStatus.ACTIVE.value,
            )
            .values(
                **_column_values(fields),
                status=HoldStatus.RELEASED.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def append_audit(self, entry: ComplianceAuditEntry) -> None:
        async with self._session() as session:
            if await session.get(ComplianceAuditLog, entry.id) is None:
                session.add(ComplianceAuditLog(**_record_values(entry)))
                await session.flush()

    async def list_audit(self, target_id: UUID | None = None) -> list[ComplianceAuditEntry]:
        stmt = select(ComplianceAuditLog).order_by(ComplianceAuditLog.created_at)
        if target_id is not None:
            stmt = stmt.where(ComplianceAuditLog.target_id == target_id)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [ComplianceAuditEntry.from_row(r.to_dict()) for r in result.scalars()]
