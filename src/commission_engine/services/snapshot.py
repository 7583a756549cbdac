"""Resubmission snapshots and the reviewer-facing field diff."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from commission_engine.records import CommissionRecord

# Commission-relevant fields captured at resubmission and diffed for review
SNAPSHOT_FIELDS: tuple[str, ...] = (
    "job_name",
    "acculynx_job_id",
    "submission_kind",
    "is_draw",
    "contract_amount",
    "supplements_approved",
    "commission_percentage",
    "advances_paid",
    "is_flat_fee",
    "flat_fee_amount",
    "commission_requested",
    "total_job_revenue",
    "gross_commission",
    "net_commission_owed",
    "manager_id",
    "notes",
)


@dataclass(frozen=True)
class FieldChange:
    field: str
    previous: Any
    current: Any


def _serialize(value: Any) -> Any:
    """JSON-safe form of a record value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def take_snapshot(record: CommissionRecord) -> dict[str, Any]:
    """Capture the record's commission-relevant fields before an edit."""
    return {name: _serialize(getattr(record, name)) for name in SNAPSHOT_FIELDS}


def _same(previous: Any, current: Any) -> bool:
    if previous is None or current is None:
        return previous is None and current is None
    if isinstance(current, Decimal):
        try:
            return Decimal(str(previous)) == current
        except InvalidOperation:
            return False
    return previous == _serialize(current)


def changed_fields(record: CommissionRecord) -> list[FieldChange]:
    """Fields whose current value differs from the last resubmission snapshot.

    Returns an empty list when the record was never resubmitted.
    """
    snapshot = record.previous_submission_snapshot
    if not snapshot:
        return []
    changes = []
    for name in SNAPSHOT_FIELDS:
        if name not in snapshot:
            continue
        current = getattr(record, name)
        if not _same(snapshot[name], current):
            changes.append(FieldChange(name, snapshot[name], _serialize(current)))
    return changes
