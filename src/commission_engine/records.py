"""Domain records exchanged between services and stores.

Stores hand back these dataclasses rather than ORM rows so the services
and the state machine never depend on a session being open.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar
from uuid import UUID

T = TypeVar("T")
R = TypeVar("R")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommissionStatus(str, Enum):
    """Commission status values."""

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    DENIED = "denied"
    PAID = "paid"


class ApprovalStage(str, Enum):
    """Approver queue a commission sits in."""

    PENDING_MANAGER = "pending_manager"
    PENDING_ACCOUNTING = "pending_accounting"
    PENDING_ADMIN = "pending_admin"
    COMPLETED = "completed"


PENDING_STAGES = frozenset(
    {ApprovalStage.PENDING_MANAGER, ApprovalStage.PENDING_ACCOUNTING, ApprovalStage.PENDING_ADMIN}
)


class SubmissionKind(str, Enum):
    EMPLOYEE = "employee"
    SUBCONTRACTOR = "subcontractor"


class ViolationSeverity(str, Enum):
    MINOR = "minor"
    MAJOR = "major"
    SEVERE = "severe"


class ViolationStatus(str, Enum):
    OPEN = "open"
    BLOCKED = "blocked"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class HoldType(str, Enum):
    COMMISSION_HOLD = "commission_hold"
    INVOICE_HOLD = "invoice_hold"
    SCHEDULING_HOLD = "scheduling_hold"
    ACCESS_HOLD = "access_hold"
    VIOLATION_HOLD = "violation_hold"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"


class EscalationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class ComplianceEntity(str, Enum):
    """Compliance record families held by the compliance store."""

    VIOLATION = "violation"
    HOLD = "hold"
    ESCALATION = "escalation"


@dataclass(frozen=True)
class CommissionState:
    """A (status, approval_stage) pair that is valid by construction.

    A pending stage exists only while the status is pending_review, and
    ``completed`` only for approved or paid records. Every other status
    carries no stage.
    """

    status: CommissionStatus
    stage: ApprovalStage | None = None

    def __post_init__(self) -> None:
        status = CommissionStatus(self.status)
        stage = ApprovalStage(self.stage) if self.stage is not None else None
        object.__setattr__(self, "status", status)
        object.__setattr__(self, "stage", stage)

        if status == CommissionStatus.PENDING_REVIEW:
            if stage not in PENDING_STAGES:
                raise ValueError("pending_review requires a pending approval stage")
        elif status in (CommissionStatus.APPROVED, CommissionStatus.PAID):
            if stage != ApprovalStage.COMPLETED:
                raise ValueError(f"{status.value} requires approval stage 'completed'")
        elif stage is not None:
            raise ValueError(f"{status.value} cannot carry an approval stage")

    @property
    def is_pending(self) -> bool:
        return self.status == CommissionStatus.PENDING_REVIEW

    def label(self) -> str:
        if self.stage is None:
            return self.status.value
        return f"{self.status.value}/{self.stage.value}"

    def __str__(self) -> str:
        return self.label()


def _coerce(cls: type[T], row: Mapping[str, Any], enums: Mapping[str, type[Enum]]) -> T:
    """Build a record from a field map, ignoring unknown keys."""
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    data = {k: v for k, v in row.items() if k in names}
    for name, enum_cls in enums.items():
        value = data.get(name)
        if value is not None and not isinstance(value, enum_cls):
            data[name] = enum_cls(value)
    return cls(**data)


@dataclass
class CommissionRecord:
    """One commission submission for one job or payment event."""

    id: UUID
    submitted_by: UUID
    submission_kind: SubmissionKind = SubmissionKind.EMPLOYEE
    status: CommissionStatus = CommissionStatus.DRAFT
    approval_stage: ApprovalStage | None = None
    job_name: str | None = None
    acculynx_job_id: str | None = None
    is_draw: bool = False
    draw_closed_out: bool = False
    contract_amount: Decimal = Decimal("0")
    supplements_approved: Decimal = Decimal("0")
    commission_percentage: Decimal = Decimal("0")
    advances_paid: Decimal = Decimal("0")
    is_flat_fee: bool = False
    flat_fee_amount: Decimal | None = None
    commission_requested: Decimal | None = None
    draw_amount_paid: Decimal | None = None
    total_job_revenue: Decimal = Decimal("0")
    gross_commission: Decimal = Decimal("0")
    net_commission_owed: Decimal = Decimal("0")
    manager_id: UUID | None = None
    override_amount: Decimal | None = None
    override_manager_id: UUID | None = None
    override_commission_number: int | None = None
    is_manager_submission: bool = False
    was_rejected: bool = False
    rejection_reason: str | None = None
    reviewer_notes: str | None = None
    notes: str | None = None
    revision_count: int = 0
    previous_submission_snapshot: dict[str, Any] | None = None
    scheduled_pay_date: date | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    paid_at: datetime | None = None
    paid_by: UUID | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.status = CommissionStatus(self.status)
        if self.approval_stage is not None:
            self.approval_stage = ApprovalStage(self.approval_stage)
        CommissionState(self.status, self.approval_stage)

    @property
    def state(self) -> CommissionState:
        return CommissionState(self.status, self.approval_stage)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CommissionRecord:
        return _coerce(
            cls,
            row,
            {
                "submission_kind": SubmissionKind,
                "status": CommissionStatus,
                "approval_stage": ApprovalStage,
            },
        )


@dataclass(frozen=True)
class StatusLogEntry:
    """Immutable audit record of one transition."""

    id: UUID
    commission_id: UUID
    previous_status: CommissionStatus | None
    new_status: CommissionStatus
    changed_by: UUID
    previous_stage: ApprovalStage | None = None
    new_stage: ApprovalStage | None = None
    action: str | None = None
    notes: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> StatusLogEntry:
        return _coerce(
            cls,
            row,
            {
                "previous_status": CommissionStatus,
                "new_status": CommissionStatus,
                "previous_stage": ApprovalStage,
                "new_stage": ApprovalStage,
            },
        )


@dataclass(frozen=True)
class RevisionLogEntry:
    """One revision request raised by a rejection."""

    id: UUID
    commission_id: UUID
    revision_number: int
    requested_by: UUID
    requested_by_role: str
    reason: str
    previous_amount_requested: Decimal | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> RevisionLogEntry:
        return _coerce(cls, row, {})


@dataclass(frozen=True)
class DeniedJobNumber:
    job_number: str
    denied_by: UUID
    commission_id: UUID | None = None
    reason: str | None = None
    denied_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DeniedJobNumber:
        return _coerce(cls, row, {})


@dataclass(frozen=True)
class OverrideTracking:
    """Progress of a rep through the manager-override phase."""

    sales_rep_id: UUID
    manager_id: UUID
    approved_commission_count: int = 0
    phase_complete: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> OverrideTracking:
        return _coerce(cls, row, {})


@dataclass(frozen=True)
class Violation:
    """A flagged SOP breach."""

    id: UUID
    violation_type: str
    severity: ViolationSeverity
    reported_by: UUID
    status: ViolationStatus = ViolationStatus.OPEN
    description: str | None = None
    job_id: str | None = None
    user_id: UUID | None = None
    escalation_required: bool = False
    resolution_notes: str | None = None
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Violation:
        return _coerce(cls, row, {"severity": ViolationSeverity, "status": ViolationStatus})


@dataclass(frozen=True)
class Hold:
    """A block on a job, user or related entity."""

    id: UUID
    hold_type: HoldType
    placed_by: UUID
    status: HoldStatus = HoldStatus.ACTIVE
    job_id: str | None = None
    user_id: UUID | None = None
    reason: str | None = None
    related_entity_type: str | None = None
    related_entity_id: UUID | None = None
    released_by: UUID | None = None
    released_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == HoldStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Hold:
        return _coerce(cls, row, {"hold_type": HoldType, "status": HoldStatus})


@dataclass(frozen=True)
class Escalation:
    """Admin-decision request for one violation."""

    id: UUID
    violation_id: UUID
    requested_by: UUID
    status: EscalationStatus = EscalationStatus.PENDING
    reason: str | None = None
    decided_by: UUID | None = None
    decision_notes: str | None = None
    decided_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Escalation:
        return _coerce(cls, row, {"status": EscalationStatus})


@dataclass(frozen=True)
class ComplianceAuditEntry:
    id: UUID
    actor_id: UUID
    action: str
    target_type: str
    target_id: UUID
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ComplianceAuditEntry:
        return _coerce(cls, row, {})


COMPLIANCE_RECORD_TYPES: dict[ComplianceEntity, type] = {
    ComplianceEntity.VIOLATION: Violation,
    ComplianceEntity.HOLD: Hold,
    ComplianceEntity.ESCALATION: Escalation,
}


@dataclass(frozen=True)
class Page(Generic[R]):
    """One page of a filtered listing."""

    items: list[R]
    total: int
    page: int = 1
    page_size: int = 50
