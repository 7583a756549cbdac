"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from commission_engine.records import (
    ApprovalStage,
    CommissionStatus,
    EscalationStatus,
    HoldStatus,
    HoldType,
    SubmissionKind,
    ViolationSeverity,
    ViolationStatus,
)


class ErrorResponse(BaseModel):
    """Error body returned for every engine error."""

    detail: str
    code: str
    retryable: bool = False


# ============================================================================
# Commission schemas
# ============================================================================


class CommissionFields(BaseModel):
    """Editable worksheet fields. Unset fields are left alone."""

    job_name: str | None = None
    acculynx_job_id: str | None = Field(default=None, pattern=r"^[0-9]{4}$")
    submission_kind: SubmissionKind | None = None
    contract_amount: Decimal | None = None
    supplements_approved: Decimal | None = None
    commission_percentage: Decimal | None = None
    advances_paid: Decimal | None = None
    is_flat_fee: bool | None = None
    flat_fee_amount: Decimal | None = None
    commission_requested: Decimal | None = None
    manager_id: UUID | None = None
    notes: str | None = None

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"submit"})


class CommissionCreate(CommissionFields):
    """Schema for creating a commission, optionally submitting it."""

    submit: bool = False


class DrawRequestCreate(CommissionFields):
    """Schema for a draw request."""

    acculynx_job_id: str = Field(pattern=r"^[0-9]{4}$")
    draw_amount: Decimal
    eligibility: dict[str, bool] = Field(default_factory=dict)

    def to_fields(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        data["acculynx_job_id"] = self.acculynx_job_id
        data["draw_amount"] = self.draw_amount
        data["eligibility"] = self.eligibility
        return data


class TransitionRequest(BaseModel):
    notes: str | None = None


class ReasonRequest(BaseModel):
    """Reject or deny; a reason is required."""

    reason: str = Field(min_length=1)
    notes: str | None = None


class ResubmitRequest(BaseModel):
    changes: CommissionFields = Field(default_factory=CommissionFields)
    notes: str | None = None


class CloseOutRequest(BaseModel):
    """Final job figures for a paid draw."""

    contract_amount: Decimal | None = None
    supplements_approved: Decimal | None = None
    commission_percentage: Decimal | None = None
    advances_paid: Decimal | None = None
    is_flat_fee: bool | None = None
    flat_fee_amount: Decimal | None = None
    notes: str | None = None


class CommissionResponse(BaseModel):
    """Schema for commission response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    submitted_by: UUID
    submission_kind: SubmissionKind
    status: CommissionStatus
    approval_stage: ApprovalStage | None = None
    job_name: str | None = None
    acculynx_job_id: str | None = None
    is_draw: bool
    draw_closed_out: bool
    contract_amount: Decimal
    supplements_approved: Decimal
    commission_percentage: Decimal
    advances_paid: Decimal
    is_flat_fee: bool
    flat_fee_amount: Decimal | None = None
    commission_requested: Decimal | None = None
    draw_amount_paid: Decimal | None = None
    total_job_revenue: Decimal
    gross_commission: Decimal
    net_commission_owed: Decimal
    manager_id: UUID | None = None
    override_amount: Decimal | None = None
    override_commission_number: int | None = None
    is_manager_submission: bool
    was_rejected: bool
    rejection_reason: str | None = None
    reviewer_notes: str | None = None
    notes: str | None = None
    revision_count: int
    previous_submission_snapshot: dict[str, Any] | None = None
    scheduled_pay_date: date | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CommissionListResponse(BaseModel):
    """Schema for listing commissions."""

    items: list[CommissionResponse]
    total: int
    page: int
    page_size: int


class StatusLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    previous_status: CommissionStatus | None = None
    new_status: CommissionStatus
    previous_stage: ApprovalStage | None = None
    new_stage: ApprovalStage | None = None
    action: str | None = None
    changed_by: UUID
    notes: str | None = None
    created_at: datetime


class RevisionLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    revision_number: int
    requested_by: UUID
    requested_by_role: str
    reason: str
    previous_amount_requested: Decimal | None = None
    created_at: datetime


class FieldChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field: str
    previous: Any = None
    current: Any = None


class CalculateRequest(BaseModel):
    """Worksheet inputs for a live calculation preview."""

    contract_amount: Decimal = Decimal("0")
    supplements_approved: Decimal = Decimal("0")
    commission_percentage: Decimal = Decimal("0")
    advances_paid: Decimal = Decimal("0")
    is_flat_fee: bool = False
    flat_fee_amount: Decimal | None = None


class CalculateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_job_revenue: Decimal
    gross_commission: Decimal
    net_commission_owed: Decimal
    is_negative_balance: bool


class DocumentCalculateRequest(BaseModel):
    """Itemized commission document inputs; percentages are fractions."""

    gross_contract_total: Decimal
    op_percent: Decimal
    material_cost: Decimal = Decimal("0")
    labor_cost: Decimal = Decimal("0")
    negative_expenses: list[Decimal] = Field(default_factory=list)
    positive_expenses: list[Decimal] = Field(default_factory=list)
    rep_profit_percent: Decimal = Decimal("0")
    advance_total: Decimal = Decimal("0")


class DocumentCalculateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    op_amount: Decimal
    contract_total_net: Decimal
    net_profit: Decimal
    rep_commission: Decimal
    company_profit: Decimal
    company_total: Decimal
    rep_balance_due: Decimal


# ============================================================================
# Compliance schemas
# ============================================================================


class ViolationCreate(BaseModel):
    violation_type: str = Field(min_length=1)
    severity: ViolationSeverity
    description: str | None = None
    job_id: str | None = Field(default=None, pattern=r"^[0-9]{4}$")
    user_id: UUID | None = None


class ViolationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    violation_type: str
    severity: ViolationSeverity
    status: ViolationStatus
    description: str | None = None
    job_id: str | None = None
    user_id: UUID | None = None
    reported_by: UUID
    escalation_required: bool
    resolution_notes: str | None = None
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    created_at: datetime


class HoldCreate(BaseModel):
    hold_type: HoldType
    job_id: str | None = Field(default=None, pattern=r"^[0-9]{4}$")
    user_id: UUID | None = None
    reason: str | None = None
    related_entity_type: str | None = None
    related_entity_id: UUID | None = None


class HoldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    hold_type: HoldType
    status: HoldStatus
    job_id: str | None = None
    user_id: UUID | None = None
    reason: str | None = None
    related_entity_type: str | None = None
    related_entity_id: UUID | None = None
    placed_by: UUID
    released_by: UUID | None = None
    released_at: datetime | None = None
    created_at: datetime


class NotesRequest(BaseModel):
    notes: str | None = None


class HoldApplyRequest(BaseModel):
    reason: str | None = None


class EscalateRequest(BaseModel):
    reason: str | None = None


class EscalationDecisionRequest(BaseModel):
    approve: bool
    notes: str | None = None


class EscalationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    violation_id: UUID
    status: EscalationStatus
    reason: str | None = None
    requested_by: UUID
    decided_by: UUID | None = None
    decision_notes: str | None = None
    decided_at: datetime | None = None
    created_at: datetime


class ReleaseHoldsResponse(BaseModel):
    violation_id: UUID
    released: int


class HoldCheckResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    blocked: bool
    reason: str | None = None
    hold_id: UUID | None = None
    hold_type: HoldType | None = None


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_id: UUID
    action: str
    target_type: str
    target_id: UUID
    details: dict[str, Any] | None = None
    created_at: datetime
