"""Commission submission, log, deny-list and override tracking models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from commission_engine.models.base import Base, TimestampMixin

MONEY = Numeric(12, 2, asdecimal=True)


class CommissionSubmission(Base, TimestampMixin):
    """One commission submission, draw request or draw close-out."""

    __tablename__ = "commission_submission"

    id: Mapped[UUID] = mapped_column("commission_id", primary_key=True)
    submitted_by: Mapped[UUID] = mapped_column(nullable=False, index=True)
    submission_kind: Mapped[str] = mapped_column(String(16), nullable=False, default="employee")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    approval_stage: Mapped[str | None] = mapped_column(String(32))
    job_name: Mapped[str | None] = mapped_column(String)
    acculynx_job_id: Mapped[str | None] = mapped_column(String(4), index=True)
    is_draw: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    draw_closed_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    contract_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    supplements_approved: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    commission_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2, asdecimal=True), nullable=False, default=0
    )
    advances_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    is_flat_fee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    flat_fee_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    commission_requested: Mapped[Decimal | None] = mapped_column(MONEY)
    draw_amount_paid: Mapped[Decimal | None] = mapped_column(MONEY)

    total_job_revenue: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    gross_commission: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    net_commission_owed: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    manager_id: Mapped[UUID | None] = mapped_column()
    override_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    override_manager_id: Mapped[UUID | None] = mapped_column()
    override_commission_number: Mapped[int | None] = mapped_column(Integer)

    is_manager_submission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    was_rejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    reviewer_notes: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    revision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    previous_submission_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    scheduled_pay_date: Mapped[date | None] = mapped_column(Date)

    submitted_at: Mapped[datetime | None] = mapped_column()
    approved_at: Mapped[datetime | None] = mapped_column()
    paid_at: Mapped[datetime | None] = mapped_column()
    paid_by: Mapped[UUID | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "submission_kind IN ('employee', 'subcontractor')",
            name="commission_submission_kind_check",
        ),
        CheckConstraint(
            "status IN ('draft', 'pending_review', 'approved', 'rejected', 'denied', 'paid')",
            name="commission_submission_status_check",
        ),
        CheckConstraint(
            "(status = 'pending_review' AND approval_stage IN "
            "('pending_manager', 'pending_accounting', 'pending_admin'))"
            " OR (status IN ('approved', 'paid') AND approval_stage = 'completed')"
            " OR (status IN ('draft', 'rejected', 'denied') AND approval_stage IS NULL)",
            name="commission_submission_stage_check",
        ),
        CheckConstraint(
            "draw_closed_out = false OR is_draw = true",
            name="commission_submission_close_out_check",
        ),
        Index("commission_submission_status_stage_idx", "status", "approval_stage"),
    )


class CommissionStatusLog(Base):
    """Append-only transition audit trail."""

    __tablename__ = "commission_status_log"

    id: Mapped[UUID] = mapped_column("status_log_id", primary_key=True)
    commission_id: Mapped[UUID] = mapped_column(
        ForeignKey("commission_submission.commission_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    previous_status: Mapped[str | None] = mapped_column(String(32))
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    previous_stage: Mapped[str | None] = mapped_column(String(32))
    new_stage: Mapped[str | None] = mapped_column(String(32))
    action: Mapped[str | None] = mapped_column(String(32))
    changed_by: Mapped[UUID] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(nullable=False)


class CommissionRevisionLog(Base):
    """Revision requests raised by rejections."""

    __tablename__ = "commission_revision_log"

    id: Mapped[UUID] = mapped_column("revision_log_id", primary_key=True)
    commission_id: Mapped[UUID] = mapped_column(
        ForeignKey("commission_submission.commission_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    revision_number: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_by: Mapped[UUID] = mapped_column(nullable=False)
    requested_by_role: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    previous_amount_requested: Mapped[Decimal | None] = mapped_column(MONEY)
    created_at: Mapped[datetime] = mapped_column(nullable=False)


class DeniedJobNumberRow(Base):
    """Permanent deny-list. Outlives the commission that caused it."""

    __tablename__ = "denied_job_number"

    job_number: Mapped[str] = mapped_column(String(4), primary_key=True)
    commission_id: Mapped[UUID | None] = mapped_column()
    denied_by: Mapped[UUID] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    denied_at: Mapped[datetime] = mapped_column(nullable=False)


class SalesRepOverrideTracking(Base, TimestampMixin):
    """Manager override progress per sales rep."""

    __tablename__ = "sales_rep_override_tracking"

    sales_rep_id: Mapped[UUID] = mapped_column(primary_key=True)
    manager_id: Mapped[UUID] = mapped_column(nullable=False)
    approved_commission_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    phase_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "approved_commission_count >= 0",
            name="sales_rep_override_count_check",
        ),
    )
