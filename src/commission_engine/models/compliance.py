"""Compliance violation, hold, escalation and audit models."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from commission_engine.models.base import Base, TimestampMixin


class ComplianceViolation(Base, TimestampMixin):
    """A flagged SOP breach."""

    __tablename__ = "compliance_violation"

    id: Mapped[UUID] = mapped_column("violation_id", primary_key=True)
    violation_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    job_id: Mapped[str | None] = mapped_column(String(4))
    user_id: Mapped[UUID | None] = mapped_column()
    reported_by: Mapped[UUID] = mapped_column(nullable=False)
    escalation_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_notes: Mapped[str | None] = mapped_column(Text)
    resolved_by: Mapped[UUID | None] = mapped_column()
    resolved_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "severity IN ('minor', 'major', 'severe')",
            name="compliance_violation_severity_check",
        ),
        CheckConstraint(
            "status IN ('open', 'blocked', 'escalated', 'resolved')",
            name="compliance_violation_status_check",
        ),
        CheckConstraint(
            "severity != 'severe' OR escalation_required = true",
            name="compliance_violation_severe_escalation_check",
        ),
    )


class ComplianceHold(Base, TimestampMixin):
    """A block on a job, user or related entity."""

    __tablename__ = "compliance_hold"

    id: Mapped[UUID] = mapped_column("hold_id", primary_key=True)
    hold_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    job_id: Mapped[str | None] = mapped_column(String(4))
    user_id: Mapped[UUID | None] = mapped_column()
    reason: Mapped[str | None] = mapped_column(Text)
    related_entity_type: Mapped[str | None] = mapped_column(String(32))
    related_entity_id: Mapped[UUID | None] = mapped_column()
    placed_by: Mapped[UUID] = mapped_column(nullable=False)
    released_by: Mapped[UUID | None] = mapped_column()
    released_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "hold_type IN ('commission_hold', 'invoice_hold', 'scheduling_hold', "
            "'access_hold', 'violation_hold')",
            name="compliance_hold_type_check",
        ),
        CheckConstraint(
            "status IN ('active', 'released')",
            name="compliance_hold_status_check",
        ),
        Index("compliance_hold_job_idx", "job_id", "status"),
        Index("compliance_hold_user_idx", "user_id", "status"),
        Index("compliance_hold_related_idx", "related_entity_id"),
    )


class ComplianceEscalation(Base, TimestampMixin):
    """Admin decision request, one per violation."""

    __tablename__ = "compliance_escalation"

    id: Mapped[UUID] = mapped_column("escalation_id", primary_key=True)
    violation_id: Mapped[UUID] = mapped_column(
        ForeignKey("compliance_violation.violation_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    reason: Mapped[str | None] = mapped_column(Text)
    requested_by: Mapped[UUID] = mapped_column(nullable=False)
    decided_by: Mapped[UUID | None] = mapped_column()
    decision_notes: Mapped[str | None] = mapped_column(Text)
    decided_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'denied')",
            name="compliance_escalation_status_check",
        ),
    )


class ComplianceAuditLog(Base):
    """Append-only record of compliance actions."""

    __tablename__ = "compliance_audit_log"

    id: Mapped[UUID] = mapped_column("audit_id", primary_key=True)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
