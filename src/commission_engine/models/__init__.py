"""SQLAlchemy ORM models."""

from commission_engine.models.base import Base, TimestampMixin
from commission_engine.models.commission import (
    CommissionRevisionLog,
    CommissionStatusLog,
    CommissionSubmission,
    DeniedJobNumberRow,
    SalesRepOverrideTracking,
)
from commission_engine.models.compliance import (
    ComplianceAuditLog,
    ComplianceEscalation,
    ComplianceHold,
    ComplianceViolation,
)

__all__ = [
    "Base",
    "CommissionRevisionLog",
    "CommissionStatusLog",
    "CommissionSubmission",
    "ComplianceAuditLog",
    "ComplianceEscalation",
    "ComplianceHold",
    "ComplianceViolation",
    "DeniedJobNumberRow",
    "SalesRepOverrideTracking",
    "TimestampMixin",
]
