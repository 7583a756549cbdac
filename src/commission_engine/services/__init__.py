"""Business logic services."""

from commission_engine.services.commission_service import CommissionService
from commission_engine.services.compliance_service import ComplianceService, ViolationStateMachine
from commission_engine.services.hold_guard import HoldCheckResult, HoldGuard
from commission_engine.services.state_machine import (
    CommissionAction,
    CommissionStateMachine,
    TransitionPlan,
)

__all__ = [
    "CommissionAction",
    "CommissionService",
    "CommissionStateMachine",
    "ComplianceService",
    "HoldCheckResult",
    "HoldGuard",
    "TransitionPlan",
    "ViolationStateMachine",
]
