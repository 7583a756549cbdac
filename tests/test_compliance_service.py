"""Tests for violations, holds and escalations."""

from uuid import uuid4

import pytest

from commission_engine.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from commission_engine.events import EventCategory, NotificationEvent
from commission_engine.records import (
    ComplianceEntity,
    EscalationStatus,
    HoldStatus,
    HoldType,
    ViolationSeverity,
    ViolationStatus,
)
from commission_engine.services import ViolationStateMachine


class TestViolationStateMachine:
    def test_valid_transitions(self):
        assert ViolationStateMachine.can_transition(ViolationStatus.OPEN, ViolationStatus.BLOCKED)
        assert ViolationStateMachine.can_transition(
            ViolationStatus.BLOCKED, ViolationStatus.ESCALATED
        )
        assert ViolationStateMachine.can_transition(
            ViolationStatus.ESCALATED, ViolationStatus.OPEN
        )
        assert ViolationStateMachine.can_transition(
            ViolationStatus.ESCALATED, ViolationStatus.RESOLVED
        )

    def test_invalid_transitions(self):
        assert not ViolationStateMachine.can_transition(
            ViolationStatus.ESCALATED, ViolationStatus.BLOCKED
        )
        for status in ViolationStatus:
            assert not ViolationStateMachine.can_transition(ViolationStatus.RESOLVED, status)

    def test_validate_raises(self):
        with pytest.raises(InvalidTransitionError):
            ViolationStateMachine.validate_transition(
                ViolationStatus.RESOLVED, ViolationStatus.OPEN, "reopen"
            )

    def test_escalated_moves_only_by_decision(self):
        with pytest.raises(InvalidTransitionError, match="pending an admin decision"):
            ViolationStateMachine.validate_transition(
                ViolationStatus.ESCALATED, ViolationStatus.RESOLVED, "resolve"
            )
        ViolationStateMachine.validate_transition(
            ViolationStatus.ESCALATED, ViolationStatus.RESOLVED, "resolve", via_decision=True
        )


class TestLogViolation:
    async def test_log_violation(self, compliance_service, sent, compliance_officer, rep):
        violation = await compliance_service.log_violation(
            compliance_officer,
            "missing_permit",
            ViolationSeverity.MAJOR,
            description="No permit on file",
            job_id="1234",
            user_id=rep.id,
        )
        assert violation.status == ViolationStatus.OPEN
        assert violation.escalation_required is False
        assert violation.reported_by == compliance_officer.id

        audit = await compliance_service.audit_log(violation.id)
        assert [e.action for e in audit] == ["log_violation"]
        assert sent[-1].event == NotificationEvent.VIOLATION_LOGGED
        assert sent[-1].category == EventCategory.COMPLIANCE

    async def test_severe_requires_escalation(self, compliance_service, compliance_officer):
        violation = await compliance_service.log_violation(
            compliance_officer, "safety", "severe", job_id="1234"
        )
        assert violation.escalation_required is True

    async def test_rep_cannot_log(self, compliance_service, rep):
        with pytest.raises(AuthorizationError):
            await compliance_service.log_violation(rep, "safety", "minor")

    async def test_type_required(self, compliance_service, admin):
        with pytest.raises(ValidationError):
            await compliance_service.log_violation(admin, "  ", "minor")

    async def test_invalid_job_number(self, compliance_service, admin):
        with pytest.raises(ValidationError):
            await compliance_service.log_violation(admin, "safety", "minor", job_id="12")

    async def test_unknown_violation(self, compliance_service):
        with pytest.raises(NotFoundError):
            await compliance_service.get_violation(uuid4())


class TestViolationHolds:
    """Holds placed from a violation."""

    async def test_apply_hold_blocks_violation(
        self, compliance_service, compliance_officer, rep
    ):
        violation = await compliance_service.log_violation(
            compliance_officer, "missing_permit", "major", job_id="1234", user_id=rep.id
        )
        hold = await compliance_service.apply_hold(compliance_officer, violation.id)

        assert hold.hold_type == HoldType.VIOLATION_HOLD
        assert hold.status == HoldStatus.ACTIVE
        assert hold.job_id == "1234"
        assert hold.user_id == rep.id
        assert hold.related_entity_type == "violation"
        assert hold.related_entity_id == violation.id
        assert (await compliance_service.get_violation(violation.id)).status == (
            ViolationStatus.BLOCKED
        )

        result = await compliance_service.check_commission_hold("1234", None)
        assert result.blocked is True
        assert result.hold_id == hold.id

    async def test_second_hold_keeps_blocked(self, compliance_service, compliance_officer):
        violation = await compliance_service.log_violation(
            compliance_officer, "missing_permit", "major", job_id="1234"
        )
        await compliance_service.apply_hold(compliance_officer, violation.id)
        await compliance_service.apply_hold(compliance_officer, violation.id, "again")

        holds = await compliance_service.list_records(
            ComplianceEntity.HOLD, {"related_entity_id": violation.id}
        )
        assert holds.total == 2
        assert (await compliance_service.get_violation(violation.id)).status == (
            ViolationStatus.BLOCKED
        )

    async def test_apply_hold_needs_target(self, compliance_service, compliance_officer):
        violation = await compliance_service.log_violation(
            compliance_officer, "paperwork", "minor"
        )
        with pytest.raises(ValidationError):
            await compliance_service.apply_hold(compliance_officer, violation.id)

    async def test_release_violation_holds_reopens(
        self, compliance_service, compliance_officer
    ):
        violation = await compliance_service.log_violation(
            compliance_officer, "missing_permit", "major", job_id="1234"
        )
        await compliance_service.apply_hold(compliance_officer, violation.id)
        await compliance_service.apply_hold(compliance_officer, violation.id)

        released = await compliance_service.release_violation_holds(
            compliance_officer, violation.id, "Permit uploaded"
        )
        assert released == 2
        assert (await compliance_service.get_violation(violation.id)).status == (
            ViolationStatus.OPEN
        )
        assert (await compliance_service.check_commission_hold("1234", None)).blocked is False

    async def test_release_requires_blocked(self, compliance_service, compliance_officer):
        violation = await compliance_service.log_violation(
            compliance_officer, "missing_permit", "major", job_id="1234"
        )
        with pytest.raises(InvalidTransitionError):
            await compliance_service.release_violation_holds(compliance_officer, violation.id)

    async def test_direct_resolve_keeps_holds(self, compliance_service, compliance_officer):
        violation = await compliance_service.log_violation(
            compliance_officer, "missing_permit", "major", job_id="1234"
        )
        hold = await compliance_service.apply_hold(compliance_officer, violation.id)

        resolved = await compliance_service.resolve_violation(
            compliance_officer, violation.id, "Handled offline"
        )
        assert resolved.status == ViolationStatus.RESOLVED
        assert resolved.resolved_by == compliance_officer.id
        assert resolved.resolution_notes == "Handled offline"
        assert (await compliance_service.get_hold(hold.id)).status == HoldStatus.ACTIVE

        with pytest.raises(InvalidTransitionError):
            await compliance_service.resolve_violation(compliance_officer, violation.id)


class TestStandaloneHolds:
    async def test_place_and_release(self, compliance_service, compliance_officer, rep):
        hold = await compliance_service.place_hold(
            compliance_officer, "commission_hold", user_id=rep.id, reason="Audit"
        )
        assert (await compliance_service.check_commission_hold(None, rep.id)).blocked is True

        released = await compliance_service.release_hold(compliance_officer, hold.id, "Cleared")
        assert released.status == HoldStatus.RELEASED
        assert released.released_by == compliance_officer.id
        assert released.released_at is not None
        assert (await compliance_service.check_commission_hold(None, rep.id)).blocked is False

        with pytest.raises(InvalidTransitionError):
            await compliance_service.release_hold(compliance_officer, hold.id)

    async def test_access_hold_requires_user(self, compliance_service, compliance_officer):
        with pytest.raises(ValidationError):
            await compliance_service.place_hold(
                compliance_officer, HoldType.ACCESS_HOLD, job_id="1234"
            )

    async def test_hold_requires_target(self, compliance_service, compliance_officer):
        with pytest.raises(ValidationError):
            await compliance_service.place_hold(compliance_officer, HoldType.COMMISSION_HOLD)

    async def test_accounting_cannot_place_hold(self, compliance_service, accountant):
        with pytest.raises(AuthorizationError):
            await compliance_service.place_hold(
                accountant, HoldType.COMMISSION_HOLD, job_id="1234"
            )

    async def test_oldest_active_hold_reported(self, compliance_service, compliance_officer, rep):
        first = await compliance_service.place_hold(
            compliance_officer, HoldType.SCHEDULING_HOLD, job_id="1234"
        )
        await compliance_service.place_hold(
            compliance_officer, HoldType.COMMISSION_HOLD, user_id=rep.id
        )
        result = await compliance_service.check_commission_hold("1234", rep.id)
        assert result.hold_id == first.id
        assert result.hold_type == HoldType.SCHEDULING_HOLD

    async def test_malformed_job_id_ignored_by_check(self, compliance_service):
        result = await compliance_service.check_commission_hold("12", None)
        assert result.blocked is False


class TestEscalations:
    """Escalation decisions."""

    async def _escalated(self, service, officer, rep):
        violation = await service.log_violation(
            officer, "safety", "severe", job_id="1234", user_id=rep.id
        )
        hold = await service.apply_hold(officer, violation.id)
        escalation = await service.escalate(officer, violation.id, "Needs exception")
        return violation, hold, escalation

    async def test_escalate(self, compliance_service, compliance_officer, rep):
        violation, _, escalation = await self._escalated(
            compliance_service, compliance_officer, rep
        )
        assert escalation.status == EscalationStatus.PENDING
        assert escalation.violation_id == violation.id
        assert (await compliance_service.get_violation(violation.id)).status == (
            ViolationStatus.ESCALATED
        )

    async def test_single_pending_escalation(self, compliance_service, compliance_officer, rep):
        violation, _, _ = await self._escalated(compliance_service, compliance_officer, rep)
        with pytest.raises(InvalidTransitionError):
            await compliance_service.escalate(compliance_officer, violation.id)

    async def test_approve_resolves_and_releases(
        self, compliance_service, sent, compliance_officer, admin, rep
    ):
        violation, hold, escalation = await self._escalated(
            compliance_service, compliance_officer, rep
        )
        decided = await compliance_service.decide_escalation(
            admin, escalation.id, approve=True, notes="One-time exception"
        )

        assert decided.status == EscalationStatus.APPROVED
        assert decided.decided_by == admin.id
        assert decided.decision_notes == "One-time exception"

        violation = await compliance_service.get_violation(violation.id)
        assert violation.status == ViolationStatus.RESOLVED
        assert violation.resolved_by == admin.id
        assert (await compliance_service.get_hold(hold.id)).status == HoldStatus.RELEASED
        assert sent[-1].event == NotificationEvent.ESCALATION_DECIDED

        escalation_audit = await compliance_service.audit_log(escalation.id)
        assert [e.action for e in escalation_audit] == ["approve_escalation"]
        violation_audit = await compliance_service.audit_log(violation.id)
        assert violation_audit[-1].action == "resolve_violation_via_escalation"

    async def test_pending_escalation_blocks_direct_resolve_and_release(
        self, compliance_service, compliance_officer, admin, rep
    ):
        violation, hold, escalation = await self._escalated(
            compliance_service, compliance_officer, rep
        )
        with pytest.raises(InvalidTransitionError, match="pending an admin decision"):
            await compliance_service.resolve_violation(admin, violation.id, "Handled offline")
        with pytest.raises(InvalidTransitionError, match="pending an admin decision"):
            await compliance_service.release_violation_holds(compliance_officer, violation.id)

        assert (await compliance_service.get_violation(violation.id)).status == (
            ViolationStatus.ESCALATED
        )
        assert (await compliance_service.get_hold(hold.id)).status == HoldStatus.ACTIVE

        decided = await compliance_service.decide_escalation(admin, escalation.id, approve=True)
        assert decided.status == EscalationStatus.APPROVED
        assert (await compliance_service.get_violation(violation.id)).status == (
            ViolationStatus.RESOLVED
        )
        assert (await compliance_service.get_hold(hold.id)).status == HoldStatus.RELEASED

    async def test_deny_reopens_and_keeps_holds(
        self, compliance_service, compliance_officer, admin, rep
    ):
        violation, hold, escalation = await self._escalated(
            compliance_service, compliance_officer, rep
        )
        decided = await compliance_service.decide_escalation(admin, escalation.id, approve=False)

        assert decided.status == EscalationStatus.DENIED
        assert (await compliance_service.get_violation(violation.id)).status == (
            ViolationStatus.OPEN
        )
        assert (await compliance_service.get_hold(hold.id)).status == HoldStatus.ACTIVE

        # A fresh escalation is allowed once the previous one is decided
        again = await compliance_service.escalate(compliance_officer, violation.id)
        assert again.status == EscalationStatus.PENDING

    async def test_only_admin_decides(self, compliance_service, compliance_officer, rep):
        _, _, escalation = await self._escalated(compliance_service, compliance_officer, rep)
        with pytest.raises(AuthorizationError):
            await compliance_service.decide_escalation(
                compliance_officer, escalation.id, approve=True
            )

    async def test_decided_escalation_is_final(
        self, compliance_service, compliance_officer, admin, rep
    ):
        _, _, escalation = await self._escalated(compliance_service, compliance_officer, rep)
        await compliance_service.decide_escalation(admin, escalation.id, approve=False)
        with pytest.raises(InvalidTransitionError):
            await compliance_service.decide_escalation(admin, escalation.id, approve=True)

    async def test_escalated_cannot_be_held(self, compliance_service, compliance_officer, rep):
        violation, _, _ = await self._escalated(compliance_service, compliance_officer, rep)
        with pytest.raises(InvalidTransitionError):
            await compliance_service.apply_hold(compliance_officer, violation.id)

    async def test_list_pending(self, compliance_service, compliance_officer, rep):
        await self._escalated(compliance_service, compliance_officer, rep)
        pending = await compliance_service.list_records(
            ComplianceEntity.ESCALATION, {"status": EscalationStatus.PENDING}
        )
        assert pending.total == 1
