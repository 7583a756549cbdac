"""Compliance service - violations, holds and escalations."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID, uuid4

from commission_engine.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    ValidationError,
)
from commission_engine.events import NotificationEvent, Notifier, notify_safely
from commission_engine.identity import COMPLIANCE_ROLES, Actor, ActorRole
from commission_engine.records import (
    ComplianceAuditEntry,
    ComplianceEntity,
    Escalation,
    EscalationStatus,
    Hold,
    HoldStatus,
    HoldType,
    Page,
    Violation,
    ViolationSeverity,
    ViolationStatus,
    utcnow,
)
from commission_engine.rules import validate_job_number
from commission_engine.services.hold_guard import HoldCheckResult, HoldGuard
from commission_engine.stores.base import ComplianceStore, append_with_retry, bounded

logger = logging.getLogger(__name__)


class ViolationStateMachine:
    """Violation status transitions.

    Allowed transitions:
    - open → blocked (hold applied)
    - open/blocked → escalated
    - blocked → open (holds released)
    - open/blocked → resolved
    - escalated → open (escalation denied)
    - escalated → resolved (escalation approved)

    An escalated violation only moves through the admin decision on its
    pending escalation.
    """

    VALID_TRANSITIONS: dict[ViolationStatus, list[ViolationStatus]] = {
        ViolationStatus.OPEN: [
            ViolationStatus.BLOCKED,
            ViolationStatus.ESCALATED,
            ViolationStatus.RESOLVED,
        ],
        ViolationStatus.BLOCKED: [
            ViolationStatus.OPEN,
            ViolationStatus.ESCALATED,
            ViolationStatus.RESOLVED,
        ],
        ViolationStatus.ESCALATED: [ViolationStatus.OPEN, ViolationStatus.RESOLVED],
        ViolationStatus.RESOLVED: [],  # Terminal state
    }

    DECISION_ONLY = frozenset({ViolationStatus.ESCALATED})

    @classmethod
    def can_transition(cls, from_status: ViolationStatus, to_status: ViolationStatus) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(
        cls,
        from_status: ViolationStatus,
        to_status: ViolationStatus,
        action: str,
        via_decision: bool = False,
    ) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status.value, action)
        if from_status in cls.DECISION_ONLY and not via_decision:
            raise InvalidTransitionError(
                from_status.value, action, "an escalation is pending an admin decision"
            )


class ComplianceService:
    """Service for the violation / hold / escalation lifecycle.

    Operations:
    - log_violation: Record an SOP breach (severe ones require escalation)
    - apply_hold: Place a violation hold and block the violation
    - place_hold / release_hold: Manage standalone holds
    - release_violation_holds: Release a violation's holds and reopen it
    - escalate: Request an admin decision on a violation
    - resolve_violation: Close a violation directly
    - decide_escalation: Admin approves (resolve, release) or denies (reopen)
    - check_commission_hold: Hold lookup used by the commission guard
    """

    def __init__(
        self,
        store: ComplianceStore,
        notifier: Notifier | None = None,
        timeout: float | None = None,
        audit_log_retries: int = 2,
    ):
        self.store = store
        self.notifier = notifier
        self.timeout = timeout
        self.audit_log_retries = audit_log_retries
        self.guard = HoldGuard(store, timeout)

    # ----- reads -----

    async def get_violation(self, violation_id: UUID) -> Violation:
        return await bounded(self.store.get(ComplianceEntity.VIOLATION, violation_id), self.timeout)

    async def get_hold(self, hold_id: UUID) -> Hold:
        return await bounded(self.store.get(ComplianceEntity.HOLD, hold_id), self.timeout)

    async def get_escalation(self, escalation_id: UUID) -> Escalation:
        return await bounded(
            self.store.get(ComplianceEntity.ESCALATION, escalation_id), self.timeout
        )

    async def list_records(
        self,
        entity: ComplianceEntity,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Page[Any]:
        return await bounded(
            self.store.list_by_filter(entity, filters, page, page_size), self.timeout
        )

    async def audit_log(self, target_id: UUID | None = None) -> list[ComplianceAuditEntry]:
        return await bounded(self.store.list_audit(target_id), self.timeout)

    async def check_commission_hold(
        self, job_id: str | None, user_id: UUID | None
    ) -> HoldCheckResult:
        return await self.guard.check(job_id, user_id)

    # ----- violations -----

    async def log_violation(
        self,
        actor: Actor,
        violation_type: str,
        severity: ViolationSeverity | str,
        description: str | None = None,
        job_id: str | None = None,
        user_id: UUID | None = None,
    ) -> Violation:
        """Record a violation. Severe violations are flagged for escalation."""
        self._require_compliance_role(actor)
        if not violation_type or not violation_type.strip():
            raise ValidationError("violation_type is required")
        validate_job_number(job_id)
        severity = ViolationSeverity(severity)

        violation = Violation(
            id=uuid4(),
            violation_type=violation_type.strip(),
            severity=severity,
            reported_by=actor.id,
            description=description,
            job_id=job_id or None,
            user_id=user_id,
            escalation_required=severity == ViolationSeverity.SEVERE,
        )
        async with self.store.unit_of_work():
            await bounded(self.store.insert(ComplianceEntity.VIOLATION, violation), self.timeout)
            await self._audit(
                actor,
                "log_violation",
                "violation",
                violation.id,
                {"severity": severity.value, "violation_type": violation.violation_type},
            )

        logger.info("Violation %s logged (%s) by %s", violation.id, severity.value, actor.id)
        await notify_safely(
            self.notifier,
            NotificationEvent.VIOLATION_LOGGED,
            {"violation_id": violation.id, "severity": severity.value, "job_id": job_id},
            actor.id,
        )
        return violation

    async def apply_hold(
        self, actor: Actor, violation_id: UUID, reason: str | None = None
    ) -> Hold:
        """Place a violation hold on the violation's job/user and block it."""
        self._require_compliance_role(actor)
        violation = await self.get_violation(violation_id)
        if violation.status not in (ViolationStatus.OPEN, ViolationStatus.BLOCKED):
            raise InvalidTransitionError(violation.status.value, "apply_hold")
        if violation.job_id is None and violation.user_id is None:
            raise ValidationError("Violation has no job or user to hold")

        hold = Hold(
            id=uuid4(),
            hold_type=HoldType.VIOLATION_HOLD,
            placed_by=actor.id,
            job_id=violation.job_id,
            user_id=violation.user_id,
            reason=reason or f"Hold applied for violation: {violation.violation_type}",
            related_entity_type="violation",
            related_entity_id=violation.id,
        )
        async with self.store.unit_of_work():
            await bounded(self.store.insert(ComplianceEntity.HOLD, hold), self.timeout)
            if violation.status == ViolationStatus.OPEN:
                await self._update_violation(violation, ViolationStatus.BLOCKED, {})
            await self._audit(
                actor, "apply_hold_to_violation", "violation", violation.id, {"hold_id": str(hold.id)}
            )

        logger.info("Hold %s applied for violation %s", hold.id, violation.id)
        await notify_safely(
            self.notifier,
            NotificationEvent.HOLD_APPLIED,
            {"hold_id": hold.id, "violation_id": violation.id, "job_id": hold.job_id},
            actor.id,
        )
        return hold

    async def release_violation_holds(
        self, actor: Actor, violation_id: UUID, notes: str | None = None
    ) -> int:
        """Release every active hold tied to a violation and reopen it."""
        self._require_compliance_role(actor)
        violation = await self.get_violation(violation_id)
        ViolationStateMachine.validate_transition(
            violation.status, ViolationStatus.OPEN, "release_holds"
        )

        async with self.store.unit_of_work():
            released = await bounded(
                self.store.release_holds_for(violation.id, self._release_fields(actor)),
                self.timeout,
            )
            await self._update_violation(violation, ViolationStatus.OPEN, {})
            await self._audit(
                actor,
                "release_hold_on_violation",
                "violation",
                violation.id,
                {"released": released, "notes": notes},
            )

        logger.info("Released %d hold(s) for violation %s", released, violation.id)
        await notify_safely(
            self.notifier,
            NotificationEvent.HOLD_RELEASED,
            {"violation_id": violation.id, "released": released},
            actor.id,
        )
        return released

    async def escalate(self, actor: Actor, violation_id: UUID, reason: str | None = None) -> Escalation:
        """Open the violation's (single) pending escalation."""
        self._require_compliance_role(actor)
        violation = await self.get_violation(violation_id)
        ViolationStateMachine.validate_transition(
            violation.status, ViolationStatus.ESCALATED, "escalate"
        )
        pending = await self.list_records(
            ComplianceEntity.ESCALATION,
            {"violation_id": violation.id, "status": EscalationStatus.PENDING},
        )
        if pending.total:
            raise InvalidTransitionError(
                violation.status.value, "escalate", "an escalation is already pending"
            )

        escalation = Escalation(
            id=uuid4(),
            violation_id=violation.id,
            requested_by=actor.id,
            reason=reason or f"Escalated: {violation.description or violation.violation_type}",
        )
        async with self.store.unit_of_work():
            await bounded(self.store.insert(ComplianceEntity.ESCALATION, escalation), self.timeout)
            await self._update_violation(
                violation, ViolationStatus.ESCALATED, {"escalation_required": True}
            )
            await self._audit(
                actor, "escalate_violation", "violation", violation.id, {"reason": reason}
            )

        logger.info("Violation %s escalated (%s)", violation.id, escalation.id)
        await notify_safely(
            self.notifier,
            NotificationEvent.VIOLATION_ESCALATED,
            {"violation_id": violation.id, "escalation_id": escalation.id},
            actor.id,
        )
        return escalation

    async def resolve_violation(
        self, actor: Actor, violation_id: UUID, notes: str | None = None
    ) -> Violation:
        """Resolve a violation directly. Its holds stay until released.

        Escalated violations are resolved through ``decide_escalation``.
        """
        self._require_compliance_role(actor)
        violation = await self.get_violation(violation_id)
        ViolationStateMachine.validate_transition(
            violation.status, ViolationStatus.RESOLVED, "resolve"
        )
        async with self.store.unit_of_work():
            updated = await self._update_violation(
                violation,
                ViolationStatus.RESOLVED,
                {"resolved_by": actor.id, "resolved_at": utcnow(), "resolution_notes": notes},
            )
            await self._audit(
                actor, "resolve_violation", "violation", violation.id, {"resolution_notes": notes}
            )

        await notify_safely(
            self.notifier,
            NotificationEvent.VIOLATION_RESOLVED,
            {"violation_id": violation.id},
            actor.id,
        )
        return updated

    # ----- holds -----

    async def place_hold(
        self,
        actor: Actor,
        hold_type: HoldType | str,
        job_id: str | None = None,
        user_id: UUID | None = None,
        reason: str | None = None,
        related_entity_type: str | None = None,
        related_entity_id: UUID | None = None,
    ) -> Hold:
        """Place a standalone hold on a job and/or user."""
        self._require_compliance_role(actor)
        hold_type = HoldType(hold_type)
        validate_job_number(job_id)
        if hold_type == HoldType.ACCESS_HOLD and user_id is None:
            raise ValidationError("access_hold requires user_id")
        if not job_id and user_id is None:
            raise ValidationError("A hold needs a job_id or a user_id")

        hold = Hold(
            id=uuid4(),
            hold_type=hold_type,
            placed_by=actor.id,
            job_id=job_id or None,
            user_id=user_id,
            reason=reason,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
        async with self.store.unit_of_work():
            await bounded(self.store.insert(ComplianceEntity.HOLD, hold), self.timeout)
            await self._audit(
                actor,
                "place_hold",
                "hold",
                hold.id,
                {"hold_type": hold_type.value, "job_id": job_id, "reason": reason},
            )

        logger.info("Hold %s (%s) placed by %s", hold.id, hold_type.value, actor.id)
        await notify_safely(
            self.notifier,
            NotificationEvent.HOLD_APPLIED,
            {"hold_id": hold.id, "hold_type": hold_type.value, "job_id": hold.job_id},
            actor.id,
        )
        return hold

    async def release_hold(self, actor: Actor, hold_id: UUID, notes: str | None = None) -> Hold:
        self._require_compliance_role(actor)
        hold = await self.get_hold(hold_id)
        if hold.status != HoldStatus.ACTIVE:
            raise InvalidTransitionError(hold.status.value, "release_hold")

        async with self.store.unit_of_work():
            ok = await bounded(
                self.store.update_where(
                    ComplianceEntity.HOLD,
                    hold.id,
                    HoldStatus.ACTIVE,
                    {"status": HoldStatus.RELEASED, **self._release_fields(actor)},
                ),
                self.timeout,
            )
            if not ok:
                raise ConflictError("Hold", hold.id, HoldStatus.ACTIVE.value)
            await self._audit(actor, "release_hold", "hold", hold.id, {"notes": notes})

        logger.info("Hold %s released by %s", hold.id, actor.id)
        await notify_safely(
            self.notifier, NotificationEvent.HOLD_RELEASED, {"hold_id": hold.id}, actor.id
        )
        return await self.get_hold(hold.id)

    # ----- escalations -----

    async def decide_escalation(
        self,
        actor: Actor,
        escalation_id: UUID,
        approve: bool,
        notes: str | None = None,
    ) -> Escalation:
        """Admin decision on a pending escalation.

        Approve resolves the violation and releases every hold linked to it.
        Deny returns the violation to open; its holds stay in force.
        """
        if actor.role != ActorRole.ADMIN:
            raise AuthorizationError("Only admins may decide escalations")
        escalation = await self.get_escalation(escalation_id)
        if escalation.status != EscalationStatus.PENDING:
            raise InvalidTransitionError(escalation.status.value, "decide_escalation")
        violation = await self.get_violation(escalation.violation_id)

        new_status = EscalationStatus.APPROVED if approve else EscalationStatus.DENIED
        now = utcnow()
        async with self.store.unit_of_work():
            ok = await bounded(
                self.store.update_where(
                    ComplianceEntity.ESCALATION,
                    escalation.id,
                    EscalationStatus.PENDING,
                    {
                        "status": new_status,
                        "decided_by": actor.id,
                        "decided_at": now,
                        "decision_notes": notes,
                    },
                ),
                self.timeout,
            )
            if not ok:
                raise ConflictError("Escalation", escalation.id, EscalationStatus.PENDING.value)

            released = 0
            if approve:
                await self._update_violation(
                    violation,
                    ViolationStatus.RESOLVED,
                    {
                        "resolved_by": actor.id,
                        "resolved_at": now,
                        "resolution_notes": f"Exception approved by admin: {notes or ''}".strip(),
                    },
                    via_decision=True,
                )
                released = await bounded(
                    self.store.release_holds_for(violation.id, self._release_fields(actor)),
                    self.timeout,
                )
            else:
                await self._update_violation(
                    violation, ViolationStatus.OPEN, {}, via_decision=True
                )

            await self._audit(
                actor,
                "approve_escalation" if approve else "deny_escalation",
                "escalation",
                escalation.id,
                {"violation_id": str(violation.id), "notes": notes, "released": released},
            )
            await self._audit(
                actor,
                "resolve_violation_via_escalation" if approve else "reopen_violation_via_escalation",
                "violation",
                violation.id,
                {"escalation_id": str(escalation.id)},
            )

        logger.info(
            "Escalation %s %s by %s (%d hold(s) released)",
            escalation.id,
            new_status.value,
            actor.id,
            released,
        )
        await notify_safely(
            self.notifier,
            NotificationEvent.ESCALATION_DECIDED,
            {
                "escalation_id": escalation.id,
                "violation_id": violation.id,
                "decision": new_status.value,
            },
            actor.id,
        )
        return await self.get_escalation(escalation.id)

    # ----- helpers -----

    def _require_compliance_role(self, actor: Actor) -> None:
        if actor.role not in COMPLIANCE_ROLES:
            raise AuthorizationError(
                f"Role '{actor.role.value}' may not act on compliance records"
            )

    @staticmethod
    def _release_fields(actor: Actor) -> dict[str, Any]:
        return {"released_by": actor.id, "released_at": utcnow()}

    async def _update_violation(
        self,
        violation: Violation,
        to_status: ViolationStatus,
        fields: dict[str, Any],
        via_decision: bool = False,
    ) -> Violation:
        ViolationStateMachine.validate_transition(
            violation.status, to_status, to_status.value, via_decision
        )
        ok = await bounded(
            self.store.update_where(
                ComplianceEntity.VIOLATION,
                violation.id,
                violation.status,
                {**fields, "status": to_status},
            ),
            self.timeout,
        )
        if not ok:
            raise ConflictError("Violation", violation.id, violation.status.value)
        return await self.get_violation(violation.id)

    async def _audit(
        self,
        actor: Actor,
        action: str,
        target_type: str,
        target_id: UUID,
        details: dict[str, Any],
    ) -> None:
        entry = ComplianceAuditEntry(
            id=uuid4(),
            actor_id=actor.id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details,
        )
        await append_with_retry(
            lambda: self.store.append_audit(entry),
            self.audit_log_retries,
            self.timeout,
            "compliance audit",
        )
