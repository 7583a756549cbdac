"""Commission service - orchestrates the approval lifecycle."""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import UUID, uuid4

from commission_engine.calculators import build_inputs, calculate_commission, calculate_override
from commission_engine.calculators.money import ZERO, round_cents, to_decimal
from commission_engine.calculators.pay_date import calculate_scheduled_pay_date
from commission_engine.config import DrawRules, OverrideRules, PayDateRules
from commission_engine.errors import (
    AuthorizationError,
    ConflictError,
    JobDeniedError,
    NotFoundError,
    ValidationError,
)
from commission_engine.events import NotificationEvent, Notifier, notify_safely
from commission_engine.identity import MANAGER_SUBMITTER_ROLES, Actor, ActorRole
from commission_engine.records import (
    CommissionRecord,
    CommissionStatus,
    DeniedJobNumber,
    OverrideTracking,
    Page,
    RevisionLogEntry,
    StatusLogEntry,
    SubmissionKind,
    utcnow,
)
from commission_engine.rules import (
    check_draw_amount,
    ensure_eligibility,
    is_valid_job_number,
    validate_job_number,
)
from commission_engine.services.hold_guard import HoldGuard
from commission_engine.services.snapshot import FieldChange, changed_fields, take_snapshot
from commission_engine.services.state_machine import (
    CommissionAction,
    CommissionStateMachine,
    TransitionPlan,
    route_start,
)
from commission_engine.stores.base import (
    CommissionFilter,
    CommissionStore,
    ComplianceStore,
    append_with_retry,
    bounded,
)

logger = logging.getLogger(__name__)

# Input fields a submitter may set on create or change on resubmission
EDITABLE_FIELDS = frozenset(
    {
        "job_name",
        "acculynx_job_id",
        "submission_kind",
        "contract_amount",
        "supplements_approved",
        "commission_percentage",
        "advances_paid",
        "is_flat_fee",
        "flat_fee_amount",
        "commission_requested",
        "manager_id",
        "notes",
    }
)

# Final figures accepted when closing out a draw
CLOSE_OUT_FIELDS = frozenset(
    {
        "contract_amount",
        "supplements_approved",
        "commission_percentage",
        "advances_paid",
        "is_flat_fee",
        "flat_fee_amount",
        "notes",
    }
)

ACTION_EVENTS: dict[CommissionAction, NotificationEvent] = {
    CommissionAction.SUBMIT: NotificationEvent.SUBMITTED,
    CommissionAction.COMPLIANCE_APPROVE: NotificationEvent.COMPLIANCE_APPROVED,
    CommissionAction.ADMIN_APPROVE: NotificationEvent.ADMIN_APPROVED,
    CommissionAction.ACCOUNTING_APPROVE: NotificationEvent.ACCOUNTING_APPROVED,
    CommissionAction.REJECT: NotificationEvent.REJECTED,
    CommissionAction.DENY: NotificationEvent.DENIED,
    CommissionAction.RESUBMIT: NotificationEvent.REJECTED_COMMISSION_REVISED,
    CommissionAction.MARK_PAID: NotificationEvent.PAID,
    CommissionAction.CLOSE_OUT: NotificationEvent.DRAW_CLOSED_OUT,
    CommissionAction.REVERT: NotificationEvent.REVERTED,
}

PostWrite = Callable[[], Awaitable[Any]]


def _append_note(
    existing: str | None, actor: Actor, action: CommissionAction, notes: str | None
) -> str | None:
    if not notes or not notes.strip():
        return existing
    line = f"[{action.value} by {actor.role.value}] {notes.strip()}"
    return f"{existing}\n{line}" if existing else line


class CommissionService:
    """Service for the commission approval lifecycle.

    Every transition follows the same path: read the record, plan the
    transition with the pure state machine, evaluate store-backed guards,
    compute the new fields, then write the record (conditional on the
    state that was planned against) and its status-log entry in one unit
    of work. Notifications go out only after the commit.
    """

    def __init__(
        self,
        store: CommissionStore,
        compliance_store: ComplianceStore,
        notifier: Notifier | None = None,
        draw_rules: DrawRules | None = None,
        override_rules: OverrideRules | None = None,
        pay_date_rules: PayDateRules | None = None,
        timeout: float | None = None,
        audit_log_retries: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.draw_rules = draw_rules or DrawRules()
        self.override_rules = override_rules or OverrideRules()
        self.pay_date_rules = pay_date_rules or PayDateRules()
        self.timeout = timeout
        self.audit_log_retries = audit_log_retries
        self.clock = clock
        self.guard = HoldGuard(compliance_store, timeout)

    # ----- reads -----

    async def get(self, commission_id: UUID) -> CommissionRecord:
        return await bounded(self.store.get(commission_id), self.timeout)

    async def list_commissions(
        self,
        filters: CommissionFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Page[CommissionRecord]:
        return await bounded(
            self.store.list_by_filter(filters or CommissionFilter(), page, page_size),
            self.timeout,
        )

    async def status_log(self, commission_id: UUID) -> list[StatusLogEntry]:
        await self.get(commission_id)
        return await bounded(self.store.list_status_log(commission_id), self.timeout)

    async def revision_log(self, commission_id: UUID) -> list[RevisionLogEntry]:
        await self.get(commission_id)
        return await bounded(self.store.list_revision_log(commission_id), self.timeout)

    async def changed_fields(self, commission_id: UUID) -> list[FieldChange]:
        """Fields the submitter changed at the latest resubmission."""
        return changed_fields(await self.get(commission_id))

    async def available_actions(
        self, actor: Actor, commission_id: UUID
    ) -> list[CommissionAction]:
        return CommissionStateMachine.available_actions(await self.get(commission_id), actor)

    # ----- creation -----

    async def create(
        self, actor: Actor, data: dict[str, Any], submit: bool = False
    ) -> CommissionRecord:
        """Create a commission as a draft, or submit it straight away."""
        fields = self._editable(data)
        validate_job_number(fields.get("acculynx_job_id"))
        await self._ensure_job_not_denied(fields.get("acculynx_job_id"))

        breakdown = calculate_commission(build_inputs(fields))
        record = CommissionRecord(
            id=uuid4(),
            submitted_by=actor.id,
            is_manager_submission=actor.role in MANAGER_SUBMITTER_ROLES,
            **self._input_values(fields),
            **breakdown.to_fields(),
        )
        if record.commission_requested is None:
            record.commission_requested = breakdown.net_commission_owed

        if not submit:
            await bounded(self.store.insert(record), self.timeout)
            logger.info("commission %s: created draft by %s", record.id, actor.id)
            return record

        await self.guard.ensure_clear(record.acculynx_job_id, record.submitted_by)
        return await self._insert_submitted(actor, record, fields.get("notes"))

    async def submit_draw_request(self, actor: Actor, data: dict[str, Any]) -> CommissionRecord:
        """Submit a draw against a job whose final numbers are not known yet.

        ``data`` carries ``eligibility`` (checklist item -> bool),
        ``draw_amount`` and ``acculynx_job_id``, plus any contract figures
        used to estimate the commission.
        """
        ensure_eligibility(data.get("eligibility") or {})
        fields = self._editable({k: v for k, v in data.items() if k in EDITABLE_FIELDS})
        job_number = fields.get("acculynx_job_id")
        validate_job_number(job_number, required=True)

        await self.guard.ensure_clear(job_number, actor.id)
        await self._ensure_job_not_denied(job_number)

        requested = to_decimal(data.get("draw_amount"), "draw_amount")
        estimate = calculate_commission(build_inputs(fields))
        check_draw_amount(requested, estimate.net_commission_owed, self.draw_rules)

        record = CommissionRecord(
            id=uuid4(),
            submitted_by=actor.id,
            is_draw=True,
            is_manager_submission=actor.role in MANAGER_SUBMITTER_ROLES,
            **self._input_values({**fields, "commission_requested": requested}),
            **estimate.to_fields(),
        )
        return await self._insert_submitted(actor, record, fields.get("notes"))

    # ----- transitions -----

    async def submit(self, actor: Actor, commission_id: UUID, notes: str | None = None) -> CommissionRecord:
        return await self.transition(actor, commission_id, CommissionAction.SUBMIT, notes=notes)

    async def compliance_approve(
        self, actor: Actor, commission_id: UUID, notes: str | None = None
    ) -> CommissionRecord:
        return await self.transition(
            actor, commission_id, CommissionAction.COMPLIANCE_APPROVE, notes=notes
        )

    async def admin_approve(
        self, actor: Actor, commission_id: UUID, notes: str | None = None
    ) -> CommissionRecord:
        return await self.transition(actor, commission_id, CommissionAction.ADMIN_APPROVE, notes=notes)

    async def accounting_approve(
        self, actor: Actor, commission_id: UUID, notes: str | None = None
    ) -> CommissionRecord:
        return await self.transition(
            actor, commission_id, CommissionAction.ACCOUNTING_APPROVE, notes=notes
        )

    async def reject(self, actor: Actor, commission_id: UUID, reason: str) -> CommissionRecord:
        return await self.transition(actor, commission_id, CommissionAction.REJECT, reason=reason)

    async def deny(self, actor: Actor, commission_id: UUID, reason: str) -> CommissionRecord:
        return await self.transition(actor, commission_id, CommissionAction.DENY, reason=reason)

    async def resubmit(
        self,
        actor: Actor,
        commission_id: UUID,
        changes: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> CommissionRecord:
        return await self.transition(
            actor, commission_id, CommissionAction.RESUBMIT, notes=notes, changes=changes
        )

    async def mark_paid(
        self, actor: Actor, commission_id: UUID, notes: str | None = None
    ) -> CommissionRecord:
        return await self.transition(actor, commission_id, CommissionAction.MARK_PAID, notes=notes)

    async def close_out(
        self,
        actor: Actor,
        commission_id: UUID,
        final: dict[str, Any],
        notes: str | None = None,
    ) -> CommissionRecord:
        return await self.transition(
            actor, commission_id, CommissionAction.CLOSE_OUT, notes=notes, changes=final
        )

    async def revert(
        self, actor: Actor, commission_id: UUID, notes: str | None = None
    ) -> CommissionRecord:
        return await self.transition(actor, commission_id, CommissionAction.REVERT, notes=notes)

    async def transition(
        self,
        actor: Actor,
        commission_id: UUID,
        action: CommissionAction | str,
        reason: str | None = None,
        notes: str | None = None,
        changes: dict[str, Any] | None = None,
    ) -> CommissionRecord:
        """Apply one state-machine action to a commission.

        Raises ConflictError if the record left the planned state before
        the write; callers re-run from a fresh read (``with_conflict_retry``).
        """
        record = await self.get(commission_id)
        plan = CommissionStateMachine.plan(record, actor, action, reason)
        if plan.is_forward:
            await self.guard.ensure_clear(record.acculynx_job_id, record.submitted_by)

        fields, post_writes = await self._effects(plan, record, actor, reason, notes, changes)
        fields["status"] = plan.target.status
        fields["approval_stage"] = plan.target.stage

        entry = StatusLogEntry(
            id=uuid4(),
            commission_id=record.id,
            previous_status=plan.current.status,
            new_status=plan.target.status,
            previous_stage=plan.current.stage,
            new_stage=plan.target.stage,
            changed_by=actor.id,
            action=plan.action.value,
            notes=reason or notes,
        )

        async with self.store.unit_of_work():
            if plan.action == CommissionAction.ACCOUNTING_APPROVE:
                fields.update(await self._claim_override(record))
            ok = await bounded(
                self.store.update_where(record.id, plan.current, fields), self.timeout
            )
            if not ok:
                raise ConflictError("Commission", record.id, plan.current.label())
            await self._append_status_log(entry)
            for write in post_writes:
                await bounded(write(), self.timeout)

        logger.info(
            "commission %s: %s -> %s by %s",
            record.id,
            plan.current.label(),
            plan.target.label(),
            actor.id,
        )
        updated = await self.get(record.id)
        await notify_safely(
            self.notifier,
            ACTION_EVENTS[plan.action],
            self._payload(updated, reason=reason),
            actor.id,
        )
        return updated

    async def delete(self, actor: Actor, commission_id: UUID) -> None:
        """Remove a commission and its logs. The deny-list is untouched."""
        if actor.role != ActorRole.ADMIN:
            raise AuthorizationError("Only admins may delete commissions")
        record = await self.get(commission_id)
        async with self.store.unit_of_work():
            if not await bounded(self.store.delete(record.id), self.timeout):
                raise NotFoundError("Commission", record.id)

        logger.info("commission %s: deleted by %s", record.id, actor.id)
        await notify_safely(
            self.notifier, NotificationEvent.DELETED, self._payload(record), actor.id
        )

    # ----- transition side effects -----

    async def _effects(
        self,
        plan: TransitionPlan,
        record: CommissionRecord,
        actor: Actor,
        reason: str | None,
        notes: str | None,
        changes: dict[str, Any] | None,
    ) -> tuple[dict[str, Any], list[PostWrite]]:
        action = plan.action
        now = self.clock()
        fields: dict[str, Any] = {}
        post_writes: list[PostWrite] = []

        if action in (CommissionAction.SUBMIT, CommissionAction.RESUBMIT):
            if action == CommissionAction.RESUBMIT:
                fields["previous_submission_snapshot"] = take_snapshot(record)
                fields["rejection_reason"] = None
                edits = self._editable(changes or {})
            else:
                edits = {}
            merged = {**self._input_values(dataclasses.asdict(record)), **edits}
            validate_job_number(merged.get("acculynx_job_id"))
            await self._ensure_job_not_denied(merged.get("acculynx_job_id"))
            if merged.get("acculynx_job_id") != record.acculynx_job_id:
                await self.guard.ensure_clear(merged.get("acculynx_job_id"), None)

            breakdown = calculate_commission(build_inputs(merged))
            if record.is_draw:
                check_draw_amount(
                    to_decimal(merged.get("commission_requested"), "commission_requested"),
                    breakdown.net_commission_owed,
                    self.draw_rules,
                )
            fields.update(self._input_values(edits))
            fields.update(breakdown.to_fields())
            if not record.is_draw and "commission_requested" not in edits:
                fields["commission_requested"] = breakdown.net_commission_owed
            fields["scheduled_pay_date"] = calculate_scheduled_pay_date(now, self.pay_date_rules)
            fields["submitted_at"] = now
            fields["notes"] = merged.get("notes")

        elif action in (CommissionAction.COMPLIANCE_APPROVE, CommissionAction.ADMIN_APPROVE):
            fields["reviewer_notes"] = _append_note(record.reviewer_notes, actor, action, notes)

        elif action == CommissionAction.ACCOUNTING_APPROVE:
            fields["reviewer_notes"] = _append_note(record.reviewer_notes, actor, action, notes)
            fields["approved_at"] = now

        elif action == CommissionAction.REJECT:
            revision_number = record.revision_count + 1
            fields.update(
                rejection_reason=reason,
                was_rejected=True,
                revision_count=revision_number,
                reviewer_notes=_append_note(record.reviewer_notes, actor, action, notes),
            )
            revision = RevisionLogEntry(
                id=uuid4(),
                commission_id=record.id,
                revision_number=revision_number,
                requested_by=actor.id,
                requested_by_role=actor.role.value,
                reason=reason or "",
                previous_amount_requested=record.commission_requested,
            )
            post_writes.append(lambda: self._append_revision(revision))

        elif action == CommissionAction.DENY:
            fields["rejection_reason"] = reason
            fields["reviewer_notes"] = _append_note(record.reviewer_notes, actor, action, notes)
            if is_valid_job_number(record.acculynx_job_id):
                denied = DeniedJobNumber(
                    job_number=record.acculynx_job_id,  # type: ignore[arg-type]
                    denied_by=actor.id,
                    commission_id=record.id,
                    reason=reason,
                )
                post_writes.append(lambda: self.store.add_denied_job(denied))

        elif action == CommissionAction.MARK_PAID:
            fields.update(paid_at=now, paid_by=actor.id)
            if record.is_draw and not record.draw_closed_out:
                fields["draw_amount_paid"] = record.commission_requested

        elif action == CommissionAction.CLOSE_OUT:
            final = self._editable(changes or {}, allowed=CLOSE_OUT_FIELDS)
            await self._ensure_job_not_denied(record.acculynx_job_id)
            merged = {**self._input_values(dataclasses.asdict(record)), **final}
            breakdown = calculate_commission(build_inputs(merged))
            draw_paid = record.draw_amount_paid or record.commission_requested or ZERO
            fields.update(self._input_values(final))
            fields.update(breakdown.to_fields())
            fields.update(
                draw_amount_paid=draw_paid,
                draw_closed_out=True,
                commission_requested=round_cents(breakdown.net_commission_owed - draw_paid),
                scheduled_pay_date=calculate_scheduled_pay_date(now, self.pay_date_rules),
                submitted_at=now,
                approved_at=None,
                paid_at=None,
                paid_by=None,
            )

        elif action == CommissionAction.REVERT:
            fields["reviewer_notes"] = _append_note(record.reviewer_notes, actor, action, notes)
            if plan.current.status == CommissionStatus.PAID:
                fields.update(paid_at=None, paid_by=None)
            elif plan.current.status == CommissionStatus.APPROVED:
                fields["approved_at"] = None

        return fields, post_writes

    async def _claim_override(self, record: CommissionRecord) -> dict[str, Any]:
        """Manager override for the rep's early approvals, if it applies.

        Runs inside the approval's unit of work. The rep's tracking row is
        saved only if its count is still the one read here; otherwise the
        approval raises ConflictError and rolls back.

        A record approved again after a revert keeps the override it was
        already given and does not advance the rep's count twice.
        """
        if record.manager_id is None or record.override_commission_number is not None:
            return {}
        stored = await bounded(
            self.store.get_override_tracking(record.submitted_by), self.timeout
        )
        tracking = stored or OverrideTracking(
            sales_rep_id=record.submitted_by, manager_id=record.manager_id
        )

        result = calculate_override(
            max(record.net_commission_owed, ZERO),
            tracking.approved_commission_count,
            tracking.phase_complete,
            self.override_rules,
        )
        if not result.applies:
            return {}
        updated = dataclasses.replace(
            tracking,
            manager_id=record.manager_id,
            approved_commission_count=result.new_count,
            phase_complete=result.phase_complete,
        )
        expected = stored.approved_commission_count if stored is not None else None
        saved = await bounded(
            self.store.save_override_tracking(updated, expected), self.timeout
        )
        if not saved:
            raise ConflictError(
                "Override tracking", record.submitted_by, f"count={expected}"
            )
        return {
            "override_amount": result.override_amount,
            "override_manager_id": record.manager_id,
            "override_commission_number": result.commission_number,
        }

    # ----- helpers -----

    async def _insert_submitted(
        self, actor: Actor, record: CommissionRecord, notes: str | None
    ) -> CommissionRecord:
        now = self.clock()
        target = route_start(record.is_manager_submission)
        record = dataclasses.replace(
            record,
            status=target.status,
            approval_stage=target.stage,
            scheduled_pay_date=calculate_scheduled_pay_date(now, self.pay_date_rules),
            submitted_at=now,
        )
        entry = StatusLogEntry(
            id=uuid4(),
            commission_id=record.id,
            previous_status=None,
            new_status=target.status,
            new_stage=target.stage,
            changed_by=actor.id,
            action=CommissionAction.SUBMIT.value,
            notes=notes,
        )
        async with self.store.unit_of_work():
            await bounded(self.store.insert(record), self.timeout)
            await self._append_status_log(entry)

        logger.info(
            "commission %s: new -> %s by %s", record.id, target.label(), actor.id
        )
        await notify_safely(
            self.notifier, NotificationEvent.SUBMITTED, self._payload(record), actor.id
        )
        return record

    async def _append_status_log(self, entry: StatusLogEntry) -> None:
        await append_with_retry(
            lambda: self.store.append_status_log(entry),
            self.audit_log_retries,
            self.timeout,
            "status log",
        )

    async def _append_revision(self, entry: RevisionLogEntry) -> None:
        await append_with_retry(
            lambda: self.store.append_revision_log(entry),
            self.audit_log_retries,
            self.timeout,
            "revision log",
        )

    async def _ensure_job_not_denied(self, job_number: str | None) -> None:
        if is_valid_job_number(job_number) and await bounded(
            self.store.is_job_denied(job_number), self.timeout  # type: ignore[arg-type]
        ):
            raise JobDeniedError(job_number)  # type: ignore[arg-type]

    @staticmethod
    def _editable(
        data: dict[str, Any], allowed: frozenset[str] = EDITABLE_FIELDS
    ) -> dict[str, Any]:
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ValidationError(f"Fields cannot be set: {', '.join(unknown)}")
        return dict(data)

    @staticmethod
    def _input_values(data: dict[str, Any]) -> dict[str, Any]:
        """Normalize editable input values to record types."""
        values: dict[str, Any] = {}
        for name in EDITABLE_FIELDS & set(data):
            value = data[name]
            if name in (
                "contract_amount",
                "supplements_approved",
                "commission_percentage",
                "advances_paid",
            ):
                value = to_decimal(value, name)
            elif name in ("flat_fee_amount", "commission_requested"):
                value = None if value is None else to_decimal(value, name)
            elif name == "submission_kind":
                try:
                    value = SubmissionKind(value or SubmissionKind.EMPLOYEE)
                except ValueError as exc:
                    raise ValidationError(f"Unknown submission_kind: {value!r}") from exc
            elif name == "is_flat_fee":
                value = bool(value)
            elif name == "manager_id" and value is not None and not isinstance(value, UUID):
                try:
                    value = UUID(str(value))
                except ValueError as exc:
                    raise ValidationError(f"manager_id is not a UUID: {value!r}") from exc
            elif name == "acculynx_job_id":
                value = value or None
            values[name] = value
        return values

    @staticmethod
    def _payload(record: CommissionRecord, reason: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "commission_id": record.id,
            "submitted_by": record.submitted_by,
            "job_name": record.job_name,
            "acculynx_job_id": record.acculynx_job_id,
            "status": record.status.value,
            "approval_stage": record.approval_stage.value if record.approval_stage else None,
            "is_draw": record.is_draw,
            "amount": record.commission_requested,
        }
        if reason:
            payload["reason"] = reason
        return payload

