"""Commission approval state machine.

The machine is pure: it takes the current record, the acting user and a
requested action, and returns the target state or raises. Persistence,
guards backed by the stores, and side effects live in the service.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from commission_engine.errors import AuthorizationError, InvalidTransitionError
from commission_engine.identity import PAYOUT_ROLES, Actor, ActorRole
from commission_engine.records import (
    ApprovalStage,
    CommissionRecord,
    CommissionState,
    CommissionStatus,
)


class CommissionAction(str, Enum):
    """Actions that move a commission between states."""

    SUBMIT = "submit"
    COMPLIANCE_APPROVE = "compliance_approve"
    ADMIN_APPROVE = "admin_approve"
    ACCOUNTING_APPROVE = "accounting_approve"
    REJECT = "reject"
    DENY = "deny"
    RESUBMIT = "resubmit"
    MARK_PAID = "mark_paid"
    CLOSE_OUT = "close_out"
    REVERT = "revert"


# Roles allowed to approve, reject or deny at each pending stage
STAGE_APPROVERS: dict[ApprovalStage, frozenset[ActorRole]] = {
    ApprovalStage.PENDING_MANAGER: frozenset({ActorRole.ADMIN, ActorRole.COMPLIANCE}),
    ApprovalStage.PENDING_ADMIN: frozenset({ActorRole.ADMIN}),
    ApprovalStage.PENDING_ACCOUNTING: frozenset({ActorRole.ACCOUNTING, ActorRole.ADMIN}),
}

# The approval action each pending stage accepts
STAGE_APPROVAL_ACTION: dict[ApprovalStage, CommissionAction] = {
    ApprovalStage.PENDING_MANAGER: CommissionAction.COMPLIANCE_APPROVE,
    ApprovalStage.PENDING_ADMIN: CommissionAction.ADMIN_APPROVE,
    ApprovalStage.PENDING_ACCOUNTING: CommissionAction.ACCOUNTING_APPROVE,
}

REGULAR_ROUTE: tuple[ApprovalStage, ...] = (
    ApprovalStage.PENDING_MANAGER,
    ApprovalStage.PENDING_ACCOUNTING,
    ApprovalStage.COMPLETED,
)

MANAGER_ROUTE: tuple[ApprovalStage, ...] = (
    ApprovalStage.PENDING_ADMIN,
    ApprovalStage.PENDING_ACCOUNTING,
    ApprovalStage.COMPLETED,
)

# Actions refused while an active compliance hold matches the record
FORWARD_ACTIONS = frozenset(
    {
        CommissionAction.SUBMIT,
        CommissionAction.COMPLIANCE_APPROVE,
        CommissionAction.ADMIN_APPROVE,
        CommissionAction.ACCOUNTING_APPROVE,
        CommissionAction.RESUBMIT,
        CommissionAction.MARK_PAID,
        CommissionAction.CLOSE_OUT,
    }
)

# Actions that require a non-empty reason
REASON_REQUIRED = frozenset({CommissionAction.REJECT, CommissionAction.DENY})

# Actions only the original submitter may take
SUBMITTER_ACTIONS = frozenset(
    {CommissionAction.SUBMIT, CommissionAction.RESUBMIT, CommissionAction.CLOSE_OUT}
)


@dataclass(frozen=True)
class TransitionPlan:
    """Validated transition, ready to be applied."""

    action: CommissionAction
    current: CommissionState
    target: CommissionState

    @property
    def is_forward(self) -> bool:
        return self.action in FORWARD_ACTIONS


def route_for(is_manager_submission: bool) -> tuple[ApprovalStage, ...]:
    """Ordered stages a submission passes through."""
    return MANAGER_ROUTE if is_manager_submission else REGULAR_ROUTE


def route_start(is_manager_submission: bool) -> CommissionState:
    return CommissionState(
        CommissionStatus.PENDING_REVIEW, route_for(is_manager_submission)[0]
    )


def stage_position(is_manager_submission: bool, stage: ApprovalStage | None) -> int | None:
    """Index of ``stage`` on the submission's route, or None when off-route."""
    route = route_for(is_manager_submission)
    if stage in route:
        return route.index(stage)
    return None


class CommissionStateMachine:
    """State machine for commission transitions.

    Allowed transitions:
    - draft → pending_review (route start)
    - pending_manager → pending_accounting (compliance_approve)
    - pending_admin → pending_accounting (admin_approve)
    - pending_accounting → approved/completed (accounting_approve)
    - any pending_review → rejected / denied
    - rejected → pending_review (route start, resubmit)
    - approved/completed → paid (mark_paid)
    - paid draw → pending_review (route start, close_out)
    - paid → approved → pending_accounting → route start (revert, one step)
    """

    @classmethod
    def target_state(
        cls, record: CommissionRecord, action: CommissionAction
    ) -> CommissionState | None:
        """Return the state ``action`` leads to, or None if not allowed here."""
        state = record.state
        status, stage = state.status, state.stage

        if action == CommissionAction.SUBMIT:
            if status == CommissionStatus.DRAFT:
                return route_start(record.is_manager_submission)

        elif action in STAGE_APPROVAL_ACTION.values():
            if state.is_pending and STAGE_APPROVAL_ACTION.get(stage) == action:  # type: ignore[arg-type]
                route = route_for(record.is_manager_submission)
                next_stage = route[route.index(stage) + 1]  # type: ignore[arg-type]
                if next_stage == ApprovalStage.COMPLETED:
                    return CommissionState(CommissionStatus.APPROVED, next_stage)
                return CommissionState(CommissionStatus.PENDING_REVIEW, next_stage)

        elif action == CommissionAction.REJECT:
            if state.is_pending:
                return CommissionState(CommissionStatus.REJECTED)

        elif action == CommissionAction.DENY:
            if state.is_pending:
                return CommissionState(CommissionStatus.DENIED)

        elif action == CommissionAction.RESUBMIT:
            if status == CommissionStatus.REJECTED:
                return route_start(record.is_manager_submission)

        elif action == CommissionAction.MARK_PAID:
            if status == CommissionStatus.APPROVED:
                return CommissionState(CommissionStatus.PAID, ApprovalStage.COMPLETED)

        elif action == CommissionAction.CLOSE_OUT:
            if status == CommissionStatus.PAID and record.is_draw and not record.draw_closed_out:
                return route_start(record.is_manager_submission)

        elif action == CommissionAction.REVERT:
            if status == CommissionStatus.PAID:
                return CommissionState(CommissionStatus.APPROVED, ApprovalStage.COMPLETED)
            if status == CommissionStatus.APPROVED:
                return CommissionState(
                    CommissionStatus.PENDING_REVIEW, ApprovalStage.PENDING_ACCOUNTING
                )
            if stage == ApprovalStage.PENDING_ACCOUNTING:
                return route_start(record.is_manager_submission)

        return None

    @classmethod
    def can_transition(cls, record: CommissionRecord, action: CommissionAction) -> bool:
        """Check if ``action`` is valid from the record's current state."""
        return cls.target_state(record, action) is not None

    @classmethod
    def is_authorized(
        cls, record: CommissionRecord, actor: Actor, action: CommissionAction
    ) -> bool:
        """Check if ``actor`` may take ``action`` on the record as it stands."""
        if action in SUBMITTER_ACTIONS:
            return actor.id == record.submitted_by
        if action == CommissionAction.REVERT:
            return actor.role == ActorRole.ADMIN
        if action == CommissionAction.MARK_PAID:
            return actor.role in PAYOUT_ROLES
        stage = record.approval_stage
        if stage is None or stage not in STAGE_APPROVERS:
            return False
        return actor.role in STAGE_APPROVERS[stage]

    @classmethod
    def plan(
        cls,
        record: CommissionRecord,
        actor: Actor,
        action: CommissionAction | str,
        reason: str | None = None,
    ) -> TransitionPlan:
        """Validate a transition, raising if it is not allowed.

        Raises InvalidTransitionError when the action does not apply to
        the current state (or a required reason is missing), and
        AuthorizationError when the actor is not in the approver set.
        """
        action = CommissionAction(action)
        current = record.state
        target = cls.target_state(record, action)
        if target is None:
            detail = None
            if action == CommissionAction.CLOSE_OUT and current.status == CommissionStatus.PAID:
                detail = "only unclosed draws can be closed out"
            raise InvalidTransitionError(current.label(), action.value, detail)

        if not cls.is_authorized(record, actor, action):
            if action in SUBMITTER_ACTIONS:
                raise AuthorizationError(f"Only the original submitter may {action.value}")
            raise AuthorizationError(
                f"Role '{actor.role.value}' may not {action.value} a commission in "
                f"'{current.label()}'"
            )

        if action in REASON_REQUIRED and not (reason and reason.strip()):
            raise InvalidTransitionError(
                current.label(), action.value, "a reason is required"
            )

        return TransitionPlan(action=action, current=current, target=target)

    @classmethod
    def available_actions(
        cls, record: CommissionRecord, actor: Actor
    ) -> list[CommissionAction]:
        """Actions ``actor`` could take right now, ignoring holds."""
        return [
            action
            for action in CommissionAction
            if cls.can_transition(record, action) and cls.is_authorized(record, actor, action)
        ]
