"""Compliance API endpoints: violations, holds and escalations."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Path, Query, status
from pydantic import BaseModel

from commission_engine.api.dependencies import Compliance, CurrentActor
from commission_engine.api.schemas import (
    AuditEntryResponse,
    EscalateRequest,
    EscalationDecisionRequest,
    EscalationResponse,
    ErrorResponse,
    HoldApplyRequest,
    HoldCheckResponse,
    HoldCreate,
    HoldResponse,
    NotesRequest,
    ReleaseHoldsResponse,
    ViolationCreate,
    ViolationResponse,
)
from commission_engine.errors import with_conflict_retry
from commission_engine.records import (
    ComplianceEntity,
    EscalationStatus,
    HoldStatus,
    HoldType,
    ViolationSeverity,
    ViolationStatus,
)

router = APIRouter(prefix="/compliance", tags=["compliance"])

ACTION_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


class ViolationListResponse(BaseModel):
    items: list[ViolationResponse]
    total: int
    page: int
    page_size: int


class HoldListResponse(BaseModel):
    items: list[HoldResponse]
    total: int
    page: int
    page_size: int


class EscalationListResponse(BaseModel):
    items: list[EscalationResponse]
    total: int
    page: int
    page_size: int


def _filters(**values: Any) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


# ============================================================================
# Violations
# ============================================================================


@router.post(
    "/violations",
    response_model=ViolationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def log_violation(
    service: Compliance, actor: CurrentActor, payload: ViolationCreate
) -> ViolationResponse:
    """Record a compliance violation."""
    violation = await service.log_violation(
        actor,
        payload.violation_type,
        payload.severity,
        description=payload.description,
        job_id=payload.job_id,
        user_id=payload.user_id,
    )
    return ViolationResponse.model_validate(violation)


@router.get("/violations", response_model=ViolationListResponse)
async def list_violations(
    service: Compliance,
    actor: CurrentActor,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 50,
    status_filter: Annotated[ViolationStatus | None, Query(alias="status")] = None,
    severity: ViolationSeverity | None = None,
    job_id: str | None = None,
) -> ViolationListResponse:
    result = await service.list_records(
        ComplianceEntity.VIOLATION,
        _filters(status=status_filter, severity=severity, job_id=job_id),
        page,
        page_size,
    )
    return ViolationListResponse(
        items=[ViolationResponse.model_validate(v) for v in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get(
    "/violations/{violation_id}",
    response_model=ViolationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_violation(
    service: Compliance, actor: CurrentActor, violation_id: Annotated[UUID, Path()]
) -> ViolationResponse:
    return ViolationResponse.model_validate(await service.get_violation(violation_id))


@router.post(
    "/violations/{violation_id}/hold",
    response_model=HoldResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ACTION_ERRORS,
)
async def apply_violation_hold(
    service: Compliance,
    actor: CurrentActor,
    violation_id: Annotated[UUID, Path()],
    payload: HoldApplyRequest | None = None,
) -> HoldResponse:
    """Hold the violation's job and/or user and mark it blocked."""
    reason = payload.reason if payload else None
    hold = await with_conflict_retry(lambda: service.apply_hold(actor, violation_id, reason))
    return HoldResponse.model_validate(hold)


@router.post(
    "/violations/{violation_id}/release-holds",
    response_model=ReleaseHoldsResponse,
    responses=ACTION_ERRORS,
)
async def release_violation_holds(
    service: Compliance,
    actor: CurrentActor,
    violation_id: Annotated[UUID, Path()],
    payload: NotesRequest | None = None,
) -> ReleaseHoldsResponse:
    """Release every active hold linked to the violation and reopen it."""
    notes = payload.notes if payload else None
    released = await with_conflict_retry(
        lambda: service.release_violation_holds(actor, violation_id, notes)
    )
    return ReleaseHoldsResponse(violation_id=violation_id, released=released)


@router.post(
    "/violations/{violation_id}/escalate",
    response_model=EscalationResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ACTION_ERRORS,
)
async def escalate_violation(
    service: Compliance,
    actor: CurrentActor,
    violation_id: Annotated[UUID, Path()],
    payload: EscalateRequest | None = None,
) -> EscalationResponse:
    """Escalate a violation for an admin decision."""
    reason = payload.reason if payload else None
    escalation = await with_conflict_retry(
        lambda: service.escalate(actor, violation_id, reason)
    )
    return EscalationResponse.model_validate(escalation)


@router.post(
    "/violations/{violation_id}/resolve",
    response_model=ViolationResponse,
    responses=ACTION_ERRORS,
)
async def resolve_violation(
    service: Compliance,
    actor: CurrentActor,
    violation_id: Annotated[UUID, Path()],
    payload: NotesRequest | None = None,
) -> ViolationResponse:
    notes = payload.notes if payload else None
    violation = await with_conflict_retry(
        lambda: service.resolve_violation(actor, violation_id, notes)
    )
    return ViolationResponse.model_validate(violation)


# ============================================================================
# Holds
# ============================================================================


@router.post(
    "/holds",
    response_model=HoldResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def place_hold(
    service: Compliance, actor: CurrentActor, payload: HoldCreate
) -> HoldResponse:
    """Place a hold on a job and/or user."""
    hold = await service.place_hold(
        actor,
        payload.hold_type,
        job_id=payload.job_id,
        user_id=payload.user_id,
        reason=payload.reason,
        related_entity_type=payload.related_entity_type,
        related_entity_id=payload.related_entity_id,
    )
    return HoldResponse.model_validate(hold)


@router.get("/holds", response_model=HoldListResponse)
async def list_holds(
    service: Compliance,
    actor: CurrentActor,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 50,
    status_filter: Annotated[HoldStatus | None, Query(alias="status")] = None,
    hold_type: HoldType | None = None,
    job_id: str | None = None,
    user_id: UUID | None = None,
) -> HoldListResponse:
    result = await service.list_records(
        ComplianceEntity.HOLD,
        _filters(status=status_filter, hold_type=hold_type, job_id=job_id, user_id=user_id),
        page,
        page_size,
    )
    return HoldListResponse(
        items=[HoldResponse.model_validate(h) for h in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/hold-check", response_model=HoldCheckResponse)
async def check_hold(
    service: Compliance,
    actor: CurrentActor,
    job_id: str | None = None,
    user_id: UUID | None = None,
) -> HoldCheckResponse:
    """Whether an active hold would block a commission for this job or user."""
    result = await service.check_commission_hold(job_id, user_id)
    return HoldCheckResponse.model_validate(result)


@router.get(
    "/holds/{hold_id}",
    response_model=HoldResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_hold(
    service: Compliance, actor: CurrentActor, hold_id: Annotated[UUID, Path()]
) -> HoldResponse:
    return HoldResponse.model_validate(await service.get_hold(hold_id))


@router.post(
    "/holds/{hold_id}/release",
    response_model=HoldResponse,
    responses=ACTION_ERRORS,
)
async def release_hold(
    service: Compliance,
    actor: CurrentActor,
    hold_id: Annotated[UUID, Path()],
    payload: NotesRequest | None = None,
) -> HoldResponse:
    notes = payload.notes if payload else None
    hold = await with_conflict_retry(lambda: service.release_hold(actor, hold_id, notes))
    return HoldResponse.model_validate(hold)


# ============================================================================
# Escalations and audit
# ============================================================================


@router.get("/escalations", response_model=EscalationListResponse)
async def list_escalations(
    service: Compliance,
    actor: CurrentActor,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 50,
    status_filter: Annotated[EscalationStatus | None, Query(alias="status")] = None,
    violation_id: UUID | None = None,
) -> EscalationListResponse:
    result = await service.list_records(
        ComplianceEntity.ESCALATION,
        _filters(status=status_filter, violation_id=violation_id),
        page,
        page_size,
    )
    return EscalationListResponse(
        items=[EscalationResponse.model_validate(e) for e in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.post(
    "/escalations/{escalation_id}/decide",
    response_model=EscalationResponse,
    responses=ACTION_ERRORS,
)
async def decide_escalation(
    service: Compliance,
    actor: CurrentActor,
    escalation_id: Annotated[UUID, Path()],
    payload: EscalationDecisionRequest,
) -> EscalationResponse:
    """Approve (resolve and release holds) or deny (reopen) an escalation."""
    escalation = await with_conflict_retry(
        lambda: service.decide_escalation(
            actor, escalation_id, payload.approve, payload.notes
        )
    )
    return EscalationResponse.model_validate(escalation)


@router.get("/audit", response_model=list[AuditEntryResponse])
async def get_audit_log(
    service: Compliance,
    actor: CurrentActor,
    target_id: UUID | None = None,
) -> list[AuditEntryResponse]:
    """Compliance audit trail, optionally for one target."""
    entries = await service.audit_log(target_id)
    return [AuditEntryResponse.model_validate(e) for e in entries]
