"""Commission API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from commission_engine.api.dependencies import Commissions, CurrentActor
from commission_engine.api.schemas import (
    CalculateRequest,
    CalculateResponse,
    CloseOutRequest,
    CommissionCreate,
    CommissionListResponse,
    CommissionResponse,
    DocumentCalculateRequest,
    DocumentCalculateResponse,
    DrawRequestCreate,
    ErrorResponse,
    FieldChangeResponse,
    ReasonRequest,
    ResubmitRequest,
    RevisionLogResponse,
    StatusLogResponse,
    TransitionRequest,
)
from commission_engine.calculators import (
    build_document_inputs,
    build_inputs,
    calculate_commission,
    calculate_document,
)
from commission_engine.errors import with_conflict_retry
from commission_engine.records import ApprovalStage, CommissionStatus
from commission_engine.stores import CommissionFilter

router = APIRouter(prefix="/commissions", tags=["commissions"])

CommissionId = Annotated[UUID, Path()]

TRANSITION_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Calculations
# ============================================================================


@router.post(
    "/calculate",
    response_model=CalculateResponse,
    responses={422: {"model": ErrorResponse}},
)
async def calculate(payload: CalculateRequest) -> CalculateResponse:
    """Preview revenue, gross and net commission for worksheet inputs."""
    breakdown = calculate_commission(build_inputs(payload.model_dump()))
    return CalculateResponse.model_validate(breakdown)


@router.post(
    "/calculate-document",
    response_model=DocumentCalculateResponse,
    responses={422: {"model": ErrorResponse}},
)
async def calculate_document_totals(
    payload: DocumentCalculateRequest,
) -> DocumentCalculateResponse:
    """Compute every derived field of an itemized commission document."""
    breakdown = calculate_document(build_document_inputs(payload.model_dump()))
    return DocumentCalculateResponse.model_validate(breakdown)


# ============================================================================
# Commission CRUD
# ============================================================================


@router.post(
    "",
    response_model=CommissionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_commission(
    service: Commissions,
    actor: CurrentActor,
    payload: CommissionCreate,
) -> CommissionResponse:
    """Create a commission as a draft, or submit it with ``submit: true``."""
    record = await service.create(actor, payload.to_fields(), submit=payload.submit)
    return CommissionResponse.model_validate(record)


@router.post(
    "/draws",
    response_model=CommissionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def request_draw(
    service: Commissions,
    actor: CurrentActor,
    payload: DrawRequestCreate,
) -> CommissionResponse:
    """Submit a draw request against a job."""
    record = await service.submit_draw_request(actor, payload.to_fields())
    return CommissionResponse.model_validate(record)


@router.get("", response_model=CommissionListResponse)
async def list_commissions(
    service: Commissions,
    actor: CurrentActor,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 50,
    status_filter: Annotated[CommissionStatus | None, Query(alias="status")] = None,
    approval_stage: ApprovalStage | None = None,
    submitted_by: UUID | None = None,
    acculynx_job_id: str | None = None,
    is_draw: bool | None = None,
) -> CommissionListResponse:
    """List commissions with optional filters."""
    filters = CommissionFilter(
        status=status_filter,
        approval_stage=approval_stage,
        submitted_by=submitted_by,
        acculynx_job_id=acculynx_job_id,
        is_draw=is_draw,
    )
    result = await service.list_commissions(filters, page, page_size)
    return CommissionListResponse(
        items=[CommissionResponse.model_validate(r) for r in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get(
    "/{commission_id}",
    response_model=CommissionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_commission(
    service: Commissions, actor: CurrentActor, commission_id: CommissionId
) -> CommissionResponse:
    """Get a commission by ID."""
    return CommissionResponse.model_validate(await service.get(commission_id))


@router.delete(
    "/{commission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_commission(
    service: Commissions, actor: CurrentActor, commission_id: CommissionId
) -> Response:
    """Delete a commission and its logs (admin only)."""
    await service.delete(actor, commission_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{commission_id}/status-log",
    response_model=list[StatusLogResponse],
    responses={404: {"model": ErrorResponse}},
)
async def get_status_log(
    service: Commissions, actor: CurrentActor, commission_id: CommissionId
) -> list[StatusLogResponse]:
    """Status history, oldest first."""
    entries = await service.status_log(commission_id)
    return [StatusLogResponse.model_validate(e) for e in entries]


@router.get(
    "/{commission_id}/revisions",
    response_model=list[RevisionLogResponse],
    responses={404: {"model": ErrorResponse}},
)
async def get_revision_log(
    service: Commissions, actor: CurrentActor, commission_id: CommissionId
) -> list[RevisionLogResponse]:
    entries = await service.revision_log(commission_id)
    return [RevisionLogResponse.model_validate(e) for e in entries]


@router.get(
    "/{commission_id}/changes",
    response_model=list[FieldChangeResponse],
    responses={404: {"model": ErrorResponse}},
)
async def get_changed_fields(
    service: Commissions, actor: CurrentActor, commission_id: CommissionId
) -> list[FieldChangeResponse]:
    """Fields changed at the latest resubmission."""
    changes = await service.changed_fields(commission_id)
    return [FieldChangeResponse.model_validate(c) for c in changes]


@router.get(
    "/{commission_id}/actions",
    response_model=list[str],
    responses={404: {"model": ErrorResponse}},
)
async def get_available_actions(
    service: Commissions, actor: CurrentActor, commission_id: CommissionId
) -> list[str]:
    """Actions the current actor may take on the commission."""
    actions = await service.available_actions(actor, commission_id)
    return [a.value for a in actions]


# ============================================================================
# Workflow transitions
# ============================================================================


@router.post(
    "/{commission_id}/submit",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def submit_commission(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: TransitionRequest | None = None,
) -> CommissionResponse:
    """Submit a draft commission for review."""
    notes = payload.notes if payload else None
    record = await with_conflict_retry(
        lambda: service.submit(actor, commission_id, notes=notes)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/compliance-approve",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def compliance_approve(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: TransitionRequest | None = None,
) -> CommissionResponse:
    """Approve at the manager stage."""
    notes = payload.notes if payload else None
    record = await with_conflict_retry(
        lambda: service.compliance_approve(actor, commission_id, notes=notes)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/admin-approve",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def admin_approve(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: TransitionRequest | None = None,
) -> CommissionResponse:
    """Approve a manager's own submission at the admin stage."""
    notes = payload.notes if payload else None
    record = await with_conflict_retry(
        lambda: service.admin_approve(actor, commission_id, notes=notes)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/accounting-approve",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def accounting_approve(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: TransitionRequest | None = None,
) -> CommissionResponse:
    """Final approval; applies any manager override."""
    notes = payload.notes if payload else None
    record = await with_conflict_retry(
        lambda: service.accounting_approve(actor, commission_id, notes=notes)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/reject",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def reject_commission(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: ReasonRequest,
) -> CommissionResponse:
    """Send a commission back to the submitter for revision."""
    record = await with_conflict_retry(
        lambda: service.reject(actor, commission_id, payload.reason)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/deny",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def deny_commission(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: ReasonRequest,
) -> CommissionResponse:
    """Deny a commission and block its job number permanently."""
    record = await with_conflict_retry(
        lambda: service.deny(actor, commission_id, payload.reason)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/resubmit",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def resubmit_commission(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: ResubmitRequest,
) -> CommissionResponse:
    """Resubmit a rejected commission with corrections."""
    changes = payload.changes.to_fields()
    record = await with_conflict_retry(
        lambda: service.resubmit(actor, commission_id, changes, notes=payload.notes)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/mark-paid",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def mark_paid(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: TransitionRequest | None = None,
) -> CommissionResponse:
    notes = payload.notes if payload else None
    record = await with_conflict_retry(
        lambda: service.mark_paid(actor, commission_id, notes=notes)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/close-out",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def close_out_draw(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: CloseOutRequest,
) -> CommissionResponse:
    """Close out a paid draw with the job's final figures."""
    final = payload.model_dump(exclude_unset=True, exclude={"notes"})
    record = await with_conflict_retry(
        lambda: service.close_out(actor, commission_id, final, notes=payload.notes)
    )
    return CommissionResponse.model_validate(record)


@router.post(
    "/{commission_id}/revert",
    response_model=CommissionResponse,
    responses=TRANSITION_ERRORS,
)
async def revert_commission(
    service: Commissions,
    actor: CurrentActor,
    commission_id: CommissionId,
    payload: TransitionRequest | None = None,
) -> CommissionResponse:
    """Step a commission back one stage (admin only)."""
    notes = payload.notes if payload else None
    record = await with_conflict_retry(
        lambda: service.revert(actor, commission_id, notes=notes)
    )
    return CommissionResponse.model_validate(record)
