"""Escalation routes: pause, authority review, focus and resolution."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import (
    authority_address_for,
    get_escalation_service,
    get_focus_service,
    get_resolution_dispatcher,
    require_authority,
    require_tenant_context,
)
from app.api.schemas.escalation import (
    BriefRequest,
    BriefResponse,
    CorrectionResponse,
    DispatchRequest,
    DispatchResponse,
    EscalationCreate,
    EscalationCreated,
    EscalationResponse,
    FailRequest,
    FocusResponse,
    ResumeRequest,
    RoundCreate,
    RoundRecorded,
    RoundResponse,
    TransitionResponse,
)
from app.core.exceptions import InvalidEscalationRequest
from app.domain.services.escalation_service import (
    AuthorityResponse,
    EscalationRequest,
    EscalationService,
)
from app.domain.services.focus_service import FocusService
from app.domain.services.resolution_dispatcher import (
    AuthorityOutput,
    DispatchStatus,
    ResolutionDispatcher,
)
from app.persistence.models.tenant import User

logger = logging.getLogger(__name__)

router = APIRouter()

NOT_FOUND_DETAIL = "Escalation not found"


@router.get("", response_model=list[EscalationResponse])
async def list_pending_escalations(
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[EscalationService, Depends(get_escalation_service)],
    limit: int = 100,
) -> list[EscalationResponse]:
    """Pending escalations, most urgent and oldest first."""
    escalations = await service.get_pending_escalations(tenant_id, limit=limit)
    return [EscalationResponse.model_validate(e) for e in escalations]


@router.post("", response_model=EscalationCreated, status_code=status.HTTP_201_CREATED)
async def pause_for_escalation(
    request: EscalationCreate,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[EscalationService, Depends(get_escalation_service)],
) -> EscalationCreated:
    """Pause an originating agent's turn and open an escalation."""
    try:
        escalation_id = await service.pause(
            EscalationRequest(tenant_id=tenant_id, **request.model_dump())
        )
    except InvalidEscalationRequest as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return EscalationCreated(id=escalation_id)


@router.get("/next", response_model=EscalationResponse | None)
async def get_next_pending(
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    focus: Annotated[FocusService, Depends(get_focus_service)],
    exclude_id: str | None = None,
) -> EscalationResponse | None:
    escalation = await focus.get_next_pending(tenant_id, exclude_id=exclude_id)
    return EscalationResponse.model_validate(escalation) if escalation else None


@router.get("/focus", response_model=FocusResponse)
async def get_focus(
    authority: Annotated[tuple[User, int], Depends(require_authority)],
    focus: Annotated[FocusService, Depends(get_focus_service)],
) -> FocusResponse:
    user, _ = authority
    address = authority_address_for(user)
    escalation = await focus.get_active(address)
    return FocusResponse(
        authority_address=address,
        escalation=EscalationResponse.model_validate(escalation) if escalation else None,
    )


@router.put("/focus/{escalation_id}", response_model=FocusResponse)
async def lock_focus(
    escalation_id: str,
    authority: Annotated[tuple[User, int], Depends(require_authority)],
    focus: Annotated[FocusService, Depends(get_focus_service)],
) -> FocusResponse:
    """Focus the calling authority on an escalation, replacing any prior focus."""
    user, tenant_id = authority
    address = authority_address_for(user)
    locked = await focus.lock(address, escalation_id, tenant_id=tenant_id)
    if locked is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    escalation = await focus.get_active(address)
    return FocusResponse(
        authority_address=address,
        escalation=EscalationResponse.model_validate(escalation) if escalation else None,
    )


@router.delete("/focus", status_code=status.HTTP_204_NO_CONTENT)
async def unlock_focus(
    authority: Annotated[tuple[User, int], Depends(require_authority)],
    focus: Annotated[FocusService, Depends(get_focus_service)],
) -> None:
    user, _ = authority
    await focus.unlock(authority_address_for(user))


@router.get("/{escalation_id}", response_model=EscalationResponse)
async def get_escalation(
    escalation_id: str,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[EscalationService, Depends(get_escalation_service)],
) -> EscalationResponse:
    escalation = await service.get_escalation(escalation_id, tenant_id=tenant_id)
    if escalation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    return EscalationResponse.model_validate(escalation)


@router.post("/{escalation_id}/brief", response_model=BriefResponse)
async def fetch_for_authority(
    escalation_id: str,
    request: BriefRequest,
    authority: Annotated[tuple[User, int], Depends(require_authority)],
    service: Annotated[EscalationService, Depends(get_escalation_service)],
) -> BriefResponse:
    """Serve an escalation with its situational brief and the conversation thread."""
    user, tenant_id = authority
    brief = await service.fetch_for_authority(
        escalation_id,
        tenant_id,
        conversation_history=request.conversation_history,
        authority_address=authority_address_for(user),
    )
    if brief is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    return BriefResponse(
        escalation=EscalationResponse.model_validate(brief.escalation),
        situation=brief.situation,
        context=brief.context,
        rounds=[RoundResponse.model_validate(r) for r in brief.rounds],
    )


@router.get("/{escalation_id}/rounds", response_model=list[RoundResponse])
async def get_escalation_history(
    escalation_id: str,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[EscalationService, Depends(get_escalation_service)],
) -> list[RoundResponse]:
    if await service.get_escalation(escalation_id, tenant_id=tenant_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    rounds = await service.get_escalation_history(escalation_id)
    return [RoundResponse.model_validate(r) for r in rounds]


@router.post("/{escalation_id}/rounds", response_model=RoundRecorded)
async def record_authority_response(
    escalation_id: str,
    request: RoundCreate,
    authority: Annotated[tuple[User, int], Depends(require_authority)],
    service: Annotated[EscalationService, Depends(get_escalation_service)],
) -> RoundRecorded:
    """Record one authority exchange. Rounds on a closed escalation are ignored."""
    user, tenant_id = authority
    try:
        result = await service.record_authority_response(
            AuthorityResponse(
                escalation_id=escalation_id,
                round_type=request.round_type,
                authority_response=request.authority_response,
                authority_request=request.authority_request,
                decision=request.decision,
                instruction=request.instruction,
                responder_address=authority_address_for(user),
                tenant_id=tenant_id,
            )
        )
    except InvalidEscalationRequest as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    if result.reason == "not_found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    return RoundRecorded(
        applied=result.applied,
        round_number=result.round_number,
        state=result.state,
        reason=result.reason,
    )


@router.post("/{escalation_id}/fail", response_model=TransitionResponse)
async def mark_failed(
    escalation_id: str,
    request: FailRequest,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[EscalationService, Depends(get_escalation_service)],
) -> TransitionResponse:
    """Close an escalation as FAILED; either party may give up."""
    if await service.get_escalation(escalation_id, tenant_id=tenant_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    applied = await service.mark_failed(escalation_id, request.reason, tenant_id=tenant_id)
    return TransitionResponse(applied=applied)


@router.post("/{escalation_id}/resume", response_model=TransitionResponse)
async def mark_for_resumption(
    escalation_id: str,
    request: ResumeRequest,
    tenant_id: Annotated[int, Depends(require_tenant_context)],
    service: Annotated[EscalationService, Depends(get_escalation_service)],
) -> TransitionResponse:
    if await service.get_escalation(escalation_id, tenant_id=tenant_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    applied = await service.mark_for_resumption(escalation_id, request.resume_marker, tenant_id=tenant_id)
    return TransitionResponse(applied=applied)


@router.post("/{escalation_id}/dispatch", response_model=DispatchResponse)
async def dispatch_resolution(
    escalation_id: str,
    request: DispatchRequest,
    authority: Annotated[tuple[User, int], Depends(require_authority)],
    dispatcher: Annotated[ResolutionDispatcher, Depends(get_resolution_dispatcher)],
) -> DispatchResponse:
    """Execute the action behind a resolved escalation."""
    user, tenant_id = authority
    outcome = await dispatcher.dispatch(
        escalation_id,
        tenant_id,
        AuthorityOutput(**request.model_dump()),
        role=user.role,
        authority_address=authority_address_for(user),
    )
    if outcome.status is DispatchStatus.NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    return DispatchResponse(
        status=outcome.status.value,
        escalation_id=outcome.escalation_id,
        action=outcome.action,
        inferred=outcome.inferred,
        payload=outcome.payload,
        corrections=[
            CorrectionResponse(field=c.field, supplied=c.supplied, corrected=c.corrected)
            for c in outcome.corrections
        ],
        reason=outcome.reason,
        summary=outcome.summary,
    )
