from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from lendsafe.api import deps
from lendsafe.core.permissions import Action, Subject
from lendsafe.models.pending_action import PendingAction
from lendsafe.schemas.pending_actions import PendingActionOut, PendingActionSubmit, ReviewRequest
from lendsafe.services.ability import ActiveContext, Actor
from lendsafe.services.outcomes import ActionResult
from lendsafe.services.pending_actions import (
    PendingActionService,
    cancel_pending_action,
    review_pending_action,
    submit_pending_action,
)

router = APIRouter(tags=["pending-actions"])


def _serialize(action: PendingAction | None) -> dict[str, Any] | None:
    if action is None:
        return None
    return PendingActionOut.model_validate(action).model_dump(mode="json")


def _respond(result: ActionResult[PendingAction], status_code: int = 200) -> JSONResponse:
    if not result.success:
        details: dict[str, Any] = {}
        if result.errors:
            details["errors"] = result.errors
        if result.data is not None:
            details["pending_action"] = _serialize(result.data)
        raise HTTPException(
            status_code=result.status_code,
            detail={"code": result.code, "message": result.message, "details": details},
        )
    details = {"replayed": result.replayed}
    details.update(result.meta)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {
                "code": "created" if status_code == 201 else "ok",
                "message": result.message,
                "data": _serialize(result.data),
                "details": details,
            }
        ),
    )


@router.post("/banks/{bank_id}/pending-actions", status_code=201, summary="Submit a request for approval")
async def submit_request(
    bank_id: str,
    body: PendingActionSubmit,
    actor: Actor = Depends(deps.get_current_actor),
    context: ActiveContext = Depends(deps.get_active_context),
    service: PendingActionService = Depends(deps.get_pending_action_service),
) -> JSONResponse:
    result = await submit_pending_action(service, body.action_type, bank_id, body.payload, actor, context)
    return _respond(result, status_code=201)


@router.get(
    "/banks/{bank_id}/pending-actions",
    response_model=list[PendingActionOut],
    summary="Open requests of a bank, newest first",
    dependencies=[Depends(deps.require_ability(Action.READ, Subject.PENDING_ACTION, bank_param="bank_id"))],
)
async def list_requests(
    bank_id: str,
    actor: Actor = Depends(deps.get_current_actor),
    context: ActiveContext = Depends(deps.get_active_context),
    service: PendingActionService = Depends(deps.get_pending_action_service),
) -> list[PendingActionOut]:
    return await service.list_pending(bank_id, actor, context)


@router.get("/pending-actions/{action_id}", response_model=PendingActionOut, summary="Read a request")
async def read_request(
    action_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    context: ActiveContext = Depends(deps.get_active_context),
    service: PendingActionService = Depends(deps.get_pending_action_service),
) -> PendingActionOut:
    return await service.get(action_id, actor, context)


@router.post("/pending-actions/{action_id}/review", summary="Approve or reject a request")
async def review_request(
    action_id: UUID,
    body: ReviewRequest,
    actor: Actor = Depends(deps.get_current_actor),
    context: ActiveContext = Depends(deps.get_active_context),
    service: PendingActionService = Depends(deps.get_pending_action_service),
) -> JSONResponse:
    result = await review_pending_action(service, action_id, actor, body.decision, body.remarks, context)
    return _respond(result)


@router.post("/pending-actions/{action_id}/cancel", summary="Cancel a request")
async def cancel_request(
    action_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    context: ActiveContext = Depends(deps.get_active_context),
    service: PendingActionService = Depends(deps.get_pending_action_service),
) -> JSONResponse:
    result = await cancel_pending_action(service, action_id, actor, context)
    return _respond(result)
