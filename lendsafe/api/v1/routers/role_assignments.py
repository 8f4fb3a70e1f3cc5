import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from lendsafe.api import deps
from lendsafe.core.permissions import Action, Subject
from lendsafe.repositories.interfaces import Store
from lendsafe.schemas.roles import RoleAssignmentCreate, RoleAssignmentOut
from lendsafe.services import role_assignments as role_service
from lendsafe.services.ability import Ability, ActiveContext, Actor, Resource

router = APIRouter(tags=["role-assignments"])
logger = logging.getLogger(__name__)


@router.get("/users/{user_id}/roles", response_model=list[RoleAssignmentOut], summary="Active roles of a user")
async def list_user_roles(
    user_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    ability: Ability = Depends(deps.get_ability),
    store: Store = Depends(deps.get_store),
) -> list[RoleAssignmentOut]:
    assignments = await role_service.get_active_role_assignments(store, user_id)
    if str(user_id) == str(actor.id):
        return assignments
    visible = [
        assignment
        for assignment in assignments
        if ability.can(Action.READ, Resource(Subject.ROLE_ASSIGNMENT, bank_id=assignment.bank_id))
    ]
    if not visible and not ability.can(Action.READ, Subject.ROLE_ASSIGNMENT):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "unauthorized", "message": "Missing permission: read RoleAssignment"},
        )
    return visible


@router.post(
    "/users/{user_id}/roles",
    response_model=RoleAssignmentOut,
    status_code=201,
    summary="Assign a role to a user",
)
async def create_role_assignment(
    user_id: UUID,
    payload: RoleAssignmentCreate,
    actor: Actor = Depends(deps.get_current_actor),
    context: ActiveContext = Depends(deps.get_active_context),
    store: Store = Depends(deps.get_store),
) -> RoleAssignmentOut:
    assignment = await role_service.assign_role(store, user_id, payload.role, payload.bank_id, actor, context)
    return assignment


@router.delete(
    "/role-assignments/{assignment_id}",
    response_model=RoleAssignmentOut,
    summary="Revoke a role assignment",
)
async def delete_role_assignment(
    assignment_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    context: ActiveContext = Depends(deps.get_active_context),
    store: Store = Depends(deps.get_store),
) -> RoleAssignmentOut:
    assignment = await role_service.revoke_role(store, assignment_id, actor, context)
    logger.info("Role assignment revoked", extra={"assignment_id": str(assignment.id)})
    return assignment
