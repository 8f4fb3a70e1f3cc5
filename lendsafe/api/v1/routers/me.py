from fastapi import APIRouter, Depends

from lendsafe.api import deps
from lendsafe.schemas.roles import AbilityOut, ActiveContextOut, RoleAssignmentOut
from lendsafe.services.ability import Ability, ActiveContext, Actor

router = APIRouter(prefix="/me", tags=["me"])


@router.get("/ability", response_model=AbilityOut, summary="Capabilities of the current actor")
async def read_my_ability(
    actor: Actor = Depends(deps.get_current_actor),
    context: ActiveContext = Depends(deps.get_active_context),
    ability: Ability = Depends(deps.get_ability),
) -> AbilityOut:
    return AbilityOut(
        actor_id=str(actor.id),
        context=ActiveContextOut(
            bank_id=context.bank_id,
            role=context.role.value if context.role else None,
        ),
        roles=[RoleAssignmentOut.model_validate(assignment) for assignment in actor.role_assignments],
        is_platform_admin=ability.is_platform_admin,
        rules=ability.pack(),
    )
