from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from lendsafe.core.context import set_actor_id, set_bank_id
from lendsafe.core.permissions import Action, Subject
from lendsafe.core.security import decode_token
from lendsafe.core.tenant import normalize_bank_id
from lendsafe.db.session import get_db
from lendsafe.repositories.interfaces import Store
from lendsafe.repositories.sql import SqlStore
from lendsafe.services.ability import Ability, ActiveContext, Actor, Resource, build_ability
from lendsafe.services.pending_actions import PendingActionService
from lendsafe.services.provisioning import IdentityProvisioner, get_identity_provisioner
from lendsafe.services.role_assignments import load_actor, resolve_active_context


@dataclass(slots=True)
class RequestedContext:
    bank_id: str | None = None
    role: str | None = None


bearer_scheme = HTTPBearer(auto_error=False)


async def get_requested_context(
    x_bank_id: str | None = Header(default=None, alias="X-Bank-ID"),
    x_role: str | None = Header(default=None, alias="X-Role"),
) -> RequestedContext:
    # Header names must not shadow the {bank_id} path parameter
    normalized_bank = None
    if x_bank_id:
        try:
            normalized_bank = normalize_bank_id(x_bank_id)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        set_bank_id(normalized_bank)
    return RequestedContext(bank_id=normalized_bank, role=(x_role or "").strip() or None)


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_store(db: AsyncSession = Depends(get_db_session)) -> Store:
    return SqlStore(db)


def get_provisioner() -> IdentityProvisioner:
    return get_identity_provisioner()


async def get_pending_action_service(
    store: Store = Depends(get_store),
    provisioner: IdentityProvisioner = Depends(get_provisioner),
) -> PendingActionService:
    return PendingActionService(store, provisioner)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    store: Store = Depends(get_store),
) -> Actor:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_token(credentials.credentials, expected_type="access")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    actor = await load_actor(store, subject)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    set_actor_id(str(actor.id))
    return actor


async def get_active_context(
    actor: Actor = Depends(get_current_actor),
    requested: RequestedContext = Depends(get_requested_context),
) -> ActiveContext:
    context = resolve_active_context(actor.role_assignments, requested.bank_id, requested.role)
    if context.denied:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "context_denied",
                "message": "No active role assignment matches the requested bank or role",
            },
        )
    return context


async def get_ability(
    actor: Actor = Depends(get_current_actor),
    context: ActiveContext = Depends(get_active_context),
) -> Ability:
    return build_ability(actor, context)


def require_ability(action: Action, subject: Subject, bank_param: str | None = None):
    """Gate a route on ``can(action, subject)``, scoped to a bank path parameter when given."""

    async def dependency(request: Request, ability: Ability = Depends(get_ability)) -> Ability:
        target: Subject | Resource = subject
        if bank_param:
            raw_bank = request.path_params.get(bank_param) or ""
            target = Resource(subject, bank_id=raw_bank.strip().lower() or None)
        if not ability.can(action, target):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "unauthorized",
                    "message": f"Missing permission: {action.value} {subject.value}",
                },
            )
        return ability

    return dependency
