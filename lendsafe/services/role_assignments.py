from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from lendsafe.core.permissions import Action, Subject
from lendsafe.core.roles import RoleType
from lendsafe.core.tenant import normalize_bank_id
from lendsafe.models.role_assignment import RoleAssignment
from lendsafe.repositories.interfaces import Store
from lendsafe.services.ability import ActiveContext, Actor, Resource, build_ability
from lendsafe.services.audit import model_snapshot, record_audit_log
from lendsafe.services.outcomes import DuplicateAssignment, NotFound, Unauthorized, ValidationError

logger = logging.getLogger(__name__)


def _as_uuid(value: Any, label: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound(f"{label} not found") from None


async def get_active_role_assignments(store: Store, actor_id: Any) -> list[RoleAssignment]:
    return await store.role_assignments.list_active(_as_uuid(actor_id, "User"))


async def load_actor(store: Store, user_id: Any) -> Actor | None:
    """Return the actor with its active assignments, or None for unknown/inactive users."""
    try:
        key = _as_uuid(user_id, "User")
    except NotFound:
        return None
    user = await store.users.get(key)
    if user is None or not user.is_active:
        return None
    assignments = await store.role_assignments.list_active(user.id)
    return Actor(id=user.id, role_assignments=tuple(assignments), email=user.email)


async def assign_role(
    store: Store,
    actor_id: Any,
    role: RoleType | str,
    bank_id: str | None,
    assigned_by: Actor,
    context: ActiveContext | None = None,
) -> RoleAssignment:
    if bank_id:
        try:
            bank_id = normalize_bank_id(bank_id)
        except ValueError as exc:
            raise ValidationError("Invalid bank id", errors={"bank_id": [str(exc)]}) from None
    else:
        bank_id = None

    ability = build_ability(assigned_by, context)
    if not ability.can(Action.CREATE, Resource(Subject.ROLE_ASSIGNMENT, bank_id=bank_id)):
        raise Unauthorized()

    parsed = RoleType.parse(role)
    if parsed is None:
        raise ValidationError(errors={"role": [f"Unknown role {role!r}"]})
    if parsed.is_bank_scoped and bank_id is None:
        raise ValidationError(errors={"bank_id": [f"{parsed.value} requires a bank"]})
    if parsed.is_global and bank_id is not None:
        raise ValidationError(errors={"bank_id": [f"{parsed.value} cannot be scoped to a bank"]})

    user = await store.users.get(_as_uuid(actor_id, "User"))
    if user is None:
        raise NotFound("User not found")
    if bank_id is not None and await store.banks.get(bank_id) is None:
        raise NotFound("Bank not found")
    if await store.role_assignments.find_active(user.id, parsed.value, bank_id):
        raise DuplicateAssignment()

    assignment = RoleAssignment(
        id=uuid.uuid4(),
        user_id=user.id,
        role=parsed.value,
        bank_id=bank_id,
        assigned_at=datetime.now(timezone.utc),
        assigned_by_id=assigned_by.id,
    )
    await store.role_assignments.add(assignment)
    await record_audit_log(
        store,
        bank_id=bank_id,
        actor_id=assigned_by.id,
        action="role_assignment.created",
        resource_type="RoleAssignment",
        resource_id=assignment.id,
        new_value=model_snapshot(assignment),
    )
    await store.commit()
    logger.info("Role %s assigned", parsed.value, extra={"assignment_id": str(assignment.id)})
    return assignment


async def revoke_role(
    store: Store,
    assignment_id: Any,
    revoked_by: Actor,
    context: ActiveContext | None = None,
) -> RoleAssignment:
    assignment = await store.role_assignments.get(_as_uuid(assignment_id, "Role assignment"))
    if assignment is None:
        raise NotFound("Role assignment not found")
    ability = build_ability(revoked_by, context)
    if not ability.can(Action.DELETE, Resource(Subject.ROLE_ASSIGNMENT, bank_id=assignment.bank_id)):
        raise Unauthorized()
    if assignment.revoked_at is not None:
        return assignment

    old_value = model_snapshot(assignment)
    assignment.revoked_at = datetime.now(timezone.utc)
    assignment.revoked_by_id = revoked_by.id
    await store.role_assignments.save(assignment)
    await record_audit_log(
        store,
        bank_id=assignment.bank_id,
        actor_id=revoked_by.id,
        action="role_assignment.revoked",
        resource_type="RoleAssignment",
        resource_id=assignment.id,
        old_value=old_value,
        new_value=model_snapshot(assignment),
    )
    await store.commit()
    return assignment


def resolve_active_context(
    assignments: Iterable[Any],
    bank_id: str | None = None,
    role: RoleType | str | None = None,
) -> ActiveContext:
    """Pick the (bank, role) a request acts as.

    Without an explicit request the first bank-scoped, non-applicant
    assignment wins. An explicit request must match an active assignment,
    otherwise the returned context denies everything.
    """
    active: list[tuple[RoleType, str | None]] = []
    for assignment in assignments:
        if getattr(assignment, "revoked_at", None) is not None:
            continue
        parsed = RoleType.parse(getattr(assignment, "role", None))
        if parsed is None:
            continue
        raw_bank = getattr(assignment, "bank_id", None)
        active.append((parsed, str(raw_bank) if raw_bank else None))

    if bank_id is None and role is None:
        for parsed, assigned_bank in active:
            if assigned_bank and parsed.is_bank_scoped and parsed is not RoleType.APPLICANT:
                return ActiveContext(bank_id=assigned_bank, role=parsed)
        return ActiveContext()

    requested_role = RoleType.parse(role) if role is not None else None
    if role is not None and requested_role is None:
        return ActiveContext.deny()
    requested_bank = None
    if bank_id is not None:
        try:
            requested_bank = normalize_bank_id(bank_id)
        except ValueError:
            return ActiveContext.deny()

    if any(parsed is RoleType.SAAS_ADMIN for parsed, _ in active):
        return ActiveContext(bank_id=requested_bank, role=requested_role)
    for parsed, assigned_bank in active:
        if requested_bank is not None and assigned_bank != requested_bank:
            continue
        if requested_role is not None and parsed is not requested_role:
            continue
        return ActiveContext(bank_id=requested_bank, role=requested_role)
    return ActiveContext.deny()
