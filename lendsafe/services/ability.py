"""Per-request capability sets derived from an actor's active role assignments.

``build_ability`` walks the actor's assignments and expands each role through
the grant table in :mod:`lendsafe.core.permissions`. Bank-scoped grants carry
the assignment's bank id as a condition so a capability earned at one bank is
never honoured against another bank's records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from lendsafe.core.permissions import Action, Scope, Subject, grants_for
from lendsafe.core.roles import RoleType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActiveContext:
    """The (bank, role) the actor is working as for the current request."""

    bank_id: str | None = None
    role: RoleType | None = None
    # Set when the requested context matched none of the actor's assignments
    denied: bool = False

    @classmethod
    def deny(cls) -> "ActiveContext":
        return cls(denied=True)

    def includes(self, role: RoleType, bank_id: str | None) -> bool:
        if self.denied:
            return False
        if role.is_global:
            return True
        if self.bank_id is not None and str(bank_id) != self.bank_id:
            return False
        if self.role is not None and role is not self.role:
            return False
        return True


@dataclass(frozen=True, slots=True)
class Actor:
    id: Any
    role_assignments: tuple[Any, ...] = ()
    email: str | None = None


@dataclass(frozen=True, slots=True)
class Resource:
    """A subject instance; conditions on rules are checked against it."""

    type: Subject | str
    bank_id: str | None = None
    owner_id: Any = None
    id: Any = None


@dataclass(frozen=True, slots=True)
class Rule:
    action: Action
    subject: Subject
    bank_id: str | None = None
    owner_id: str | None = None
    fields: frozenset[str] | None = None
    role: RoleType | None = None

    def matches(self, resource: Resource) -> bool:
        if self.bank_id is not None:
            if resource.bank_id is None or str(resource.bank_id) != self.bank_id:
                return False
        if self.owner_id is not None:
            if resource.owner_id is None or str(resource.owner_id) != self.owner_id:
                return False
        return True

    def to_dict(self) -> dict[str, Any]:
        conditions: dict[str, str] = {}
        if self.bank_id is not None:
            conditions["bank_id"] = self.bank_id
        if self.owner_id is not None:
            conditions["owner_id"] = self.owner_id
        packed: dict[str, Any] = {"action": self.action.value, "subject": self.subject.value}
        if conditions:
            packed["conditions"] = conditions
        if self.fields is not None:
            packed["fields"] = sorted(self.fields)
        return packed


@dataclass(frozen=True, slots=True)
class Ability:
    actor_id: str | None = None
    rules: tuple[Rule, ...] = field(default_factory=tuple)

    def can(self, action: Action | str, subject: Subject | str | Resource, field: str | None = None) -> bool:
        parsed_action = Action.parse(action)
        if parsed_action is None:
            return False
        resource: Resource | None = None
        if isinstance(subject, Resource):
            resource = subject
            subject_type = Subject.parse(subject.type)
        else:
            subject_type = Subject.parse(subject)
        if subject_type is None:
            return False

        for rule in self.rules:
            if rule.action is not Action.MANAGE and rule.action is not parsed_action:
                continue
            if rule.subject is not Subject.ALL and rule.subject is not subject_type:
                continue
            if field is not None and rule.fields is not None and field not in rule.fields:
                continue
            if resource is not None and not rule.matches(resource):
                continue
            return True
        return False

    def cannot(self, action: Action | str, subject: Subject | str | Resource, field: str | None = None) -> bool:
        return not self.can(action, subject, field)

    def permitted_fields(
        self, action: Action | str, subject: Subject | str | Resource, fields: Iterable[str]
    ) -> list[str]:
        return [name for name in fields if self.can(action, subject, name)]

    @property
    def is_platform_admin(self) -> bool:
        return any(
            rule.action is Action.MANAGE and rule.subject is Subject.ALL and rule.bank_id is None
            for rule in self.rules
        )

    def pack(self) -> list[dict[str, Any]]:
        return [rule.to_dict() for rule in self.rules]


def _rules_for_assignment(actor_id: str, role: RoleType, bank_id: str | None) -> list[Rule]:
    rules: list[Rule] = []
    for grant in grants_for(role):
        scoped_bank = None if grant.scope is Scope.GLOBAL else bank_id
        owner = actor_id if grant.scope is Scope.OWNER else None
        for action in sorted(grant.actions, key=lambda item: item.value):
            rules.append(
                Rule(
                    action=action,
                    subject=grant.subject,
                    bank_id=scoped_bank,
                    owner_id=owner,
                    fields=grant.fields,
                    role=role,
                )
            )
    return rules


def build_ability(actor: Actor | Any | None, context: ActiveContext | None = None) -> Ability:
    """Build the capability set for ``actor``; never raises.

    Revoked assignments, roles outside the closed set and bank-scoped roles
    without a bank id contribute nothing.
    """
    if actor is None:
        return Ability()
    try:
        actor_id = str(actor.id)
        assignments: Sequence[Any] = tuple(getattr(actor, "role_assignments", None) or ())
    except (AttributeError, TypeError):
        logger.warning("Ability requested for malformed actor; denying all")
        return Ability()

    rules: list[Rule] = []
    for assignment in assignments:
        try:
            raw_role = assignment.role
            bank_id = assignment.bank_id
            revoked_at = getattr(assignment, "revoked_at", None)
        except AttributeError:
            logger.warning("Skipping malformed role assignment", extra={"actor": actor_id})
            continue
        if revoked_at is not None:
            continue
        role = RoleType.parse(raw_role)
        if role is None:
            logger.warning("Skipping unknown role %r", raw_role, extra={"actor": actor_id})
            continue
        if context is not None and not context.includes(role, bank_id):
            continue
        if role is RoleType.SAAS_ADMIN:
            return Ability(
                actor_id=actor_id,
                rules=(Rule(action=Action.MANAGE, subject=Subject.ALL, role=role),),
            )
        if role.is_bank_scoped and not bank_id:
            logger.warning("Skipping %s assignment without bank", role.value, extra={"actor": actor_id})
            continue
        rules.extend(_rules_for_assignment(actor_id, role, str(bank_id) if bank_id else None))

    return Ability(actor_id=actor_id, rules=tuple(rules))
