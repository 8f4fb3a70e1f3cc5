"""Maker-checker workflow over pending actions.

A request is submitted by one actor and decided by another. Approval claims
the request (PENDING -> PROCESSING) and commits the claim before the
approved operation runs, so only the actor that won the claim ever
provisions anything. The operation's database writes are committed together
with the PROCESSING -> APPROVED transition; if that commit does not happen
the identity created at the provider is deleted again.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from lendsafe.core.permissions import Action, Subject
from lendsafe.core.settings import settings
from lendsafe.core.tenant import normalize_bank_id
from lendsafe.models.pending_action import PendingAction
from lendsafe.models.role_assignment import RoleAssignment
from lendsafe.models.user_profile import UserProfile
from lendsafe.repositories.interfaces import Store
from lendsafe.schemas.pending_actions import PAYLOAD_SCHEMAS, CreateTenantUserPayload
from lendsafe.services.ability import Ability, ActiveContext, Actor, Resource, build_ability
from lendsafe.services.audit import model_snapshot, record_audit_log
from lendsafe.services.maker_checker import (
    PendingActionEvent,
    PendingActionStatus,
    PendingActionType,
    ReviewDecision,
    is_replay,
    is_terminal,
    next_status,
)
from lendsafe.services.outcomes import (
    ActionResult,
    DuplicateRequest,
    ExecutionFailure,
    InvalidTransition,
    LendsafeError,
    NotFound,
    SelfReviewForbidden,
    Unauthorized,
    ValidationError,
)
from lendsafe.services.provisioning import (
    IDENTITY_EXISTS,
    IdentityProvisioner,
    IdentityRequest,
    ProvisionedIdentity,
    ProvisioningError,
)

logger = logging.getLogger(__name__)

E = PendingActionEvent
Status = PendingActionStatus

RESOURCE_TYPE = "PendingAction"
TARGET_MODEL = "UserProfile"
STALLED_CLAIM_DETAIL = "Processing claim expired before completion"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _same_actor(left: Any, right: Any) -> bool:
    return left is not None and right is not None and str(left) == str(right)


def _field_errors(exc: PydanticValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc") or ()) or "payload"
        message = str(error.get("msg") or "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(loc, []).append(message)
    return errors


def parse_action_type(value: PendingActionType | str) -> PendingActionType:
    try:
        return PendingActionType(value)
    except ValueError:
        raise ValidationError(
            "Unsupported action type", errors={"action_type": [f"Unknown action type {value!r}"]}
        ) from None


def validate_payload(action_type: PendingActionType, payload: Any) -> BaseModel:
    schema = PAYLOAD_SCHEMAS[action_type]
    if not isinstance(payload, dict):
        raise ValidationError(errors={"payload": ["Payload must be an object"]})
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(errors=_field_errors(exc)) from None


def dedupe_key_for(action_type: PendingActionType, payload: BaseModel) -> str:
    """Identifying key of a request; two open requests may not share it."""
    if action_type is PendingActionType.REQUEST_BANK_USER_CREATION:
        return f"email:{payload.email.strip().lower()}"
    raise ValueError(f"No identifying key defined for {action_type.value}")


def _resource(action: PendingAction) -> Resource:
    return Resource(Subject.PENDING_ACTION, bank_id=action.bank_id, id=action.id)


@dataclass
class WorkflowOutcome:
    action: PendingAction
    replayed: bool = False
    meta: dict[str, Any] = field(default_factory=dict)


class PendingActionService:
    def __init__(
        self,
        store: Store,
        provisioner: IdentityProvisioner,
        *,
        max_attempts: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.provisioner = provisioner
        self.max_attempts = max(1, max_attempts or settings.pending_action_max_execution_attempts)
        self._now = clock or _utcnow

    # Reads

    async def get(self, action_id: Any, actor: Actor, context: ActiveContext | None = None) -> PendingAction:
        action = await self._load(action_id)
        self._authorize(build_ability(actor, context), Action.READ, action)
        return action

    async def list_pending(
        self, bank_id: str, actor: Actor, context: ActiveContext | None = None
    ) -> list[PendingAction]:
        bank_id = self._normalize_bank(bank_id)
        ability = build_ability(actor, context)
        if not ability.can(Action.READ, Resource(Subject.PENDING_ACTION, bank_id=bank_id)):
            raise Unauthorized()
        return await self.store.pending_actions.list_open(bank_id)

    # Commands

    async def submit(
        self,
        action_type: PendingActionType | str,
        bank_id: str,
        payload: Any,
        requester: Actor,
        context: ActiveContext | None = None,
    ) -> WorkflowOutcome:
        action_type = parse_action_type(action_type)
        bank_id = self._normalize_bank(bank_id)
        ability = build_ability(requester, context)
        if not ability.can(Action.CREATE, Resource(Subject.PENDING_ACTION, bank_id=bank_id)):
            raise Unauthorized()

        data = validate_payload(action_type, payload)
        payload_bank = getattr(data, "bank_id", None)
        if payload_bank is not None and payload_bank != bank_id:
            raise ValidationError(
                "Payload bank does not match the target bank",
                errors={"bank_id": ["Must match the bank the request is submitted to"]},
            )
        if await self.store.banks.get(bank_id) is None:
            raise NotFound("Bank not found")

        dedupe_key = dedupe_key_for(action_type, data)
        if await self.store.pending_actions.find_open(bank_id, action_type.value, dedupe_key):
            raise DuplicateRequest(errors={"email": ["A request for this user is already pending"]})
        if isinstance(data, CreateTenantUserPayload) and await self.store.users.get_by_email(data.email):
            raise ValidationError("User already exists", errors={"email": ["A user with this email already exists"]})

        stored_payload = data.model_dump(mode="json")
        stored_payload["bank_id"] = bank_id
        action = PendingAction(
            id=uuid.uuid4(),
            action_type=action_type.value,
            payload=stored_payload,
            bank_id=bank_id,
            target_model=TARGET_MODEL,
            dedupe_key=dedupe_key,
            status=Status.PENDING.value,
            requested_by_id=requester.id,
            requested_at=self._now(),
            failure_count=0,
        )
        await self.store.pending_actions.add(action)
        await record_audit_log(
            self.store,
            bank_id=bank_id,
            actor_id=requester.id,
            action="pending_action.submitted",
            resource_type=RESOURCE_TYPE,
            resource_id=action.id,
            new_value=model_snapshot(action),
        )
        await self.store.commit()
        logger.info("Pending action submitted", extra={"pending_action_id": str(action.id)})
        return WorkflowOutcome(action=action)

    async def approve(
        self, action_id: Any, reviewer: Actor, context: ActiveContext | None = None
    ) -> WorkflowOutcome:
        action = await self._load(action_id)
        # A rollback expires loaded instances, so keep the key
        action_id = action.id
        self._forbid_self_review(action, reviewer)
        self._authorize(build_ability(reviewer, context), Action.UPDATE, action)
        if is_terminal(action.status):
            return self._replay_or_refuse(action, E.CLAIM)
        self._guard(action, E.CLAIM)

        claimed = await self.store.pending_actions.transition(
            action_id,
            Status.PENDING,
            Status.PROCESSING,
            processing_started_at=self._now(),
            reviewed_by_id=reviewer.id,
        )
        if claimed is None:
            await self.store.rollback()
            return await self._lost_race(action_id, E.CLAIM)
        await self.store.commit()

        bank_id = claimed.bank_id
        attempts = claimed.failure_count or 0
        try:
            user, identity = await self._execute(claimed, reviewer)
        except (ProvisioningError, LendsafeError) as exc:
            await self.store.rollback()
            field_name = getattr(exc, "field", None)
            errors = {field_name: [exc.message]} if field_name else {}
            raise await self._record_failure(action_id, bank_id, attempts, reviewer, exc.message, errors) from exc
        except Exception as exc:
            logger.exception("Approved operation failed", extra={"pending_action_id": str(action_id)})
            await self.store.rollback()
            raise await self._record_failure(
                action_id, bank_id, attempts, reviewer, "Unexpected error while executing the request", {}
            ) from exc

        user_id = user.id
        try:
            completed = await self.store.pending_actions.transition(
                action_id,
                Status.PROCESSING,
                next_status(Status.PROCESSING, E.COMPLETE),
                target_record_id=str(user_id),
                reviewed_by_id=reviewer.id,
                reviewed_at=self._now(),
                failure_detail=None,
            )
            if completed is not None:
                await record_audit_log(
                    self.store,
                    bank_id=bank_id,
                    actor_id=reviewer.id,
                    action="pending_action.approved",
                    resource_type=RESOURCE_TYPE,
                    resource_id=action_id,
                    old_value={"status": Status.PENDING.value},
                    new_value={"status": Status.APPROVED.value, "target_record_id": str(user_id)},
                )
                await self.store.commit()
        except Exception as exc:
            logger.exception("Could not record approval", extra={"pending_action_id": str(action_id)})
            await self.store.rollback()
            await self._discard_identity(identity, action_id)
            raise await self._record_failure(
                action_id, bank_id, attempts, reviewer, "Unexpected error while executing the request", {}
            ) from exc
        if completed is None:
            # Claim was released underneath us; discard the provisioned records
            await self.store.rollback()
            await self._discard_identity(identity, action_id)
            current = await self._load(action_id)
            raise InvalidTransition("Request claim was lost before completion", record=current)
        logger.info("Pending action approved", extra={"pending_action_id": str(action_id)})
        return WorkflowOutcome(action=completed, meta=dict(identity.secrets))

    async def reject(
        self,
        action_id: Any,
        reviewer: Actor,
        remarks: str | None,
        context: ActiveContext | None = None,
    ) -> WorkflowOutcome:
        action = await self._load(action_id)
        action_id = action.id
        self._forbid_self_review(action, reviewer)
        self._authorize(build_ability(reviewer, context), Action.UPDATE, action)
        if is_terminal(action.status):
            return self._replay_or_refuse(action, E.REJECT)
        cleaned = (remarks or "").strip()
        if not cleaned:
            raise ValidationError(errors={"remarks": ["Remarks are required when rejecting a request"]})
        self._guard(action, E.REJECT)

        updated = await self.store.pending_actions.transition(
            action_id,
            Status.PENDING,
            Status.REJECTED,
            reviewed_by_id=reviewer.id,
            review_remarks=cleaned,
            reviewed_at=self._now(),
        )
        if updated is None:
            await self.store.rollback()
            return await self._lost_race(action_id, E.REJECT)
        await record_audit_log(
            self.store,
            bank_id=updated.bank_id,
            actor_id=reviewer.id,
            action="pending_action.rejected",
            resource_type=RESOURCE_TYPE,
            resource_id=action_id,
            old_value={"status": Status.PENDING.value},
            new_value={"status": Status.REJECTED.value, "review_remarks": cleaned},
        )
        await self.store.commit()
        return WorkflowOutcome(action=updated)

    async def cancel(
        self, action_id: Any, actor: Actor, context: ActiveContext | None = None
    ) -> WorkflowOutcome:
        action = await self._load(action_id)
        action_id = action.id
        ability = build_ability(actor, context)
        resource = _resource(action)
        if not (ability.can(Action.CREATE, resource) or ability.can(Action.UPDATE, resource)):
            raise Unauthorized()
        if not (_same_actor(action.requested_by_id, actor.id) or ability.is_platform_admin):
            raise Unauthorized("Only the requester can cancel this request")
        if is_terminal(action.status):
            return self._replay_or_refuse(action, E.CANCEL)
        self._guard(action, E.CANCEL)

        updated = await self.store.pending_actions.transition(
            action_id,
            Status.PENDING,
            Status.CANCELLED,
            reviewed_by_id=actor.id,
            reviewed_at=self._now(),
        )
        if updated is None:
            await self.store.rollback()
            return await self._lost_race(action_id, E.CANCEL)
        await record_audit_log(
            self.store,
            bank_id=updated.bank_id,
            actor_id=actor.id,
            action="pending_action.cancelled",
            resource_type=RESOURCE_TYPE,
            resource_id=action_id,
            old_value={"status": Status.PENDING.value},
            new_value={"status": Status.CANCELLED.value},
        )
        await self.store.commit()
        return WorkflowOutcome(action=updated)

    async def review(
        self,
        action_id: Any,
        reviewer: Actor,
        decision: ReviewDecision | str,
        remarks: str | None = None,
        context: ActiveContext | None = None,
    ) -> WorkflowOutcome:
        try:
            decision = ReviewDecision(decision)
        except ValueError:
            raise ValidationError(errors={"decision": ["Decision must be 'approve' or 'reject'"]}) from None
        if decision is ReviewDecision.APPROVE:
            return await self.approve(action_id, reviewer, context)
        return await self.reject(action_id, reviewer, remarks, context)

    async def release_stalled_claims(self, older_than: timedelta | None = None) -> list[PendingAction]:
        """Return PROCESSING claims left behind by a crashed worker to PENDING."""
        now = self._now()
        cutoff = now - (older_than or timedelta(minutes=settings.pending_action_stall_minutes))
        released: list[PendingAction] = []
        for action in await self.store.pending_actions.list_stalled(cutoff):
            attempts = (action.failure_count or 0) + 1
            event = E.FAIL if attempts >= self.max_attempts else E.RELEASE
            updated = await self.store.pending_actions.transition(
                action.id,
                Status.PROCESSING,
                next_status(Status.PROCESSING, event),
                failure_detail=STALLED_CLAIM_DETAIL,
                failure_count=attempts,
                last_failed_at=now,
                processing_started_at=None,
            )
            if updated is None:
                continue
            await record_audit_log(
                self.store,
                bank_id=updated.bank_id,
                actor_id=None,
                action="pending_action.claim_released",
                resource_type=RESOURCE_TYPE,
                resource_id=updated.id,
                old_value={"status": Status.PROCESSING.value},
                new_value={"status": updated.status, "failure_count": attempts},
            )
            released.append(updated)
        await self.store.commit()
        if released:
            logger.warning("Released %d stalled pending action claims", len(released))
        return released

    # Internals

    @staticmethod
    def _normalize_bank(bank_id: str) -> str:
        try:
            return normalize_bank_id(bank_id or "")
        except ValueError as exc:
            raise ValidationError("Invalid bank id", errors={"bank_id": [str(exc)]}) from None

    async def _load(self, action_id: Any) -> PendingAction:
        try:
            key = action_id if isinstance(action_id, uuid.UUID) else uuid.UUID(str(action_id))
        except ValueError:
            raise NotFound("Pending action not found") from None
        action = await self.store.pending_actions.get(key)
        if action is None:
            raise NotFound("Pending action not found")
        return action

    @staticmethod
    def _authorize(ability: Ability, action: Action, record: PendingAction) -> None:
        if not ability.can(action, _resource(record)):
            raise Unauthorized()

    @staticmethod
    def _forbid_self_review(action: PendingAction, reviewer: Actor) -> None:
        if _same_actor(action.requested_by_id, reviewer.id):
            raise SelfReviewForbidden(record=action)

    @staticmethod
    def _guard(action: PendingAction, event: PendingActionEvent) -> None:
        try:
            next_status(action.status, event)
        except InvalidTransition as exc:
            raise InvalidTransition(exc.message, record=action) from None

    @staticmethod
    def _replay_or_refuse(action: PendingAction, event: PendingActionEvent) -> WorkflowOutcome:
        if is_replay(action.status, event):
            return WorkflowOutcome(action=action, replayed=True)
        raise InvalidTransition(f"Request is already {action.status}", record=action)

    async def _lost_race(self, action_id: Any, event: PendingActionEvent) -> WorkflowOutcome:
        current = await self._load(action_id)
        if is_terminal(current.status):
            return self._replay_or_refuse(current, event)
        raise InvalidTransition(f"Request is {current.status}", record=current)

    async def _execute(
        self, action: PendingAction, reviewer: Actor
    ) -> tuple[UserProfile, ProvisionedIdentity]:
        action_id, bank_id = action.id, action.bank_id
        try:
            data = CreateTenantUserPayload.model_validate(action.payload)
        except PydanticValidationError as exc:
            raise ValidationError("Stored request payload is invalid", errors=_field_errors(exc)) from None
        if await self.store.users.get_by_email(data.email):
            raise ProvisioningError(IDENTITY_EXISTS, "A user with this email already exists", field="email")

        identity = await self.provisioner.create_identity(
            IdentityRequest(
                email=data.email,
                first_name=data.first_name,
                last_name=data.last_name,
                phone_number=data.phone_number,
            )
        )
        try:
            user = await self._create_user(bank_id, data, identity, reviewer)
        except Exception:
            await self._discard_identity(identity, action_id)
            raise
        return user, identity

    async def _create_user(
        self,
        bank_id: str,
        data: CreateTenantUserPayload,
        identity: ProvisionedIdentity,
        reviewer: Actor,
    ) -> UserProfile:
        user = UserProfile(
            id=uuid.uuid4(),
            auth_id=identity.auth_id,
            email=data.email,
            first_name=data.first_name,
            last_name=data.last_name,
            phone_number=data.phone_number,
            hashed_password=identity.hashed_password,
            must_change_password=True,
            is_active=True,
        )
        await self.store.users.add(user)
        assignment = RoleAssignment(
            id=uuid.uuid4(),
            user_id=user.id,
            role=data.role.value,
            bank_id=bank_id,
            assigned_at=self._now(),
            assigned_by_id=reviewer.id,
        )
        await self.store.role_assignments.add(assignment)
        await record_audit_log(
            self.store,
            bank_id=bank_id,
            actor_id=reviewer.id,
            action="user.created",
            resource_type="UserProfile",
            resource_id=user.id,
            new_value=model_snapshot(user, exclude={"hashed_password"}),
        )
        await record_audit_log(
            self.store,
            bank_id=bank_id,
            actor_id=reviewer.id,
            action="role_assignment.created",
            resource_type="RoleAssignment",
            resource_id=assignment.id,
            new_value=model_snapshot(assignment),
        )
        return user

    async def _discard_identity(self, identity: ProvisionedIdentity, action_id: Any) -> None:
        """Delete an identity whose local user was never committed."""
        try:
            await self.provisioner.delete_identity(identity.auth_id)
        except ProvisioningError as exc:
            # Left for an operator; the original failure is what the caller sees
            logger.error(
                "Could not delete identity after failed approval",
                extra={"pending_action_id": str(action_id), "auth_id": identity.auth_id, "provider_code": exc.code},
            )

    async def _record_failure(
        self,
        action_id: Any,
        bank_id: str,
        previous_attempts: int,
        reviewer: Actor,
        detail: str,
        errors: dict[str, list[str]],
    ) -> ExecutionFailure:
        attempts = previous_attempts + 1
        event = E.FAIL if attempts >= self.max_attempts else E.RELEASE
        new_status = next_status(Status.PROCESSING, event)
        now = self._now()
        values: dict[str, Any] = {
            "failure_detail": detail,
            "failure_count": attempts,
            "last_failed_at": now,
            "processing_started_at": None,
        }
        if new_status is Status.FAILED:
            values.update(reviewed_by_id=reviewer.id, reviewed_at=now)
        else:
            values.update(reviewed_by_id=None)
        updated = await self.store.pending_actions.transition(action_id, Status.PROCESSING, new_status, **values)
        await record_audit_log(
            self.store,
            bank_id=bank_id,
            actor_id=reviewer.id,
            action="pending_action.execution_failed",
            resource_type=RESOURCE_TYPE,
            resource_id=action_id,
            old_value={"status": Status.PROCESSING.value},
            new_value={"status": new_status.value, "failure_detail": detail, "failure_count": attempts},
        )
        await self.store.commit()
        logger.warning(
            "Approved operation failed",
            extra={"pending_action_id": str(action_id), "attempt": attempts, "next_status": new_status.value},
        )
        return ExecutionFailure(detail, errors=errors, record=updated)


# Facade: every outcome becomes an ActionResult

async def _as_result(
    service: PendingActionService,
    operation: Callable[[], Awaitable[WorkflowOutcome]],
    message: str,
    replay_message: str,
) -> ActionResult[PendingAction]:
    try:
        outcome = await operation()
    except LendsafeError as exc:
        logger.info("Workflow request refused", extra={"result_code": exc.code})
        return ActionResult.from_error(exc)
    except Exception:
        logger.exception("Unexpected error in pending action workflow")
        await service.store.rollback()
        return ActionResult.unexpected()
    return ActionResult.ok(
        replay_message if outcome.replayed else message,
        outcome.action,
        replayed=outcome.replayed,
        **outcome.meta,
    )


async def submit_pending_action(
    service: PendingActionService,
    action_type: PendingActionType | str,
    bank_id: str,
    payload: Any,
    requester: Actor,
    context: ActiveContext | None = None,
) -> ActionResult[PendingAction]:
    return await _as_result(
        service,
        lambda: service.submit(action_type, bank_id, payload, requester, context),
        "Request submitted for approval",
        "Request submitted for approval",
    )


_REVIEW_MESSAGES = {
    ReviewDecision.APPROVE: ("Request approved", "Request was already approved"),
    ReviewDecision.REJECT: ("Request rejected", "Request was already rejected"),
}


async def review_pending_action(
    service: PendingActionService,
    pending_action_id: Any,
    reviewer: Actor,
    decision: ReviewDecision | str,
    remarks: str | None = None,
    context: ActiveContext | None = None,
) -> ActionResult[PendingAction]:
    try:
        messages = _REVIEW_MESSAGES[ReviewDecision(decision)]
    except ValueError:
        messages = ("Request reviewed", "Request was already reviewed")
    return await _as_result(
        service,
        lambda: service.review(pending_action_id, reviewer, decision, remarks, context),
        *messages,
    )


async def cancel_pending_action(
    service: PendingActionService,
    pending_action_id: Any,
    requester: Actor,
    context: ActiveContext | None = None,
) -> ActionResult[PendingAction]:
    return await _as_result(
        service,
        lambda: service.cancel(pending_action_id, requester, context),
        "Request cancelled",
        "Request was already cancelled",
    )
