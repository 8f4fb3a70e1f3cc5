from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lendsafe.models.audit_log import AuditLog
from lendsafe.models.bank import Bank
from lendsafe.models.pending_action import PendingAction
from lendsafe.models.role_assignment import RoleAssignment
from lendsafe.models.user_profile import UserProfile
from lendsafe.services.maker_checker import OPEN_STATUSES, PendingActionStatus
from lendsafe.services.outcomes import DuplicateAssignment, DuplicateRequest


class SqlUserRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, user_id: Any) -> UserProfile | None:
        result = await self.db.execute(
            select(UserProfile).where(UserProfile.id == user_id, UserProfile.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> UserProfile | None:
        result = await self.db.execute(select(UserProfile).where(UserProfile.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def add(self, user: UserProfile) -> UserProfile:
        self.db.add(user)
        await self.db.flush()
        return user


class SqlRoleAssignmentRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_active(self, user_id: Any) -> list[RoleAssignment]:
        result = await self.db.execute(
            select(RoleAssignment)
            .where(RoleAssignment.user_id == user_id, RoleAssignment.revoked_at.is_(None))
            .order_by(RoleAssignment.assigned_at.asc())
        )
        return list(result.scalars().all())

    async def get(self, assignment_id: Any) -> RoleAssignment | None:
        result = await self.db.execute(select(RoleAssignment).where(RoleAssignment.id == assignment_id))
        return result.scalar_one_or_none()

    async def find_active(self, user_id: Any, role: str, bank_id: str | None) -> RoleAssignment | None:
        bank_filter = RoleAssignment.bank_id.is_(None) if bank_id is None else RoleAssignment.bank_id == bank_id
        result = await self.db.execute(
            select(RoleAssignment).where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role == role,
                bank_filter,
                RoleAssignment.revoked_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def add(self, assignment: RoleAssignment) -> RoleAssignment:
        try:
            self.db.add(assignment)
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateAssignment() from None
        return assignment

    async def save(self, assignment: RoleAssignment) -> RoleAssignment:
        await self.db.flush()
        return assignment


class SqlBankRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, bank_id: str) -> Bank | None:
        result = await self.db.execute(select(Bank).where(Bank.id == bank_id, Bank.deleted_at.is_(None)))
        return result.scalar_one_or_none()


class SqlPendingActionRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, action_id: Any) -> PendingAction | None:
        result = await self.db.execute(
            select(PendingAction)
            .where(PendingAction.id == action_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_open(self, bank_id: str, action_type: str, dedupe_key: str) -> PendingAction | None:
        result = await self.db.execute(
            select(PendingAction).where(
                PendingAction.bank_id == bank_id,
                PendingAction.action_type == action_type,
                PendingAction.dedupe_key == dedupe_key,
                PendingAction.status.in_([status.value for status in OPEN_STATUSES]),
            )
        )
        return result.scalars().first()

    async def add(self, action: PendingAction) -> PendingAction:
        try:
            self.db.add(action)
            await self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent submit of the same request
            await self.db.rollback()
            raise DuplicateRequest() from None
        return action

    async def list_open(self, bank_id: str) -> list[PendingAction]:
        result = await self.db.execute(
            select(PendingAction)
            .where(
                PendingAction.bank_id == bank_id,
                PendingAction.status.in_([status.value for status in OPEN_STATUSES]),
            )
            .order_by(PendingAction.requested_at.desc())
        )
        return list(result.scalars().all())

    async def list_stalled(self, started_before: datetime) -> list[PendingAction]:
        result = await self.db.execute(
            select(PendingAction).where(
                PendingAction.status == PendingActionStatus.PROCESSING.value,
                PendingAction.processing_started_at < started_before,
            )
        )
        return list(result.scalars().all())

    async def transition(
        self,
        action_id: Any,
        expected: PendingActionStatus,
        new: PendingActionStatus,
        **values: Any,
    ) -> PendingAction | None:
        stmt = (
            update(PendingAction)
            .where(PendingAction.id == action_id, PendingAction.status == expected.value)
            .values(status=new.value, updated_at=func.now(), **values)
            .returning(PendingAction)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()


class SqlAuditRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def add(self, entry: AuditLog) -> None:
        self.db.add(entry)


class SqlStore:
    """Unit of work over a single ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.users = SqlUserRepository(db)
        self.role_assignments = SqlRoleAssignmentRepository(db)
        self.banks = SqlBankRepository(db)
        self.pending_actions = SqlPendingActionRepository(db)
        self.audit = SqlAuditRepository(db)

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
