"""Persistence ports used by the workflow and role services.

Services depend on these protocols only; ``SqlStore`` implements them on an
``AsyncSession`` and the test suite ships an in-memory version.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from lendsafe.models.audit_log import AuditLog
    from lendsafe.models.bank import Bank
    from lendsafe.models.pending_action import PendingAction
    from lendsafe.models.role_assignment import RoleAssignment
    from lendsafe.models.user_profile import UserProfile
    from lendsafe.services.maker_checker import PendingActionStatus


class UserRepository(Protocol):
    async def get(self, user_id: Any) -> UserProfile | None:
        """Return a live (not soft-deleted) user."""

    async def get_by_email(self, email: str) -> UserProfile | None:
        """Return the user with this (lowercased) email."""

    async def add(self, user: UserProfile) -> UserProfile:
        """Persist a new user and assign its id."""


class RoleAssignmentRepository(Protocol):
    async def list_active(self, user_id: Any) -> list[RoleAssignment]:
        """Return assignments with ``revoked_at IS NULL``, oldest first."""

    async def get(self, assignment_id: Any) -> RoleAssignment | None:
        """Return an assignment, revoked or not."""

    async def find_active(self, user_id: Any, role: str, bank_id: str | None) -> RoleAssignment | None:
        """Return the active assignment matching (user, role, bank)."""

    async def add(self, assignment: RoleAssignment) -> RoleAssignment:
        """Persist; raises DuplicateAssignment when an identical one is active."""

    async def save(self, assignment: RoleAssignment) -> RoleAssignment:
        """Flush changes to an existing assignment."""


class BankRepository(Protocol):
    async def get(self, bank_id: str) -> Bank | None:
        """Return a live bank."""


class PendingActionRepository(Protocol):
    async def get(self, action_id: Any) -> PendingAction | None:
        """Return a pending action in any status."""

    async def find_open(self, bank_id: str, action_type: str, dedupe_key: str) -> PendingAction | None:
        """Return the PENDING/PROCESSING request with this identifying key."""

    async def add(self, action: PendingAction) -> PendingAction:
        """Persist; raises DuplicateRequest when an open duplicate exists."""

    async def list_open(self, bank_id: str) -> list[PendingAction]:
        """Return open requests of a bank, newest first."""

    async def list_stalled(self, started_before: datetime) -> list[PendingAction]:
        """Return PROCESSING claims taken before ``started_before``."""

    async def transition(
        self,
        action_id: Any,
        expected: PendingActionStatus,
        new: PendingActionStatus,
        **values: Any,
    ) -> PendingAction | None:
        """Compare-and-set the status; None when the current status differs."""


class AuditRepository(Protocol):
    async def add(self, entry: AuditLog) -> None:
        """Queue an audit entry in the current unit of work."""


class Store(Protocol):
    users: UserRepository
    role_assignments: RoleAssignmentRepository
    banks: BankRepository
    pending_actions: PendingActionRepository
    audit: AuditRepository

    async def commit(self) -> None:
        """Commit the current unit of work."""

    async def rollback(self) -> None:
        """Discard the current unit of work."""
