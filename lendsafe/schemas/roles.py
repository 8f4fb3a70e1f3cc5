from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class RoleAssignmentCreate(BaseModel):
    role: str
    bank_id: str | None = None


class RoleAssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    role: str
    bank_id: str | None = None
    assigned_at: datetime | None = None
    assigned_by_id: UUID | None = None
    revoked_at: datetime | None = None
    revoked_by_id: UUID | None = None


class ActiveContextOut(BaseModel):
    bank_id: str | None = None
    role: str | None = None


class AbilityOut(BaseModel):
    actor_id: str
    context: ActiveContextOut
    roles: list[RoleAssignmentOut]
    is_platform_admin: bool
    rules: list[dict[str, Any]]
