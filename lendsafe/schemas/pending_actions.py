from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from lendsafe.core.roles import REQUESTABLE_BANK_ROLES, RoleType
from lendsafe.core.tenant import normalize_bank_id
from lendsafe.services.maker_checker import PendingActionType, ReviewDecision

_PHONE_RE = re.compile(r"^\d{10}$")


class CreateTenantUserPayload(BaseModel):
    """Payload of a REQUEST_BANK_USER_CREATION request."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone_number: str
    role: RoleType
    bank_id: str | None = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        if not _PHONE_RE.fullmatch(v):
            raise ValueError("Phone number must be exactly 10 digits")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v: Any) -> RoleType:
        role = RoleType.parse(v)
        if role is None:
            raise ValueError(f"Unknown role; expected one of {', '.join(sorted(r.value for r in REQUESTABLE_BANK_ROLES))}")
        if role not in REQUESTABLE_BANK_ROLES:
            raise ValueError(f"Role {role.value} cannot be requested for a bank user")
        return role

    @field_validator("bank_id")
    @classmethod
    def normalize_bank(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return normalize_bank_id(v)


PAYLOAD_SCHEMAS: dict[PendingActionType, type[BaseModel]] = {
    PendingActionType.REQUEST_BANK_USER_CREATION: CreateTenantUserPayload,
}


class PendingActionSubmit(BaseModel):
    action_type: PendingActionType = PendingActionType.REQUEST_BANK_USER_CREATION
    payload: dict[str, Any]


class ReviewRequest(BaseModel):
    decision: ReviewDecision
    remarks: str | None = Field(default=None, max_length=2000)


class PendingActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action_type: str
    payload: dict[str, Any]
    bank_id: str
    target_model: str
    status: str
    requested_by_id: UUID
    requested_at: datetime | None = None
    reviewed_by_id: UUID | None = None
    review_remarks: str | None = None
    reviewed_at: datetime | None = None
    target_record_id: str | None = None
    failure_detail: str | None = None
    failure_count: int = 0
    last_failed_at: datetime | None = None
