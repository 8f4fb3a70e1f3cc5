from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class LendsafeError(Exception):
    code = "error"
    status_code = 400
    default_message = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        errors: dict[str, list[str]] | None = None,
        record: Any = None,
    ) -> None:
        self.message = message or self.default_message
        self.errors = errors or {}
        # The stored record, when the failure concerns an existing one
        self.record = record
        super().__init__(self.message)


class Unauthorized(LendsafeError):
    code = "unauthorized"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class ValidationError(LendsafeError):
    code = "validation_error"
    status_code = 422
    default_message = "Validation failed"


class NotFound(LendsafeError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class DuplicateRequest(LendsafeError):
    code = "duplicate_request"
    status_code = 409
    default_message = "An open request for this user already exists"


class DuplicateAssignment(LendsafeError):
    code = "duplicate_assignment"
    status_code = 409
    default_message = "Role already assigned to user"


class SelfReviewForbidden(LendsafeError):
    code = "self_review_forbidden"
    status_code = 409
    default_message = "You cannot review a request you submitted"


class InvalidTransition(LendsafeError):
    code = "invalid_transition"
    status_code = 409
    default_message = "Request is no longer pending"


class ExecutionFailure(LendsafeError):
    code = "execution_failure"
    status_code = 502
    default_message = "Approved operation could not be completed"


UNEXPECTED_ERROR_CODE = "unexpected_error"

STATUS_BY_CODE: dict[str, int] = {
    cls.code: cls.status_code
    for cls in (
        Unauthorized,
        ValidationError,
        NotFound,
        DuplicateRequest,
        DuplicateAssignment,
        SelfReviewForbidden,
        InvalidTransition,
        ExecutionFailure,
    )
}
STATUS_BY_CODE[UNEXPECTED_ERROR_CODE] = 500


@dataclass
class ActionResult(Generic[T]):
    """Outcome of a workflow operation, successful or not."""

    success: bool
    message: str
    data: T | None = None
    code: str | None = None
    errors: dict[str, list[str]] = field(default_factory=dict)
    replayed: bool = False
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, data: T | None = None, *, replayed: bool = False, **meta: Any) -> "ActionResult[T]":
        return cls(success=True, message=message, data=data, replayed=replayed, meta=meta)

    @classmethod
    def from_error(cls, exc: LendsafeError) -> "ActionResult[T]":
        return cls(
            success=False,
            message=exc.message,
            data=exc.record,
            code=exc.code,
            errors=exc.errors,
        )

    @classmethod
    def unexpected(cls) -> "ActionResult[T]":
        return cls(success=False, message="An unexpected error occurred", code=UNEXPECTED_ERROR_CODE)

    @property
    def status_code(self) -> int:
        if self.success:
            return 200
        return STATUS_BY_CODE.get(self.code or "", 400)
