"""Transition table for pending actions.

Every status change of a pending action goes through :func:`next_status`;
the persistence layer applies it as a compare-and-set on the current status.
"""

from __future__ import annotations

from enum import Enum

from lendsafe.services.outcomes import InvalidTransition


class PendingActionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class PendingActionEvent(str, Enum):
    CLAIM = "claim"
    COMPLETE = "complete"
    RELEASE = "release"
    FAIL = "fail"
    REJECT = "reject"
    CANCEL = "cancel"


class PendingActionType(str, Enum):
    REQUEST_BANK_USER_CREATION = "REQUEST_BANK_USER_CREATION"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


S = PendingActionStatus
E = PendingActionEvent

TRANSITIONS: dict[tuple[PendingActionStatus, PendingActionEvent], PendingActionStatus] = {
    (S.PENDING, E.CLAIM): S.PROCESSING,
    (S.PENDING, E.REJECT): S.REJECTED,
    (S.PENDING, E.CANCEL): S.CANCELLED,
    (S.PROCESSING, E.COMPLETE): S.APPROVED,
    (S.PROCESSING, E.RELEASE): S.PENDING,
    (S.PROCESSING, E.FAIL): S.FAILED,
}

TERMINAL_STATUSES = frozenset({S.APPROVED, S.REJECTED, S.CANCELLED, S.FAILED})
OPEN_STATUSES = frozenset({S.PENDING, S.PROCESSING})

# Terminal status each user-facing command would have produced
COMMAND_OUTCOME: dict[PendingActionEvent, PendingActionStatus] = {
    E.CLAIM: S.APPROVED,
    E.REJECT: S.REJECTED,
    E.CANCEL: S.CANCELLED,
}


def is_terminal(status: PendingActionStatus | str) -> bool:
    return PendingActionStatus(status) in TERMINAL_STATUSES


def next_status(current: PendingActionStatus | str, event: PendingActionEvent) -> PendingActionStatus:
    status = PendingActionStatus(current)
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransition(f"Cannot {event.value} a request that is {status.value}") from None


def is_replay(current: PendingActionStatus | str, event: PendingActionEvent) -> bool:
    """True when ``event`` repeats the decision that already closed the request."""
    return COMMAND_OUTCOME.get(event) is PendingActionStatus(current)
