from enum import Enum
from typing import Iterable, List


class RoleType(str, Enum):
    SAAS_ADMIN = "SAAS_ADMIN"
    BANK_ADMIN = "BANK_ADMIN"
    LOAN_OFFICER = "LOAN_OFFICER"
    CLERK = "CLERK"
    INSPECTOR = "INSPECTOR"

    # Reviewer tiers
    CEO = "CEO"
    LOAN_COMMITTEE = "LOAN_COMMITTEE"
    BOARD = "BOARD"

    APPLICANT = "APPLICANT"
    USER = "USER"

    @property
    def is_global(self) -> bool:
        return self in GLOBAL_ROLES

    @property
    def is_bank_scoped(self) -> bool:
        return self not in GLOBAL_ROLES

    @classmethod
    def list_all(cls) -> List[str]:
        return [role.value for role in cls]

    @classmethod
    def parse(cls, value: "RoleType | str | None") -> "RoleType | None":
        """Return the matching member, or None for anything outside the closed set."""
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Return unique role values that are valid members."""
        seen = set()
        normalized: list[str] = []
        for value in values:
            role = cls.parse(value)
            if role is None:
                continue
            if role.value not in seen:
                seen.add(role.value)
                normalized.append(role.value)
        return normalized


GLOBAL_ROLES = frozenset({RoleType.SAAS_ADMIN, RoleType.USER})

REVIEWER_TIERS: tuple[RoleType, ...] = (RoleType.CEO, RoleType.LOAN_COMMITTEE, RoleType.BOARD)

# Roles a bank may request for a new user through the approval workflow.
REQUESTABLE_BANK_ROLES = frozenset(
    {
        RoleType.BANK_ADMIN,
        RoleType.LOAN_OFFICER,
        RoleType.CLERK,
        RoleType.INSPECTOR,
        RoleType.CEO,
        RoleType.LOAN_COMMITTEE,
        RoleType.BOARD,
    }
)
