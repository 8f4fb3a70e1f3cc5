from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from lendsafe.core.roles import RoleType


class Action(str, Enum):
    MANAGE = "manage"
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    VERIFY = "verify"

    @classmethod
    def list_all(cls) -> List[str]:
        return [action.value for action in cls]

    @classmethod
    def parse(cls, value: "Action | str | None") -> "Action | None":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class Subject(str, Enum):
    ALL = "all"
    BANK = "Bank"
    USER_PROFILE = "UserProfile"
    ROLE_ASSIGNMENT = "RoleAssignment"
    PENDING_ACTION = "PendingAction"
    LOAN_APPLICATION = "LoanApplication"
    APPLICANT = "Applicant"
    GUARANTOR = "Guarantor"
    DOCUMENT = "Document"
    VERIFICATION = "Verification"
    REVIEW = "Review"

    @classmethod
    def list_all(cls) -> List[str]:
        return [subject.value for subject in cls]

    @classmethod
    def parse(cls, value: "Subject | str | None") -> "Subject | None":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


class Scope(str, Enum):
    GLOBAL = "global"
    BANK = "bank"
    # Bank condition plus ``owner_id == actor.id``
    OWNER = "owner"


@dataclass(frozen=True, slots=True)
class Grant:
    role: RoleType
    actions: frozenset[Action]
    subject: Subject
    scope: Scope = Scope.BANK
    fields: frozenset[str] | None = None


def _grant(
    role: RoleType,
    actions: Iterable[Action] | Action,
    subject: Subject,
    scope: Scope = Scope.BANK,
    fields: Iterable[str] | None = None,
) -> Grant:
    if isinstance(actions, Action):
        actions = [actions]
    return Grant(
        role=role,
        actions=frozenset(actions),
        subject=subject,
        scope=scope,
        fields=frozenset(fields) if fields is not None else None,
    )


A = Action
S = Subject


def _reviewer_grants(role: RoleType) -> tuple[Grant, ...]:
    return (
        _grant(role, A.READ, S.BANK),
        _grant(role, A.READ, S.LOAN_APPLICATION),
        _grant(role, [A.APPROVE, A.REJECT], S.LOAN_APPLICATION),
        _grant(role, A.READ, S.APPLICANT),
        _grant(role, A.READ, S.GUARANTOR),
        _grant(role, A.READ, S.DOCUMENT),
        _grant(role, A.READ, S.VERIFICATION),
        _grant(role, [A.CREATE, A.READ], S.REVIEW),
    )


GRANT_TABLE: tuple[Grant, ...] = (
    _grant(RoleType.SAAS_ADMIN, A.MANAGE, S.ALL, scope=Scope.GLOBAL),
    # Bank administrators
    _grant(RoleType.BANK_ADMIN, [A.READ, A.UPDATE], S.BANK),
    _grant(RoleType.BANK_ADMIN, [A.READ, A.CREATE, A.UPDATE], S.USER_PROFILE),
    _grant(RoleType.BANK_ADMIN, A.READ, S.ROLE_ASSIGNMENT),
    _grant(RoleType.BANK_ADMIN, [A.CREATE, A.READ, A.UPDATE], S.PENDING_ACTION),
    _grant(RoleType.BANK_ADMIN, A.MANAGE, S.LOAN_APPLICATION),
    _grant(RoleType.BANK_ADMIN, A.MANAGE, S.APPLICANT),
    _grant(RoleType.BANK_ADMIN, A.MANAGE, S.GUARANTOR),
    _grant(RoleType.BANK_ADMIN, A.MANAGE, S.DOCUMENT),
    _grant(RoleType.BANK_ADMIN, A.MANAGE, S.VERIFICATION),
    _grant(RoleType.BANK_ADMIN, A.READ, S.REVIEW),
    # Loan officers
    _grant(RoleType.LOAN_OFFICER, A.READ, S.BANK),
    _grant(RoleType.LOAN_OFFICER, A.READ, S.USER_PROFILE, fields=["first_name", "last_name", "email"]),
    _grant(RoleType.LOAN_OFFICER, [A.CREATE, A.READ], S.PENDING_ACTION),
    _grant(RoleType.LOAN_OFFICER, [A.READ, A.CREATE], S.LOAN_APPLICATION),
    _grant(RoleType.LOAN_OFFICER, [A.READ, A.CREATE], S.APPLICANT),
    _grant(RoleType.LOAN_OFFICER, [A.READ, A.CREATE, A.UPDATE], S.GUARANTOR),
    _grant(RoleType.LOAN_OFFICER, [A.READ, A.CREATE, A.UPDATE], S.DOCUMENT),
    _grant(RoleType.LOAN_OFFICER, A.READ, S.VERIFICATION),
    # Clerks
    _grant(RoleType.CLERK, A.READ, S.BANK),
    _grant(RoleType.CLERK, A.READ, S.USER_PROFILE, fields=["first_name", "last_name"]),
    _grant(RoleType.CLERK, [A.CREATE, A.READ], S.LOAN_APPLICATION),
    _grant(RoleType.CLERK, [A.CREATE, A.READ], S.APPLICANT),
    _grant(RoleType.CLERK, [A.CREATE, A.READ], S.DOCUMENT),
    _grant(
        RoleType.CLERK,
        A.READ,
        S.GUARANTOR,
        fields=["first_name", "last_name", "mobile_number", "loan_application_id"],
    ),
    _grant(RoleType.CLERK, A.CREATE, S.GUARANTOR),
    _grant(RoleType.CLERK, A.UPDATE, S.GUARANTOR, fields=["first_name", "last_name", "mobile_number"]),
    # Inspectors
    _grant(RoleType.INSPECTOR, A.READ, S.BANK),
    _grant(RoleType.INSPECTOR, A.READ, S.LOAN_APPLICATION),
    _grant(RoleType.INSPECTOR, A.READ, S.APPLICANT),
    _grant(RoleType.INSPECTOR, [A.READ, A.CREATE, A.UPDATE, A.VERIFY], S.VERIFICATION),
    _grant(RoleType.INSPECTOR, [A.READ, A.CREATE], S.DOCUMENT),
    # Reviewer tiers
    *_reviewer_grants(RoleType.CEO),
    *_reviewer_grants(RoleType.LOAN_COMMITTEE),
    *_reviewer_grants(RoleType.BOARD),
    # Applicants only ever see their own records
    _grant(RoleType.APPLICANT, [A.READ, A.UPDATE], S.LOAN_APPLICATION, scope=Scope.OWNER),
    _grant(RoleType.APPLICANT, A.READ, S.APPLICANT, scope=Scope.OWNER),
    _grant(RoleType.APPLICANT, [A.READ, A.CREATE], S.DOCUMENT, scope=Scope.OWNER),
)


def grants_for(role: RoleType) -> tuple[Grant, ...]:
    return GRANTS_BY_ROLE.get(role, ())


def _index_grants(table: Iterable[Grant]) -> dict[RoleType, tuple[Grant, ...]]:
    index: dict[RoleType, list[Grant]] = {role: [] for role in RoleType}
    for grant in table:
        index[grant.role].append(grant)
    return {role: tuple(grants) for role, grants in index.items()}


GRANTS_BY_ROLE = _index_grants(GRANT_TABLE)
