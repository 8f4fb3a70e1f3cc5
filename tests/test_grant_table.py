from lendsafe.core.permissions import (
    GRANT_TABLE,
    GRANTS_BY_ROLE,
    Action,
    Scope,
    Subject,
    grants_for,
)
from lendsafe.core.roles import REVIEWER_TIERS, RoleType


def test_every_role_has_an_entry():
    assert set(GRANTS_BY_ROLE) == set(RoleType)
    assert grants_for(RoleType.USER) == ()


def test_only_platform_admin_holds_global_grants():
    global_grants = [grant for grant in GRANT_TABLE if grant.scope is Scope.GLOBAL]
    assert len(global_grants) == 1
    grant = global_grants[0]
    assert grant.role is RoleType.SAAS_ADMIN
    assert grant.actions == {Action.MANAGE}
    assert grant.subject is Subject.ALL


def test_tenant_roles_never_manage_all():
    for grant in GRANT_TABLE:
        if grant.role is RoleType.SAAS_ADMIN:
            continue
        assert grant.subject is not Subject.ALL


def test_reviewer_tiers_share_grants():
    shapes = {
        tier: {(frozenset(g.actions), g.subject, g.scope) for g in grants_for(tier)}
        for tier in REVIEWER_TIERS
    }
    assert shapes[RoleType.CEO] == shapes[RoleType.LOAN_COMMITTEE] == shapes[RoleType.BOARD]
    assert (frozenset({Action.APPROVE, Action.REJECT}), Subject.LOAN_APPLICATION, Scope.BANK) in shapes[
        RoleType.CEO
    ]


def test_applicant_grants_are_owner_scoped():
    assert grants_for(RoleType.APPLICANT)
    assert all(grant.scope is Scope.OWNER for grant in grants_for(RoleType.APPLICANT))


def test_clerk_guarantor_fields_are_restricted():
    updates = [
        grant
        for grant in grants_for(RoleType.CLERK)
        if grant.subject is Subject.GUARANTOR and Action.UPDATE in grant.actions
    ]
    assert len(updates) == 1
    assert updates[0].fields == {"first_name", "last_name", "mobile_number"}


def test_pending_action_create_is_limited_to_admins_and_officers():
    creators = {
        grant.role
        for grant in GRANT_TABLE
        if grant.subject is Subject.PENDING_ACTION and Action.CREATE in grant.actions
    }
    assert creators == {RoleType.BANK_ADMIN, RoleType.LOAN_OFFICER}


def test_action_and_subject_parse():
    assert Action.parse("READ") is Action.READ
    assert Action.parse("fly") is None
    assert Action.parse(3) is None
    assert Subject.parse("PendingAction") is Subject.PENDING_ACTION
    assert Subject.parse("pendingaction") is None
