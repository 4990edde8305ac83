"""Roles, grant roles and permission constants.

Principals carry one of the account roles below.  Access to a child
profile comes either from owning it (owners implicitly hold every
permission) or from a grant created when an invitation is redeemed; the
grant's role decides which permissions it carries.
"""

ROLE_PARENT = "parent"
ROLE_CHILD = "child"
ROLE_ADMIN = "admin"

ALL_ROLES = [ROLE_PARENT, ROLE_CHILD, ROLE_ADMIN]

# Roles that may own child profiles and act on them
ADULT_ROLES = [ROLE_PARENT, ROLE_ADMIN]

STATUS_ACTIVE = "active"
STATUS_PENDING = "pending"
STATUS_DISABLED = "disabled"

ALL_STATUSES = [STATUS_ACTIVE, STATUS_PENDING, STATUS_DISABLED]

GRANT_PARENT = "parent"
GRANT_GUARDIAN = "guardian"

PERM_VIEW_CHILD = "view_child"
PERM_MANAGE_QUESTS = "manage_quests"
PERM_REVIEW_CLAIMS = "review_claims"
PERM_MANAGE_REWARDS = "manage_rewards"
PERM_ADJUST_LEDGER = "adjust_ledger"
PERM_INVITE = "invite"

ALL_PERMISSIONS = [
    PERM_VIEW_CHILD,
    PERM_MANAGE_QUESTS,
    PERM_REVIEW_CLAIMS,
    PERM_MANAGE_REWARDS,
    PERM_ADJUST_LEDGER,
    PERM_INVITE,
]

GRANT_DEFAULT_PERMISSIONS = {
    GRANT_PARENT: ALL_PERMISSIONS,
    GRANT_GUARDIAN: [PERM_VIEW_CHILD, PERM_REVIEW_CLAIMS],
}


def get_default_permissions_for_grant(role: str) -> list[str]:
    return list(GRANT_DEFAULT_PERMISSIONS.get(role, []))
