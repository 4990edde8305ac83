"""Identity and role resolution.

Every mutating operation receives the acting principal's id explicitly
and asks this module whether that principal may touch a child profile.
A principal has access when it owns the profile or holds a grant created
by redeeming an invitation.  Only active principals are ever authorized.
"""

import logging

from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import acl, crud
from questboard.errors import Forbidden, NotFound
from questboard.models import ChildAccessGrant, ChildProfile, Principal

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def ensure_principal(
    db: AsyncSession,
    email: str,
    name: str | None = None,
    role: str = acl.ROLE_PARENT,
) -> Principal:
    """Return the principal for ``email``, creating it on first sight."""
    email = normalize_email(email)
    principal = await crud.get_principal_by_email(db, email)
    if principal is not None:
        return principal
    if role not in acl.ALL_ROLES:
        raise ValueError(f"Unknown role {role!r}")
    try:
        principal = await crud.create_principal(
            db, Principal(email=email, name=name, role=role)
        )
    except IntegrityError:
        # Two first logins raced; the other insert won.
        await db.rollback()
        principal = await crud.get_principal_by_email(db, email)
        if principal is None:
            raise
        return principal
    logger.info("Principal %s created for %s", principal.id, email)
    return principal


async def get_principal(db: AsyncSession, principal_id: int) -> Principal:
    principal = await crud.get_principal(db, principal_id)
    if principal is None:
        raise NotFound(f"Principal {principal_id} not found")
    return principal


async def set_principal_status(
    db: AsyncSession, admin_id: int, principal_id: int, status: str
) -> Principal:
    """Activate, park or soft-disable a principal.  Admins only."""
    if status not in acl.ALL_STATUSES:
        raise ValueError(f"Unknown status {status!r}")
    admin = await crud.get_principal(db, admin_id)
    if (
        admin is None
        or admin.role != acl.ROLE_ADMIN
        or admin.status != acl.STATUS_ACTIVE
    ):
        raise Forbidden("Only an active admin may change account status")
    principal = await get_principal(db, principal_id)
    principal.status = status
    principal = await crud.save_principal(db, principal)
    logger.info("Principal %s set to %s by admin %s", principal_id, status, admin_id)
    return principal


async def _active_adult(db: AsyncSession, principal_id: int) -> Principal:
    principal = await crud.get_principal(db, principal_id)
    if (
        principal is None
        or principal.status != acl.STATUS_ACTIVE
        or principal.role not in acl.ADULT_ROLES
    ):
        raise Forbidden("An active parent account is required")
    return principal


async def authorize(
    db: AsyncSession,
    principal_id: int,
    child_id: int,
    permission: str | None = None,
) -> bool:
    principal = await crud.get_principal(db, principal_id)
    if principal is None or principal.status != acl.STATUS_ACTIVE:
        return False
    child = await crud.get_child(db, child_id)
    if child is None:
        return False
    if child.owner_parent_id == principal.id:
        # owners implicitly hold every permission
        return True
    grant = await crud.get_grant(db, principal.id, child_id)
    if grant is None:
        return False
    return permission is None or permission in grant.permissions


async def require_access(
    db: AsyncSession,
    principal_id: int,
    child_id: int,
    permission: str | None = None,
) -> ChildProfile:
    """Return the child profile or raise ``Forbidden``."""
    if not await authorize(db, principal_id, child_id, permission):
        logger.warning(
            "Principal %s denied %s on child %s",
            principal_id,
            permission or "access",
            child_id,
        )
        raise Forbidden("Not authorized for this child profile")
    return await crud.get_child(db, child_id)


async def accessible_child_ids(db: AsyncSession, principal_id: int) -> list[int]:
    principal = await crud.get_principal(db, principal_id)
    if principal is None or principal.status != acl.STATUS_ACTIVE:
        return []
    owned = await crud.get_children_owned_by(db, principal_id)
    grants = await crud.get_grants_for_principal(db, principal_id)
    return sorted({c.id for c in owned} | {g.child_id for g in grants})


async def list_children(db: AsyncSession, principal_id: int) -> list[ChildProfile]:
    children = []
    for child_id in await accessible_child_ids(db, principal_id):
        child = await crud.get_child(db, child_id)
        if child is not None:
            children.append(child)
    return children


async def create_child_profile(
    db: AsyncSession,
    parent_id: int,
    display_name: str,
    pin: str | None = None,
) -> ChildProfile:
    await _active_adult(db, parent_id)
    child = ChildProfile(
        owner_parent_id=parent_id,
        display_name=display_name,
        pin_hash=pwd_context.hash(pin) if pin else None,
    )
    child = await crud.create_child(db, child)
    logger.info("Child profile %s created by %s", child.id, parent_id)
    return child


async def set_child_pin(
    db: AsyncSession, actor_parent_id: int, child_id: int, pin: str
) -> ChildProfile:
    """Replace a child's login PIN.  Only the owning parent may do this."""
    child = await crud.get_child(db, child_id)
    if child is None or child.owner_parent_id != actor_parent_id:
        raise Forbidden("Only the owning parent may change the PIN")
    await _active_adult(db, actor_parent_id)
    child.pin_hash = pwd_context.hash(pin)
    return await crud.save_child(db, child)


async def verify_child_pin(db: AsyncSession, child_id: int, pin: str) -> ChildProfile:
    child = await crud.get_child(db, child_id)
    if child is None:
        raise NotFound(f"Child profile {child_id} not found")
    if not child.pin_hash or not pwd_context.verify(pin, child.pin_hash):
        logger.warning("Failed PIN login for child %s", child_id)
        raise Forbidden("Invalid PIN")
    return child


async def list_grants(
    db: AsyncSession, actor_parent_id: int, child_id: int
) -> list[ChildAccessGrant]:
    child = await crud.get_child(db, child_id)
    if child is None or child.owner_parent_id != actor_parent_id:
        raise Forbidden("Only the owning parent may list shared access")
    return await crud.get_grants_for_child(db, child_id)


async def remove_grant(
    db: AsyncSession, actor_parent_id: int, child_id: int, principal_id: int
) -> None:
    """Withdraw shared access that an accepted invitation granted."""
    child = await crud.get_child(db, child_id)
    if child is None or child.owner_parent_id != actor_parent_id:
        raise Forbidden("Only the owning parent may remove shared access")
    grant = await crud.get_grant(db, principal_id, child_id)
    if grant is None:
        raise NotFound("No shared access for that principal")
    await crud.delete_grant(db, grant)
    logger.info(
        "Access of principal %s to child %s removed by %s",
        principal_id,
        child_id,
        actor_parent_id,
    )
