"""Single-use, time-bounded invitations to share child profiles.

    pending --redeem--> accepted
    pending --revoke--> revoked
    pending --lapse---> expired

An invitation leaves ``pending`` through exactly one conditional update,
so a token can be accepted at most once even when redeemed concurrently.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from questboard import acl, crud
from questboard.errors import (
    AlreadyUsed,
    Expired,
    Forbidden,
    InvalidTransition,
    NotFound,
    store_errors,
)
from questboard.identity import normalize_email, require_access
from questboard.models import (
    ChildAccessGrant,
    Invitation,
    InvitationStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

INVITATION_TTL_DAYS = int(os.getenv("INVITATION_TTL_DAYS", "7"))

GRANT_ROLES = [acl.GRANT_PARENT, acl.GRANT_GUARDIAN]


async def invite(
    db: AsyncSession,
    inviter_parent_id: int,
    invitee_email: str,
    target_child_ids: list[int],
    role: str = acl.GRANT_PARENT,
    ttl: timedelta | None = None,
    now: datetime | None = None,
) -> Invitation:
    """Create a pending invitation and return it with its token."""
    if not target_child_ids:
        raise ValueError("An invitation needs at least one child profile")
    if role not in GRANT_ROLES:
        raise ValueError(f"Unknown invitation role {role!r}")
    if ttl is None:
        ttl = timedelta(days=INVITATION_TTL_DAYS)
    if ttl < timedelta(0):
        raise ValueError("ttl must not be negative")
    email = normalize_email(invitee_email)
    if "@" not in email:
        raise ValueError("invitee_email must be an email address")

    inviter = await crud.get_principal(db, inviter_parent_id)
    if (
        inviter is None
        or inviter.status != acl.STATUS_ACTIVE
        or inviter.role not in acl.ADULT_ROLES
    ):
        logger.warning("Principal %s may not send invitations", inviter_parent_id)
        raise Forbidden("Only an active parent may send invitations")
    targets = sorted(set(target_child_ids))
    for child_id in targets:
        await require_access(db, inviter_parent_id, child_id, acl.PERM_INVITE)

    now = now or utcnow()
    invitation = Invitation(
        token=secrets.token_urlsafe(32),
        inviter_parent_id=inviter_parent_id,
        invitee_email=email,
        target_child_ids=targets,
        role=role,
        expires_at=now + ttl,
        created_at=now,
    )
    async with store_errors(db, "invite"):
        invitation = await crud.create_invitation(db, invitation)
    logger.info(
        "Invitation %s sent by %s to %s for children %s",
        invitation.id,
        inviter_parent_id,
        email,
        targets,
    )
    return invitation


async def redeem(
    db: AsyncSession,
    token: str,
    redeeming_principal_id: int,
    now: datetime | None = None,
) -> Invitation:
    """Accept an invitation and grant its access to the redeemer."""
    now = now or utcnow()
    invitation = await crud.get_invitation_by_token(db, token)
    if invitation is None:
        raise NotFound("Invitation not found")
    invitation_id = invitation.id
    if invitation.status in (InvitationStatus.ACCEPTED, InvitationStatus.REVOKED):
        raise AlreadyUsed(f"Invitation already {invitation.status.value}")
    if invitation.status == InvitationStatus.EXPIRED:
        raise Expired("Invitation has expired")
    redeemer = await crud.get_principal(db, redeeming_principal_id)
    if redeemer is None or redeemer.status != acl.STATUS_ACTIVE:
        raise Forbidden("An active account is required to accept invitations")

    if now >= invitation.expires_at:
        async with store_errors(db, "expire invitation"):
            await crud.transition_invitation(
                db,
                invitation_id,
                InvitationStatus.PENDING,
                lapsed_at=now,
                status=InvitationStatus.EXPIRED,
            )
            await db.commit()
        logger.info("Invitation %s expired on redemption", invitation_id)
        raise Expired("Invitation has expired")

    targets = list(invitation.target_child_ids)
    role = invitation.role
    async with store_errors(db, "redeem invitation"):
        won = await crud.transition_invitation(
            db,
            invitation_id,
            InvitationStatus.PENDING,
            live_at=now,
            status=InvitationStatus.ACCEPTED,
            accepted_by=redeeming_principal_id,
            accepted_at=now,
        )
        if not won:
            await crud.release(db)
            logger.warning("Invitation %s lost a redemption race", invitation_id)
            raise AlreadyUsed("Invitation was already used")
        granted = []
        for child_id in targets:
            child = await crud.get_child(db, child_id)
            if child is None or child.owner_parent_id == redeeming_principal_id:
                continue
            if await crud.get_grant(db, redeeming_principal_id, child_id) is not None:
                continue
            db.add(
                ChildAccessGrant(
                    principal_id=redeeming_principal_id,
                    child_id=child_id,
                    invitation_id=invitation_id,
                    role=role,
                    permissions=acl.get_default_permissions_for_grant(role),
                    granted_at=now,
                )
            )
            granted.append(child_id)
        await db.commit()

    logger.info(
        "Invitation %s accepted by %s; access granted to %s",
        invitation_id,
        redeeming_principal_id,
        granted,
    )
    return await crud.get_invitation(db, invitation_id)


async def revoke(
    db: AsyncSession, invitation_id: int, actor_parent_id: int
) -> Invitation:
    invitation = await crud.get_invitation(db, invitation_id)
    if invitation is None:
        raise NotFound(f"Invitation {invitation_id} not found")
    if invitation.inviter_parent_id != actor_parent_id:
        raise Forbidden("Only the inviter may revoke an invitation")
    async with store_errors(db, "revoke invitation"):
        won = await crud.transition_invitation(
            db,
            invitation_id,
            InvitationStatus.PENDING,
            status=InvitationStatus.REVOKED,
        )
        if not won:
            await crud.release(db)
            current = await crud.get_invitation(db, invitation_id)
            raise InvalidTransition(
                f"Cannot revoke an invitation that is {current.status.value}",
                current.status.value,
            )
        await db.commit()
    logger.info("Invitation %s revoked by %s", invitation_id, actor_parent_id)
    return await crud.get_invitation(db, invitation_id)


async def list_sent(db: AsyncSession, inviter_parent_id: int) -> list[Invitation]:
    return await crud.get_invitations_by_inviter(db, inviter_parent_id)


async def pending_for_email(
    db: AsyncSession, email: str, now: datetime | None = None
) -> list[Invitation]:
    """Pending invitations addressed to ``email`` that have not lapsed."""
    now = now or utcnow()
    invitations = await crud.get_pending_invitations_for_email(db, normalize_email(email))
    return [inv for inv in invitations if inv.expires_at > now]


async def expire_stale(db: AsyncSession, now: datetime | None = None) -> int:
    """Sweep lapsed pending invitations to ``expired``."""
    now = now or utcnow()
    async with store_errors(db, "expire invitations"):
        count = await crud.expire_invitations(db, now)
    if count:
        logger.info("Expired %s stale invitations", count)
    return count
