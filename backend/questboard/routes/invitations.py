"""Routes for inviting other adults to share child profiles."""

from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import invitations
from questboard.auth import get_current_principal, require_role
from questboard.database import get_session
from questboard.models import Principal
from questboard.schemas import InvitationCreate, InvitationCreated, InvitationRead

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.post("/", response_model=InvitationCreated)
async def send_invitation(
    data: InvitationCreate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    ttl = timedelta(days=data.ttl_days) if data.ttl_days is not None else None
    return await invitations.invite(
        db,
        current_principal.id,
        data.invitee_email,
        data.target_child_ids,
        role=data.role,
        ttl=ttl,
    )


@router.get("/sent", response_model=list[InvitationRead])
async def sent_invitations(
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await invitations.list_sent(db, current_principal.id)


@router.get("/pending", response_model=list[InvitationRead])
async def my_pending_invitations(
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(get_current_principal),
):
    return await invitations.pending_for_email(db, current_principal.email)


@router.post("/redeem/{token}", response_model=InvitationRead)
async def redeem_invitation(
    token: str,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(get_current_principal),
):
    return await invitations.redeem(db, token, current_principal.id)


@router.post("/{invitation_id}/revoke", response_model=InvitationRead)
async def revoke_invitation(
    invitation_id: int,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await invitations.revoke(db, invitation_id, current_principal.id)
