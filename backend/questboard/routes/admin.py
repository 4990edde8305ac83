from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import identity, invitations, quests
from questboard.auth import require_role
from questboard.database import get_session
from questboard.models import Principal
from questboard.schemas import PrincipalRead, StatusUpdate

router = APIRouter(prefix="/admin", tags=["admin"])


@router.put("/principals/{principal_id}/status", response_model=PrincipalRead)
async def admin_set_status(
    principal_id: int,
    data: StatusUpdate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("admin")),
):
    return await identity.set_principal_status(
        db, current_principal.id, principal_id, data.status
    )


@router.post("/rollover")
async def admin_rollover(
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("admin")),
):
    """Open the current period of every recurring quest (cron hook)."""
    return {"instances": await quests.rollover(db)}


@router.post("/invitations/expire")
async def admin_expire_invitations(
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("admin")),
):
    return {"expired": await invitations.expire_stale(db)}
