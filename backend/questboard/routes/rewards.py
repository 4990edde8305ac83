from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import ledger
from questboard.auth import (
    ensure_view_access,
    get_current_child,
    get_current_identity,
    require_role,
)
from questboard.database import get_session
from questboard.models import ChildProfile, Principal
from questboard.schemas import RewardCreate, RewardRead, RedemptionRead

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.post("/child/{child_id}", response_model=RewardRead)
async def add_reward(
    child_id: int,
    data: RewardCreate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await ledger.create_reward(
        db, current_principal.id, child_id, data.title, data.cost
    )


@router.get("/child/{child_id}", response_model=list[RewardRead])
async def list_rewards(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Principal | ChildProfile] = Depends(get_current_identity),
):
    await ensure_view_access(db, identity, child_id)
    return await ledger.list_rewards(db, child_id)


@router.get("/child/{child_id}/redemptions", response_model=list[RedemptionRead])
async def list_redemptions(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Principal | ChildProfile] = Depends(get_current_identity),
):
    await ensure_view_access(db, identity, child_id)
    return await ledger.list_redemptions(db, child_id)


@router.delete("/{reward_id}", response_model=RewardRead)
async def deactivate_reward(
    reward_id: int,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await ledger.deactivate_reward(db, current_principal.id, reward_id)


@router.post("/{reward_id}/redeem", response_model=RedemptionRead)
async def redeem_reward(
    reward_id: int,
    db: AsyncSession = Depends(get_session),
    child: ChildProfile = Depends(get_current_child),
):
    return await ledger.redeem_reward(db, reward_id, child.id)
