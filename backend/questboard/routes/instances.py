"""Routes driving the claim and review workflow."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import claims, quests
from questboard.auth import (
    ensure_view_access,
    get_current_child,
    get_current_identity,
    require_role,
)
from questboard.database import get_session
from questboard.models import ChildProfile, Principal, QuestState
from questboard.schemas import InstanceRead, ReviewRequest

router = APIRouter(prefix="/instances", tags=["instances"])


@router.get("/mine", response_model=list[InstanceRead])
async def my_current_instances(
    db: AsyncSession = Depends(get_session),
    child: ChildProfile = Depends(get_current_child),
):
    return await quests.current_instances(db, child.id)


@router.get("/child/{child_id}/current", response_model=list[InstanceRead])
async def current_instances(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Principal | ChildProfile] = Depends(get_current_identity),
):
    await ensure_view_access(db, identity, child_id)
    return await quests.current_instances(db, child_id)


@router.get("/child/{child_id}", response_model=list[InstanceRead])
async def list_instances(
    child_id: int,
    state: QuestState | None = None,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await claims.list_instances(db, current_principal.id, child_id, state)


@router.post("/{instance_id}/claim", response_model=InstanceRead)
async def claim_instance(
    instance_id: int,
    db: AsyncSession = Depends(get_session),
    child: ChildProfile = Depends(get_current_child),
):
    return await claims.claim(db, instance_id, child.id)


@router.post("/{instance_id}/review", response_model=InstanceRead)
async def review_instance(
    instance_id: int,
    data: ReviewRequest,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await claims.review(db, instance_id, current_principal.id, data.decision)


@router.post("/{instance_id}/reopen", response_model=InstanceRead)
async def reopen_instance(
    instance_id: int,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await claims.reopen(db, instance_id, current_principal.id)
