from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import crud, quests
from questboard.auth import ensure_view_access, get_current_identity, require_role
from questboard.database import get_session
from questboard.models import ChildProfile, Principal
from questboard.schemas import QuestCreate, QuestRead, QuestUpdate

router = APIRouter(prefix="/quests", tags=["quests"])


@router.post("/child/{child_id}", response_model=QuestRead)
async def add_quest(
    child_id: int,
    data: QuestCreate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await quests.create_quest(
        db,
        current_principal.id,
        child_id,
        data.title,
        reward_points=data.reward_points,
        recurrence=data.recurrence,
        description=data.description,
    )


@router.get("/child/{child_id}", response_model=list[QuestRead])
async def list_quests(
    child_id: int,
    active_only: bool = False,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Principal | ChildProfile] = Depends(get_current_identity),
):
    kind, actor = identity
    if kind == "child":
        await ensure_view_access(db, identity, child_id)
        return await crud.get_quests_by_child(db, child_id, active_only=active_only)
    return await quests.list_quests(db, actor.id, child_id, active_only=active_only)


@router.put("/{quest_id}", response_model=QuestRead)
async def update_quest(
    quest_id: int,
    data: QuestUpdate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await quests.update_quest(
        db,
        current_principal.id,
        quest_id,
        **data.model_dump(exclude_unset=True, exclude_none=True),
    )


@router.delete("/{quest_id}", response_model=QuestRead)
async def deactivate_quest(
    quest_id: int,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await quests.deactivate_quest(db, current_principal.id, quest_id)
