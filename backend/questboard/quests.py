"""Quest registry and per-period instance materialization."""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import acl, crud
from questboard.errors import NotFound, store_errors
from questboard.identity import require_access
from questboard.models import Quest, QuestInstance, Recurrence, utcnow

logger = logging.getLogger(__name__)

ONCE_PERIOD = "once"

EDITABLE_FIELDS = {"title", "description", "reward_points", "recurrence", "active"}


def period_key(recurrence: Recurrence, moment: datetime) -> str:
    """Name the recurrence period that ``moment`` falls in.

    One-off quests have a single period; daily quests use the ISO date and
    weekly quests the ISO week (``2026-W42``).
    """
    recurrence = Recurrence(recurrence)
    if recurrence == Recurrence.DAILY:
        return moment.date().isoformat()
    if recurrence == Recurrence.WEEKLY:
        year, week, _ = moment.isocalendar()
        return f"{year}-W{week:02d}"
    return ONCE_PERIOD


def _check_points(reward_points: int) -> None:
    if reward_points < 0:
        raise ValueError("reward_points must be zero or more")


async def get_quest(db: AsyncSession, quest_id: int) -> Quest:
    quest = await crud.get_quest(db, quest_id)
    if quest is None:
        raise NotFound(f"Quest {quest_id} not found")
    return quest


async def create_quest(
    db: AsyncSession,
    actor_parent_id: int,
    child_id: int,
    title: str,
    reward_points: int = 0,
    recurrence: Recurrence = Recurrence.ONCE,
    description: str | None = None,
    now: datetime | None = None,
) -> Quest:
    """Create a quest and open its first instance."""
    _check_points(reward_points)
    await require_access(db, actor_parent_id, child_id, acl.PERM_MANAGE_QUESTS)
    quest = Quest(
        child_id=child_id,
        title=title,
        description=description,
        reward_points=reward_points,
        recurrence=Recurrence(recurrence),
        created_by=actor_parent_id,
    )
    async with store_errors(db, "create quest"):
        quest = await crud.create_quest(db, quest)
        quest_id = quest.id
        await materialize_instance(db, quest, now=now)
    quest = await get_quest(db, quest_id)
    logger.info(
        "Quest %s (%s, %s points) created for child %s by %s",
        quest.id,
        quest.recurrence.value,
        quest.reward_points,
        child_id,
        actor_parent_id,
    )
    return quest


async def update_quest(
    db: AsyncSession, actor_parent_id: int, quest_id: int, **changes
) -> Quest:
    """Edit a quest definition.

    Reward changes apply to approvals made after the edit; already
    credited approvals are never rewritten.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot edit {', '.join(sorted(unknown))}")
    quest = await get_quest(db, quest_id)
    await require_access(db, actor_parent_id, quest.child_id, acl.PERM_MANAGE_QUESTS)
    if "reward_points" in changes:
        _check_points(changes["reward_points"])
    if "recurrence" in changes:
        changes["recurrence"] = Recurrence(changes["recurrence"])
    for field, value in changes.items():
        setattr(quest, field, value)
    async with store_errors(db, "update quest"):
        quest = await crud.save_quest(db, quest)
    logger.info("Quest %s updated by %s", quest_id, actor_parent_id)
    return quest


async def deactivate_quest(db: AsyncSession, actor_parent_id: int, quest_id: int) -> Quest:
    return await update_quest(db, actor_parent_id, quest_id, active=False)


async def list_quests(
    db: AsyncSession, actor_parent_id: int, child_id: int, active_only: bool = False
) -> list[Quest]:
    await require_access(db, actor_parent_id, child_id, acl.PERM_VIEW_CHILD)
    return await crud.get_quests_by_child(db, child_id, active_only=active_only)


async def _materialize(
    db: AsyncSession,
    quest_id: int,
    child_id: int,
    recurrence: Recurrence,
    active: bool,
    now: datetime,
) -> int | None:
    period = period_key(recurrence, now)
    existing = await crud.get_instance_for_period(db, quest_id, period)
    if existing is not None:
        return existing.id
    if not active:
        return None
    instance = QuestInstance(quest_id=quest_id, child_id=child_id, period=period)
    db.add(instance)
    try:
        await db.commit()
    except IntegrityError:
        # Another caller opened this period first; use theirs.
        await db.rollback()
        existing = await crud.get_instance_for_period(db, quest_id, period)
        return existing.id if existing is not None else None
    logger.info("Instance %s opened for quest %s period %s", instance.id, quest_id, period)
    return instance.id


async def materialize_instance(
    db: AsyncSession, quest: Quest, now: datetime | None = None
) -> QuestInstance | None:
    """Return the quest's instance for the current period, creating it.

    Keyed by (quest_id, period): when two callers race, the unique
    constraint lets one insert land and the other reads it back.
    Inactive quests get no new instances.
    """
    instance_id = await _materialize(
        db, quest.id, quest.child_id, quest.recurrence, quest.active, now or utcnow()
    )
    if instance_id is None:
        return None
    return await crud.get_instance(db, instance_id)


async def _materialize_all(db: AsyncSession, quests: list[Quest], now: datetime) -> list[int]:
    # Snapshot first: a rollback inside the loop expires loaded quests.
    rows = [(q.id, q.child_id, q.recurrence, q.active) for q in quests]
    ids = []
    for quest_id, child_id, recurrence, active in rows:
        instance_id = await _materialize(db, quest_id, child_id, recurrence, active, now)
        if instance_id is not None:
            ids.append(instance_id)
    return ids


async def current_instances(
    db: AsyncSession, child_id: int, now: datetime | None = None
) -> list[QuestInstance]:
    """Materialize and return the current-period instance of each active quest."""
    now = now or utcnow()
    async with store_errors(db, "load current instances"):
        quests = await crud.get_quests_by_child(db, child_id, active_only=True)
        ids = await _materialize_all(db, quests, now)
        return [await crud.get_instance(db, instance_id) for instance_id in ids]


async def rollover(db: AsyncSession, now: datetime | None = None) -> int:
    """Open the current period for every active recurring quest.

    Meant for an external scheduler; safe to run any number of times.
    Returns the number of instances that exist for the current period.
    """
    now = now or utcnow()
    async with store_errors(db, "rollover"):
        quests = await crud.get_active_recurring_quests(db)
        count = len(await _materialize_all(db, quests, now))
    logger.info("Rollover at %s covered %s recurring quests", now.isoformat(), count)
    return count
