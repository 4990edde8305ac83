"""Claim and review state machine for quest instances.

    open --claim--> claimed --approve--> approved
    claimed --reject--> rejected --reopen--> open

Each arrow is one conditional update, so of two concurrent callers on
the same instance exactly one wins and the other sees
``InvalidTransition``.  Approval and its ledger credit commit together.
"""

import logging
from datetime import datetime
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import acl, crud, ledger
from questboard.errors import (
    DuplicateEffect,
    Forbidden,
    InvalidTransition,
    NotFound,
    store_errors,
)
from questboard.events import EventBus, StateChangeEvent, bus
from questboard.identity import require_access
from questboard.models import QuestInstance, QuestState, SourceType, utcnow

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


async def get_instance(db: AsyncSession, instance_id: int) -> QuestInstance:
    instance = await crud.get_instance(db, instance_id)
    if instance is None:
        raise NotFound(f"Quest instance {instance_id} not found")
    return instance


def _publish(events: EventBus | None, instance: QuestInstance, now: datetime) -> None:
    (events or bus).emit(
        StateChangeEvent(
            instance_id=instance.id,
            new_state=QuestState(instance.state),
            child_id=instance.child_id,
            reviewer_id=instance.reviewer_id,
            timestamp=now,
        )
    )


async def claim(
    db: AsyncSession,
    instance_id: int,
    actor_child_id: int,
    *,
    now: datetime | None = None,
    events: EventBus | None = None,
) -> QuestInstance:
    """Mark an open instance as done by its child.

    Claiming an instance the child already claimed returns it unchanged.
    """
    now = now or utcnow()
    instance = await get_instance(db, instance_id)
    if instance.child_id != actor_child_id:
        raise Forbidden("Quest belongs to another child")
    if instance.state == QuestState.OPEN:
        quest = await crud.get_quest(db, instance.quest_id)
        if quest is None or not quest.active:
            raise InvalidTransition("Quest is no longer active", instance.state.value)

    async with store_errors(db, "claim"):
        won = await crud.transition_instance(
            db,
            instance_id,
            QuestState.OPEN,
            child_id=actor_child_id,
            state=QuestState.CLAIMED,
            claimed_at=now,
        )
        if not won:
            await crud.release(db)
            instance = await get_instance(db, instance_id)
            if instance.state == QuestState.CLAIMED:
                return instance
            raise InvalidTransition(
                f"Cannot claim a quest that is {instance.state.value}",
                instance.state.value,
            )
        await db.commit()

    instance = await get_instance(db, instance_id)
    logger.info("Child %s claimed instance %s", actor_child_id, instance_id)
    _publish(events, instance, now)
    return instance


async def review(
    db: AsyncSession,
    instance_id: int,
    actor_parent_id: int,
    decision: Decision,
    *,
    now: datetime | None = None,
    events: EventBus | None = None,
) -> QuestInstance:
    """Approve or reject a claimed instance.

    Approval credits the quest's current reward in the same transaction
    as the transition.  Zero-point quests still record a zero entry so
    every approval has exactly one ledger line.
    """
    decision = Decision(decision)
    now = now or utcnow()
    instance = await get_instance(db, instance_id)
    child_id, quest_id = instance.child_id, instance.quest_id
    await require_access(db, actor_parent_id, child_id, acl.PERM_REVIEW_CLAIMS)
    quest = await crud.get_quest(db, quest_id)
    if quest is None:
        raise NotFound(f"Quest {quest_id} not found")
    points, title = quest.reward_points, quest.title

    new_state = QuestState.APPROVED if decision == Decision.APPROVE else QuestState.REJECTED
    try:
        async with store_errors(db, "review"):
            won = await crud.transition_instance(
                db,
                instance_id,
                QuestState.CLAIMED,
                state=new_state,
                reviewed_at=now,
                reviewer_id=actor_parent_id,
            )
            if not won:
                await crud.release(db)
                current = await get_instance(db, instance_id)
                raise InvalidTransition(
                    f"Cannot review a quest that is {current.state.value}",
                    current.state.value,
                )
            if new_state == QuestState.APPROVED:
                try:
                    await ledger.append_credit(
                        db,
                        child_id,
                        points,
                        SourceType.QUEST_APPROVAL,
                        instance_id,
                        memo=title,
                        actor_id=actor_parent_id,
                        now=now,
                    )
                except DuplicateEffect:
                    logger.info("Instance %s approval already credited", instance_id)
            await db.commit()
    except IntegrityError:
        # A concurrent approval credited first; our transition is void.
        await db.rollback()
        current = await get_instance(db, instance_id)
        raise InvalidTransition(
            f"Cannot review a quest that is {current.state.value}", current.state.value
        )

    instance = await get_instance(db, instance_id)
    logger.info(
        "Instance %s %s by %s (%s points)",
        instance_id,
        new_state.value,
        actor_parent_id,
        points if new_state == QuestState.APPROVED else 0,
    )
    _publish(events, instance, now)
    return instance


async def reopen(
    db: AsyncSession,
    instance_id: int,
    actor_parent_id: int,
    *,
    now: datetime | None = None,
    events: EventBus | None = None,
) -> QuestInstance:
    """Send a rejected instance back to open so the child can retry."""
    now = now or utcnow()
    instance = await get_instance(db, instance_id)
    await require_access(db, actor_parent_id, instance.child_id, acl.PERM_REVIEW_CLAIMS)
    async with store_errors(db, "reopen"):
        won = await crud.transition_instance(
            db,
            instance_id,
            QuestState.REJECTED,
            state=QuestState.OPEN,
            claimed_at=None,
            reviewed_at=None,
            reviewer_id=None,
        )
        if not won:
            await crud.release(db)
            current = await get_instance(db, instance_id)
            raise InvalidTransition(
                f"Cannot reopen a quest that is {current.state.value}",
                current.state.value,
            )
        await db.commit()

    instance = await get_instance(db, instance_id)
    logger.info("Instance %s reopened by %s", instance_id, actor_parent_id)
    _publish(events, instance, now)
    return instance


async def list_instances(
    db: AsyncSession,
    actor_parent_id: int,
    child_id: int,
    state: QuestState | None = None,
) -> list[QuestInstance]:
    """All instances of a child, optionally filtered (e.g. the review queue)."""
    await require_access(db, actor_parent_id, child_id, acl.PERM_VIEW_CHILD)
    return await crud.get_instances_by_child(
        db, child_id, QuestState(state) if state is not None else None
    )
