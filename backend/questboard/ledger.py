"""Append-only reward ledger, reward catalog and redemptions.

Balances are never stored: ``balance`` sums the child's entries.  Every
append first bumps ``ChildProfile.ledger_version`` inside the same
transaction, which serializes ledger writers for one child on any store.
Credits are unique per (source_type, source_id) through the entry's
``dedupe_key``; debits land through a single conditional insert that
refuses to take the balance below zero.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import acl, crud
from questboard.errors import (
    DuplicateEffect,
    Forbidden,
    InsufficientBalance,
    InvalidTransition,
    NotFound,
    TransientStoreFailure,
    store_errors,
)
from questboard.identity import require_access
from questboard.models import (
    LedgerEntry,
    Reward,
    RewardRedemption,
    SourceType,
    utcnow,
)

logger = logging.getLogger(__name__)


def dedupe_key(source_type: SourceType, source_id) -> str:
    return f"{SourceType(source_type).value}:{source_id}"


def reversal_key(entry_id: str) -> str:
    return f"reversal:{entry_id}"


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or amount <= 0:
        raise ValueError("amount must be a positive whole number of points")


async def append_credit(
    db: AsyncSession,
    child_id: int,
    amount: int,
    source_type: SourceType,
    source_id,
    memo: str | None = None,
    actor_id: int | None = None,
    now: datetime | None = None,
    key: str | None = None,
) -> LedgerEntry:
    """Stage a credit in the caller's transaction without committing.

    Raises ``DuplicateEffect`` if the effect was already recorded.
    """
    if not await crud.bump_ledger_version(db, child_id):
        raise NotFound(f"Child profile {child_id} not found")
    entry = LedgerEntry(
        child_id=child_id,
        amount=amount,
        source_type=SourceType(source_type),
        source_id=str(source_id),
        dedupe_key=key or dedupe_key(source_type, source_id),
        memo=memo,
        actor_id=actor_id,
        created_at=now or utcnow(),
    )
    return await crud.add_ledger_entry(db, entry)


async def append_debit(
    db: AsyncSession,
    child_id: int,
    amount: int,
    source_type: SourceType,
    source_id,
    memo: str | None = None,
    actor_id: int | None = None,
    now: datetime | None = None,
    key: str | None = None,
) -> LedgerEntry:
    """Stage a debit of ``amount`` points without committing."""
    if not await crud.bump_ledger_version(db, child_id):
        raise NotFound(f"Child profile {child_id} not found")
    entry = LedgerEntry(
        child_id=child_id,
        amount=-amount,
        source_type=SourceType(source_type),
        source_id=str(source_id),
        dedupe_key=key,
        memo=memo,
        actor_id=actor_id,
        created_at=now or utcnow(),
    )
    if not await crud.insert_entry_if_covered(db, entry):
        current = await crud.calculate_balance(db, child_id)
        raise InsufficientBalance(
            f"Balance {current} cannot cover {amount} points",
            balance=current,
            requested=amount,
        )
    return entry


async def credit(
    db: AsyncSession,
    child_id: int,
    amount: int,
    source_type: SourceType,
    source_id,
    memo: str | None = None,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> LedgerEntry:
    """Append a credit; a repeated (source_type, source_id) is a no-op.

    Returns the entry that backs the effect, whether it was written now
    or by an earlier attempt.
    """
    _check_amount(amount)
    key = dedupe_key(source_type, source_id)
    try:
        async with store_errors(db, "ledger credit"):
            entry = await append_credit(
                db, child_id, amount, source_type, source_id, memo, actor_id, now
            )
            await db.commit()
    except NotFound:
        await crud.release(db)
        raise
    except DuplicateEffect as exc:
        await crud.release(db)
        logger.info("Duplicate ledger effect %s ignored", key)
        return exc.existing
    except IntegrityError:
        await db.rollback()
        existing = await crud.get_entry_by_dedupe_key(db, key)
        if existing is None:
            raise TransientStoreFailure("ledger credit conflicted, retry later")
        logger.info("Duplicate ledger effect %s ignored", key)
        return existing
    logger.info("Credited %s points to child %s (%s)", amount, child_id, key)
    return entry


async def debit(
    db: AsyncSession,
    child_id: int,
    amount: int,
    source_type: SourceType,
    source_id,
    memo: str | None = None,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> LedgerEntry:
    """Append a debit, failing with ``InsufficientBalance`` on overdraw.

    A refused debit still advances ``ledger_version``.
    """
    _check_amount(amount)
    async with store_errors(db, "ledger debit"):
        try:
            entry = await append_debit(
                db, child_id, amount, source_type, source_id, memo, actor_id, now
            )
        except NotFound:
            await crud.release(db)
            raise
        except InsufficientBalance as exc:
            await crud.release(db)
            logger.warning(
                "Debit of %s refused for child %s (balance %s)",
                amount,
                child_id,
                exc.balance,
            )
            raise
        await db.commit()
    logger.info(
        "Debited %s points from child %s (%s:%s)",
        amount,
        child_id,
        SourceType(source_type).value,
        source_id,
    )
    return await crud.get_ledger_entry(db, entry.id)


async def balance(db: AsyncSession, child_id: int) -> int:
    return await crud.calculate_balance(db, child_id)


async def list_entries(db: AsyncSession, child_id: int) -> list[LedgerEntry]:
    return await crud.get_ledger_entries(db, child_id)


async def adjust(
    db: AsyncSession,
    actor_parent_id: int,
    child_id: int,
    amount: int,
    memo: str | None = None,
    now: datetime | None = None,
) -> LedgerEntry:
    """Manual bonus (positive) or penalty (negative) by a parent."""
    if not isinstance(amount, int) or amount == 0:
        raise ValueError("amount must be a non-zero whole number of points")
    await require_access(db, actor_parent_id, child_id, acl.PERM_ADJUST_LEDGER)
    source_id = uuid.uuid4().hex
    if amount > 0:
        return await credit(
            db, child_id, amount, SourceType.ADJUSTMENT, source_id, memo,
            actor_parent_id, now,
        )
    return await debit(
        db, child_id, -amount, SourceType.ADJUSTMENT, source_id, memo,
        actor_parent_id, now,
    )


async def correct_entry(
    db: AsyncSession,
    actor_parent_id: int,
    entry_id: str,
    memo: str | None = None,
    now: datetime | None = None,
) -> LedgerEntry:
    """Offset an entry with an equal and opposite one.

    Entries are never edited.  Each entry can be corrected once; asking
    again returns the existing correction.
    """
    entry = await crud.get_ledger_entry(db, entry_id)
    if entry is None:
        raise NotFound(f"Ledger entry {entry_id} not found")
    await require_access(db, actor_parent_id, entry.child_id, acl.PERM_ADJUST_LEDGER)
    if entry.amount == 0:
        raise InvalidTransition("Nothing to correct on a zero entry")
    key = reversal_key(entry.id)
    child_id, amount = entry.child_id, entry.amount
    memo = memo or f"Correction of {entry.id}"
    try:
        async with store_errors(db, "ledger correction"):
            if amount < 0:
                correction = await append_credit(
                    db, child_id, -amount, SourceType.ADJUSTMENT, entry_id, memo,
                    actor_parent_id, now, key=key,
                )
            else:
                existing = await crud.get_entry_by_dedupe_key(db, key)
                if existing is not None:
                    raise DuplicateEffect(f"{key} already applied", existing=existing)
                correction = await append_debit(
                    db, child_id, amount, SourceType.ADJUSTMENT, entry_id, memo,
                    actor_parent_id, now, key=key,
                )
            await db.commit()
    except DuplicateEffect as exc:
        await crud.release(db)
        logger.info("Entry %s already corrected", entry_id)
        return exc.existing
    except IntegrityError:
        await db.rollback()
        existing = await crud.get_entry_by_dedupe_key(db, key)
        if existing is None:
            raise TransientStoreFailure("ledger correction conflicted, retry later")
        logger.info("Entry %s already corrected", entry_id)
        return existing
    except (InsufficientBalance, NotFound):
        await crud.release(db)
        raise
    logger.info("Entry %s corrected by %s", entry_id, actor_parent_id)
    return await crud.get_ledger_entry(db, correction.id)


# --- Reward catalog -------------------------------------------------------


async def create_reward(
    db: AsyncSession, actor_parent_id: int, child_id: int, title: str, cost: int
) -> Reward:
    _check_amount(cost)
    await require_access(db, actor_parent_id, child_id, acl.PERM_MANAGE_REWARDS)
    async with store_errors(db, "create reward"):
        reward = await crud.create_reward(
            db,
            Reward(child_id=child_id, title=title, cost=cost, created_by=actor_parent_id),
        )
    logger.info("Reward %s (%s points) created for child %s", reward.id, cost, child_id)
    return reward


async def get_reward(db: AsyncSession, reward_id: int) -> Reward:
    reward = await crud.get_reward(db, reward_id)
    if reward is None:
        raise NotFound(f"Reward {reward_id} not found")
    return reward


async def list_rewards(
    db: AsyncSession, child_id: int, active_only: bool = True
) -> list[Reward]:
    return await crud.get_rewards_by_child(db, child_id, active_only=active_only)


async def deactivate_reward(
    db: AsyncSession, actor_parent_id: int, reward_id: int
) -> Reward:
    reward = await get_reward(db, reward_id)
    await require_access(db, actor_parent_id, reward.child_id, acl.PERM_MANAGE_REWARDS)
    reward.active = False
    async with store_errors(db, "deactivate reward"):
        return await crud.save_reward(db, reward)


async def redeem_reward(
    db: AsyncSession,
    reward_id: int,
    actor_child_id: int,
    now: datetime | None = None,
) -> RewardRedemption:
    """Spend a child's points on a reward.

    The redemption record and its ledger debit commit together; an
    overdraw leaves neither behind.
    """
    reward = await get_reward(db, reward_id)
    if reward.child_id != actor_child_id:
        raise Forbidden("This reward belongs to another child")
    if not reward.active:
        raise InvalidTransition("Reward is no longer available")
    cost = reward.cost
    redemption = RewardRedemption(
        reward_id=reward.id,
        child_id=actor_child_id,
        cost=cost,
        redeemed_at=now or utcnow(),
    )
    async with store_errors(db, "redeem reward"):
        try:
            await append_debit(
                db,
                actor_child_id,
                cost,
                SourceType.REWARD_REDEMPTION,
                redemption.id,
                memo=f"Reward: {reward.title}",
                now=now,
            )
        except InsufficientBalance as exc:
            await crud.release(db)
            logger.warning(
                "Child %s cannot afford reward %s (%s < %s)",
                actor_child_id,
                reward_id,
                exc.balance,
                cost,
            )
            raise
        db.add(redemption)
        await db.commit()
    logger.info("Child %s redeemed reward %s for %s points", actor_child_id, reward_id, cost)
    return redemption


async def list_redemptions(db: AsyncSession, child_id: int) -> list[RewardRedemption]:
    return await crud.get_redemptions_by_child(db, child_id)
