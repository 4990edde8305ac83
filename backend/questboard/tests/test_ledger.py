import asyncio
import pathlib
import sys

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from questboard import acl, crud, identity, ledger
from questboard.errors import (
    Forbidden,
    InsufficientBalance,
    InvalidTransition,
    NotFound,
)
from questboard.models import ChildAccessGrant, SourceType


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


async def _family(session):
    parent = await identity.ensure_principal(session, "parent@example.com")
    child = await identity.create_child_profile(session, parent.id, "Kid")
    return parent, child


def test_balance_is_sum_of_entries():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            assert await ledger.balance(session, child.id) == 0

            await ledger.credit(session, child.id, 30, SourceType.ADJUSTMENT, "a1")
            await ledger.credit(session, child.id, 12, SourceType.ADJUSTMENT, "a2")
            await ledger.debit(session, child.id, 7, SourceType.ADJUSTMENT, "a3")

            entries = await ledger.list_entries(session, child.id)
            assert sorted(e.amount for e in entries) == [-7, 12, 30]
            assert await ledger.balance(session, child.id) == sum(
                e.amount for e in entries
            )

    asyncio.run(run())


def test_duplicate_credit_is_noop():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            first = await ledger.credit(
                session, child.id, 5, SourceType.QUEST_APPROVAL, 42
            )
            second = await ledger.credit(
                session, child.id, 5, SourceType.QUEST_APPROVAL, 42
            )
            assert second.id == first.id
            assert first.dedupe_key == "quest_approval:42"
            assert await ledger.balance(session, child.id) == 5

    asyncio.run(run())


def test_ledger_version_bumps_on_every_append():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            await ledger.credit(session, child.id, 5, SourceType.ADJUSTMENT, "x")
            await ledger.debit(session, child.id, 2, SourceType.ADJUSTMENT, "y")
        async with TestSession() as session:
            fresh = await crud.get_child(session, child.id)
            assert fresh.ledger_version == 2

    asyncio.run(run())


def test_debit_never_overdraws():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            await ledger.credit(session, child.id, 10, SourceType.ADJUSTMENT, "seed")

            with pytest.raises(InsufficientBalance) as exc:
                await ledger.debit(session, child.id, 11, SourceType.ADJUSTMENT, "big")
            assert exc.value.balance == 10
            assert exc.value.requested == 11

            await ledger.debit(session, child.id, 10, SourceType.ADJUSTMENT, "all")
            assert await ledger.balance(session, child.id) == 0
            with pytest.raises(InsufficientBalance):
                await ledger.debit(session, child.id, 1, SourceType.ADJUSTMENT, "more")
            assert len(await ledger.list_entries(session, child.id)) == 2

    asyncio.run(run())


def test_loaded_objects_usable_after_refused_writes():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            reward = await ledger.create_reward(session, parent.id, child.id, "Kite", 9)
            await ledger.credit(session, child.id, 4, SourceType.ADJUSTMENT, "seed")

            with pytest.raises(InsufficientBalance):
                await ledger.debit(session, child.id, 5, SourceType.ADJUSTMENT, "x")
            assert child.display_name == "Kid"

            # replayed credit, a no-op
            await ledger.credit(session, child.id, 4, SourceType.ADJUSTMENT, "seed")
            with pytest.raises(InsufficientBalance):
                await ledger.redeem_reward(session, reward.id, child.id)
            assert reward.title == "Kite"
            assert parent.email == "parent@example.com"
            assert await ledger.list_redemptions(session, child.id) == []
            assert await ledger.balance(session, child.id) == 4

    asyncio.run(run())


def test_unknown_child_leaves_no_open_transaction():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            await _family(session)
            with pytest.raises(NotFound):
                await ledger.credit(session, 999, 3, SourceType.ADJUSTMENT, "z")
            assert not session.in_transaction()
            with pytest.raises(NotFound):
                await ledger.debit(session, 999, 3, SourceType.ADJUSTMENT, "z")
            assert not session.in_transaction()

    asyncio.run(run())


def test_amounts_must_be_positive():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            with pytest.raises(ValueError):
                await ledger.credit(session, child.id, 0, SourceType.ADJUSTMENT, "z")
            with pytest.raises(ValueError):
                await ledger.debit(session, child.id, -3, SourceType.ADJUSTMENT, "z")
            with pytest.raises(NotFound):
                await ledger.credit(session, 999, 3, SourceType.ADJUSTMENT, "z")

    asyncio.run(run())


def test_adjust_bonus_and_penalty():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            bonus = await ledger.adjust(session, parent.id, child.id, 20, memo="Bonus")
            assert bonus.amount == 20
            assert bonus.actor_id == parent.id
            penalty = await ledger.adjust(session, parent.id, child.id, -5, memo="Late")
            assert penalty.amount == -5
            assert penalty.source_type == SourceType.ADJUSTMENT
            assert await ledger.balance(session, child.id) == 15

            with pytest.raises(InsufficientBalance):
                await ledger.adjust(session, parent.id, child.id, -50)
            with pytest.raises(ValueError):
                await ledger.adjust(session, parent.id, child.id, 0)

    asyncio.run(run())


def test_guardian_cannot_adjust():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            guardian = await identity.ensure_principal(session, "gran@example.com")
            session.add(
                ChildAccessGrant(
                    principal_id=guardian.id,
                    child_id=child.id,
                    role=acl.GRANT_GUARDIAN,
                    permissions=acl.get_default_permissions_for_grant(acl.GRANT_GUARDIAN),
                )
            )
            await session.commit()
            with pytest.raises(Forbidden):
                await ledger.adjust(session, guardian.id, child.id, 5)
            assert await ledger.balance(session, child.id) == 0

    asyncio.run(run())


def test_correct_entry_once():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            mistake = await ledger.adjust(session, parent.id, child.id, 40)
            correction = await ledger.correct_entry(session, parent.id, mistake.id)
            assert correction.amount == -40
            assert correction.dedupe_key == f"reversal:{mistake.id}"
            assert await ledger.balance(session, child.id) == 0

            again = await ledger.correct_entry(session, parent.id, mistake.id)
            assert again.id == correction.id
            assert await ledger.balance(session, child.id) == 0

            await ledger.adjust(session, parent.id, child.id, 3)
            taken = await ledger.adjust(session, parent.id, child.id, -3)
            refund = await ledger.correct_entry(session, parent.id, taken.id)
            assert refund.amount == 3
            assert await ledger.balance(session, child.id) == 3

            with pytest.raises(NotFound):
                await ledger.correct_entry(session, parent.id, "missing")

    asyncio.run(run())


def test_redeem_reward_debits_atomically():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            reward = await ledger.create_reward(session, parent.id, child.id, "Movie", 15)
            await ledger.adjust(session, parent.id, child.id, 20)

            redemption = await ledger.redeem_reward(session, reward.id, child.id)
            assert redemption.cost == 15
            assert await ledger.balance(session, child.id) == 5
            debit = [
                e
                for e in await ledger.list_entries(session, child.id)
                if e.source_type == SourceType.REWARD_REDEMPTION
            ]
            assert [(e.amount, e.source_id) for e in debit] == [(-15, redemption.id)]

            with pytest.raises(InsufficientBalance):
                await ledger.redeem_reward(session, reward.id, child.id)
            assert len(await ledger.list_redemptions(session, child.id)) == 1
            assert await ledger.balance(session, child.id) == 5

    asyncio.run(run())


def test_reward_rules():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            parent, child = await _family(session)
            sibling = await identity.create_child_profile(session, parent.id, "Sib")
            reward = await ledger.create_reward(session, parent.id, child.id, "Toy", 5)
            await ledger.adjust(session, parent.id, child.id, 50)

            with pytest.raises(Forbidden):
                await ledger.redeem_reward(session, reward.id, sibling.id)
            with pytest.raises(ValueError):
                await ledger.create_reward(session, parent.id, child.id, "Free", 0)

            await ledger.deactivate_reward(session, parent.id, reward.id)
            assert await ledger.list_rewards(session, child.id) == []
            with pytest.raises(InvalidTransition):
                await ledger.redeem_reward(session, reward.id, child.id)
            assert await ledger.balance(session, child.id) == 50

    asyncio.run(run())
