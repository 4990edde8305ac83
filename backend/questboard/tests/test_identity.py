import asyncio
import pathlib
import sys

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from questboard import acl, identity
from questboard.errors import Forbidden, NotFound
from questboard.models import utcnow


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


def test_ensure_principal_creates_once():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            first = await identity.ensure_principal(session, " Mom@Example.com", name="Mom")
            again = await identity.ensure_principal(session, "mom@example.com")
            assert first.id == again.id
            assert first.email == "mom@example.com"
            assert first.role == acl.ROLE_PARENT
            assert first.status == acl.STATUS_ACTIVE
            with pytest.raises(ValueError):
                await identity.ensure_principal(session, "x@example.com", role="wizard")

    asyncio.run(run())


def test_timestamps_are_stored_as_naive_utc():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            before = utcnow()
            principal = await identity.ensure_principal(session, "clock@example.com")
        async with TestSession() as session:
            stored = await identity.get_principal(session, principal.id)
            assert stored.created_at.tzinfo is None
            assert stored.created_at >= before

    asyncio.run(run())


def test_owner_is_authorized_and_strangers_are_not():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner = await identity.ensure_principal(session, "owner@example.com")
            stranger = await identity.ensure_principal(session, "stranger@example.com")
            child = await identity.create_child_profile(session, owner.id, "Kid")

            for perm in acl.ALL_PERMISSIONS:
                assert await identity.authorize(session, owner.id, child.id, perm)
            assert not await identity.authorize(session, stranger.id, child.id)
            assert not await identity.authorize(session, owner.id, 999)
            assert await identity.accessible_child_ids(session, stranger.id) == []

            with pytest.raises(Forbidden):
                await identity.require_access(session, stranger.id, child.id)
            found = await identity.require_access(session, owner.id, child.id)
            assert found.id == child.id

    asyncio.run(run())


def test_disabled_principal_loses_access():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            admin = await identity.ensure_principal(
                session, "admin@example.com", role=acl.ROLE_ADMIN
            )
            owner = await identity.ensure_principal(session, "owner@example.com")
            child = await identity.create_child_profile(session, owner.id, "Kid")

            await identity.set_principal_status(
                session, admin.id, owner.id, acl.STATUS_DISABLED
            )
            assert not await identity.authorize(session, owner.id, child.id)
            assert await identity.accessible_child_ids(session, owner.id) == []
            with pytest.raises(Forbidden):
                await identity.create_child_profile(session, owner.id, "Another")

            await identity.set_principal_status(
                session, admin.id, owner.id, acl.STATUS_ACTIVE
            )
            assert await identity.authorize(session, owner.id, child.id)

    asyncio.run(run())


def test_only_admins_change_status():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner = await identity.ensure_principal(session, "owner@example.com")
            other = await identity.ensure_principal(session, "other@example.com")
            with pytest.raises(Forbidden):
                await identity.set_principal_status(
                    session, owner.id, other.id, acl.STATUS_DISABLED
                )
            with pytest.raises(ValueError):
                await identity.set_principal_status(session, owner.id, other.id, "gone")

    asyncio.run(run())


def test_child_pin():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner = await identity.ensure_principal(session, "owner@example.com")
            other = await identity.ensure_principal(session, "other@example.com")
            child = await identity.create_child_profile(session, owner.id, "Kid", pin="1234")
            assert child.pin_hash and child.pin_hash != "1234"

            verified = await identity.verify_child_pin(session, child.id, "1234")
            assert verified.id == child.id
            with pytest.raises(Forbidden):
                await identity.verify_child_pin(session, child.id, "0000")
            with pytest.raises(NotFound):
                await identity.verify_child_pin(session, 999, "1234")

            with pytest.raises(Forbidden):
                await identity.set_child_pin(session, other.id, child.id, "9999")
            await identity.set_child_pin(session, owner.id, child.id, "5678")
            await identity.verify_child_pin(session, child.id, "5678")

    asyncio.run(run())
