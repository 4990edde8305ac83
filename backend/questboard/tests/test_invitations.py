"""Tests for the invitation workflow and the access it grants."""

import asyncio
import pathlib
import sys
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from questboard import acl, crud, identity, invitations, quests
from questboard.errors import (
    AlreadyUsed,
    Expired,
    Forbidden,
    InvalidTransition,
    NotFound,
)
from questboard.models import InvitationStatus

NOW = datetime(2026, 10, 12, 9, 0)


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


async def _two_parents(session):
    owner = await identity.ensure_principal(session, "owner@example.com")
    other = await identity.ensure_principal(session, "other@example.com")
    child = await identity.create_child_profile(session, owner.id, "Kid")
    return owner, other, child


def test_redeem_grants_access_once():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            assert not await identity.authorize(session, other.id, child.id)

            inv = await invitations.invite(
                session, owner.id, "Other@Example.com ", [child.id], now=NOW
            )
            assert inv.status == InvitationStatus.PENDING
            assert inv.invitee_email == "other@example.com"
            assert inv.expires_at == NOW + timedelta(days=7)

            accepted = await invitations.redeem(session, inv.token, other.id, now=NOW)
            assert accepted.status == InvitationStatus.ACCEPTED
            assert accepted.accepted_by == other.id
            assert await identity.authorize(
                session, other.id, child.id, acl.PERM_MANAGE_QUESTS
            )
            assert await identity.accessible_child_ids(session, other.id) == [child.id]

            with pytest.raises(AlreadyUsed):
                await invitations.redeem(session, inv.token, other.id, now=NOW)
            assert len(await crud.get_grants_for_child(session, child.id)) == 1

    asyncio.run(run())


def test_guardian_invitation_limits_permissions():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            inv = await invitations.invite(
                session, owner.id, other.email, [child.id], role=acl.GRANT_GUARDIAN
            )
            await invitations.redeem(session, inv.token, other.id)
            assert await identity.authorize(
                session, other.id, child.id, acl.PERM_REVIEW_CLAIMS
            )
            assert not await identity.authorize(
                session, other.id, child.id, acl.PERM_ADJUST_LEDGER
            )
            with pytest.raises(Forbidden):
                await quests.create_quest(session, other.id, child.id, "Sweep")

    asyncio.run(run())


def test_expired_invitation():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            inv = await invitations.invite(
                session, owner.id, other.email, [child.id], ttl=timedelta(days=1), now=NOW
            )
            later = NOW + timedelta(days=1)
            with pytest.raises(Expired):
                await invitations.redeem(session, inv.token, other.id, now=later)

            current = await crud.get_invitation(session, inv.id)
            assert current.status == InvitationStatus.EXPIRED
            with pytest.raises(Expired):
                await invitations.redeem(session, inv.token, other.id, now=NOW)
            assert not await identity.authorize(session, other.id, child.id)

    asyncio.run(run())


def test_revoke_rules():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            inv = await invitations.invite(session, owner.id, other.email, [child.id])

            with pytest.raises(Forbidden):
                await invitations.revoke(session, inv.id, other.id)
            with pytest.raises(NotFound):
                await invitations.revoke(session, 999, owner.id)

            revoked = await invitations.revoke(session, inv.id, owner.id)
            assert revoked.status == InvitationStatus.REVOKED
            with pytest.raises(InvalidTransition):
                await invitations.revoke(session, inv.id, owner.id)
            with pytest.raises(AlreadyUsed):
                await invitations.redeem(session, inv.token, other.id)

            accepted = await invitations.invite(session, owner.id, other.email, [child.id])
            await invitations.redeem(session, accepted.token, other.id)
            with pytest.raises(InvalidTransition):
                await invitations.revoke(session, accepted.id, owner.id)

    asyncio.run(run())


def test_invite_validation():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            with pytest.raises(ValueError):
                await invitations.invite(session, owner.id, other.email, [])
            with pytest.raises(ValueError):
                await invitations.invite(
                    session, owner.id, other.email, [child.id], ttl=timedelta(days=-1)
                )
            with pytest.raises(ValueError):
                await invitations.invite(
                    session, owner.id, other.email, [child.id], role="admin"
                )
            # Cannot share a child the inviter has no access to.
            with pytest.raises(Forbidden):
                await invitations.invite(session, other.id, "x@example.com", [child.id])
            with pytest.raises(NotFound):
                await invitations.redeem(session, "no-such-token", other.id)

    asyncio.run(run())


def test_disabled_inviter_forbidden():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            admin = await identity.ensure_principal(
                session, "admin@example.com", role=acl.ROLE_ADMIN
            )
            await identity.set_principal_status(
                session, admin.id, owner.id, acl.STATUS_DISABLED
            )
            with pytest.raises(Forbidden):
                await invitations.invite(session, owner.id, other.email, [child.id])

    asyncio.run(run())


def test_pending_and_sweep():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            short = await invitations.invite(
                session, owner.id, other.email, [child.id], ttl=timedelta(hours=1), now=NOW
            )
            long = await invitations.invite(
                session, owner.id, other.email, [child.id], ttl=timedelta(days=3), now=NOW
            )
            later = NOW + timedelta(hours=2)
            pending = await invitations.pending_for_email(session, "OTHER@example.com", now=later)
            assert [inv.id for inv in pending] == [long.id]

            assert await invitations.expire_stale(session, now=later) == 1
            assert await invitations.expire_stale(session, now=later) == 0
            swept = await crud.get_invitation(session, short.id)
            assert swept.status == InvitationStatus.EXPIRED
            sent = await invitations.list_sent(session, owner.id)
            assert {inv.id for inv in sent} == {short.id, long.id}

    asyncio.run(run())


def test_second_redeemer_loses():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            third = await identity.ensure_principal(session, "third@example.com")
            inv = await invitations.invite(session, owner.id, other.email, [child.id])

            won = await crud.transition_invitation(
                session,
                inv.id,
                InvitationStatus.PENDING,
                live_at=NOW,
                status=InvitationStatus.ACCEPTED,
                accepted_by=other.id,
                accepted_at=NOW,
            )
            lost = await crud.transition_invitation(
                session,
                inv.id,
                InvitationStatus.PENDING,
                live_at=NOW,
                status=InvitationStatus.ACCEPTED,
                accepted_by=third.id,
                accepted_at=NOW,
            )
            await session.commit()
            assert (won, lost) == (True, False)
            current = await crud.get_invitation(session, inv.id)
            assert current.accepted_by == other.id

    asyncio.run(run())


def test_zero_ttl_expires_immediately():
    async def run():
        TestSession = await _setup_test_db()
        async with TestSession() as session:
            owner, other, child = await _two_parents(session)
            inv = await invitations.invite(
                session, owner.id, other.email, [child.id], ttl=timedelta(0), now=NOW
            )
            with pytest.raises(Expired):
                await invitations.redeem(
                    session, inv.token, other.id, now=NOW + timedelta(seconds=1)
                )
            current = await crud.get_invitation(session, inv.id)
            assert current.status == InvitationStatus.EXPIRED

    asyncio.run(run())
