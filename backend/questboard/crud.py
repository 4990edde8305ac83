"""Asynchronous store helpers for the application's data models.

Plain lookups and inserts live here together with the conditional
writes the state machines rely on.  A conditional write is a single
``UPDATE ... WHERE state = :expected`` (or ``INSERT ... SELECT ... WHERE``)
statement whose ``rowcount`` tells the caller whether it won; nothing in
this module reads a row and then writes it back.

Helpers named ``create_*``/``save_*`` commit, mirroring the rest of the
service.  Conditional writes and ledger appends never commit: they run
inside the caller's transaction so a transition and its ledger effect
land together or not at all.
"""

from datetime import datetime

from sqlalchemy import func, insert, literal, select as sa_select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from questboard.errors import DuplicateEffect
from questboard.models import (
    Principal,
    ChildProfile,
    ChildAccessGrant,
    Quest,
    QuestInstance,
    QuestState,
    Recurrence,
    LedgerEntry,
    Reward,
    RewardRedemption,
    Invitation,
    InvitationStatus,
)


async def release(db: AsyncSession) -> None:
    """End a transaction whose writes may stand, such as a zero-row update.

    Unlike ``rollback`` this leaves objects already loaded in the session
    usable; sessions are created with ``expire_on_commit=False``.
    """
    await db.commit()


# --- Principal helpers ----------------------------------------------------


async def get_principal(db: AsyncSession, principal_id: int) -> Principal | None:
    result = await db.execute(
        select(Principal)
        .where(Principal.id == principal_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_principal_by_email(db: AsyncSession, email: str) -> Principal | None:
    result = await db.execute(select(Principal).where(Principal.email == email))
    return result.scalar_one_or_none()


async def create_principal(db: AsyncSession, principal: Principal) -> Principal:
    db.add(principal)
    await db.commit()
    await db.refresh(principal)
    return principal


async def save_principal(db: AsyncSession, principal: Principal) -> Principal:
    db.add(principal)
    await db.commit()
    await db.refresh(principal)
    return principal


# --- Child profile and grant helpers --------------------------------------


async def create_child(db: AsyncSession, child: ChildProfile) -> ChildProfile:
    db.add(child)
    await db.commit()
    await db.refresh(child)
    return child


async def get_child(db: AsyncSession, child_id: int) -> ChildProfile | None:
    result = await db.execute(select(ChildProfile).where(ChildProfile.id == child_id))
    return result.scalar_one_or_none()


async def save_child(db: AsyncSession, child: ChildProfile) -> ChildProfile:
    db.add(child)
    await db.commit()
    await db.refresh(child)
    return child


async def get_children_owned_by(db: AsyncSession, parent_id: int) -> list[ChildProfile]:
    result = await db.execute(
        select(ChildProfile)
        .where(ChildProfile.owner_parent_id == parent_id)
        .order_by(ChildProfile.id)
    )
    return result.scalars().all()


async def get_grant(
    db: AsyncSession, principal_id: int, child_id: int
) -> ChildAccessGrant | None:
    result = await db.execute(
        select(ChildAccessGrant).where(
            ChildAccessGrant.principal_id == principal_id,
            ChildAccessGrant.child_id == child_id,
        )
    )
    return result.scalar_one_or_none()


async def get_grants_for_principal(
    db: AsyncSession, principal_id: int
) -> list[ChildAccessGrant]:
    result = await db.execute(
        select(ChildAccessGrant).where(ChildAccessGrant.principal_id == principal_id)
    )
    return result.scalars().all()


async def get_grants_for_child(db: AsyncSession, child_id: int) -> list[ChildAccessGrant]:
    result = await db.execute(
        select(ChildAccessGrant).where(ChildAccessGrant.child_id == child_id)
    )
    return result.scalars().all()


async def delete_grant(db: AsyncSession, grant: ChildAccessGrant) -> None:
    await db.delete(grant)
    await db.commit()


# --- Quest and instance helpers -------------------------------------------


async def create_quest(db: AsyncSession, quest: Quest) -> Quest:
    db.add(quest)
    await db.commit()
    await db.refresh(quest)
    return quest


async def get_quest(db: AsyncSession, quest_id: int) -> Quest | None:
    result = await db.execute(select(Quest).where(Quest.id == quest_id))
    return result.scalar_one_or_none()


async def save_quest(db: AsyncSession, quest: Quest) -> Quest:
    db.add(quest)
    await db.commit()
    await db.refresh(quest)
    return quest


async def get_quests_by_child(
    db: AsyncSession, child_id: int, active_only: bool = False
) -> list[Quest]:
    stmt = select(Quest).where(Quest.child_id == child_id)
    if active_only:
        stmt = stmt.where(Quest.active == True)  # noqa: E712
    result = await db.execute(stmt.order_by(Quest.id))
    return result.scalars().all()


async def get_active_recurring_quests(db: AsyncSession) -> list[Quest]:
    result = await db.execute(
        select(Quest).where(
            Quest.active == True,  # noqa: E712
            Quest.recurrence != Recurrence.ONCE,
        )
    )
    return result.scalars().all()


async def get_instance(db: AsyncSession, instance_id: int) -> QuestInstance | None:
    result = await db.execute(
        select(QuestInstance)
        .where(QuestInstance.id == instance_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_instance_for_period(
    db: AsyncSession, quest_id: int, period: str
) -> QuestInstance | None:
    result = await db.execute(
        select(QuestInstance)
        .where(QuestInstance.quest_id == quest_id, QuestInstance.period == period)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_instances_by_child(
    db: AsyncSession, child_id: int, state: QuestState | None = None
) -> list[QuestInstance]:
    stmt = select(QuestInstance).where(QuestInstance.child_id == child_id)
    if state is not None:
        stmt = stmt.where(QuestInstance.state == state)
    result = await db.execute(
        stmt.order_by(QuestInstance.id).execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def transition_instance(
    db: AsyncSession,
    instance_id: int,
    expected: QuestState,
    child_id: int | None = None,
    **values,
) -> bool:
    """Move an instance out of ``expected`` in one conditional update.

    Returns ``True`` only for the single writer whose update matched.
    """
    table = QuestInstance.__table__
    stmt = update(table).where(table.c.id == instance_id, table.c.state == expected)
    if child_id is not None:
        stmt = stmt.where(table.c.child_id == child_id)
    result = await db.execute(stmt.values(**values))
    return result.rowcount == 1


# --- Ledger helpers -------------------------------------------------------


async def bump_ledger_version(db: AsyncSession, child_id: int) -> bool:
    """Take the per-child ledger write slot for the current transaction."""
    table = ChildProfile.__table__
    result = await db.execute(
        update(table)
        .where(table.c.id == child_id)
        .values(ledger_version=table.c.ledger_version + 1)
    )
    return result.rowcount == 1


async def calculate_balance(db: AsyncSession, child_id: int) -> int:
    """Sum every ledger entry for a child."""

    result = await db.execute(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
            LedgerEntry.child_id == child_id
        )
    )
    return int(result.scalar_one())


async def get_ledger_entries(db: AsyncSession, child_id: int) -> list[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.child_id == child_id)
        .order_by(LedgerEntry.created_at, LedgerEntry.id)
    )
    return result.scalars().all()


async def get_ledger_entry(db: AsyncSession, entry_id: str) -> LedgerEntry | None:
    result = await db.execute(select(LedgerEntry).where(LedgerEntry.id == entry_id))
    return result.scalar_one_or_none()


async def get_entry_by_dedupe_key(db: AsyncSession, key: str) -> LedgerEntry | None:
    result = await db.execute(select(LedgerEntry).where(LedgerEntry.dedupe_key == key))
    return result.scalar_one_or_none()


async def add_ledger_entry(db: AsyncSession, entry: LedgerEntry) -> LedgerEntry:
    """Append an entry guarded by its dedupe key.

    Raises ``DuplicateEffect`` carrying the existing entry when the key
    is already taken.  A concurrent writer that slips past the lookup is
    stopped by the unique constraint at flush time (``IntegrityError``).
    """
    if entry.dedupe_key is not None:
        existing = await get_entry_by_dedupe_key(db, entry.dedupe_key)
        if existing is not None:
            raise DuplicateEffect(
                f"ledger effect {entry.dedupe_key} already applied", existing=existing
            )
    db.add(entry)
    await db.flush()
    return entry


async def insert_entry_if_covered(db: AsyncSession, entry: LedgerEntry) -> bool:
    """Insert a negative entry only if the balance stays non-negative.

    Runs as one ``INSERT ... SELECT ... WHERE`` so the balance check and
    the append cannot be separated by another writer.
    """
    table = LedgerEntry.__table__
    columns = [
        "id",
        "child_id",
        "amount",
        "source_type",
        "source_id",
        "dedupe_key",
        "memo",
        "actor_id",
        "created_at",
    ]
    covered = (
        sa_select(func.coalesce(func.sum(table.c.amount), 0))
        .where(table.c.child_id == entry.child_id)
        .scalar_subquery()
    )
    row = sa_select(
        *[literal(getattr(entry, name), table.c[name].type) for name in columns]
    ).where(covered + entry.amount >= 0)
    result = await db.execute(insert(table).from_select(columns, row))
    return result.rowcount == 1


# --- Reward helpers -------------------------------------------------------


async def create_reward(db: AsyncSession, reward: Reward) -> Reward:
    db.add(reward)
    await db.commit()
    await db.refresh(reward)
    return reward


async def get_reward(db: AsyncSession, reward_id: int) -> Reward | None:
    result = await db.execute(select(Reward).where(Reward.id == reward_id))
    return result.scalar_one_or_none()


async def save_reward(db: AsyncSession, reward: Reward) -> Reward:
    db.add(reward)
    await db.commit()
    await db.refresh(reward)
    return reward


async def get_rewards_by_child(
    db: AsyncSession, child_id: int, active_only: bool = False
) -> list[Reward]:
    stmt = select(Reward).where(Reward.child_id == child_id)
    if active_only:
        stmt = stmt.where(Reward.active == True)  # noqa: E712
    result = await db.execute(stmt.order_by(Reward.id))
    return result.scalars().all()


async def get_redemptions_by_child(
    db: AsyncSession, child_id: int
) -> list[RewardRedemption]:
    result = await db.execute(
        select(RewardRedemption)
        .where(RewardRedemption.child_id == child_id)
        .order_by(RewardRedemption.redeemed_at)
    )
    return result.scalars().all()


# --- Invitation helpers ---------------------------------------------------


async def create_invitation(db: AsyncSession, invitation: Invitation) -> Invitation:
    db.add(invitation)
    await db.commit()
    await db.refresh(invitation)
    return invitation


async def get_invitation(db: AsyncSession, invitation_id: int) -> Invitation | None:
    result = await db.execute(
        select(Invitation)
        .where(Invitation.id == invitation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_invitation_by_token(db: AsyncSession, token: str) -> Invitation | None:
    result = await db.execute(
        select(Invitation)
        .where(Invitation.token == token)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_invitations_by_inviter(
    db: AsyncSession, inviter_id: int
) -> list[Invitation]:
    result = await db.execute(
        select(Invitation)
        .where(Invitation.inviter_parent_id == inviter_id)
        .order_by(Invitation.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def get_pending_invitations_for_email(
    db: AsyncSession, email: str
) -> list[Invitation]:
    result = await db.execute(
        select(Invitation)
        .where(
            Invitation.invitee_email == email,
            Invitation.status == InvitationStatus.PENDING,
        )
        .order_by(Invitation.created_at)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def transition_invitation(
    db: AsyncSession,
    invitation_id: int,
    expected: InvitationStatus,
    live_at: datetime | None = None,
    lapsed_at: datetime | None = None,
    **values,
) -> bool:
    """Conditionally move an invitation out of ``expected``.

    ``live_at`` additionally requires ``expires_at > live_at``;
    ``lapsed_at`` requires ``expires_at <= lapsed_at``.
    """
    table = Invitation.__table__
    stmt = update(table).where(
        table.c.id == invitation_id, table.c.status == expected
    )
    if live_at is not None:
        stmt = stmt.where(table.c.expires_at > live_at)
    if lapsed_at is not None:
        stmt = stmt.where(table.c.expires_at <= lapsed_at)
    result = await db.execute(stmt.values(**values))
    return result.rowcount == 1


async def expire_invitations(db: AsyncSession, now: datetime) -> int:
    """Mark every lapsed pending invitation expired; returns the count."""
    table = Invitation.__table__
    result = await db.execute(
        update(table)
        .where(
            table.c.status == InvitationStatus.PENDING,
            table.c.expires_at <= now,
        )
        .values(status=InvitationStatus.EXPIRED)
    )
    await db.commit()
    return result.rowcount
