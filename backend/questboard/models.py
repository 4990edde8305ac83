"""Database models used by Questboard.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic)
and represent principals, child profiles, quests and their per-period
instances, the reward ledger and invitations.  State columns are only
ever changed through the conditional updates in ``questboard.crud``.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON, UniqueConstraint


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the store round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Recurrence(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"


class QuestState(str, Enum):
    OPEN = "open"
    CLAIMED = "claimed"
    APPROVED = "approved"
    REJECTED = "rejected"


class SourceType(str, Enum):
    QUEST_APPROVAL = "quest_approval"
    REWARD_REDEMPTION = "reward_redemption"
    ADJUSTMENT = "adjustment"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


class Principal(SQLModel, table=True):
    """Authenticated adult or child account; soft-disabled, never deleted."""

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    name: Optional[str] = None
    role: str = "parent"  # 'parent', 'child', 'admin'
    status: str = "active"  # 'active', 'pending', 'disabled'
    created_at: datetime = Field(default_factory=utcnow)


class ChildProfile(SQLModel, table=True):
    """Child profile owned by exactly one parent."""

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_parent_id: int = Field(foreign_key="principal.id", index=True)
    display_name: str
    pin_hash: Optional[str] = None
    # bumped with every ledger append for this child
    ledger_version: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class ChildAccessGrant(SQLModel, table=True):
    """Access to a child profile gained by redeeming an invitation."""

    principal_id: int = Field(foreign_key="principal.id", primary_key=True)
    child_id: int = Field(foreign_key="childprofile.id", primary_key=True)
    invitation_id: Optional[int] = Field(default=None, foreign_key="invitation.id")
    role: str = "parent"  # 'parent' or 'guardian'
    permissions: List[str] = Field(sa_column=Column(JSON), default_factory=list)
    granted_at: datetime = Field(default_factory=utcnow)


class Quest(SQLModel, table=True):
    """Task definition assigned to a child profile."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="childprofile.id", index=True)
    title: str
    description: Optional[str] = None
    reward_points: int = 0
    recurrence: Recurrence = Recurrence.ONCE
    active: bool = True
    created_by: Optional[int] = Field(default=None, foreign_key="principal.id")
    created_at: datetime = Field(default_factory=utcnow)


class QuestInstance(SQLModel, table=True):
    """One occurrence of a quest for a recurrence period."""

    __table_args__ = (UniqueConstraint("quest_id", "period"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    quest_id: int = Field(foreign_key="quest.id", index=True)
    child_id: int = Field(foreign_key="childprofile.id", index=True)
    period: str
    state: QuestState = QuestState.OPEN
    claimed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewer_id: Optional[int] = Field(default=None, foreign_key="principal.id")
    created_at: datetime = Field(default_factory=utcnow)


class LedgerEntry(SQLModel, table=True):
    """Immutable signed point movement; corrections are new entries."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    child_id: int = Field(foreign_key="childprofile.id", index=True)
    amount: int
    source_type: SourceType
    source_id: str
    # "<source_type>:<source_id>" for non-negative entries,
    # "reversal:<entry id>" for corrections, otherwise NULL
    dedupe_key: Optional[str] = Field(default=None, unique=True)
    memo: Optional[str] = None
    actor_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class Reward(SQLModel, table=True):
    """Catalog item a child can spend points on."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="childprofile.id", index=True)
    title: str
    cost: int
    active: bool = True
    created_by: Optional[int] = Field(default=None, foreign_key="principal.id")
    created_at: datetime = Field(default_factory=utcnow)


class RewardRedemption(SQLModel, table=True):
    """A child spending points on a reward; backs one ledger debit."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    reward_id: int = Field(foreign_key="reward.id")
    child_id: int = Field(foreign_key="childprofile.id", index=True)
    cost: int
    redeemed_at: datetime = Field(default_factory=utcnow)


class Invitation(SQLModel, table=True):
    """Single-use, time-bounded grant of access to child profiles."""

    id: Optional[int] = Field(default=None, primary_key=True)
    token: str = Field(unique=True, index=True)
    inviter_parent_id: int = Field(foreign_key="principal.id", index=True)
    invitee_email: str = Field(index=True)
    target_child_ids: List[int] = Field(sa_column=Column(JSON), default_factory=list)
    role: str = "parent"  # grant role: 'parent' or 'guardian'
    status: InvitationStatus = InvitationStatus.PENDING
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
    accepted_by: Optional[int] = Field(default=None, foreign_key="principal.id")
    accepted_at: Optional[datetime] = None
