"""Convenience imports for all schema classes used by the API."""

from .child import ChildCreate, ChildRead, ChildLogin, PinUpdate, GrantRead
from .quest import (
    QuestCreate,
    QuestRead,
    QuestUpdate,
    InstanceRead,
    ReviewRequest,
)
from .ledger import (
    LedgerEntryRead,
    LedgerResponse,
    AdjustmentCreate,
    CorrectionCreate,
)
from .reward import RewardCreate, RewardRead, RedemptionRead
from .invitation import InvitationCreate, InvitationRead, InvitationCreated
from .principal import PrincipalRead, StatusUpdate

__all__ = [
    "ChildCreate",
    "ChildRead",
    "ChildLogin",
    "PinUpdate",
    "GrantRead",
    "QuestCreate",
    "QuestRead",
    "QuestUpdate",
    "InstanceRead",
    "ReviewRequest",
    "LedgerEntryRead",
    "LedgerResponse",
    "AdjustmentCreate",
    "CorrectionCreate",
    "RewardCreate",
    "RewardRead",
    "RedemptionRead",
    "InvitationCreate",
    "InvitationRead",
    "InvitationCreated",
    "PrincipalRead",
    "StatusUpdate",
]
