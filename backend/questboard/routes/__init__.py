"""Aggregate import for all API route modules."""

from . import (
    children,
    quests,
    instances,
    ledger,
    rewards,
    invitations,
    admin,
)

__all__ = [
    "children",
    "quests",
    "instances",
    "ledger",
    "rewards",
    "invitations",
    "admin",
]
