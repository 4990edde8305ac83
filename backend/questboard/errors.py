"""Closed error taxonomy for quest, ledger and invitation operations.

Callers branch on ``QuestboardError.kind`` rather than on message text.
Every failure is scoped to a single operation; nothing here is fatal to
the process.
"""

import logging
from contextlib import asynccontextmanager
from enum import Enum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    FORBIDDEN = "forbidden"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    TRANSIENT_STORE_FAILURE = "transient_store_failure"
    DUPLICATE_EFFECT = "duplicate_effect"


class QuestboardError(Exception):
    """Base class for all typed operation failures."""

    kind: ErrorKind

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value.replace("_", " "))
        self.message = str(self)


class Forbidden(QuestboardError):
    """The acting principal may not touch the target record."""

    kind = ErrorKind.FORBIDDEN


class InvalidTransition(QuestboardError):
    """The record is not in the state the operation requires.

    Also raised to the loser of a race on a conditional update.
    """

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, message: str = "", current_state: str | None = None):
        super().__init__(message)
        self.current_state = current_state


class NotFound(QuestboardError):
    kind = ErrorKind.NOT_FOUND


class Expired(QuestboardError):
    kind = ErrorKind.EXPIRED


class AlreadyUsed(QuestboardError):
    kind = ErrorKind.ALREADY_USED


class InsufficientBalance(QuestboardError):
    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(self, message: str = "", balance: int = 0, requested: int = 0):
        super().__init__(message)
        self.balance = balance
        self.requested = requested


class TransientStoreFailure(QuestboardError):
    """The store failed; retrying the same operation is safe."""

    kind = ErrorKind.TRANSIENT_STORE_FAILURE


class DuplicateEffect(QuestboardError):
    """The ledger uniqueness guard fired.

    Means a retried operation already applied its effect; callers treat it
    as a successful no-op.
    """

    kind = ErrorKind.DUPLICATE_EFFECT

    def __init__(self, message: str = "", existing=None):
        super().__init__(message)
        self.existing = existing


@asynccontextmanager
async def store_errors(db: AsyncSession, operation: str = "store operation"):
    """Roll back and wrap raw store failures into ``TransientStoreFailure``.

    Integrity violations pass through untouched because callers resolve
    them as lost races or duplicate effects.
    """
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("%s failed in the store: %s", operation, exc)
        raise TransientStoreFailure(f"{operation} failed, retry later") from exc
