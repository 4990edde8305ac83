"""State-change events for presentation layers.

The core never calls a notification service.  Instead it publishes a
``StateChangeEvent`` after each quest instance transition commits, and a
UI layer may subscribe to those events.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Callable, List, Optional

from questboard.models import QuestState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateChangeEvent:
    instance_id: int
    new_state: QuestState
    child_id: int
    reviewer_id: Optional[int]
    timestamp: datetime

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["new_state"] = self.new_state.value
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


Subscriber = Callable[[StateChangeEvent], None]


class EventBus:
    """Fan-out of committed transitions to registered callbacks."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event: StateChangeEvent) -> None:
        # The transition is already committed; a failing subscriber must
        # not turn it into an error for the caller.
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Subscriber %r failed for instance %s", callback, event.instance_id
                )


bus = EventBus()
