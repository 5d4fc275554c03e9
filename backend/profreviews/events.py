"""
events.py — In-process publish/subscribe for refresh signals.

Components that change reviews announce it here; anything that needs to
refresh derived data (aggregates, caches) subscribes. Each application owns
one bus through its AccessContext.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class EventName(str, Enum):
    REVIEW_CREATED = "review:created"
    REVIEW_DELETED = "review:deleted"
    REVIEW_VOTED = "review:voted"
    REVIEW_REPORTED = "review:reported"
    REVIEW_HIDDEN = "review:hidden"
    REVIEW_RESTORED = "review:restored"
    AUTH_SIGNED_IN = "auth:signed_in"
    AUTH_SIGNED_OUT = "auth:signed_out"


@dataclass(frozen=True)
class ReviewEvent:
    review_id: int
    professor_id: Optional[int] = None
    course_id: Optional[int] = None
    user_id: Optional[int] = None


@dataclass(frozen=True)
class AuthEvent:
    user_id: int
    device_id: Optional[str] = None


Payload = Union[ReviewEvent, AuthEvent]

PAYLOAD_TYPES = {
    EventName.REVIEW_CREATED: ReviewEvent,
    EventName.REVIEW_DELETED: ReviewEvent,
    EventName.REVIEW_VOTED: ReviewEvent,
    EventName.REVIEW_REPORTED: ReviewEvent,
    EventName.REVIEW_HIDDEN: ReviewEvent,
    EventName.REVIEW_RESTORED: ReviewEvent,
    EventName.AUTH_SIGNED_IN: AuthEvent,
    EventName.AUTH_SIGNED_OUT: AuthEvent,
}

Listener = Callable[[Payload], None]


class EventBus:
    def __init__(self):
        self._listeners: Dict[EventName, List[Listener]] = defaultdict(list)

    def subscribe(self, event: EventName, callback: Listener) -> Callable[[], None]:
        """Register ``callback`` for ``event``. Returns a function that unsubscribes it."""
        event = EventName(event)
        self._listeners[event].append(callback)

        def unsubscribe():
            try:
                self._listeners[event].remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, event: EventName, payload: Payload) -> int:
        """
        Deliver ``payload`` to every listener of ``event``, in subscription order.
        A failing listener is logged and skipped. Returns how many listeners ran
        without raising.
        """
        event = EventName(event)
        expected = PAYLOAD_TYPES[event]
        if not isinstance(payload, expected):
            raise TypeError(f"{event.value} expects {expected.__name__}, got {type(payload).__name__}")

        delivered = 0
        # Copy so listeners may unsubscribe while being called
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
                delivered += 1
            except Exception:
                logger.exception("Listener %r failed for %s", callback, event.value)
        return delivered

    def listener_count(self, event: EventName) -> int:
        return len(self._listeners[EventName(event)])
