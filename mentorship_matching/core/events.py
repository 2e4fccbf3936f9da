import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Protocol, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    MATCH_CREATED = "MatchCreated"
    MATCH_ADVANCED = "MatchAdvanced"
    MATCH_ACCEPTED = "MatchAccepted"
    MATCH_REJECTED = "MatchRejected"
    MENTEE_UNMATCHED = "MenteeUnmatched"


class MatchEvent(BaseModel):
    event_type: EventType
    program_id: int
    match_id: Optional[int] = None
    mentor_id: Optional[int] = None
    mentee_id: int
    rank: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: Optional[int] = None
    reason: Optional[str] = None
    # Match status after the transition; tells the two MatchAdvanced steps apart
    status: Optional[str] = None

    @property
    def dedup_key(self) -> Tuple[str, str, str]:
        """(match id, event type, resulting status); unmatched events with no match are keyed by run or mentee."""
        if self.match_id is not None:
            source = f"match:{self.match_id}"
        elif self.run_id is not None:
            source = f"run:{self.run_id}:mentee:{self.mentee_id}"
        else:
            source = f"program:{self.program_id}:mentee:{self.mentee_id}"
        return (source, self.event_type.value, self.status or "")


class EventSink(Protocol):
    def publish(self, event: MatchEvent) -> None: ...


class LoggingEventSink:
    """Default sink: records every event in the application log."""

    def publish(self, event: MatchEvent) -> None:
        logger.info(
            f"{event.event_type.value}: program={event.program_id} match={event.match_id} "
            f"mentor={event.mentor_id} mentee={event.mentee_id} rank={event.rank} status={event.status}"
        )


class InMemoryEventSink:
    """Collects events in a list. Used by tests and by callers that forward events in batches."""

    def __init__(self):
        self.events: List[MatchEvent] = []

    def publish(self, event: MatchEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[MatchEvent]:
        return [e for e in self.events if e.event_type == event_type]


class DeduplicatingDispatcher:
    """
    Fans events out to handlers, delivering each dedup key at most once.

    Producers publish at-least-once, so a redelivered event is dropped here.
    A failing handler is logged and does not stop delivery to the others; the
    key is still marked delivered because the state change is already committed.
    Only the most recent `max_keys` keys are remembered.
    """

    def __init__(self, handlers: Optional[List[Callable[[MatchEvent], None]]] = None, max_keys: int = 10000):
        self._handlers: List[Callable[[MatchEvent], None]] = list(handlers or [])
        self._seen: "OrderedDict[Tuple[str, str, str], None]" = OrderedDict()
        self._max_keys = max_keys
        self._lock = threading.Lock()

    def subscribe(self, handler: Callable[[MatchEvent], None]) -> None:
        self._handlers.append(handler)

    def publish(self, event: MatchEvent) -> None:
        with self._lock:
            if event.dedup_key in self._seen:
                logger.debug(f"Dropping duplicate event {event.dedup_key}.")
                return
            self._seen[event.dedup_key] = None
            if len(self._seen) > self._max_keys:
                self._seen.popitem(last=False)

        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler {handler!r} failed for {event.dedup_key}: {e}", exc_info=True)
