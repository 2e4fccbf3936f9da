import logging
import threading
from typing import Dict, Iterable, Mapping

from sqlalchemy.orm import Session

from ..models import MentorRegistration
from ..exceptions import CapacityExceededError
from ..constants import ErrorMessages

logger = logging.getLogger(__name__)


class CapacityTracker:
    """
    In-memory ledger of remaining mentor slots, owned by a single matching run.

    Rebuilt from committed state at the start of every run and never persisted.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._capacity: Dict[int, int] = {}
        self._remaining: Dict[int, int] = {}

    def initialize(self, mentors: Iterable[MentorRegistration], active_counts: Mapping[int, int]) -> "CapacityTracker":
        """
        Sets remaining slots to capacity minus the mentor's currently held matches.

        Args:
            mentors: Eligible mentor registrations for the program.
            active_counts: mentor id -> number of ACCEPTED/PENDING_*/PROPOSED matches already committed.
        """
        with self._lock:
            self._capacity.clear()
            self._remaining.clear()
            for mentor in mentors:
                held = active_counts.get(mentor.id, 0)
                if held > mentor.capacity:
                    logger.error(f"Mentor {mentor.id} holds {held} matches over capacity {mentor.capacity}.")
                self._capacity[mentor.id] = mentor.capacity
                self._remaining[mentor.id] = max(mentor.capacity - held, 0)
        logger.debug(f"Capacity tracker initialized for {len(self._remaining)} mentors.")
        return self

    def try_reserve(self, mentor_id: int) -> bool:
        with self._lock:
            if self._remaining.get(mentor_id, 0) > 0:
                self._remaining[mentor_id] -= 1
                return True
            return False

    def release(self, mentor_id: int) -> None:
        with self._lock:
            if mentor_id not in self._remaining:
                return
            if self._remaining[mentor_id] >= self._capacity[mentor_id]:
                raise CapacityExceededError(f"Release for mentor {mentor_id} would exceed its capacity of {self._capacity[mentor_id]}")
            self._remaining[mentor_id] += 1

    def remaining(self, mentor_id: int) -> int:
        with self._lock:
            return self._remaining.get(mentor_id, 0)

    def snapshot(self) -> Dict[int, int]:
        with self._lock:
            return dict(self._remaining)


class PersistedCapacityLedger:
    """Slot reservations against mentor_registrations.reserved_slots, guarded by conditional UPDATEs."""

    def __init__(self, db: Session):
        self.db = db

    def try_reserve(self, mentor_id: int) -> bool:
        updated = self.db.query(MentorRegistration).filter(
            MentorRegistration.id == mentor_id,
            MentorRegistration.reserved_slots < MentorRegistration.capacity
        ).update(
            {MentorRegistration.reserved_slots: MentorRegistration.reserved_slots + 1},
            synchronize_session=False
        )
        return updated == 1

    def reserve_or_raise(self, mentor_id: int) -> None:
        if not self.try_reserve(mentor_id):
            raise CapacityExceededError(f"{ErrorMessages.CAPACITY_EXCEEDED} (mentor {mentor_id})")

    def release(self, mentor_id: int) -> None:
        updated = self.db.query(MentorRegistration).filter(
            MentorRegistration.id == mentor_id,
            MentorRegistration.reserved_slots > 0
        ).update(
            {MentorRegistration.reserved_slots: MentorRegistration.reserved_slots - 1},
            synchronize_session=False
        )
        if not updated:
            logger.warning(f"Release for mentor {mentor_id} found no reserved slot.")
