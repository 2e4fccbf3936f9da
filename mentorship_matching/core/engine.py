import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List, Mapping, Sequence, Tuple

from .capacity import CapacityTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MenteeSnapshot:
    """Immutable view of a mentee registration taken at the start of a run."""
    registration_id: int
    submitted_at: datetime
    preferred_mentor_ids: Tuple[int, ...]
    # Mentors who already rejected (or were rejected by) this mentee in the program
    excluded_mentor_ids: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        return (self.submitted_at, self.registration_id)


@dataclass(frozen=True)
class ProposedMatch:
    mentee_id: int
    mentor_id: int
    rank: int # 1-based position in the mentee's preference list


@dataclass(frozen=True)
class AssignmentResult:
    proposed_matches: List[ProposedMatch]
    unmatched_mentee_ids: List[int]


def assign(
    mentees: Sequence[MenteeSnapshot],
    mentor_capacities: Mapping[int, int],
    tracker: CapacityTracker,
) -> AssignmentResult:
    """
    Serial dictatorship over ranked preferences.

    Mentees are served in (submitted_at, registration_id) order. Each takes the
    best-ranked eligible mentor that still has a slot in the tracker; a mentee whose
    preferences are all full, ineligible or excluded ends up unmatched.

    Preference lists are assumed valid (exactly N distinct ids); callers validate
    before invoking. Output depends only on the inputs, so the same snapshot always
    yields the same assignment.

    Args:
        mentees: Snapshot of mentees without an active match.
        mentor_capacities: Eligible mentor id -> declared capacity.
        tracker: Remaining-slot ledger for this run.

    Returns:
        AssignmentResult with proposed matches in serving order and unmatched mentee ids.
    """
    proposed: List[ProposedMatch] = []
    unmatched: List[int] = []

    for mentee in sorted(mentees, key=lambda m: m.sort_key):
        match = None
        for rank, mentor_id in enumerate(mentee.preferred_mentor_ids, start=1):
            if mentor_id not in mentor_capacities:
                logger.debug(f"Mentee {mentee.registration_id}: mentor {mentor_id} (rank {rank}) is not eligible.")
                continue
            if mentor_id in mentee.excluded_mentor_ids:
                logger.debug(f"Mentee {mentee.registration_id}: mentor {mentor_id} (rank {rank}) previously rejected.")
                continue
            if tracker.try_reserve(mentor_id):
                match = ProposedMatch(mentee_id=mentee.registration_id, mentor_id=mentor_id, rank=rank)
                break
            logger.debug(f"Mentee {mentee.registration_id}: mentor {mentor_id} (rank {rank}) is full.")

        if match is None:
            unmatched.append(mentee.registration_id)
        else:
            proposed.append(match)

    logger.info(f"Assigned {len(proposed)} of {len(mentees)} mentees; {len(unmatched)} unmatched.")
    return AssignmentResult(proposed_matches=proposed, unmatched_mentee_ids=unmatched)
