# mentorship_matching/services/rematch.py
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..constants import BusinessRules
from ..models import ManualReviewFlag, Match, MatchType

if TYPE_CHECKING:
    from .coordinator import MatchingRunCoordinator

logger = logging.getLogger(__name__)


@dataclass
class RematchResult:
    new_match: Optional[Match] = None
    review_flag: Optional[ManualReviewFlag] = None


class RematchPolicy:
    """
    Chooses what happens to a mentee after their match is rejected.

    Walks the mentee's preferences after the rejected rank and proposes the first
    mentor that is approved, has not already rejected (or been rejected by) this
    mentee in the program, and has a free slot. When none qualifies the mentee is
    flagged for manual review. Manual matches go straight to review.
    """

    def __init__(self, coordinator: "MatchingRunCoordinator"):
        self.coordinator = coordinator

    def apply(self, rejected: Match) -> RematchResult:
        """Runs inside the rejecting transaction, after the rejected slot was released."""
        validator = self.coordinator.validator
        program_id, mentee_id = rejected.program_id, rejected.mentee_id

        if validator.has_active_match(program_id, mentee_id):
            logger.info(f"Mentee {mentee_id} already has an active match; no rematch needed.")
            return RematchResult()

        if rejected.match_type == MatchType.MANUAL.value or rejected.rank is None:
            return RematchResult(review_flag=self.coordinator.flag_for_review(program_id, mentee_id, rejected.id, "Manual match rejected"))

        prefs = rejected.mentee.preferred_mentor_ids or []
        excluded = validator.rejected_mentor_ids(program_id, mentee_id)
        eligible = validator.approved_mentor_ids(program_id)

        for rank in range(rejected.rank + 1, len(prefs) + 1):
            mentor_id = prefs[rank - 1]
            if mentor_id in excluded or mentor_id not in eligible:
                continue
            if not self.coordinator.ledger.try_reserve(mentor_id):
                logger.debug(f"Rematch for mentee {mentee_id}: mentor {mentor_id} (rank {rank}) is full.")
                continue
            new_match = self.coordinator.create_match(
                program_id, mentee_id, mentor_id, rank,
                previous_match_id=rejected.id,
            )
            logger.info(f"Rematched mentee {mentee_id} to mentor {mentor_id} at rank {rank} after match {rejected.id}.")
            return RematchResult(new_match=new_match)

        logger.warning(f"Mentee {mentee_id} in program {program_id} requires manual review.")
        return RematchResult(review_flag=self.coordinator.flag_for_review(program_id, mentee_id, rejected.id, BusinessRules.MANUAL_REVIEW_EXHAUSTED))
