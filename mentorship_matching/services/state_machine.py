# mentorship_matching/services/state_machine.py
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..constants import BusinessRules, ErrorMessages
from ..core.capacity import PersistedCapacityLedger
from ..core.events import EventSink, EventType, LoggingEventSink, MatchEvent
from ..core.locks import ProgramLock
from ..exceptions import AuthorizationError, BusinessLogicError, ConcurrentModificationError
from ..models import ManualReviewFlag, Match, MatchStatus, NON_TERMINAL_STATUSES
from ..utils.validation_utils import ValidationUtils

if TYPE_CHECKING:
    from .rematch import RematchPolicy

logger = logging.getLogger(__name__)

# Status a match must be in for each rejection to apply
REJECTION_SOURCE = {
    MatchStatus.REJECTED_BY_MENTOR: MatchStatus.PENDING_MENTOR_ACCEPTANCE,
    MatchStatus.REJECTED_BY_MENTEE: MatchStatus.PENDING_MENTEE_ACCEPTANCE,
}


@dataclass
class RejectionOutcome:
    match: Match
    new_match: Optional[Match] = None # Replacement proposed from the next preference
    review_flag: Optional[ManualReviewFlag] = None # Set when the mentee needs a manual assignment


class MatchStateMachine:
    """
    Lifecycle of a single match:

        PROPOSED -> PENDING_MENTOR_ACCEPTANCE -> PENDING_MENTEE_ACCEPTANCE -> ACCEPTED
                    |                            |
                    v                            v
                    REJECTED_BY_MENTOR           REJECTED_BY_MENTEE

    plus SUPERSEDED from any non-terminal status when the program closes.

    Every write is a compare-and-set against the status read just before it;
    a lost race raises ConcurrentModificationError and nothing is retried.
    """

    def __init__(self, db: Session, rematch_policy: "RematchPolicy", event_sink: Optional[EventSink] = None):
        self.db = db
        self.settings = get_settings()
        self.validator = ValidationUtils(db)
        self.ledger = PersistedCapacityLedger(db)
        self.rematch_policy = rematch_policy
        self.event_sink = event_sink or LoggingEventSink()

    # --- Transitions ---

    def advance(self, match: Match) -> None:
        """PROPOSED -> PENDING_MENTOR_ACCEPTANCE. Called by the coordinator; the caller commits."""
        respond_by = datetime.now(timezone.utc) + timedelta(days=self.settings.AUTO_REJECT_DAYS)
        self._compare_and_set(match.id, MatchStatus.PROPOSED.value, MatchStatus.PENDING_MENTOR_ACCEPTANCE, respond_by=respond_by)

    def mentor_accept(self, match_id: int, actor_user_id: int) -> Match:
        match = self.validator.get_match_or_404(match_id)
        self._authorize_mentor(match, actor_user_id)
        self.validator.validate_match_status(match, MatchStatus.PENDING_MENTOR_ACCEPTANCE)

        self._compare_and_set(match.id, match.status, MatchStatus.PENDING_MENTEE_ACCEPTANCE)
        self._commit(f"mentor accept of match {match_id}")
        self.db.refresh(match)
        logger.info(f"Match {match.id}: mentor {match.mentor_id} accepted mentee {match.mentee_id}.")

        self._publish(EventType.MATCH_ADVANCED, match)
        return match

    def mentee_accept(self, match_id: int, actor_user_id: int) -> Match:
        match = self.validator.get_match_or_404(match_id)
        self._authorize_mentee(match, actor_user_id)
        self.validator.validate_match_status(match, MatchStatus.PENDING_MENTEE_ACCEPTANCE)

        self._compare_and_set(match.id, match.status, MatchStatus.ACCEPTED, decided_at=datetime.now(timezone.utc))
        self._commit(f"mentee accept of match {match_id}")
        self.db.refresh(match)
        logger.info(f"Match {match.id} accepted (mentor {match.mentor_id}, mentee {match.mentee_id}, rank {match.rank}).")

        self._publish(EventType.MATCH_ACCEPTED, match)
        return match

    def mentor_reject(self, match_id: int, actor_user_id: int, reason: Optional[str]) -> RejectionOutcome:
        match = self.validator.get_match_or_404(match_id)
        self._authorize_mentor(match, actor_user_id)
        cleaned = self.validator.validate_rejection_reason(reason)
        self.validator.validate_match_status(match, MatchStatus.PENDING_MENTOR_ACCEPTANCE)
        return self._reject(match, MatchStatus.REJECTED_BY_MENTOR, cleaned)

    def mentee_reject(self, match_id: int, actor_user_id: int, reason: Optional[str]) -> RejectionOutcome:
        match = self.validator.get_match_or_404(match_id)
        self._authorize_mentee(match, actor_user_id)
        cleaned = self.validator.validate_rejection_reason(reason)
        self.validator.validate_match_status(match, MatchStatus.PENDING_MENTEE_ACCEPTANCE)
        return self._reject(match, MatchStatus.REJECTED_BY_MENTEE, cleaned)

    def expire_overdue(self, now: Optional[datetime] = None) -> List[RejectionOutcome]:
        """Rejects, on the mentor's behalf, every match whose response deadline has passed."""
        now = now or datetime.now(timezone.utc)
        overdue = self.db.query(Match).filter(
            Match.status == MatchStatus.PENDING_MENTOR_ACCEPTANCE.value,
            Match.respond_by < now
        ).order_by(Match.id).all()

        reason = BusinessRules.AUTO_REJECT_REASON.format(days=self.settings.AUTO_REJECT_DAYS)
        outcomes = []
        for match in overdue:
            try:
                outcomes.append(self._reject(match, MatchStatus.REJECTED_BY_MENTOR, reason))
            except ConcurrentModificationError:
                # Answered in the meantime, or a run holds the program; the next sweep sees it again
                logger.warning(f"Skipped expiring match {match.id}: concurrent modification.")

        logger.info(f"Auto-rejected {len(outcomes)} of {len(overdue)} overdue matches.")
        return outcomes

    def supersede_program(self, program_id: int) -> List[int]:
        """
        Moves every non-terminal match of the program to SUPERSEDED and frees its slot.

        Runs in the caller's transaction. If any of the matches read here changes status
        before the bulk update lands, the whole closure fails with ConcurrentModificationError.
        """
        non_terminal = [s.value for s in NON_TERMINAL_STATUSES]
        rows = self.db.query(Match.id, Match.mentor_id).filter(
            Match.program_id == program_id,
            Match.status.in_(non_terminal)
        ).all()
        if not rows:
            return []

        match_ids = [row[0] for row in rows]
        updated = self.db.query(Match).filter(
            Match.id.in_(match_ids),
            Match.status.in_(non_terminal)
        ).update(
            {"status": MatchStatus.SUPERSEDED.value, "decided_at": datetime.now(timezone.utc)},
            synchronize_session=False
        )
        if updated != len(match_ids):
            self.db.rollback()
            raise ConcurrentModificationError(ErrorMessages.STALE_MATCH)

        for _, mentor_id in rows:
            self.ledger.release(mentor_id)

        logger.info(f"Superseded {updated} open matches in program {program_id}.")
        return match_ids

    # --- Internals ---

    def _reject(self, match: Match, new_status: MatchStatus, reason: str) -> RejectionOutcome:
        match_id, program_id = match.id, match.program_id
        expected = REJECTION_SOURCE[new_status].value

        # Rejection may consume capacity through rematching, so it is serialized with runs
        with ProgramLock(self.db).hold(program_id):
            try:
                self._compare_and_set(match_id, expected, new_status, rejection_reason=reason, decided_at=datetime.now(timezone.utc))
                self.ledger.release(match.mentor_id)
                outcome = self.rematch_policy.apply(match)
                self.db.commit()
            except BusinessLogicError:
                self.db.rollback()
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Database error rejecting match {match_id}: {e}")
                raise BusinessLogicError("Database error occurred while rejecting match")

        self.db.refresh(match)
        logger.info(f"Match {match_id} {new_status.value}: {reason}")

        self._publish(EventType.MATCH_REJECTED, match, reason=reason)
        if outcome.new_match is not None:
            self.db.refresh(outcome.new_match)
            self._publish(EventType.MATCH_CREATED, outcome.new_match)
            self._publish(EventType.MATCH_ADVANCED, outcome.new_match)
        elif outcome.review_flag is not None:
            self.event_sink.publish(MatchEvent(
                event_type=EventType.MENTEE_UNMATCHED,
                program_id=program_id,
                match_id=match_id,
                mentor_id=None,
                mentee_id=match.mentee_id,
                reason=outcome.review_flag.reason,
            ))
        return RejectionOutcome(match=match, new_match=outcome.new_match, review_flag=outcome.review_flag)

    def _compare_and_set(self, match_id: int, expected: str, new_status: MatchStatus, **values) -> None:
        updated = self.db.query(Match).filter(
            Match.id == match_id,
            Match.status == expected
        ).update({"status": new_status.value, **values}, synchronize_session=False)
        if updated != 1:
            self.db.rollback()
            logger.warning(f"Compare-and-set lost on match {match_id}: expected {expected}, target {new_status.value}.")
            raise ConcurrentModificationError(ErrorMessages.STALE_MATCH)

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error during {action}: {e}")
            raise BusinessLogicError(f"Database error occurred during {action}")

    def _authorize_mentor(self, match: Match, actor_user_id: int) -> None:
        if match.mentor.user_id != actor_user_id:
            raise AuthorizationError(ErrorMessages.NOT_MATCH_MENTOR)

    def _authorize_mentee(self, match: Match, actor_user_id: int) -> None:
        if match.mentee.user_id != actor_user_id:
            raise AuthorizationError(ErrorMessages.NOT_MATCH_MENTEE)

    def _publish(self, event_type: EventType, match: Match, reason: Optional[str] = None) -> None:
        self.event_sink.publish(MatchEvent(
            event_type=event_type,
            program_id=match.program_id,
            match_id=match.id,
            mentor_id=match.mentor_id,
            mentee_id=match.mentee_id,
            rank=match.rank,
            run_id=match.run_id,
            reason=reason,
            status=match.status,
        ))
