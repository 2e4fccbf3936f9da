# mentorship_matching/services/coordinator.py
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..constants import ErrorMessages
from ..core.capacity import CapacityTracker, PersistedCapacityLedger
from ..core.engine import MenteeSnapshot, assign
from ..core.events import EventSink, EventType, LoggingEventSink, MatchEvent
from ..core.locks import ProgramLock
from ..exceptions import (
    BusinessLogicError, CapacityExceededError, ConcurrentModificationError, PartialRunError, ValidationError,
)
from ..models import (
    ManualReviewFlag, Match, MatchingRun, MatchStatus, MatchType, MentoringProgram, MentorRegistration,
    MenteeRegistration, ProgramStatus, RegistrationStatus, RunStatus, ACTIVE_STATUSES, REJECTED_STATUSES,
)
from ..utils.validation_utils import ValidationUtils, check_preference_list
from .rematch import RematchPolicy
from .state_machine import MatchStateMachine

logger = logging.getLogger(__name__)


class MatchingRunCoordinator:
    """Creates matches: full runs, rematches after rejection, and manual overrides."""

    def __init__(self, db: Session, event_sink: Optional[EventSink] = None):
        self.db = db
        self.settings = get_settings()
        self.event_sink = event_sink or LoggingEventSink()
        self.validator = ValidationUtils(db)
        self.ledger = PersistedCapacityLedger(db)
        self.state_machine = MatchStateMachine(db, RematchPolicy(self), self.event_sink)

    def run_full(self, program_id: int, triggered_by: Optional[int] = None) -> MatchingRun:
        """
        Matches every approved mentee that has submitted preferences and has no active match.

        Mentees with an active match are never touched, so a repeated call with no
        acceptance activity in between creates nothing. Each match is committed on its
        own; if persistence stops part-way the committed matches stand, the run is
        marked FAILED, and the error carries the still-unmatched mentee ids.
        """
        self.validator.get_open_program_or_404(program_id)

        with ProgramLock(self.db).hold(program_id):
            # Closure may have committed between the check above and taking the lock
            self.validator.get_open_program_or_404(program_id)
            mentors = self.db.query(MentorRegistration).filter(
                MentorRegistration.program_id == program_id,
                MentorRegistration.status == RegistrationStatus.APPROVED.value
            ).order_by(MentorRegistration.id).all()
            mentor_capacities = {m.id: m.capacity for m in mentors}

            mentees = self._load_unmatched_mentees(program_id)
            self._validate_snapshot(mentees, mentor_capacities.keys())

            excluded = self._rejected_pairs(program_id)
            snapshot = [
                MenteeSnapshot(
                    registration_id=m.id,
                    submitted_at=m.submitted_at,
                    preferred_mentor_ids=tuple(m.preferred_mentor_ids),
                    excluded_mentor_ids=frozenset(excluded.get(m.id, ())),
                )
                for m in mentees
            ]

            tracker = CapacityTracker().initialize(mentors, self.validator.active_counts_by_mentor(program_id))
            result = assign(snapshot, mentor_capacities, tracker)

            run = MatchingRun(
                program_id=program_id,
                status=RunStatus.RUNNING.value,
                triggered_by=triggered_by,
                started_at=datetime.now(timezone.utc),
            )
            self.db.add(run)
            self.db.commit()
            run_id = run.id
            logger.info(f"Matching run {run_id} for program {program_id}: {len(snapshot)} mentees, {len(mentors)} mentors.")

            committed: List[Match] = []
            for position, proposal in enumerate(result.proposed_matches):
                try:
                    self.ledger.reserve_or_raise(proposal.mentor_id)
                    match = self.create_match(program_id, proposal.mentee_id, proposal.mentor_id, proposal.rank, run_id=run_id)
                    self._resolve_review_flags(program_id, proposal.mentee_id)
                    self.db.commit()
                except CapacityExceededError as e:
                    self.db.rollback()
                    logger.critical(f"Run {run_id}: capacity invariant broken for mentor {proposal.mentor_id}: {e}")
                    self._finish_run(run_id, RunStatus.FAILED, committed, self._still_unmatched(result, position), error=str(e))
                    raise
                except (SQLAlchemyError, BusinessLogicError) as e:
                    self.db.rollback()
                    logger.error(f"Run {run_id}: failed to persist match for mentee {proposal.mentee_id}: {e}")
                    unmatched = self._still_unmatched(result, position)
                    self._finish_run(run_id, RunStatus.FAILED, committed, unmatched, error=str(e))
                    raise PartialRunError(
                        f"Matching run {run_id} stopped after {len(committed)} matches",
                        run_id=run_id,
                        unmatched_mentee_ids=unmatched,
                        committed_match_ids=[m.id for m in committed],
                    ) from e

                committed.append(match)
                self._publish(EventType.MATCH_CREATED, match)
                self._publish(EventType.MATCH_ADVANCED, match)

            run = self._finish_run(run_id, RunStatus.COMPLETED, committed, result.unmatched_mentee_ids)

        for mentee_id in result.unmatched_mentee_ids:
            self.event_sink.publish(MatchEvent(
                event_type=EventType.MENTEE_UNMATCHED,
                program_id=program_id,
                mentee_id=mentee_id,
                run_id=run_id,
            ))

        logger.info(f"Matching run {run_id} completed: {len(committed)} matched, {len(result.unmatched_mentee_ids)} unmatched.")
        return run

    def manual_assign(self, program_id: int, mentee_id: int, mentor_id: int, admin_user_id: int) -> Match:
        """Administrator override for a mentee the algorithm could not place."""
        self.validator.get_open_program_or_404(program_id)
        mentee = self.validator.get_mentee_or_404(program_id, mentee_id)
        mentor = self.validator.get_mentor_or_404(program_id, mentor_id)
        if not mentee.is_approved:
            raise ValidationError("Mentee registration is not approved")
        if not mentor.is_approved:
            raise ValidationError("Mentor registration is not approved")
        rank = mentee.rank_of(mentor_id)

        with ProgramLock(self.db).hold(program_id):
            self.validator.get_open_program_or_404(program_id)
            if self.validator.has_active_match(program_id, mentee_id):
                raise ValidationError(ErrorMessages.MENTEE_ALREADY_MATCHED)
            if not self.ledger.try_reserve(mentor_id):
                raise ValidationError(ErrorMessages.CAPACITY_EXCEEDED)
            try:
                match = self.create_match(
                    program_id, mentee_id, mentor_id, rank,
                    match_type=MatchType.MANUAL, matched_by=admin_user_id,
                )
                self._resolve_review_flags(program_id, mentee_id)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                raise ConcurrentModificationError(ErrorMessages.MENTEE_ALREADY_MATCHED)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Database error in manual assignment of mentee {mentee_id}: {e}")
                raise BusinessLogicError("Database error occurred during manual assignment")

        self.db.refresh(match)
        logger.info(f"Admin {admin_user_id} manually matched mentee {mentee_id} to mentor {mentor_id} (rank {rank}).")
        self._publish(EventType.MATCH_CREATED, match)
        self._publish(EventType.MATCH_ADVANCED, match)
        return match

    def close_program(self, program_id: int) -> List[int]:
        """Archives the program and supersedes all of its undecided matches."""
        program = self.validator.get_open_program_or_404(program_id)
        with ProgramLock(self.db).hold(program_id):
            self.validator.get_open_program_or_404(program_id)
            try:
                superseded = self.state_machine.supersede_program(program_id)
                self.db.query(MentoringProgram).filter(MentoringProgram.id == program.id).update(
                    {"status": ProgramStatus.ARCHIVED.value, "closed_at": datetime.now(timezone.utc)},
                    synchronize_session=False
                )
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Database error closing program {program_id}: {e}")
                raise BusinessLogicError("Database error occurred while closing program")
        logger.info(f"Program {program_id} archived; {len(superseded)} matches superseded.")
        return superseded

    # --- Shared by runs, rematches and manual assignment. Callers reserve capacity and commit. ---

    def create_match(
        self,
        program_id: int,
        mentee_id: int,
        mentor_id: int,
        rank: Optional[int],
        match_type: MatchType = MatchType.PREFERRED,
        run_id: Optional[int] = None,
        previous_match_id: Optional[int] = None,
        matched_by: Optional[int] = None,
    ) -> Match:
        match = Match(
            program_id=program_id,
            mentee_id=mentee_id,
            mentor_id=mentor_id,
            rank=rank,
            match_type=match_type.value,
            status=MatchStatus.PROPOSED.value,
            run_id=run_id,
            previous_match_id=previous_match_id,
            matched_by=matched_by,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(match)
        self.db.flush()
        self.state_machine.advance(match)
        return match

    def flag_for_review(self, program_id: int, mentee_id: int, match_id: Optional[int], reason: str) -> ManualReviewFlag:
        flag = ManualReviewFlag(
            program_id=program_id,
            mentee_id=mentee_id,
            match_id=match_id,
            reason=reason,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(flag)
        self.db.flush()
        return flag

    # --- Internals ---

    def _load_unmatched_mentees(self, program_id: int) -> List[MenteeRegistration]:
        active = select(Match.mentee_id).where(
            Match.program_id == program_id,
            Match.status.in_([s.value for s in ACTIVE_STATUSES])
        )
        return self.db.query(MenteeRegistration).filter(
            MenteeRegistration.program_id == program_id,
            MenteeRegistration.status == RegistrationStatus.APPROVED.value,
            MenteeRegistration.submitted_at.isnot(None),
            MenteeRegistration.id.notin_(active)
        ).order_by(MenteeRegistration.submitted_at, MenteeRegistration.id).all()

    def _validate_snapshot(self, mentees: List[MenteeRegistration], eligible_mentor_ids) -> None:
        eligible = set(eligible_mentor_ids)
        errors: Dict[int, str] = {}
        for mentee in mentees:
            problem = check_preference_list(mentee.preferred_mentor_ids, eligible, self.settings.PREFERENCE_COUNT)
            if problem:
                errors[mentee.id] = problem
        if errors:
            logger.warning(f"Refusing to run: {len(errors)} mentee registrations have invalid preference lists.")
            raise ValidationError(f"{len(errors)} mentee registrations have invalid preference lists", errors=errors)

    def _rejected_pairs(self, program_id: int) -> Dict[int, Set[int]]:
        rows = self.db.query(Match.mentee_id, Match.mentor_id).filter(
            Match.program_id == program_id,
            Match.status.in_([s.value for s in REJECTED_STATUSES])
        ).all()
        pairs: Dict[int, Set[int]] = defaultdict(set)
        for mentee_id, mentor_id in rows:
            pairs[mentee_id].add(mentor_id)
        return pairs

    def _resolve_review_flags(self, program_id: int, mentee_id: int) -> None:
        resolved = self.db.query(ManualReviewFlag).filter(
            ManualReviewFlag.program_id == program_id,
            ManualReviewFlag.mentee_id == mentee_id,
            ManualReviewFlag.resolved_at.is_(None)
        ).update({"resolved_at": datetime.now(timezone.utc)}, synchronize_session=False)
        if resolved:
            logger.info(f"Resolved {resolved} manual review flags for mentee {mentee_id}.")

    @staticmethod
    def _still_unmatched(result, failed_position: int) -> List[int]:
        pending = [p.mentee_id for p in result.proposed_matches[failed_position:]]
        return pending + list(result.unmatched_mentee_ids)

    def _finish_run(self, run_id: int, status: RunStatus, committed: List[Match], unmatched: List[int], error: Optional[str] = None) -> MatchingRun:
        run = self.db.query(MatchingRun).filter(MatchingRun.id == run_id).one()
        run.status = status.value
        run.finished_at = datetime.now(timezone.utc)
        run.matched_count = len(committed)
        run.unmatched_mentee_ids = unmatched
        run.error = error
        self.db.commit()
        self.db.refresh(run)
        return run

    def _publish(self, event_type: EventType, match: Match) -> None:
        self.event_sink.publish(MatchEvent(
            event_type=event_type,
            program_id=match.program_id,
            match_id=match.id,
            mentor_id=match.mentor_id,
            mentee_id=match.mentee_id,
            rank=match.rank,
            run_id=match.run_id,
            status=match.status,
        ))
