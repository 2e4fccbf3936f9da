# mentorship_matching/utils/validation_utils.py
from typing import Collection, Dict, Optional, Sequence, Set
from sqlalchemy import func
from sqlalchemy.orm import Session
from ..models import (
    Match, MatchStatus, MentoringProgram, MentorRegistration, MenteeRegistration, ProgramStatus,
    RegistrationStatus, ACTIVE_STATUSES, REJECTED_STATUSES,
)
from ..config import get_settings
from ..constants import ErrorMessages
from ..exceptions import InvalidStatusTransitionError, NotFoundError, ValidationError


def check_preference_list(preferred_mentor_ids: Optional[Sequence[int]], eligible_mentor_ids: Collection[int], count: int) -> Optional[str]:
    """Returns a problem description for a malformed preference list, or None if it is valid."""
    prefs = list(preferred_mentor_ids or [])
    if len(prefs) != count:
        return ErrorMessages.PREFERENCE_COUNT.format(count=count)
    if len(set(prefs)) != len(prefs):
        return ErrorMessages.PREFERENCE_DUPLICATE
    if any(mentor_id not in eligible_mentor_ids for mentor_id in prefs):
        return ErrorMessages.PREFERENCE_INELIGIBLE
    return None


class ValidationUtils:
    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()

    def get_program_or_404(self, program_id: int) -> MentoringProgram:
        program = self.db.query(MentoringProgram).filter(MentoringProgram.id == program_id).first()
        if not program:
            raise NotFoundError(ErrorMessages.PROGRAM_NOT_FOUND)
        return program

    def get_open_program_or_404(self, program_id: int) -> MentoringProgram:
        program = self.get_program_or_404(program_id)
        if program.status == ProgramStatus.ARCHIVED.value:
            raise ValidationError(ErrorMessages.PROGRAM_CLOSED)
        return program

    def get_match_or_404(self, match_id: int) -> Match:
        match = self.db.query(Match).filter(Match.id == match_id).first()
        if not match:
            raise NotFoundError(ErrorMessages.MATCH_NOT_FOUND)
        return match

    def get_mentor_or_404(self, program_id: int, mentor_id: int) -> MentorRegistration:
        mentor = self.db.query(MentorRegistration).filter(
            MentorRegistration.id == mentor_id,
            MentorRegistration.program_id == program_id
        ).first()
        if not mentor:
            raise NotFoundError(ErrorMessages.MENTOR_NOT_FOUND)
        return mentor

    def get_mentee_or_404(self, program_id: int, mentee_id: int) -> MenteeRegistration:
        mentee = self.db.query(MenteeRegistration).filter(
            MenteeRegistration.id == mentee_id,
            MenteeRegistration.program_id == program_id
        ).first()
        if not mentee:
            raise NotFoundError(ErrorMessages.MENTEE_NOT_FOUND)
        return mentee

    def approved_mentor_ids(self, program_id: int) -> Set[int]:
        rows = self.db.query(MentorRegistration.id).filter(
            MentorRegistration.program_id == program_id,
            MentorRegistration.status == RegistrationStatus.APPROVED.value
        ).all()
        return {row[0] for row in rows}

    def validate_rejection_reason(self, reason: Optional[str]) -> str:
        cleaned = (reason or "").strip()
        min_length = self.settings.REJECTION_REASON_MIN_LENGTH
        if len(cleaned) < min_length:
            raise ValidationError(ErrorMessages.REASON_TOO_SHORT.format(length=min_length))
        return cleaned

    def validate_match_status(self, match: Match, expected_status: MatchStatus):
        if match.status != expected_status.value:
            raise InvalidStatusTransitionError(f"{ErrorMessages.INVALID_STATUS}: match is not {expected_status.value} (current: {match.status})")

    def has_active_match(self, program_id: int, mentee_id: int) -> bool:
        return self.db.query(Match.id).filter(
            Match.program_id == program_id,
            Match.mentee_id == mentee_id,
            Match.status.in_([s.value for s in ACTIVE_STATUSES])
        ).first() is not None

    def active_counts_by_mentor(self, program_id: int) -> Dict[int, int]:
        rows = self.db.query(Match.mentor_id, func.count(Match.id)).filter(
            Match.program_id == program_id,
            Match.status.in_([s.value for s in ACTIVE_STATUSES])
        ).group_by(Match.mentor_id).all()
        return {mentor_id: count for mentor_id, count in rows}

    def rejected_mentor_ids(self, program_id: int, mentee_id: int) -> Set[int]:
        """Mentors already rejected by, or rejecting, this mentee in the program."""
        rows = self.db.query(Match.mentor_id).filter(
            Match.program_id == program_id,
            Match.mentee_id == mentee_id,
            Match.status.in_([s.value for s in REJECTED_STATUSES])
        ).all()
        return {row[0] for row in rows}
