# mentorship_matching/services/reporting_service.py
from typing import Any, Dict, List, Optional
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from ..models import (
    ManualReviewFlag, Match, MatchingRun, MatchStatus, MatchType, MentorRegistration, MenteeRegistration,
    RegistrationStatus, ACTIVE_STATUSES,
)
from ..utils.validation_utils import ValidationUtils

class ReportingService:
    def __init__(self, db: Session):
        self.db = db
        self.validator = ValidationUtils(db)

    def get_unmatched_mentees(self, program_id: int) -> List[Dict[str, Any]]:
        """Approved mentees with submitted preferences and no active match"""
        self.validator.get_program_or_404(program_id)
        active = select(Match.mentee_id).where(
            Match.program_id == program_id,
            Match.status.in_([s.value for s in ACTIVE_STATUSES])
        )
        mentees = self.db.query(MenteeRegistration).filter(
            MenteeRegistration.program_id == program_id,
            MenteeRegistration.status == RegistrationStatus.APPROVED.value,
            MenteeRegistration.submitted_at.isnot(None),
            MenteeRegistration.id.notin_(active)
        ).order_by(MenteeRegistration.submitted_at, MenteeRegistration.id).all()

        flagged = {row[0] for row in self.db.query(ManualReviewFlag.mentee_id).filter(
            ManualReviewFlag.program_id == program_id,
            ManualReviewFlag.resolved_at.is_(None)
        ).all()}

        return [
            {
                "mentee_id": mentee.id,
                "user_id": mentee.user_id,
                "preferred_mentor_ids": mentee.preferred_mentor_ids or [],
                "submitted_at": mentee.submitted_at,
                "requires_manual_review": mentee.id in flagged,
            }
            for mentee in mentees
        ]

    def get_statistics(self, program_id: int) -> Dict[str, Any]:
        self.validator.get_program_or_404(program_id)
        by_status = dict(self.db.query(Match.status, func.count(Match.id)).filter(
            Match.program_id == program_id
        ).group_by(Match.status).all())
        by_type = dict(self.db.query(Match.match_type, func.count(Match.id)).filter(
            Match.program_id == program_id
        ).group_by(Match.match_type).all())

        total_mentors = self.db.query(MentorRegistration).filter(
            MentorRegistration.program_id == program_id,
            MentorRegistration.status == RegistrationStatus.APPROVED.value
        ).count()
        total_mentees = self.db.query(MenteeRegistration).filter(
            MenteeRegistration.program_id == program_id,
            MenteeRegistration.status == RegistrationStatus.APPROVED.value
        ).count()
        open_reviews = self.db.query(ManualReviewFlag).filter(
            ManualReviewFlag.program_id == program_id,
            ManualReviewFlag.resolved_at.is_(None)
        ).count()

        return {
            "program_id": program_id,
            "total_mentors": total_mentors,
            "total_mentees": total_mentees,
            "matches_by_status": {s.value: by_status.get(s.value, 0) for s in MatchStatus},
            "matches_by_type": {t.value: by_type.get(t.value, 0) for t in MatchType},
            "unmatched_mentees": len(self.get_unmatched_mentees(program_id)),
            "open_manual_reviews": open_reviews,
        }

    def get_matches(self, program_id: int, status: Optional[MatchStatus] = None) -> List[Match]:
        self.validator.get_program_or_404(program_id)
        query = self.db.query(Match).filter(Match.program_id == program_id)
        if status is not None:
            query = query.filter(Match.status == status.value)
        return query.order_by(Match.id).all()

    def get_matches_for_user(self, user_id: int) -> List[Match]:
        """Matches where the user is either the mentor or the mentee"""
        mentor_ids = select(MentorRegistration.id).where(MentorRegistration.user_id == user_id)
        mentee_ids = select(MenteeRegistration.id).where(MenteeRegistration.user_id == user_id)
        return self.db.query(Match).filter(
            or_(Match.mentor_id.in_(mentor_ids), Match.mentee_id.in_(mentee_ids))
        ).order_by(Match.id).all()

    def get_runs(self, program_id: int) -> List[MatchingRun]:
        self.validator.get_program_or_404(program_id)
        return self.db.query(MatchingRun).filter(
            MatchingRun.program_id == program_id
        ).order_by(MatchingRun.id.desc()).all()
