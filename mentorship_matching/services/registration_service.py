# mentorship_matching/services/registration_service.py
import logging
from datetime import datetime, timezone
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..constants import ErrorMessages
from ..exceptions import AuthorizationError, BusinessLogicError, ValidationError
from ..models import MenteeRegistration, RegistrationStatus
from ..utils.validation_utils import ValidationUtils, check_preference_list

logger = logging.getLogger(__name__)


class RegistrationService:
    def __init__(self, db: Session):
        self.db = db
        self.validator = ValidationUtils(db)

    def submit_preferences(self, program_id: int, user_id: int, preferred_mentor_ids: List[int]) -> MenteeRegistration:
        """Stores a mentee's ranked mentor choices after checking them against the program's approved mentors"""
        self.validator.get_open_program_or_404(program_id)

        mentee = self.db.query(MenteeRegistration).filter(
            MenteeRegistration.program_id == program_id,
            MenteeRegistration.user_id == user_id
        ).first()
        if not mentee:
            raise AuthorizationError("No mentee registration for this user in the program")
        if mentee.status != RegistrationStatus.APPROVED.value:
            raise ValidationError("Mentee registration is not approved")
        if self.validator.has_active_match(program_id, mentee.id):
            raise ValidationError(ErrorMessages.MENTEE_ALREADY_MATCHED)

        problem = check_preference_list(
            preferred_mentor_ids, self.validator.approved_mentor_ids(program_id), self.validator.settings.PREFERENCE_COUNT
        )
        if problem:
            raise ValidationError(problem, errors={mentee.id: problem})

        try:
            mentee.preferred_mentor_ids = list(preferred_mentor_ids)
            mentee.submitted_at = datetime.now(timezone.utc)
            self.db.add(mentee)
            self.db.commit()
            self.db.refresh(mentee)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error saving preferences for mentee {mentee.id}: {e}")
            raise BusinessLogicError("Database error occurred while saving preferences")

        logger.info(f"Mentee {mentee.id} submitted preferences {mentee.preferred_mentor_ids} for program {program_id}")
        return mentee
