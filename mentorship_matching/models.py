# mentorship_matching/models.py
from enum import Enum
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Boolean, ForeignKey, Sequence, Index
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from .database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ProgramStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"

class RegistrationStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class MatchStatus(str, Enum):
    PROPOSED = "PROPOSED"
    PENDING_MENTOR_ACCEPTANCE = "PENDING_MENTOR_ACCEPTANCE"
    PENDING_MENTEE_ACCEPTANCE = "PENDING_MENTEE_ACCEPTANCE"
    ACCEPTED = "ACCEPTED"
    REJECTED_BY_MENTOR = "REJECTED_BY_MENTOR"
    REJECTED_BY_MENTEE = "REJECTED_BY_MENTEE"
    SUPERSEDED = "SUPERSEDED" # Program closed before the match was decided

class MatchType(str, Enum):
    PREFERRED = "PREFERRED" # Produced from the mentee's ranked list (run or rematch)
    MANUAL = "MANUAL" # Assigned by an administrator

class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

# Matches that are still in flight
NON_TERMINAL_STATUSES = (
    MatchStatus.PROPOSED,
    MatchStatus.PENDING_MENTOR_ACCEPTANCE,
    MatchStatus.PENDING_MENTEE_ACCEPTANCE,
)
# Matches that occupy a mentor slot and block the mentee from further matching
ACTIVE_STATUSES = NON_TERMINAL_STATUSES + (MatchStatus.ACCEPTED,)
REJECTED_STATUSES = (MatchStatus.REJECTED_BY_MENTOR, MatchStatus.REJECTED_BY_MENTEE)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, Sequence('user_id_seq'), primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False, nullable=False) # Program coordinators / staff
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    mentor_registrations = relationship("MentorRegistration", back_populates="user")
    mentee_registrations = relationship("MenteeRegistration", back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"


class MentoringProgram(Base):
    __tablename__ = "mentoring_programs"

    id = Column(Integer, Sequence('program_id_seq'), primary_key=True, index=True)
    name = Column(String, nullable=False)
    status = Column(String, default=ProgramStatus.PUBLISHED.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    closed_at = Column(DateTime(timezone=True), nullable=True)

    mentor_registrations = relationship("MentorRegistration", back_populates="program")
    mentee_registrations = relationship("MenteeRegistration", back_populates="program")

    def __repr__(self):
        return f"<MentoringProgram(id={self.id}, name='{self.name}', status='{self.status}')>"


class MentorRegistration(Base):
    __tablename__ = "mentor_registrations"

    id = Column(Integer, Sequence('mentor_registration_id_seq'), primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("mentoring_programs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, default=RegistrationStatus.SUBMITTED.value, nullable=False)
    capacity = Column(Integer, nullable=False, default=1)
    # Persisted capacity ledger: slots held by PROPOSED/PENDING_*/ACCEPTED matches
    reserved_slots = Column(Integer, nullable=False, default=0)
    areas_of_mentoring = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="mentor_registrations")
    program = relationship("MentoringProgram", back_populates="mentor_registrations")

    @property
    def is_approved(self) -> bool:
        return self.status == RegistrationStatus.APPROVED.value

    def __repr__(self):
        return f"<MentorRegistration(id={self.id}, program_id={self.program_id}, capacity={self.capacity}, reserved={self.reserved_slots})>"


class MenteeRegistration(Base):
    __tablename__ = "mentee_registrations"

    id = Column(Integer, Sequence('mentee_registration_id_seq'), primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("mentoring_programs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, default=RegistrationStatus.SUBMITTED.value, nullable=False)
    # Ordered mentor registration ids, rank 1 first
    preferred_mentor_ids = Column(JSONType, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True) # When the preference list was submitted
    areas_of_mentoring = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="mentee_registrations")
    program = relationship("MentoringProgram", back_populates="mentee_registrations")

    @property
    def is_approved(self) -> bool:
        return self.status == RegistrationStatus.APPROVED.value

    def rank_of(self, mentor_id: int):
        """1-based position of mentor_id in the preference list, or None."""
        prefs = self.preferred_mentor_ids or []
        return prefs.index(mentor_id) + 1 if mentor_id in prefs else None

    def __repr__(self):
        return f"<MenteeRegistration(id={self.id}, program_id={self.program_id}, prefs={self.preferred_mentor_ids})>"


class MatchingRun(Base):
    __tablename__ = "matching_runs"

    id = Column(Integer, Sequence('matching_run_id_seq'), primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("mentoring_programs.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, default=RunStatus.RUNNING.value, nullable=False)
    triggered_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    matched_count = Column(Integer, nullable=False, default=0)
    unmatched_mentee_ids = Column(JSONType, nullable=True)
    error = Column(Text, nullable=True)

    def __repr__(self):
        return f"<MatchingRun(id={self.id}, program_id={self.program_id}, status='{self.status}', matched={self.matched_count})>"


class Match(Base):
    __tablename__ = "matches"

    id = Column(Integer, Sequence('match_id_seq'), primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("mentoring_programs.id", ondelete="CASCADE"), nullable=False, index=True)
    mentor_id = Column(Integer, ForeignKey("mentor_registrations.id", ondelete="CASCADE"), nullable=False, index=True)
    mentee_id = Column(Integer, ForeignKey("mentee_registrations.id", ondelete="CASCADE"), nullable=False, index=True)
    rank = Column(Integer, nullable=True) # NULL only for manual matches outside the preference list
    match_type = Column(String, default=MatchType.PREFERRED.value, nullable=False)
    status = Column(String, default=MatchStatus.PROPOSED.value, nullable=False)

    run_id = Column(Integer, ForeignKey("matching_runs.id", ondelete="SET NULL"), nullable=True)
    previous_match_id = Column(Integer, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True)
    matched_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    respond_by = Column(DateTime(timezone=True), nullable=True) # Mentor response deadline
    decided_at = Column(DateTime(timezone=True), nullable=True)

    mentor = relationship("MentorRegistration", foreign_keys=[mentor_id])
    mentee = relationship("MenteeRegistration", foreign_keys=[mentee_id])

    @property
    def is_terminal(self) -> bool:
        return self.status not in {s.value for s in NON_TERMINAL_STATUSES}

    def __repr__(self):
        return f"<Match(id={self.id}, mentor_id={self.mentor_id}, mentee_id={self.mentee_id}, rank={self.rank}, status='{self.status}')>"

# One in-flight or accepted match per mentee per program
Index(
    "uq_matches_active_mentee",
    Match.program_id,
    Match.mentee_id,
    unique=True,
    postgresql_where=Match.status.in_([s.value for s in ACTIVE_STATUSES]),
    sqlite_where=Match.status.in_([s.value for s in ACTIVE_STATUSES]),
)


class ManualReviewFlag(Base):
    __tablename__ = "manual_review_flags"

    id = Column(Integer, Sequence('manual_review_flag_id_seq'), primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("mentoring_programs.id", ondelete="CASCADE"), nullable=False, index=True)
    mentee_id = Column(Integer, ForeignKey("mentee_registrations.id", ondelete="CASCADE"), nullable=False, index=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True) # Rejected match that triggered it
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<ManualReviewFlag(id={self.id}, mentee_id={self.mentee_id}, resolved={self.resolved_at is not None})>"


class ProgramRunLock(Base):
    __tablename__ = "program_run_locks"

    program_id = Column(Integer, ForeignKey("mentoring_programs.id", ondelete="CASCADE"), primary_key=True)
    holder = Column(String, nullable=False)
    acquired_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<ProgramRunLock(program_id={self.program_id}, holder='{self.holder}')>"
