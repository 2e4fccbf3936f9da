from datetime import datetime
from typing import List, Dict, Optional
from pydantic import BaseModel, Field
from .models import MatchStatus, MatchType, RunStatus
from .constants import BusinessRules

# --- Authentication Schemas ---
class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=BusinessRules.MAX_USERNAME_LENGTH)

class UserCreate(UserBase):
    password: str = Field(..., min_length=BusinessRules.MIN_PASSWORD_LENGTH)

class UserResponse(UserBase):
    id: int
    is_active: bool
    is_admin: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Registrations held by the user, keyed by program id
    mentor_registration_ids: Dict[int, int] = {}
    mentee_registration_ids: Dict[int, int] = {}

    model_config = {
        "from_attributes": True,
    }

class Token(BaseModel):
    access_token: str
    token_type: str

class TokenData(BaseModel):
    username: Optional[str] = None

# --- Input Models ---

class PreferenceSubmission(BaseModel):
    preferred_mentor_ids: List[int] = Field(..., description="Mentor registration ids in order of preference, first choice first.")

class RejectionRequest(BaseModel):
    reason: str = Field(..., description="Why the match is being declined.")

class ManualMatchRequest(BaseModel):
    mentee_id: int = Field(..., description="Mentee registration id.")
    mentor_id: int = Field(..., description="Mentor registration id.")

# --- Output Models ---

class MatchResponse(BaseModel):
    id: int
    program_id: int
    mentor_id: int
    mentee_id: int
    rank: Optional[int]
    match_type: MatchType
    status: MatchStatus
    run_id: Optional[int] = None
    previous_match_id: Optional[int] = None
    matched_by: Optional[int] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    respond_by: Optional[datetime] = None
    decided_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True,
    }

class RejectionResponse(BaseModel):
    match: MatchResponse
    new_match: Optional[MatchResponse] = Field(None, description="Replacement match created from the mentee's remaining preferences.")
    requires_manual_review: bool = False

class MatchingRunResponse(BaseModel):
    id: int
    program_id: int
    status: RunStatus
    triggered_by: Optional[int] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    matched_count: int
    unmatched_mentee_ids: Optional[List[int]] = None
    error: Optional[str] = None

    model_config = {
        "from_attributes": True,
    }

class UnmatchedMenteeResponse(BaseModel):
    mentee_id: int
    user_id: int
    preferred_mentor_ids: List[int]
    submitted_at: Optional[datetime]
    requires_manual_review: bool

class MatchingStatistics(BaseModel):
    program_id: int
    total_mentors: int
    total_mentees: int
    matches_by_status: Dict[str, int]
    matches_by_type: Dict[str, int]
    unmatched_mentees: int
    open_manual_reviews: int

class ProgramClosureResponse(BaseModel):
    program_id: int
    superseded_match_ids: List[int]
    message: str = "Program closed."

class ExpiryResponse(BaseModel):
    expired_match_ids: List[int]
