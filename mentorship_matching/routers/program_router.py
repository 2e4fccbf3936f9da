# mentorship_matching/routers/program_router.py
from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query

from ..services import MatchingRunCoordinator, RegistrationService, ReportingService
from ..dependencies.service_dependencies import get_coordinator, get_registration_service, get_reporting_service
from ..schemas import (
    MatchResponse, MatchingStatistics, PreferenceSubmission, ProgramClosureResponse, UnmatchedMenteeResponse,
)
from ..models import MatchStatus, User
from ..security import get_current_active_user, get_current_admin_user
from ..exceptions import BusinessLogicError
from ..utils.error_mapping import to_http_exception

router = APIRouter(prefix="/api/programs", tags=["programs"])

@router.post("/{program_id}/preferences", status_code=200)
async def submit_preferences(
    submission: PreferenceSubmission,
    program_id: int = Path(...),
    current_user: User = Depends(get_current_active_user),
    registration_service: RegistrationService = Depends(get_registration_service)
):
    """Submit the current user's ranked mentor choices"""
    try:
        mentee = registration_service.submit_preferences(program_id, current_user.id, submission.preferred_mentor_ids)
    except BusinessLogicError as e:
        raise to_http_exception(e)
    return {
        "mentee_id": mentee.id,
        "preferred_mentor_ids": mentee.preferred_mentor_ids,
        "submitted_at": mentee.submitted_at,
    }

@router.post("/{program_id}/close", response_model=ProgramClosureResponse)
async def close_program(
    program_id: int = Path(...),
    admin: User = Depends(get_current_admin_user),
    coordinator: MatchingRunCoordinator = Depends(get_coordinator)
):
    """Archive the program and supersede its undecided matches"""
    try:
        superseded = coordinator.close_program(program_id)
    except BusinessLogicError as e:
        raise to_http_exception(e)
    return ProgramClosureResponse(program_id=program_id, superseded_match_ids=superseded)

@router.get("/{program_id}/statistics", response_model=MatchingStatistics)
async def get_statistics(
    program_id: int = Path(...),
    current_user: User = Depends(get_current_active_user),
    reporting_service: ReportingService = Depends(get_reporting_service)
):
    try:
        return reporting_service.get_statistics(program_id)
    except BusinessLogicError as e:
        raise to_http_exception(e)

@router.get("/{program_id}/unmatched", response_model=List[UnmatchedMenteeResponse])
async def get_unmatched_mentees(
    program_id: int = Path(...),
    admin: User = Depends(get_current_admin_user),
    reporting_service: ReportingService = Depends(get_reporting_service)
):
    """Mentees still waiting for a match, with their manual review state"""
    try:
        return reporting_service.get_unmatched_mentees(program_id)
    except BusinessLogicError as e:
        raise to_http_exception(e)

@router.get("/{program_id}/matches", response_model=List[MatchResponse])
async def get_program_matches(
    program_id: int = Path(...),
    status: Optional[MatchStatus] = Query(None),
    admin: User = Depends(get_current_admin_user),
    reporting_service: ReportingService = Depends(get_reporting_service)
):
    try:
        return reporting_service.get_matches(program_id, status)
    except BusinessLogicError as e:
        raise to_http_exception(e)
