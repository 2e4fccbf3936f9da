# mentorship_matching/routers/match_router.py
from typing import List
from fastapi import APIRouter, Depends, Path

from ..services import MatchStateMachine, RejectionOutcome, ReportingService
from ..dependencies.service_dependencies import get_reporting_service, get_state_machine
from ..schemas import MatchResponse, RejectionRequest, RejectionResponse
from ..models import User
from ..security import get_current_active_user
from ..exceptions import BusinessLogicError
from ..utils.error_mapping import to_http_exception

router = APIRouter(prefix="/api/matches", tags=["matches"])

def _rejection_response(outcome: RejectionOutcome) -> RejectionResponse:
    return RejectionResponse(
        match=MatchResponse.model_validate(outcome.match),
        new_match=MatchResponse.model_validate(outcome.new_match) if outcome.new_match else None,
        requires_manual_review=outcome.review_flag is not None,
    )

@router.get("/mine", response_model=List[MatchResponse])
async def get_my_matches(
    current_user: User = Depends(get_current_active_user),
    reporting_service: ReportingService = Depends(get_reporting_service)
):
    """Matches where the current user is the mentor or the mentee"""
    return reporting_service.get_matches_for_user(current_user.id)

@router.put("/{match_id}/mentor/accept", response_model=MatchResponse)
async def mentor_accept(
    match_id: int = Path(...),
    current_user: User = Depends(get_current_active_user),
    state_machine: MatchStateMachine = Depends(get_state_machine)
):
    try:
        return state_machine.mentor_accept(match_id, current_user.id)
    except BusinessLogicError as e:
        raise to_http_exception(e)

@router.put("/{match_id}/mentor/reject", response_model=RejectionResponse)
async def mentor_reject(
    rejection: RejectionRequest,
    match_id: int = Path(...),
    current_user: User = Depends(get_current_active_user),
    state_machine: MatchStateMachine = Depends(get_state_machine)
):
    """Decline a match; the mentee is rematched from their remaining preferences"""
    try:
        outcome = state_machine.mentor_reject(match_id, current_user.id, rejection.reason)
    except BusinessLogicError as e:
        raise to_http_exception(e)
    return _rejection_response(outcome)

@router.put("/{match_id}/mentee/accept", response_model=MatchResponse)
async def mentee_accept(
    match_id: int = Path(...),
    current_user: User = Depends(get_current_active_user),
    state_machine: MatchStateMachine = Depends(get_state_machine)
):
    try:
        return state_machine.mentee_accept(match_id, current_user.id)
    except BusinessLogicError as e:
        raise to_http_exception(e)

@router.put("/{match_id}/mentee/reject", response_model=RejectionResponse)
async def mentee_reject(
    rejection: RejectionRequest,
    match_id: int = Path(...),
    current_user: User = Depends(get_current_active_user),
    state_machine: MatchStateMachine = Depends(get_state_machine)
):
    try:
        outcome = state_machine.mentee_reject(match_id, current_user.id, rejection.reason)
    except BusinessLogicError as e:
        raise to_http_exception(e)
    return _rejection_response(outcome)
