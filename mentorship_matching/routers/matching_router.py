# mentorship_matching/routers/matching_router.py
import logging
from typing import List
from fastapi import APIRouter, Depends, Path

from ..services import MatchingRunCoordinator, ReportingService
from ..dependencies.service_dependencies import get_coordinator, get_reporting_service
from ..schemas import ExpiryResponse, ManualMatchRequest, MatchResponse, MatchingRunResponse
from ..models import User
from ..security import get_current_admin_user
from ..exceptions import BusinessLogicError
from ..utils.error_mapping import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["matching"])

@router.post("/programs/{program_id}/matching/run", response_model=MatchingRunResponse, status_code=201)
async def run_matching(
    program_id: int = Path(..., description="The program to run matching for"),
    admin: User = Depends(get_current_admin_user),
    coordinator: MatchingRunCoordinator = Depends(get_coordinator)
):
    """Run preference-based matching for every unmatched mentee in the program"""
    try:
        return coordinator.run_full(program_id, triggered_by=admin.id)
    except BusinessLogicError as e:
        raise to_http_exception(e)

@router.post("/programs/{program_id}/matching/manual", response_model=MatchResponse, status_code=201)
async def manual_match(
    request: ManualMatchRequest,
    program_id: int = Path(...),
    admin: User = Depends(get_current_admin_user),
    coordinator: MatchingRunCoordinator = Depends(get_coordinator)
):
    """Assign a mentor to a mentee by hand"""
    try:
        return coordinator.manual_assign(program_id, request.mentee_id, request.mentor_id, admin.id)
    except BusinessLogicError as e:
        raise to_http_exception(e)

@router.get("/programs/{program_id}/matching/runs", response_model=List[MatchingRunResponse])
async def list_runs(
    program_id: int = Path(...),
    admin: User = Depends(get_current_admin_user),
    reporting_service: ReportingService = Depends(get_reporting_service)
):
    """Matching run history, newest first"""
    try:
        return reporting_service.get_runs(program_id)
    except BusinessLogicError as e:
        raise to_http_exception(e)

@router.post("/matching/expire", response_model=ExpiryResponse)
async def expire_overdue_matches(
    admin: User = Depends(get_current_admin_user),
    coordinator: MatchingRunCoordinator = Depends(get_coordinator)
):
    """Auto-reject matches whose mentor response deadline has passed. Intended for a scheduler."""
    try:
        outcomes = coordinator.state_machine.expire_overdue()
    except BusinessLogicError as e:
        raise to_http_exception(e)
    logger.info(f"Expiry sweep triggered by admin {admin.id}: {len(outcomes)} matches expired.")
    return ExpiryResponse(expired_match_ids=[outcome.match.id for outcome in outcomes])
