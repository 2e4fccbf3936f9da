# mentorship_matching/dependencies/service_dependencies.py
from fastapi import Depends
from sqlalchemy.orm import Session
from ..database import get_db
from ..core.events import DeduplicatingDispatcher, EventSink, LoggingEventSink
from ..services.coordinator import MatchingRunCoordinator
from ..services.state_machine import MatchStateMachine
from ..services.registration_service import RegistrationService
from ..services.reporting_service import ReportingService

# Process-wide so that duplicate deliveries are suppressed across requests
_dispatcher = DeduplicatingDispatcher(handlers=[LoggingEventSink().publish])

def get_event_sink() -> EventSink:
    return _dispatcher

def get_coordinator(
    db: Session = Depends(get_db),
    event_sink: EventSink = Depends(get_event_sink)
) -> MatchingRunCoordinator:
    return MatchingRunCoordinator(db, event_sink)

def get_state_machine(coordinator: MatchingRunCoordinator = Depends(get_coordinator)) -> MatchStateMachine:
    return coordinator.state_machine

def get_registration_service(db: Session = Depends(get_db)) -> RegistrationService:
    return RegistrationService(db)

def get_reporting_service(db: Session = Depends(get_db)) -> ReportingService:
    return ReportingService(db)
