# mentorship_matching/services/__init__.py
from .coordinator import MatchingRunCoordinator
from .state_machine import MatchStateMachine, RejectionOutcome
from .rematch import RematchPolicy
from .registration_service import RegistrationService
from .reporting_service import ReportingService

__all__ = [
    "MatchingRunCoordinator",
    "MatchStateMachine",
    "RejectionOutcome",
    "RematchPolicy",
    "RegistrationService",
    "ReportingService",
]
