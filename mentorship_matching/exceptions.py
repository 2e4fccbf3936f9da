# mentorship_matching/exceptions.py
from typing import Dict, List, Optional


class BusinessLogicError(Exception):
    """Base exception for business logic errors"""
    pass

class NotFoundError(BusinessLogicError):
    """Raised when a resource is not found"""
    pass

class ValidationError(BusinessLogicError):
    """Raised when input is malformed (e.g. a bad preference list). Never coerced into a best-effort result."""

    def __init__(self, message: str, errors: Optional[Dict[int, str]] = None):
        super().__init__(message)
        # registration id -> problem, for run-level validation
        self.errors = errors or {}

class AuthorizationError(BusinessLogicError):
    """Raised when the acting user is not a party to the match or lacks the required role"""
    pass

class CapacityExceededError(BusinessLogicError):
    """Raised when a reservation would exceed a mentor's capacity. Signals a broken invariant."""
    pass

class InvalidStatusTransitionError(BusinessLogicError):
    """Raised when invalid status transition is attempted"""
    pass

class ConcurrentModificationError(BusinessLogicError):
    """Raised when a compare-and-set on a match status or a program run lock fails. Refetch and retry."""
    pass

class PartialRunError(BusinessLogicError):
    """Raised when a matching run stopped part-way through persisting its matches"""

    def __init__(self, message: str, run_id: Optional[int], unmatched_mentee_ids: List[int], committed_match_ids: List[int]):
        super().__init__(message)
        self.run_id = run_id
        self.unmatched_mentee_ids = unmatched_mentee_ids
        self.committed_match_ids = committed_match_ids
