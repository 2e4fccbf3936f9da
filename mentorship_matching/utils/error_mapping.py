# mentorship_matching/utils/error_mapping.py
import logging
from fastapi import HTTPException
from ..exceptions import (
    AuthorizationError, BusinessLogicError, CapacityExceededError, ConcurrentModificationError,
    InvalidStatusTransitionError, NotFoundError, PartialRunError, ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (AuthorizationError, 403),
    (InvalidStatusTransitionError, 409),
    (ConcurrentModificationError, 409),
    (CapacityExceededError, 500),
    (PartialRunError, 500),
)

def to_http_exception(error: BusinessLogicError) -> HTTPException:
    """Translates a service-layer error into the HTTP response a router should raise."""
    if isinstance(error, PartialRunError):
        return HTTPException(status_code=500, detail={
            "message": str(error),
            "run_id": error.run_id,
            "unmatched_mentee_ids": error.unmatched_mentee_ids,
            "committed_match_ids": error.committed_match_ids,
        })
    if isinstance(error, ValidationError) and error.errors:
        return HTTPException(status_code=422, detail={
            "message": str(error),
            "errors": {str(k): v for k, v in error.errors.items()},
        })
    for error_class, status_code in _STATUS_CODES:
        if isinstance(error, error_class):
            return HTTPException(status_code=status_code, detail=str(error))
    logger.error(f"Unmapped business error: {error}")
    return HTTPException(status_code=400, detail=str(error))
