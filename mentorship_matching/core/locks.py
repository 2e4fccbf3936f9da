import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..constants import ErrorMessages
from ..exceptions import ConcurrentModificationError
from ..models import ProgramRunLock

logger = logging.getLogger(__name__)


class ProgramLock:
    """
    Leased advisory lock, one row per program in program_run_locks.

    Acquire inserts the row, or takes it over when the previous lease has expired.
    Acquiring and releasing commit the session, so use it before any pending work.
    """

    def __init__(self, db: Session, lease_seconds: Optional[int] = None):
        self.db = db
        self.lease = timedelta(seconds=lease_seconds or get_settings().RUN_LOCK_LEASE_SECONDS)

    def acquire(self, program_id: int) -> str:
        holder = uuid.uuid4().hex
        now = datetime.now(timezone.utc)

        taken_over = self.db.query(ProgramRunLock).filter(
            ProgramRunLock.program_id == program_id,
            ProgramRunLock.expires_at < now
        ).update(
            {ProgramRunLock.holder: holder, ProgramRunLock.acquired_at: now, ProgramRunLock.expires_at: now + self.lease},
            synchronize_session=False
        )
        if taken_over:
            logger.warning(f"Took over expired run lock for program {program_id}.")
        else:
            self.db.add(ProgramRunLock(program_id=program_id, holder=holder, acquired_at=now, expires_at=now + self.lease))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConcurrentModificationError(ErrorMessages.RUN_IN_PROGRESS)

        logger.debug(f"Acquired run lock for program {program_id} ({holder}).")
        return holder

    def release(self, program_id: int, holder: str) -> None:
        deleted = self.db.query(ProgramRunLock).filter(
            ProgramRunLock.program_id == program_id,
            ProgramRunLock.holder == holder
        ).delete(synchronize_session=False)
        self.db.commit()
        if not deleted:
            logger.warning(f"Run lock for program {program_id} was no longer held by {holder}.")

    @contextmanager
    def hold(self, program_id: int) -> Iterator[str]:
        holder = self.acquire(program_id)
        try:
            yield holder
        finally:
            # Discard whatever the failed body left pending before releasing
            self.db.rollback()
            self.release(program_id, holder)
