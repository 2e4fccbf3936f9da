import os
from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

# Must be set before the package reads its settings and builds the engine
os.environ["DATABASE_URL"] = "sqlite://"

from fastapi.testclient import TestClient  # noqa: E402

from mentorship_matching import models  # noqa: E402,F401
from mentorship_matching.core.events import InMemoryEventSink  # noqa: E402
from mentorship_matching.database import Base, SessionLocal, engine, get_db  # noqa: E402
from mentorship_matching.models import (  # noqa: E402
    MentoringProgram, MentorRegistration, MenteeRegistration, ProgramStatus, RegistrationStatus, User,
)
from mentorship_matching.security import create_access_token  # noqa: E402
from mentorship_matching.services import MatchingRunCoordinator  # noqa: E402

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


class Factory:
    """Builds committed users, programs and registrations."""

    def __init__(self, db):
        self.db = db
        self._seq = count(1)

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, username=None, is_admin=False) -> User:
        n = next(self._seq)
        # Tokens are minted directly in tests, so the hash is never checked
        return self._save(User(username=username or f"user{n}", hashed_password="not-a-hash", is_admin=is_admin))

    def program(self, name="Spring Cohort", status=ProgramStatus.PUBLISHED) -> MentoringProgram:
        return self._save(MentoringProgram(name=name, status=status.value))

    def mentor(self, program, capacity=1, approved=True, user=None) -> MentorRegistration:
        user = user or self.user()
        return self._save(MentorRegistration(
            program_id=program.id,
            user_id=user.id,
            capacity=capacity,
            status=(RegistrationStatus.APPROVED if approved else RegistrationStatus.SUBMITTED).value,
        ))

    def mentee(self, program, prefs=None, minutes=None, approved=True, user=None) -> MenteeRegistration:
        """`prefs` are mentor registrations (or ids); `minutes` offsets submitted_at from a fixed base."""
        user = user or self.user()
        n = next(self._seq)
        prefs = [p if isinstance(p, int) else p.id for p in (prefs or [])]
        submitted_at = BASE_TIME + timedelta(minutes=n if minutes is None else minutes) if prefs else None
        return self._save(MenteeRegistration(
            program_id=program.id,
            user_id=user.id,
            status=(RegistrationStatus.APPROVED if approved else RegistrationStatus.SUBMITTED).value,
            preferred_mentor_ids=prefs or None,
            submitted_at=submitted_at,
        ))


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def event_sink():
    return InMemoryEventSink()


@pytest.fixture
def coordinator(db_session, event_sink):
    return MatchingRunCoordinator(db_session, event_sink)


@pytest.fixture
def client(db_session):
    from mentorship_matching.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': user.username})}"}
    return _headers
