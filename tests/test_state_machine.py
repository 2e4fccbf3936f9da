from datetime import datetime, timedelta, timezone

import pytest

from mentorship_matching.core.events import EventType
from mentorship_matching.exceptions import (
    AuthorizationError, ConcurrentModificationError, InvalidStatusTransitionError, NotFoundError, ValidationError,
)
from mentorship_matching.models import Match, MatchStatus, MentorRegistration


@pytest.fixture
def pending_match(db_session, factory, coordinator):
    """One mentee matched at rank 1, waiting on the mentor."""
    program = factory.program()
    mentors = [factory.mentor(program) for _ in range(3)]
    factory.mentee(program, prefs=mentors)
    coordinator.run_full(program.id)
    return db_session.query(Match).one()


def _status(db_session, match_id):
    return db_session.query(Match.status).filter(Match.id == match_id).scalar()


def test_run_leaves_match_waiting_on_mentor_with_deadline(pending_match):
    assert pending_match.status == MatchStatus.PENDING_MENTOR_ACCEPTANCE.value
    assert pending_match.rank == 1
    assert pending_match.respond_by is not None


def test_full_acceptance_flow(pending_match, coordinator, event_sink):
    machine = coordinator.state_machine

    advanced = machine.mentor_accept(pending_match.id, pending_match.mentor.user_id)
    assert advanced.status == MatchStatus.PENDING_MENTEE_ACCEPTANCE.value

    accepted = machine.mentee_accept(pending_match.id, pending_match.mentee.user_id)
    assert accepted.status == MatchStatus.ACCEPTED.value
    assert accepted.decided_at is not None
    assert [e.match_id for e in event_sink.of_type(EventType.MATCH_ACCEPTED)] == [pending_match.id]


def test_only_the_assigned_mentor_may_respond(db_session, pending_match, coordinator, factory):
    stranger = factory.user()
    with pytest.raises(AuthorizationError):
        coordinator.state_machine.mentor_accept(pending_match.id, stranger.id)
    with pytest.raises(AuthorizationError):
        coordinator.state_machine.mentor_accept(pending_match.id, pending_match.mentee.user_id)
    assert _status(db_session, pending_match.id) == MatchStatus.PENDING_MENTOR_ACCEPTANCE.value


def test_mentee_cannot_accept_before_mentor(db_session, pending_match, coordinator, event_sink):
    events_before = len(event_sink.events)
    with pytest.raises(InvalidStatusTransitionError):
        coordinator.state_machine.mentee_accept(pending_match.id, pending_match.mentee.user_id)
    assert _status(db_session, pending_match.id) == MatchStatus.PENDING_MENTOR_ACCEPTANCE.value
    assert len(event_sink.events) == events_before


def test_accepted_match_is_final(db_session, pending_match, coordinator):
    machine = coordinator.state_machine
    machine.mentor_accept(pending_match.id, pending_match.mentor.user_id)
    machine.mentee_accept(pending_match.id, pending_match.mentee.user_id)

    with pytest.raises(InvalidStatusTransitionError):
        machine.mentor_reject(pending_match.id, pending_match.mentor.user_id, "Changed my mind entirely")
    with pytest.raises(InvalidStatusTransitionError):
        machine.mentee_reject(pending_match.id, pending_match.mentee.user_id, "Changed my mind entirely")
    assert _status(db_session, pending_match.id) == MatchStatus.ACCEPTED.value


def test_unknown_match(coordinator):
    with pytest.raises(NotFoundError):
        coordinator.state_machine.mentor_accept(9999, 1)


def test_short_rejection_reason_changes_nothing(db_session, pending_match, coordinator):
    with pytest.raises(ValidationError):
        coordinator.state_machine.mentor_reject(pending_match.id, pending_match.mentor.user_id, "  busy     ")
    assert _status(db_session, pending_match.id) == MatchStatus.PENDING_MENTOR_ACCEPTANCE.value


def test_stale_read_loses_compare_and_set(db_session, pending_match, coordinator, event_sink):
    match = db_session.get(Match, pending_match.id)
    assert match.status == MatchStatus.PENDING_MENTOR_ACCEPTANCE.value
    mentor_user_id = match.mentor.user_id
    # Another writer moves the row on; the in-session object still shows the old status
    db_session.query(Match).filter(Match.id == match.id).update(
        {"status": MatchStatus.PENDING_MENTEE_ACCEPTANCE.value}, synchronize_session=False
    )
    advanced_before = len(event_sink.of_type(EventType.MATCH_ADVANCED))

    with pytest.raises(ConcurrentModificationError):
        coordinator.state_machine.mentor_accept(match.id, mentor_user_id)

    assert len(event_sink.of_type(EventType.MATCH_ADVANCED)) == advanced_before


def test_rejection_releases_mentor_slot(db_session, pending_match, coordinator):
    mentor_id = pending_match.mentor_id
    outcome = coordinator.state_machine.mentor_reject(pending_match.id, pending_match.mentor.user_id, "  Fully booked this quarter  ")

    assert outcome.match.status == MatchStatus.REJECTED_BY_MENTOR.value
    assert outcome.match.rejection_reason == "Fully booked this quarter"
    reserved = db_session.query(MentorRegistration.reserved_slots).filter(MentorRegistration.id == mentor_id).scalar()
    assert reserved == 0


def test_overdue_match_is_rejected_on_mentors_behalf(db_session, pending_match, coordinator, event_sink):
    later = datetime.now(timezone.utc) + timedelta(days=4)
    outcomes = coordinator.state_machine.expire_overdue(now=later)

    assert [o.match.id for o in outcomes] == [pending_match.id]
    expired = outcomes[0].match
    assert expired.status == MatchStatus.REJECTED_BY_MENTOR.value
    assert expired.rejection_reason == "No response received within 3 days"
    # Rematched to the mentee's second choice
    assert outcomes[0].new_match.rank == 2
    assert [e.match_id for e in event_sink.of_type(EventType.MATCH_REJECTED)] == [pending_match.id]


def test_expiry_ignores_matches_within_deadline(pending_match, coordinator):
    assert coordinator.state_machine.expire_overdue() == []
