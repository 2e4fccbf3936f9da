from types import SimpleNamespace

import pytest

from mentorship_matching.core.capacity import CapacityTracker, PersistedCapacityLedger
from mentorship_matching.exceptions import CapacityExceededError


def _mentor(mentor_id, capacity):
    return SimpleNamespace(id=mentor_id, capacity=capacity)


def test_initialize_subtracts_held_matches():
    tracker = CapacityTracker().initialize([_mentor(1, 3), _mentor(2, 1)], {1: 2})
    assert tracker.snapshot() == {1: 1, 2: 1}


def test_initialize_floors_overcommitted_mentor_at_zero():
    tracker = CapacityTracker().initialize([_mentor(1, 1)], {1: 3})
    assert tracker.remaining(1) == 0
    assert tracker.try_reserve(1) is False


def test_reserve_until_full():
    tracker = CapacityTracker().initialize([_mentor(1, 2)], {})
    assert tracker.try_reserve(1)
    assert tracker.try_reserve(1)
    assert not tracker.try_reserve(1)
    assert tracker.remaining(1) == 0


def test_unknown_mentor_cannot_be_reserved():
    tracker = CapacityTracker().initialize([_mentor(1, 1)], {})
    assert tracker.try_reserve(99) is False
    # Releasing an unknown mentor is a no-op
    tracker.release(99)


def test_release_returns_slot():
    tracker = CapacityTracker().initialize([_mentor(1, 1)], {})
    tracker.try_reserve(1)
    tracker.release(1)
    assert tracker.remaining(1) == 1


def test_release_past_capacity_raises():
    tracker = CapacityTracker().initialize([_mentor(1, 1)], {})
    with pytest.raises(CapacityExceededError):
        tracker.release(1)


def test_persisted_ledger_respects_capacity(db_session, factory):
    program = factory.program()
    mentor = factory.mentor(program, capacity=1)
    ledger = PersistedCapacityLedger(db_session)

    assert ledger.try_reserve(mentor.id) is True
    assert ledger.try_reserve(mentor.id) is False
    with pytest.raises(CapacityExceededError):
        ledger.reserve_or_raise(mentor.id)

    ledger.release(mentor.id)
    db_session.commit()
    db_session.refresh(mentor)
    assert mentor.reserved_slots == 0


def test_persisted_ledger_release_never_goes_negative(db_session, factory):
    program = factory.program()
    mentor = factory.mentor(program, capacity=2)
    PersistedCapacityLedger(db_session).release(mentor.id)
    db_session.commit()
    db_session.refresh(mentor)
    assert mentor.reserved_slots == 0
