from datetime import datetime, timedelta
from types import SimpleNamespace

from mentorship_matching.core.capacity import CapacityTracker
from mentorship_matching.core.engine import MenteeSnapshot, ProposedMatch, assign

T0 = datetime(2026, 1, 5, 9, 0)


def _tracker(capacities):
    return CapacityTracker().initialize([SimpleNamespace(id=k, capacity=v) for k, v in capacities.items()], {})


def _mentee(registration_id, prefs, minutes, excluded=()):
    return MenteeSnapshot(
        registration_id=registration_id,
        submitted_at=T0 + timedelta(minutes=minutes),
        preferred_mentor_ids=tuple(prefs),
        excluded_mentor_ids=frozenset(excluded),
    )


def _run(mentees, capacities):
    return assign(mentees, capacities, _tracker(capacities))


def test_earlier_submission_wins_contested_mentor():
    capacities = {1: 1, 2: 1, 3: 1}
    result = _run([_mentee(20, [1, 2, 3], minutes=5), _mentee(10, [1, 2, 3], minutes=1)], capacities)

    assert result.proposed_matches == [
        ProposedMatch(mentee_id=10, mentor_id=1, rank=1),
        ProposedMatch(mentee_id=20, mentor_id=2, rank=2),
    ]
    assert result.unmatched_mentee_ids == []


def test_capacity_two_with_three_first_choices_cascades_third_mentee():
    capacities = {1: 2, 2: 1, 3: 1}
    mentees = [
        _mentee(1, [1, 2, 3], minutes=1),
        _mentee(2, [1, 3, 2], minutes=2),
        _mentee(3, [1, 2, 3], minutes=3),
    ]
    result = _run(mentees, capacities)

    assert result.proposed_matches == [
        ProposedMatch(mentee_id=1, mentor_id=1, rank=1),
        ProposedMatch(mentee_id=2, mentor_id=1, rank=1),
        ProposedMatch(mentee_id=3, mentor_id=2, rank=2),
    ]


def test_identical_timestamps_break_ties_by_registration_id():
    capacities = {1: 1, 2: 1, 3: 1}
    result = _run([_mentee(8, [1, 2, 3], minutes=0), _mentee(4, [1, 2, 3], minutes=0)], capacities)
    assert result.proposed_matches[0] == ProposedMatch(mentee_id=4, mentor_id=1, rank=1)
    assert result.proposed_matches[1] == ProposedMatch(mentee_id=8, mentor_id=2, rank=2)


def test_same_snapshot_gives_same_assignment_regardless_of_input_order():
    capacities = {1: 1, 2: 2, 3: 1}
    mentees = [
        _mentee(1, [1, 2, 3], minutes=3),
        _mentee(2, [1, 3, 2], minutes=1),
        _mentee(3, [2, 1, 3], minutes=2),
        _mentee(4, [1, 2, 3], minutes=4),
    ]
    first = _run(mentees, capacities)
    second = _run(list(reversed(mentees)), capacities)
    assert first == second


def test_all_preferences_full_leaves_mentee_unmatched():
    capacities = {1: 1, 2: 1, 3: 1}
    mentees = [_mentee(i, [1, 2, 3], minutes=i) for i in range(1, 5)]
    result = _run(mentees, capacities)
    assert len(result.proposed_matches) == 3
    assert result.unmatched_mentee_ids == [4]


def test_ineligible_and_excluded_mentors_are_skipped():
    capacities = {2: 1, 3: 1}
    result = _run([_mentee(1, [1, 2, 3], minutes=1, excluded={2})], capacities)
    assert result.proposed_matches == [ProposedMatch(mentee_id=1, mentor_id=3, rank=3)]


def test_no_mentor_is_assigned_beyond_capacity():
    capacities = {1: 2, 2: 1, 3: 1}
    mentees = [_mentee(i, [1, 2, 3], minutes=i) for i in range(1, 8)]
    result = _run(mentees, capacities)

    per_mentor = {}
    for proposal in result.proposed_matches:
        per_mentor[proposal.mentor_id] = per_mentor.get(proposal.mentor_id, 0) + 1
    assert all(per_mentor[m] <= capacities[m] for m in per_mentor)
    assert len(result.proposed_matches) + len(result.unmatched_mentee_ids) == len(mentees)
