import pytest

from mentorship_matching.models import MatchStatus


@pytest.fixture
def program_setup(factory):
    program = factory.program()
    admin = factory.user(is_admin=True)
    mentors = [factory.mentor(program) for _ in range(3)]
    mentee = factory.mentee(program, prefs=mentors)
    return program, admin, mentors, mentee


def _run(client, auth_headers, program, admin):
    response = client.post(f"/api/programs/{program.id}/matching/run", headers=auth_headers(admin))
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_register_and_fetch_profile(client):
    response = client.post("/register", json={"username": "grace", "password": "s3cret-pass"})
    assert response.status_code == 201
    assert response.json()["is_admin"] is False

    token = client.post("/token", data={"username": "grace", "password": "s3cret-pass"}).json()["access_token"]
    me = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["username"] == "grace"


def test_requests_without_token_are_rejected(client, program_setup):
    program, *_ = program_setup
    assert client.post(f"/api/programs/{program.id}/matching/run").status_code == 401


def test_only_admins_can_run_matching(client, auth_headers, program_setup):
    program, admin, mentors, mentee = program_setup
    response = client.post(f"/api/programs/{program.id}/matching/run", headers=auth_headers(mentee.user))
    assert response.status_code == 403


def test_run_then_both_sides_accept(client, auth_headers, program_setup):
    program, admin, mentors, mentee = program_setup
    run = _run(client, auth_headers, program, admin)
    assert run["status"] == "COMPLETED"
    assert run["matched_count"] == 1

    mine = client.get("/api/matches/mine", headers=auth_headers(mentee.user)).json()
    assert len(mine) == 1
    match_id = mine[0]["id"]
    assert mine[0]["status"] == MatchStatus.PENDING_MENTOR_ACCEPTANCE.value

    early = client.put(f"/api/matches/{match_id}/mentee/accept", headers=auth_headers(mentee.user))
    assert early.status_code == 409

    forbidden = client.put(f"/api/matches/{match_id}/mentor/accept", headers=auth_headers(mentee.user))
    assert forbidden.status_code == 403

    advanced = client.put(f"/api/matches/{match_id}/mentor/accept", headers=auth_headers(mentors[0].user))
    assert advanced.json()["status"] == MatchStatus.PENDING_MENTEE_ACCEPTANCE.value

    accepted = client.put(f"/api/matches/{match_id}/mentee/accept", headers=auth_headers(mentee.user))
    assert accepted.status_code == 200
    assert accepted.json()["status"] == MatchStatus.ACCEPTED.value


def test_mentor_rejection_returns_replacement(client, auth_headers, program_setup):
    program, admin, mentors, mentee = program_setup
    _run(client, auth_headers, program, admin)
    match_id = client.get("/api/matches/mine", headers=auth_headers(mentee.user)).json()[0]["id"]
    url = f"/api/matches/{match_id}/mentor/reject"

    too_short = client.put(url, json={"reason": "no"}, headers=auth_headers(mentors[0].user))
    assert too_short.status_code == 422

    response = client.put(url, json={"reason": "On leave until next year"}, headers=auth_headers(mentors[0].user))
    assert response.status_code == 200
    body = response.json()
    assert body["match"]["status"] == MatchStatus.REJECTED_BY_MENTOR.value
    assert body["new_match"]["mentor_id"] == mentors[1].id
    assert body["new_match"]["rank"] == 2
    assert body["requires_manual_review"] is False


def test_invalid_preferences_are_reported_per_registration(client, auth_headers, factory):
    program = factory.program()
    m1, m2, _ = [factory.mentor(program) for _ in range(3)]
    mentee = factory.mentee(program)

    response = client.post(
        f"/api/programs/{program.id}/preferences",
        json={"preferred_mentor_ids": [m1.id, m1.id, m2.id]},
        headers=auth_headers(mentee.user),
    )

    assert response.status_code == 422
    assert response.json()["detail"]["errors"] == {str(mentee.id): "Cannot select the same mentor multiple times"}


def test_statistics_and_unmatched(client, auth_headers, program_setup, factory):
    program, admin, mentors, mentee = program_setup
    factory.mentee(program, prefs=mentors)
    factory.mentee(program, prefs=mentors)
    left_over = factory.mentee(program, prefs=mentors)
    _run(client, auth_headers, program, admin)

    stats = client.get(f"/api/programs/{program.id}/statistics", headers=auth_headers(admin)).json()
    assert stats["matches_by_status"][MatchStatus.PENDING_MENTOR_ACCEPTANCE.value] == 3
    assert stats["unmatched_mentees"] == 1

    unmatched = client.get(f"/api/programs/{program.id}/unmatched", headers=auth_headers(admin)).json()
    assert [u["mentee_id"] for u in unmatched] == [left_over.id]
    assert unmatched[0]["requires_manual_review"] is False


def test_close_program_then_run_is_refused(client, auth_headers, program_setup):
    program, admin, mentors, mentee = program_setup
    _run(client, auth_headers, program, admin)

    closed = client.post(f"/api/programs/{program.id}/close", headers=auth_headers(admin))
    assert closed.status_code == 200
    assert len(closed.json()["superseded_match_ids"]) == 1

    again = client.post(f"/api/programs/{program.id}/matching/run", headers=auth_headers(admin))
    assert again.status_code == 422


def test_unknown_program(client, auth_headers, factory):
    admin = factory.user(is_admin=True)
    assert client.post("/api/programs/999/matching/run", headers=auth_headers(admin)).status_code == 404
