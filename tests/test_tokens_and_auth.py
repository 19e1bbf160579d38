import time

import pytest

from tricup import services
from tricup.strava_client import StravaAPIError


def _expired_athlete(repo, athlete_id="2002", team="Sharks"):
    repo.seed_team_assignments([(athlete_id, team)])
    return repo.create_athlete(
        athlete_id=athlete_id,
        name="Grace Hopper",
        team=team,
        access_token="old-access",
        refresh_token="old-refresh",
        expires_at=int(time.time()) - 60,
    )


def test_valid_token_is_reused_without_refresh(strava, connected_athlete):
    token = services.ensure_fresh_token(connected_athlete)

    assert token == "access-1"
    assert strava.refresh_calls == []


def test_expired_token_is_refreshed_and_persisted(strava, in_memory_repo):
    athlete = _expired_athlete(in_memory_repo)
    new_expiry = int(time.time()) + 6 * 3600
    strava.refresh_payload = {
        "access_token": "new-access",
        "refresh_token": "new-refresh",
        "expires_at": new_expiry,
    }

    token = services.ensure_fresh_token(athlete)

    assert token == "new-access"
    assert strava.refresh_calls == ["old-refresh"]
    stored = in_memory_repo.get_athlete("2002")
    assert stored["access_token"] == "new-access"
    assert stored["refresh_token"] == "new-refresh"
    assert stored["expires_at"] == new_expiry


def test_refresh_failure_aborts_update_and_keeps_scores(strava, in_memory_repo):
    _expired_athlete(in_memory_repo)
    in_memory_repo.replace_weekly_scores(
        "2002", [{"week": "Week 1", "swim": 1.0, "bike": 0.0, "run": 0.0, "total": 1.0}]
    )
    strava.refresh_error = StravaAPIError("Strava token request failed: 401")

    with pytest.raises(services.TokenRefreshError):
        services.update_athlete_score("2002")

    assert strava.list_calls == []
    assert len(in_memory_repo.list_weekly_scores("2002")) == 1


def test_update_all_isolates_failing_athlete(strava, in_memory_repo, connected_athlete):
    _expired_athlete(in_memory_repo)
    strava.refresh_error = StravaAPIError("Strava token request failed: 400")

    result = services.update_all_athletes()

    assert result == {"updated": 1, "failed": 1}
    assert len(in_memory_repo.list_weekly_scores("1001")) == 4
    assert in_memory_repo.list_weekly_scores("2002") == []


def _token_payload(athlete_id=3003):
    return {
        "access_token": "cb-access",
        "refresh_token": "cb-refresh",
        "expires_at": int(time.time()) + 3600,
        "athlete": {"id": athlete_id, "firstname": "Katherine", "lastname": "Johnson"},
    }


def test_missing_team_assignment_blocks_account_creation(strava, in_memory_repo):
    strava.token_payload = _token_payload()

    with pytest.raises(services.TeamAssignmentMissing):
        services.handle_strava_callback("auth-code")

    assert in_memory_repo.get_athlete("3003") is None
    assert strava.list_calls == []


def test_first_sign_in_creates_athlete_with_scores(strava, in_memory_repo):
    in_memory_repo.seed_team_assignments([("3003", "Orcas")])
    strava.token_payload = _token_payload()

    athlete = services.handle_strava_callback("auth-code")

    assert athlete["id"] == 3003
    stored = in_memory_repo.get_athlete("3003")
    assert stored["name"] == "Katherine Johnson"
    assert stored["team"] == "Orcas"
    assert stored["access_token"] == "cb-access"
    assert len(in_memory_repo.list_weekly_scores("3003")) == len(
        services.build_week_windows()
    )


def test_repeat_sign_in_only_updates_tokens(strava, in_memory_repo):
    in_memory_repo.seed_team_assignments([("3003", "Orcas")])
    in_memory_repo.create_athlete("3003", "Katherine Johnson", "Orcas", "a", "r", 1)
    strava.token_payload = _token_payload()

    services.handle_strava_callback("auth-code")

    stored = in_memory_repo.get_athlete("3003")
    assert stored["access_token"] == "cb-access"
    assert stored["refresh_token"] == "cb-refresh"
    assert strava.list_calls == []
    assert in_memory_repo.list_weekly_scores("3003") == []


def test_callback_without_athlete_id_fails(strava):
    strava.token_payload = {"access_token": "x", "refresh_token": "y", "expires_at": 1}

    with pytest.raises(StravaAPIError):
        services.handle_strava_callback("auth-code")
