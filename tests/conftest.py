import os
import time

# Keep the module-level repo off disk and the hourly loop out of tests
os.environ.setdefault("TRICUP_DB_PATH", ":memory:")
os.environ.setdefault("TRICUP_DISABLE_SCHEDULER", "1")

import pytest

from tricup import services
from tricup.repository import Repo
from tricup.strava_client import StravaAPIError


class FakeStravaClient:
    def __init__(self):
        self.activities = {}
        self.failing_windows = set()
        self.list_calls = []
        self.refresh_calls = []
        self.refresh_payload = None
        self.refresh_error = None
        self.token_payload = None

    def build_authorize_url(self, scope="activity:read_all,profile:read_all", state=None):
        return "https://www.strava.com/oauth/authorize?client_id=123"

    def exchange_code_for_token(self, code):
        return self.token_payload

    def refresh_access_token(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refresh_payload

    def list_window_activities(self, access_token, after, before, per_page=100, max_pages=4):
        self.list_calls.append((access_token, after, before))
        if after in self.failing_windows:
            raise StravaAPIError("Strava activities request failed: 500 boom")
        return self.activities.get(after, [])


@pytest.fixture(autouse=True)
def in_memory_repo(monkeypatch):
    mem_repo = Repo(db_path=":memory:")
    monkeypatch.setattr(services, "repo", mem_repo)
    yield mem_repo


@pytest.fixture
def strava(monkeypatch):
    fake = FakeStravaClient()
    monkeypatch.setattr(services, "_strava_client", fake)
    return fake


@pytest.fixture
def connected_athlete(in_memory_repo):
    in_memory_repo.seed_team_assignments([("1001", "Dolphins")])
    return in_memory_repo.create_athlete(
        athlete_id="1001",
        name="Ada Lovelace",
        team="Dolphins",
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=int(time.time()) + 3600,
    )
