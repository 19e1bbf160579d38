from __future__ import annotations

import logging
import time
from datetime import date, datetime, time as dt_time, timezone
from typing import Any, Dict, Iterable, List, Optional

from .config_loader import CONFIG_FILES, config_value, load_json_config
from .repository import Repo
from .strava_client import StravaAPIError, StravaClient

logger = logging.getLogger(__name__)

_CONFIG = load_json_config(*CONFIG_FILES)

repo = Repo(config_value("TRICUP_DB_PATH", "database_path", "tricup.db", config=_CONFIG))

# Hours per discipline are multiplied by these before summing.
SWIM_WEIGHT = 2.0
BIKE_WEIGHT = 0.65
RUN_WEIGHT = 1.0

ACTIVITY_DISCIPLINES = {
    "Swim": "swim",
    "Ride": "bike",
    "VirtualRide": "bike",
    "Run": "run",
}

DEFAULT_WEEKS = [
    {"label": "Week 1 (10-16 March 2025)", "start": "2025-03-10", "end": "2025-03-16"},
    {"label": "Week 2 (17-23 March 2025)", "start": "2025-03-17", "end": "2025-03-23"},
    {"label": "Week 3 (24-30 March 2025)", "start": "2025-03-24", "end": "2025-03-30"},
    {"label": "Week 4 (31 March - 6 April 2025)", "start": "2025-03-31", "end": "2025-04-06"},
]

NO_WEEKLY_STATS_MESSAGE = "No weekly stats available for this athlete."

_strava_client: Optional[StravaClient] = None


class TokenRefreshError(RuntimeError):
    """
    Raised when an expired Strava token cannot be refreshed.
    """


class TeamAssignmentMissing(ValueError):
    """
    Raised when an athlete signs in without a pre-seeded team.
    """


# ---------- Helpers ----------


def _get_strava_client() -> StravaClient:
    global _strava_client
    if _strava_client is None:
        _strava_client = StravaClient()
    return _strava_client


def _day_bounds(start: str, end: str) -> tuple[int, int]:
    """
    Epoch seconds for ``start`` 00:00:00Z and ``end`` 23:59:59Z.
    """
    start_dt = datetime.combine(date.fromisoformat(start), dt_time.min, tzinfo=timezone.utc)
    end_dt = datetime.combine(
        date.fromisoformat(end), dt_time(23, 59, 59), tzinfo=timezone.utc
    )
    return int(start_dt.timestamp()), int(end_dt.timestamp())


def build_week_windows(weeks: Optional[Iterable[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    """
    Turn ``{label, start, end}`` entries into ``{label, after, before}`` windows.
    Falls back to the configured weeks, then to the built-in challenge weeks.
    """
    if weeks is None:
        weeks = _CONFIG.get("weeks") or DEFAULT_WEEKS
    windows = []
    for entry in weeks:
        after, before = _day_bounds(entry["start"], entry["end"])
        if before < after:
            raise ValueError(f"week {entry['label']!r} ends before it starts")
        windows.append({"label": entry["label"], "after": after, "before": before})
    return windows


def _round2(value: Any) -> float:
    return round(float(value or 0.0), 2)


def sum_hours_by_discipline(activities: Iterable[Dict[str, Any]]) -> Dict[str, float]:
    """
    Total moving time in hours for swim, bike and run.
    Activity types outside those three disciplines are ignored.
    """
    hours = {"swim": 0.0, "bike": 0.0, "run": 0.0}
    for activity in activities:
        discipline = ACTIVITY_DISCIPLINES.get(activity.get("type") or "")
        if discipline is None:
            continue
        hours[discipline] += float(activity.get("moving_time") or 0) / 3600
    return hours


def weighted_scores(hours: Dict[str, float]) -> Dict[str, float]:
    swim = hours.get("swim", 0.0) * SWIM_WEIGHT
    bike = hours.get("bike", 0.0) * BIKE_WEIGHT
    run = hours.get("run", 0.0) * RUN_WEIGHT
    return {"swim": swim, "bike": bike, "run": run, "total": swim + bike + run}


# ---------- Tokens ----------


def ensure_fresh_token(athlete: Dict[str, Any], now: Optional[int] = None) -> str:
    """
    Return a usable access token for ``athlete``, refreshing it through
    Strava and persisting the new triple when the stored one has expired.
    """
    if now is None:
        now = int(time.time())
    expires_at = athlete.get("expires_at")
    if expires_at and int(expires_at) > now:
        return athlete["access_token"]

    client = _get_strava_client()
    try:
        refreshed = client.refresh_access_token(athlete["refresh_token"])
        access_token = refreshed["access_token"]
        refresh_token = refreshed.get("refresh_token") or athlete["refresh_token"]
        new_expires = int(refreshed["expires_at"])
    except (StravaAPIError, RuntimeError, KeyError, TypeError, ValueError) as exc:
        logger.error("Error refreshing token for athlete %s: %s", athlete.get("id"), exc)
        raise TokenRefreshError("Unable to refresh athlete token") from exc

    repo.update_tokens(
        athlete_id=athlete["id"],
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=new_expires,
    )
    athlete.update(
        {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": new_expires,
        }
    )
    return access_token


# ---------- Scores ----------


def compute_week_score(
    access_token: str, window: Dict[str, Any], now: int
) -> Dict[str, Any]:
    """
    Weighted swim/bike/run hours for one week window.
    Weeks that have not started yet and weeks whose fetch fails score zero.
    """
    hours = {"swim": 0.0, "bike": 0.0, "run": 0.0}
    if window["after"] <= now:
        try:
            activities = _get_strava_client().list_window_activities(
                access_token,
                after=window["after"],
                before=window["before"],
            )
            hours = sum_hours_by_discipline(activities)
        except (StravaAPIError, TypeError, ValueError, AttributeError) as exc:
            logger.error("Error fetching activities for %s: %s", window["label"], exc)
            hours = {"swim": 0.0, "bike": 0.0, "run": 0.0}

    row = weighted_scores(hours)
    row["week"] = window["label"]
    return row


def update_athlete_score(
    athlete_id: str,
    now: Optional[int] = None,
    weeks: Optional[List[Dict[str, Any]]] = None,
) -> Optional[List[Dict[str, Any]]]:
    """
    Recompute every weekly score for one athlete and replace the stored rows.

    Returns the freshly written rows, or None when the athlete is unknown.
    Raises TokenRefreshError if the athlete's token cannot be refreshed;
    stored scores are left untouched in that case.
    """
    athlete = repo.get_athlete(athlete_id)
    if not athlete:
        logger.error("Athlete %s not found in athletes table.", athlete_id)
        return None

    if now is None:
        now = int(time.time())
    token = ensure_fresh_token(athlete, now)
    windows = build_week_windows(weeks)

    rows = [compute_week_score(token, w, now) for w in windows]
    repo.replace_weekly_scores(athlete["id"], rows)
    logger.info(
        "Weekly scores updated for athlete %s (%s).", athlete.get("name"), athlete["id"]
    )
    return rows


def update_all_athletes() -> Dict[str, int]:
    """
    Run the score update for every connected athlete, one after another.
    A failing athlete is logged and skipped.
    """
    updated = 0
    failed = 0
    for athlete_id in repo.list_athlete_ids():
        try:
            update_athlete_score(athlete_id)
        except Exception:
            logger.exception("Error updating athlete %s", athlete_id)
            failed += 1
            continue
        logger.info("Updated athlete %s", athlete_id)
        updated += 1
    return {"updated": updated, "failed": failed}


# ---------- OAuth ----------


def get_strava_authorize_url() -> str:
    return _get_strava_client().build_authorize_url()


def handle_strava_callback(code: str) -> Dict[str, Any]:
    """
    Finish the OAuth flow: exchange ``code``, check the team assignment,
    then create the athlete (with initial scores) or refresh its tokens.

    Returns the Strava athlete payload for the session.
    """
    token_payload = _get_strava_client().exchange_code_for_token(code)
    athlete = token_payload.get("athlete") or {}
    if athlete.get("id") is None:
        raise StravaAPIError("Strava response missing athlete id")
    athlete_id = str(athlete["id"])

    team_name = repo.get_team_assignment(athlete_id)
    if team_name is None:
        logger.warning("Athlete %s is not assigned to any team.", athlete_id)
        raise TeamAssignmentMissing("Athlete does not have a predefined team assignment.")

    access_token = token_payload["access_token"]
    refresh_token = token_payload["refresh_token"]
    expires_at = int(token_payload["expires_at"])

    if repo.get_athlete(athlete_id) is None:
        name = f"{athlete.get('firstname', '')} {athlete.get('lastname', '')}".strip()
        repo.create_athlete(
            athlete_id=athlete_id,
            name=name,
            team=team_name,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )
        update_athlete_score(athlete_id)
    else:
        repo.update_tokens(
            athlete_id=athlete_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    return athlete


# ---------- Read models ----------


def get_weekly_totals(athlete_id: str) -> List[Dict[str, Any]]:
    return [
        {
            "week": r["week"],
            "swim": _round2(r["swim"]),
            "bike": _round2(r["bike"]),
            "run": _round2(r["run"]),
            "total": _round2(r["total"]),
        }
        for r in repo.list_weekly_scores(athlete_id)
    ]


def get_team_details(team_name: str) -> List[Dict[str, Any]]:
    """
    Weekly breakdown for each athlete on ``team_name``, with per-athlete sums.
    """
    result = []
    for athlete in repo.list_team_athletes(team_name):
        weeks = get_weekly_totals(athlete["id"])
        totals = {key: 0.0 for key in ("swim", "bike", "run", "total")}
        for row in weeks:
            for key in totals:
                totals[key] += row[key]
        result.append(
            {
                "name": athlete["name"],
                "weeks": weeks,
                "total": {key: _round2(value) for key, value in totals.items()},
            }
        )
    return result


def get_leaderboard() -> List[Dict[str, Any]]:
    """
    One entry per assigned team, highest total first.
    ``left_to_connect`` counts assigned athletes without any score rows.
    """
    connected = {row["team"]: row for row in repo.team_score_totals()}
    leaderboard = []
    for team in repo.count_assigned_by_team():
        team_name = team["team_name"]
        scores = connected.get(team_name) or {}
        leaderboard.append(
            {
                "team": team_name,
                "swim": _round2(scores.get("swim")),
                "bike": _round2(scores.get("bike")),
                "run": _round2(scores.get("run")),
                "total": _round2(scores.get("total")),
                "left_to_connect": team["total_assigned"]
                - int(scores.get("total_connected") or 0),
            }
        )
    leaderboard.sort(key=lambda entry: entry["total"], reverse=True)
    return leaderboard
