import asyncio
import logging
import os
import secrets
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import BaseModel
from starlette.middleware.sessions import SessionMiddleware

load_dotenv()

from . import jobs, services
from .config_loader import config_value

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VIEWS_DIR = Path(__file__).resolve().parent / "views"


@asynccontextmanager
async def lifespan(app: FastAPI):
    refresh_task = None
    if not os.getenv("TRICUP_DISABLE_SCHEDULER"):
        refresh_task = asyncio.create_task(jobs.hourly_refresh_loop())
    logger.info("Team challenge API started")
    yield
    if refresh_task:
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            pass
    logger.info("Team challenge API shutdown")


app = FastAPI(title="Team Endurance Challenge", lifespan=lifespan)

app.add_middleware(
    SessionMiddleware,
    secret_key=config_value("SESSION_SECRET", "session_secret") or secrets.token_hex(32),
    same_site="lax",
)


# ---------- Pydantic models ----------


class WeekScoreOut(BaseModel):
    week: str
    swim: float
    bike: float
    run: float
    total: float


class ScoreTotalsOut(BaseModel):
    swim: float
    bike: float
    run: float
    total: float


class TeamAthleteOut(BaseModel):
    name: Optional[str] = None
    weeks: List[WeekScoreOut]
    total: ScoreTotalsOut


class LeaderboardEntryOut(BaseModel):
    team: str
    swim: float
    bike: float
    run: float
    total: float
    left_to_connect: int


class LeaderboardOut(BaseModel):
    leaderboard: List[LeaderboardEntryOut]


# ---------- Pages ----------


@app.get("/")
def index_page():
    return FileResponse(VIEWS_DIR / "index.html")


@app.get("/leaderboard")
def leaderboard_page():
    return FileResponse(VIEWS_DIR / "leaderboard.html")


# ---------- Strava OAuth ----------


@app.get("/auth/strava")
def auth_strava():
    try:
        url = services.get_strava_authorize_url()
    except RuntimeError as e:
        logger.error("Cannot start Strava OAuth: %s", e)
        return PlainTextResponse("Strava is not configured.", status_code=500)
    return RedirectResponse(url=url)


@app.get("/auth/strava/callback")
def auth_strava_callback(request: Request, code: Optional[str] = None):
    if not code:
        return PlainTextResponse("No code provided from Strava.", status_code=400)
    try:
        athlete = services.handle_strava_callback(code)
    except services.TeamAssignmentMissing as e:
        return PlainTextResponse(str(e), status_code=400)
    except Exception:
        logger.exception("Error during OAuth callback")
        return PlainTextResponse(
            "Authentication failed. Please try again.", status_code=500
        )

    request.session["athlete"] = {
        "id": str(athlete["id"]),
        "firstname": athlete.get("firstname"),
        "lastname": athlete.get("lastname"),
    }
    return RedirectResponse(url="/leaderboard", status_code=302)


# ---------- Scores ----------


@app.get("/api/weekly-totals")
def api_weekly_totals(request: Request):
    athlete = request.session.get("athlete")
    if not athlete:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    try:
        rows = services.get_weekly_totals(athlete["id"])
    except Exception:
        logger.exception("Error retrieving weekly totals")
        return PlainTextResponse("Error retrieving weekly totals.", status_code=500)
    if not rows:
        return {"message": services.NO_WEEKLY_STATS_MESSAGE}
    return rows


@app.get("/api/team/{team_name}", response_model=List[TeamAthleteOut])
def api_team_details(team_name: str):
    try:
        return services.get_team_details(team_name)
    except Exception:
        logger.exception("Error retrieving team details for %s", team_name)
        raise HTTPException(status_code=500, detail="Error retrieving team details.")


@app.get("/api/leaderboard", response_model=LeaderboardOut)
def api_leaderboard():
    try:
        return {"leaderboard": services.get_leaderboard()}
    except Exception:
        logger.exception("Error retrieving leaderboard")
        raise HTTPException(status_code=500, detail="Error retrieving leaderboard.")


@app.get("/updateAllAthletes")
def update_all_athletes():
    try:
        result = services.update_all_athletes()
    except Exception:
        logger.exception("Error during manual update")
        return PlainTextResponse("Error updating athletes.", status_code=500)
    logger.info(
        "Manual update done: %s updated, %s failed", result["updated"], result["failed"]
    )
    return PlainTextResponse("All athletes updated successfully.")


@app.get("/api/health")
def api_health():
    return {"status": "ok"}
