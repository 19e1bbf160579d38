from __future__ import annotations

import sqlite3
import threading
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional, Tuple


def _locked(method):
    """Run a Repo method while holding the repository lock."""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


def _text_id(value: Any) -> str:
    """
    Ensure athlete IDs passed to SQLite are plain strings.
    Strava hands out numeric IDs; we store them as text.
    """
    if value is None:
        raise ValueError("athlete_id cannot be None")
    if isinstance(value, str):
        result = value.strip()
    else:
        result = str(value).strip()
    if not result:
        raise ValueError("athlete_id cannot be empty")
    return result


class Repo:
    """
    SQLite repository for the team challenge.

    Owns the three tables of the app: pre-seeded team assignments,
    connected athletes with their Strava tokens, and weekly scores.
    """

    def __init__(self, db_path: str = "tricup.db") -> None:
        """
        Initialize the repository and ensure the database schema exists.
        """
        # One connection is shared by request threads and the refresh job
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._ensure_schema()

    # ---------- schema ----------

    @_locked
    def _ensure_schema(self) -> None:
        cur = self.conn.cursor()

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS team_assignments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                athlete_id TEXT UNIQUE NOT NULL,
                team_name TEXT NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS athletes (
                id TEXT PRIMARY KEY,
                name TEXT,
                team TEXT,
                access_token TEXT,
                refresh_token TEXT,
                expires_at INTEGER
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS athlete_scores (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                athlete_id TEXT REFERENCES athletes(id),
                week TEXT,
                swim REAL,
                bike REAL,
                run REAL,
                total REAL
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_athlete_scores_athlete
            ON athlete_scores(athlete_id)
            """
        )

        self.conn.commit()

    # ---------- team assignments ----------

    @_locked
    def get_team_assignment(self, athlete_id: str) -> Optional[str]:
        athlete_id = _text_id(athlete_id)
        cur = self.conn.cursor()
        cur.execute(
            "SELECT team_name FROM team_assignments WHERE athlete_id=?",
            (athlete_id,),
        )
        row = cur.fetchone()
        return row["team_name"] if row else None

    @_locked
    def seed_team_assignments(self, pairs: Iterable[Tuple[Any, str]]) -> int:
        """
        Insert or update (athlete_id, team_name) pairs. Returns how many were written.
        """
        rows = [(_text_id(athlete_id), team.strip()) for athlete_id, team in pairs]
        cur = self.conn.cursor()
        cur.executemany(
            """
            INSERT INTO team_assignments(athlete_id, team_name)
            VALUES(?, ?)
            ON CONFLICT(athlete_id) DO UPDATE SET team_name=excluded.team_name
            """,
            rows,
        )
        self.conn.commit()
        return len(rows)

    @_locked
    def count_assigned_by_team(self) -> List[Dict[str, Any]]:
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT team_name, COUNT(*) AS total_assigned
            FROM team_assignments
            GROUP BY team_name
            """
        )
        return [dict(r) for r in cur.fetchall()]

    # ---------- athletes ----------

    @_locked
    def get_athlete(self, athlete_id: str) -> Optional[Dict[str, Any]]:
        athlete_id = _text_id(athlete_id)
        cur = self.conn.cursor()
        cur.execute("SELECT * FROM athletes WHERE id=?", (athlete_id,))
        row = cur.fetchone()
        return dict(row) if row else None

    @_locked
    def create_athlete(
        self,
        athlete_id: str,
        name: str,
        team: str,
        access_token: str,
        refresh_token: str,
        expires_at: int,
    ) -> Dict[str, Any]:
        athlete_id = _text_id(athlete_id)
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO athletes(id, name, team, access_token, refresh_token, expires_at)
            VALUES(?,?,?,?,?,?)
            """,
            (athlete_id, name, team, access_token, refresh_token, expires_at),
        )
        self.conn.commit()
        return self.get_athlete(athlete_id)

    @_locked
    def update_tokens(
        self,
        athlete_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: int,
    ) -> None:
        athlete_id = _text_id(athlete_id)
        cur = self.conn.cursor()
        cur.execute(
            """
            UPDATE athletes
            SET access_token=?, refresh_token=?, expires_at=?
            WHERE id=?
            """,
            (access_token, refresh_token, expires_at, athlete_id),
        )
        self.conn.commit()

    @_locked
    def list_athlete_ids(self) -> List[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT id FROM athletes ORDER BY id")
        return [r["id"] for r in cur.fetchall()]

    @_locked
    def list_team_athletes(self, team_name: str) -> List[Dict[str, Any]]:
        cur = self.conn.cursor()
        cur.execute(
            "SELECT id, name, team FROM athletes WHERE team=? ORDER BY name, id",
            (team_name,),
        )
        return [dict(r) for r in cur.fetchall()]

    # ---------- weekly scores ----------

    @_locked
    def replace_weekly_scores(
        self, athlete_id: str, rows: List[Dict[str, Any]]
    ) -> None:
        """
        Drop every stored week for the athlete and write ``rows`` in order.
        Both steps share one transaction.
        """
        athlete_id = _text_id(athlete_id)
        with self.conn:
            self.conn.execute(
                "DELETE FROM athlete_scores WHERE athlete_id=?", (athlete_id,)
            )
            self.conn.executemany(
                """
                INSERT INTO athlete_scores(athlete_id, week, swim, bike, run, total)
                VALUES(?,?,?,?,?,?)
                """,
                [
                    (
                        athlete_id,
                        r["week"],
                        r["swim"],
                        r["bike"],
                        r["run"],
                        r["total"],
                    )
                    for r in rows
                ],
            )

    @_locked
    def list_weekly_scores(self, athlete_id: str) -> List[Dict[str, Any]]:
        athlete_id = _text_id(athlete_id)
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT week,
                   ROUND(swim, 2) AS swim,
                   ROUND(bike, 2) AS bike,
                   ROUND(run, 2) AS run,
                   ROUND(total, 2) AS total
            FROM athlete_scores
            WHERE athlete_id=?
            ORDER BY id ASC
            """,
            (athlete_id,),
        )
        return [dict(r) for r in cur.fetchall()]

    @_locked
    def team_score_totals(self) -> List[Dict[str, Any]]:
        """
        Per-team sums over connected athletes' score rows.
        Teams whose athletes have no scores yet are absent.
        """
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT a.team AS team,
                   COUNT(DISTINCT s.athlete_id) AS total_connected,
                   ROUND(SUM(s.swim), 2) AS swim,
                   ROUND(SUM(s.bike), 2) AS bike,
                   ROUND(SUM(s.run), 2) AS run,
                   ROUND(SUM(s.total), 2) AS total
            FROM athlete_scores s
            JOIN athletes a ON s.athlete_id = a.id
            GROUP BY a.team
            """
        )
        return [dict(r) for r in cur.fetchall()]
