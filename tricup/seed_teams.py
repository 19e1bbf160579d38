"""
Load team assignments from a CSV file into the challenge database.

    tricup-seed-teams teams.csv [--db tricup.db]

The CSV needs a header row with ``athlete_id`` and ``team_name`` columns.
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .config_loader import config_value
from .repository import Repo

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("athlete_id", "team_name")


def read_assignments(path: Path) -> Iterator[Tuple[str, str]]:
    with path.open(newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"{path} is missing columns: {', '.join(missing)}")
        for line_no, row in enumerate(reader, start=2):
            athlete_id = (row.get("athlete_id") or "").strip()
            team_name = (row.get("team_name") or "").strip()
            if not athlete_id or not team_name:
                logger.warning("Skipping incomplete row %s in %s", line_no, path)
                continue
            yield athlete_id, team_name


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Seed team assignments from a CSV file.")
    parser.add_argument("csv_path", type=Path, help="CSV with athlete_id,team_name columns")
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite database path (defaults to TRICUP_DB_PATH or the config file)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(message)s")

    db_path = args.db or config_value("TRICUP_DB_PATH", "database_path", "tricup.db")
    try:
        pairs = list(read_assignments(args.csv_path))
    except (OSError, ValueError) as e:
        logger.error("Cannot read %s: %s", args.csv_path, e)
        return 1

    written = Repo(db_path).seed_team_assignments(pairs)
    logger.info("Seeded %s team assignments into %s", written, db_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
