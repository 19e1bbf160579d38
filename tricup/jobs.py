from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from . import services

logger = logging.getLogger(__name__)


def seconds_until_next_hour(now: Optional[datetime] = None) -> float:
    """Seconds from ``now`` until minute 0 of the next hour."""
    if now is None:
        now = datetime.now(timezone.utc)
    next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return (next_hour - now).total_seconds()


async def run_refresh_once() -> dict:
    logger.info("Hourly job started: updating all athletes scores...")
    result = await asyncio.to_thread(services.update_all_athletes)
    logger.info(
        "Hourly job finished: %s updated, %s failed.",
        result["updated"],
        result["failed"],
    )
    return result


async def hourly_refresh_loop() -> None:
    """Rerun the score update for every athlete at the top of every hour."""
    while True:
        await asyncio.sleep(seconds_until_next_hour())
        try:
            await run_refresh_once()
        except Exception:
            logger.exception("Hourly refresh failed")
