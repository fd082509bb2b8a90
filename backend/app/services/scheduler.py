"""Background task scheduler — runs the daily balance reconciliation.

Uses FastAPI's lifespan context to start/stop an asyncio background loop.
No external dependencies (no Celery, no APScheduler), just an
asyncio.sleep loop that fires once per day at the configured hour.

Configuration:
    RECONCILIATION_ENABLED=true
    RECONCILIATION_HOUR=2   (run at 02:00 UTC daily, via .env)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI

from app.config import settings
from app.database import async_session

logger = logging.getLogger("fieldstock.scheduler")


async def run_daily_reconciliation() -> dict | None:
    """Run one reconciliation pass in its own transaction."""
    from app.services.reconciliation import run_full_reconciliation

    logger.info("Starting daily reconciliation run")
    async with async_session() as db:
        try:
            summary = await run_full_reconciliation(db)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Reconciliation run failed")
            return None

    logger.info(
        "Reconciliation %s: %d alerts (critical=%d, high=%d)",
        summary["run_id"],
        summary["total_alerts"],
        summary["by_severity"].get("critical", 0),
        summary["by_severity"].get("high", 0),
    )
    return summary


def seconds_until(hour: int, now: datetime | None = None) -> float:
    """Seconds from ``now`` until the next ``hour``:00 UTC."""
    now = now or datetime.now(timezone.utc)
    next_run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def _scheduler_loop() -> None:
    """Sleep loop that fires reconciliation once per day."""
    while True:
        wait_seconds = seconds_until(settings.reconciliation_hour)
        logger.info("Next reconciliation run in %.0f seconds", wait_seconds)

        await asyncio.sleep(wait_seconds)

        try:
            await run_daily_reconciliation()
        except Exception:
            logger.exception("Unhandled error in daily reconciliation")

        # Small buffer to avoid running twice in the same minute
        await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the scheduler on startup, cancel on shutdown."""
    if not settings.reconciliation_enabled:
        logger.info("Reconciliation scheduler disabled")
        yield
        return

    task = asyncio.create_task(_scheduler_loop())
    logger.info("Reconciliation scheduler started")
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Reconciliation scheduler stopped")
