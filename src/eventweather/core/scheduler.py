"""APScheduler setup for the weather sweep and cache housekeeping.

Provides factory functions for creating a scheduler and for running a single
sweep (useful for testing, manual runs, and the --once flag).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from eventweather.core.pipeline import WeatherAlertPipeline
    from eventweather.core.types import SweepRecord
    from eventweather.ingestion.weather import WeatherClient

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "eventweather_sweep"
CACHE_JOB_ID = "eventweather_cache_sweep"


def create_scheduler(
    pipeline: WeatherAlertPipeline,
    weather_client: WeatherClient,
    sweep_minutes: int,
    cache_sweep_minutes: int,
) -> AsyncIOScheduler:
    """Create an AsyncIOScheduler with the sweep and cache-eviction jobs.

    The sweep re-reads the system flag on every run, so enabling or disabling
    the feature takes effect without a restart. The scheduler is returned in
    a stopped state -- the caller must call ``scheduler.start()``.

    Args:
        pipeline: The pipeline orchestrator instance.
        weather_client: Client whose expired cache entries are purged.
        sweep_minutes: Sweep cadence in minutes (from weather_alerts.yml).
        cache_sweep_minutes: Cache eviction cadence in minutes.

    Returns:
        Configured but not-yet-started AsyncIOScheduler.
    """
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        pipeline.run_sweep,
        trigger="interval",
        minutes=sweep_minutes,
        id=SWEEP_JOB_ID,
        name="Weather alert sweep",
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        weather_client.clear_expired,
        trigger="interval",
        minutes=cache_sweep_minutes,
        id=CACHE_JOB_ID,
        name="Weather cache eviction",
        max_instances=1,
        coalesce=True,
    )

    logger.info(
        "Scheduler created: sweep every %d minutes, cache eviction every %d minutes",
        sweep_minutes,
        cache_sweep_minutes,
    )

    return scheduler


async def run_once(pipeline: WeatherAlertPipeline) -> SweepRecord:
    """Run a single sweep and return the result.

    Convenience wrapper for manual runs and the ``--once`` CLI flag.
    """
    logger.info("Running single weather sweep")
    return await pipeline.run_sweep()
