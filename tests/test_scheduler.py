"""Tests for scheduler wiring and the single-sweep helper."""

from __future__ import annotations

import uuid
from datetime import datetime
from unittest.mock import AsyncMock

from eventweather.core.scheduler import CACHE_JOB_ID, SWEEP_JOB_ID, create_scheduler, run_once
from eventweather.core.types import SweepRecord, SweepStatus


class _StubPipeline:
    async def run_sweep(self) -> None:
        return None


class _StubWeatherClient:
    def clear_expired(self) -> int:
        return 0


def test_create_scheduler_jobs() -> None:
    pipeline = _StubPipeline()
    weather_client = _StubWeatherClient()

    scheduler = create_scheduler(
        pipeline,  # type: ignore[arg-type]
        weather_client,  # type: ignore[arg-type]
        sweep_minutes=5,
        cache_sweep_minutes=30,
    )

    sweep = scheduler.get_job(SWEEP_JOB_ID)
    cache = scheduler.get_job(CACHE_JOB_ID)
    assert sweep is not None
    assert cache is not None
    assert sweep.func == pipeline.run_sweep
    assert cache.func == weather_client.clear_expired
    assert sweep.trigger.interval.total_seconds() == 300
    assert cache.trigger.interval.total_seconds() == 1800
    assert sweep.max_instances == 1
    assert sweep.coalesce
    assert not scheduler.running


async def test_run_once() -> None:
    """Verify run_once calls pipeline.run_sweep and returns the record."""
    expected_record = SweepRecord(
        id=str(uuid.uuid4()),
        started_at=datetime(2026, 3, 14, 12, 0),
        completed_at=datetime(2026, 3, 14, 12, 0, 2),
        status=SweepStatus.SUCCESS,
        duration_ms=2000,
    )

    pipeline = AsyncMock()
    pipeline.run_sweep = AsyncMock(return_value=expected_record)

    record = await run_once(pipeline)

    pipeline.run_sweep.assert_awaited_once()
    assert record == expected_record
