"""Tests for SyncScheduler: single-flight triggers, background loop, stop."""

from __future__ import annotations

import asyncio

from src.services.ingestion.pipeline import SyncResult
from src.services.ingestion.scheduler import SyncScheduler


class GatedPipeline:
    """Pipeline stand-in whose runs block until ``release`` is set."""

    def __init__(self, *, fail: bool = False) -> None:
        self.release = asyncio.Event()
        self.started = 0
        self.finished = 0
        self.fail = fail
        self.last_result: SyncResult | None = None

    async def run_sync(self) -> SyncResult:
        self.started += 1
        await self.release.wait()
        if self.fail:
            raise RuntimeError("database gone")
        self.finished += 1
        self.last_result = SyncResult(upserted=self.finished)
        return self.last_result


class InstantPipeline:
    def __init__(self) -> None:
        self.runs = 0
        self.last_result: SyncResult | None = None

    async def run_sync(self) -> SyncResult:
        self.runs += 1
        self.last_result = SyncResult(upserted=self.runs)
        return self.last_result


class TestTrigger:
    async def test_second_trigger_rejected_while_running(self):
        pipeline = GatedPipeline()
        scheduler = SyncScheduler(pipeline)  # type: ignore[arg-type]

        assert scheduler.trigger() is True
        await asyncio.sleep(0)
        assert scheduler.is_syncing is True
        assert scheduler.trigger() is False, "single-flight must reject overlapping runs"

        pipeline.release.set()
        await scheduler.wait_idle()

        assert pipeline.started == 1
        assert scheduler.is_syncing is False
        assert scheduler.last_result is pipeline.last_result

    async def test_trigger_allowed_again_after_completion(self):
        pipeline = InstantPipeline()
        scheduler = SyncScheduler(pipeline)  # type: ignore[arg-type]

        assert scheduler.trigger() is True
        await scheduler.wait_idle()
        assert scheduler.trigger() is True
        await scheduler.wait_idle()

        assert pipeline.runs == 2

    async def test_overlap_allowed_without_single_flight(self):
        pipeline = GatedPipeline()
        scheduler = SyncScheduler(pipeline, single_flight=False)  # type: ignore[arg-type]

        assert scheduler.trigger() is True
        assert scheduler.trigger() is True
        await asyncio.sleep(0)
        assert pipeline.started == 2

        pipeline.release.set()
        await scheduler.wait_idle()
        assert pipeline.finished == 2

    async def test_last_run_at_set_after_run(self):
        scheduler = SyncScheduler(InstantPipeline())  # type: ignore[arg-type]
        assert scheduler.last_run_at is None

        scheduler.trigger()
        await scheduler.wait_idle()

        assert scheduler.last_run_at is not None


class TestRunOnce:
    async def test_returns_result(self):
        scheduler = SyncScheduler(InstantPipeline())  # type: ignore[arg-type]
        result = await scheduler.run_once()
        assert result is not None
        assert result.upserted == 1

    async def test_failure_is_swallowed_and_counter_released(self):
        pipeline = GatedPipeline(fail=True)
        pipeline.release.set()
        scheduler = SyncScheduler(pipeline)  # type: ignore[arg-type]

        assert await scheduler.run_once() is None
        assert scheduler.is_syncing is False
        assert scheduler.last_run_at is not None

    async def test_skipped_while_triggered_run_in_flight(self):
        pipeline = GatedPipeline()
        scheduler = SyncScheduler(pipeline)  # type: ignore[arg-type]

        scheduler.trigger()
        await asyncio.sleep(0)
        assert await scheduler.run_once() is None

        pipeline.release.set()
        await scheduler.wait_idle()
        assert pipeline.started == 1


class TestBackgroundLoop:
    async def test_runs_on_startup_and_per_interval(self):
        pipeline = InstantPipeline()
        scheduler = SyncScheduler(pipeline, interval_seconds=0.01)  # type: ignore[arg-type]

        scheduler.start()
        assert scheduler.is_running is True
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert pipeline.runs >= 2
        assert scheduler.is_running is False

    async def test_no_startup_run_when_disabled(self):
        pipeline = InstantPipeline()
        scheduler = SyncScheduler(  # type: ignore[arg-type]
            pipeline, interval_seconds=60, run_on_startup=False
        )

        scheduler.start()
        await asyncio.sleep(0.02)
        await scheduler.stop()

        assert pipeline.runs == 0

    async def test_start_is_idempotent(self):
        scheduler = SyncScheduler(  # type: ignore[arg-type]
            InstantPipeline(), interval_seconds=60, run_on_startup=False
        )
        scheduler.start()
        first = scheduler._task
        scheduler.start()
        assert scheduler._task is first
        await scheduler.stop()

    async def test_stop_cancels_triggered_runs(self):
        pipeline = GatedPipeline()
        scheduler = SyncScheduler(pipeline)  # type: ignore[arg-type]

        scheduler.trigger()
        await asyncio.sleep(0)
        await scheduler.stop()

        assert pipeline.finished == 0
        assert scheduler.is_syncing is False

    async def test_stop_before_triggered_run_starts(self):
        pipeline = GatedPipeline()
        scheduler = SyncScheduler(pipeline)  # type: ignore[arg-type]

        assert scheduler.trigger() is True
        await scheduler.stop()

        assert pipeline.started == 0
        assert scheduler.is_syncing is False, "a run cancelled before it starts must release its slot"
        pipeline.release.set()
        assert scheduler.trigger() is True
        await scheduler.wait_idle()
        assert pipeline.finished == 1

    async def test_stop_without_start(self):
        scheduler = SyncScheduler(InstantPipeline())  # type: ignore[arg-type]
        await scheduler.stop()
        assert scheduler.is_running is False
