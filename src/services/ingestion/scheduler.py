"""Periodic and on-demand execution of the metrics sync pipeline.

The scheduler runs an ``asyncio`` background task in the application's
event loop: one sync shortly after startup (optional), then one per
interval.  ``POST /api/v1/sync`` triggers extra runs on demand.

Overlap
-------
Runs are idempotent upserts, so overlapping runs are harmless; they only
waste upstream quota.  With ``single_flight`` enabled (the default) a
trigger or scheduled tick that arrives while a run is in flight is
skipped instead.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from src.services.ingestion.pipeline import MetricsSyncPipeline, SyncResult

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_INTERVAL_SECONDS = 60 * 60
_STOP_TIMEOUT_SECONDS = 10.0


# ---------------------------------------------------------------------------
# SyncScheduler
# ---------------------------------------------------------------------------


class SyncScheduler:
    """Drives :class:`MetricsSyncPipeline` on a fixed interval.

    Parameters
    ----------
    pipeline:
        The pipeline to execute.
    interval_seconds:
        Delay between the end of one scheduled run and the next.
    run_on_startup:
        Run once immediately when the loop starts.
    single_flight:
        Refuse to start a run while another is in flight.
    """

    def __init__(
        self,
        pipeline: MetricsSyncPipeline,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        run_on_startup: bool = True,
        single_flight: bool = True,
    ) -> None:
        self._pipeline = pipeline
        self._interval = interval_seconds
        self._run_on_startup = run_on_startup
        self._single_flight = single_flight

        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._triggered: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._in_flight = 0
        self._last_run_at: datetime | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Whether the background loop is active."""
        return self._task is not None and not self._task.done()

    @property
    def is_syncing(self) -> bool:
        """Whether a sync run is in flight."""
        return self._in_flight > 0

    @property
    def last_run_at(self) -> datetime | None:
        """Completion time of the most recent run, successful or not."""
        return self._last_run_at

    @property
    def last_result(self) -> SyncResult | None:
        return self._pipeline.last_result

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def _execute(self) -> SyncResult | None:
        """Run the pipeline.  The caller claims and releases the in-flight slot."""
        try:
            result = await self._pipeline.run_sync()
        except Exception:
            logger.error("scheduler.run_failed", exc_info=True)
            return None
        finally:
            self._last_run_at = datetime.now(timezone.utc)

        logger.info(
            "scheduler.run_complete",
            upserted=result.upserted,
            failed=result.failed,
            years_failed=result.years_failed,
            duration_s=round(result.duration_seconds, 2),
        )
        return result

    def _claim(self) -> bool:
        if self._single_flight and self.is_syncing:
            return False
        self._in_flight += 1
        return True

    def _release(self) -> None:
        self._in_flight -= 1

    def _on_triggered_done(self, task: asyncio.Task) -> None:  # type: ignore[type-arg]
        # Also runs for a task cancelled before its first step.
        self._triggered.discard(task)
        self._release()

    async def run_once(self) -> SyncResult | None:
        """Run one sync now and wait for it.

        Returns ``None`` if the run was skipped (single-flight) or
        failed.  Never raises.
        """
        if not self._claim():
            logger.info("scheduler.run_skipped", reason="sync_in_progress")
            return None
        try:
            return await self._execute()
        finally:
            self._release()

    def trigger(self) -> bool:
        """Start a sync in the background without waiting for it.

        Returns ``False`` and starts nothing if single-flight is enabled
        and a run is already in flight.
        """
        if not self._claim():
            logger.info("scheduler.trigger_rejected", reason="sync_in_progress")
            return False

        task = asyncio.create_task(self._execute())
        self._triggered.add(task)
        task.add_done_callback(self._on_triggered_done)
        logger.info("scheduler.triggered")
        return True

    async def wait_idle(self) -> None:
        """Wait until every triggered run has finished."""
        while self._triggered:
            await asyncio.gather(*list(self._triggered), return_exceptions=True)

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def _loop(self) -> None:
        logger.info("scheduler.background_started", interval_seconds=self._interval)
        try:
            if self._run_on_startup:
                await self.run_once()
            while True:
                await asyncio.sleep(self._interval)
                await self.run_once()
        except asyncio.CancelledError:
            logger.info("scheduler.background_cancelled")
            raise
        finally:
            logger.info("scheduler.background_stopped")

    def start(self) -> None:
        """Start the background loop.  Calling it twice is a no-op."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Cancel the loop and any triggered runs, then wait for them."""
        logger.info("scheduler.stopping")
        tasks = list(self._triggered)
        if self._task is not None:
            tasks.append(self._task)
            self._task = None

        for task in tasks:
            task.cancel()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=_STOP_TIMEOUT_SECONDS)
            if pending:
                logger.warning("scheduler.stop_timeout", pending=len(pending))

        logger.info("scheduler.stopped")
