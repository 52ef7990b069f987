"""Batch sync of MGNREGA district records from data.gov.in into the store.

For each configured fiscal year (most recent first) the pipeline pages
through the upstream dataset and upserts every record individually.

Failure isolation
-----------------
- A failed **upsert** is logged and counted; the batch carries on.
- A failed **page fetch** (upstream error or open circuit) aborts that
  fiscal year only; the remaining years still run.

Idempotency
-----------
Rows are keyed by ``(state_name, district_name, fin_year, month)`` with
last-write-wins upserts, so re-running a sync, or two overlapping syncs,
converge to the same table contents.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from src.models.metrics import normalise_name
from src.services.errors import UpstreamError
from src.services.normalizer import to_storage_row

if TYPE_CHECKING:
    from src.services.ingestion.data_gov_client import DataGovClient
    from src.services.storage.repository import MetricStore

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_FISCAL_YEARS: tuple[str, ...] = (
    "2024-2025",
    "2023-2024",
    "2022-2023",
    "2021-2022",
)
DEFAULT_PAGE_SIZE = 1000


# ---------------------------------------------------------------------------
# SyncResult dataclass
# ---------------------------------------------------------------------------


@dataclass
class SyncResult:
    """Report produced by a sync run."""

    total_fetched: int = 0
    upserted: int = 0
    skipped: int = 0
    failed: int = 0
    years_completed: list[str] = field(default_factory=list)
    years_failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Serialise to a JSON-compatible dictionary."""
        return {
            "total_fetched": self.total_fetched,
            "upserted": self.upserted,
            "skipped": self.skipped,
            "failed": self.failed,
            "years_completed": self.years_completed,
            "years_failed": self.years_failed,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 2),
            "timestamp": self.timestamp.isoformat(),
        }


# ---------------------------------------------------------------------------
# MetricsSyncPipeline
# ---------------------------------------------------------------------------


class MetricsSyncPipeline:
    """Pages upstream records per fiscal year and upserts them.

    Parameters
    ----------
    upstream:
        Client for the data.gov.in dataset.
    store:
        Persisted store receiving the upserts.
    fiscal_years:
        Fiscal years to sync, in the order they are processed.
    page_size:
        Records requested per upstream page.
    target_state:
        When set, records from any other state are skipped.
    """

    def __init__(
        self,
        upstream: DataGovClient,
        store: MetricStore,
        fiscal_years: Sequence[str] = DEFAULT_FISCAL_YEARS,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        target_state: str | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._upstream = upstream
        self._store = store
        self._fiscal_years = tuple(fiscal_years)
        self._page_size = page_size
        self._target_state = normalise_name(target_state) if target_state else None
        self._last_result: SyncResult | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def last_result(self) -> SyncResult | None:
        """The result of the most recent sync run."""
        return self._last_result

    async def run_sync(self) -> SyncResult:
        """Sync every configured fiscal year.

        Never raises for upstream or store failures; they are recorded
        in the returned :class:`SyncResult`.
        """
        start = time.monotonic()
        result = SyncResult()

        logger.info(
            "sync.run_start",
            fiscal_years=list(self._fiscal_years),
            page_size=self._page_size,
            target_state=self._target_state,
        )

        for fin_year in self._fiscal_years:
            try:
                await self._sync_year(fin_year, result)
            except UpstreamError as exc:
                result.years_failed.append(fin_year)
                result.errors.append(f"{fin_year}: {exc}")
                logger.error("sync.year_failed", fin_year=fin_year, error=str(exc))
            else:
                result.years_completed.append(fin_year)

        result.duration_seconds = time.monotonic() - start
        self._last_result = result

        logger.info(
            "sync.run_complete",
            total_fetched=result.total_fetched,
            upserted=result.upserted,
            skipped=result.skipped,
            failed=result.failed,
            years_failed=result.years_failed,
            duration_s=round(result.duration_seconds, 2),
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _sync_year(self, fin_year: str, result: SyncResult) -> None:
        """Page through one fiscal year.  Upstream errors propagate."""
        offset = 0
        while True:
            try:
                page = await self._upstream.fetch_records(
                    filters={"fin_year": fin_year},
                    limit=self._page_size,
                    offset=offset,
                )
            except UpstreamError:
                logger.warning("sync.page_failed", fin_year=fin_year, offset=offset)
                raise

            if not page:
                break

            result.total_fetched += len(page)
            for record in page:
                await self._ingest_record(record, fin_year, result)

            logger.info(
                "sync.page_processed",
                fin_year=fin_year,
                offset=offset,
                count=len(page),
            )

            if len(page) < self._page_size:
                break
            offset += self._page_size

    async def _ingest_record(
        self,
        record: dict[str, Any],
        fin_year: str,
        result: SyncResult,
    ) -> None:
        if self._target_state and not self._in_target_state(record):
            result.skipped += 1
            return

        row = to_storage_row(record)
        try:
            await self._store.upsert_record(row)
        except Exception as exc:
            result.failed += 1
            logger.warning(
                "sync.upsert_failed",
                fin_year=fin_year,
                state=row.get("state_name"),
                district=row.get("district_name"),
                month=row.get("month"),
                error=str(exc),
            )
        else:
            result.upserted += 1

    def _in_target_state(self, record: dict[str, Any]) -> bool:
        state = normalise_name(str(record.get("state_name") or ""))
        return state == self._target_state
