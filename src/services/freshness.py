"""Multi-tier freshness resolution for district metrics.

A point lookup walks an ordered tuple of tiers and returns the first hit:

1. **cache** -- the pre-normalised answer, returned verbatim.
2. **store** -- the latest persisted row, if updated within the freshness
   threshold.  Normalised and written back to the cache.
3. **upstream** -- a live data.gov.in lookup.  Normalised and written
   back to the cache.
4. **stale store** -- the row tier 2 rejected as too old, served as a
   last resort and *not* cached, so the next request tries upstream
   again.

Each tier reports a :class:`TierResult` of ``hit``, ``miss`` or
``error``.  Errors are logged and never abort resolution; only when no
tier hits does :meth:`FreshnessResolver.resolve` raise
:class:`MetricsNotFoundError`.

There is no request coalescing: concurrent misses for the same key may
each call upstream.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog

from src.models.enums import DataSource, DerivationPolicy, TierOutcome
from src.models.metrics import Region, ResolvedMetrics, normalise_name
from src.services.cache_keys import (
    DISTRICT_METRICS_TTL,
    DISTRICTS_TTL,
    HISTORICAL_TTL,
    district_metrics_key,
    districts_key,
    historical_key,
)
from src.services.errors import MetricsNotFoundError, RegionNotServedError, UpstreamError
from src.services.normalizer import normalize_history_row, normalize_record

if TYPE_CHECKING:
    from src.services.cache import CacheManager
    from src.services.ingestion.data_gov_client import DataGovClient
    from src.services.storage.repository import MetricStore, StoredMetric

logger = structlog.get_logger(__name__)

DEFAULT_FRESHNESS_HOURS = 24


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Tier plumbing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TierResult:
    """Outcome of consulting one tier."""

    outcome: TierOutcome
    data: dict[str, Any] | None = None
    error: Exception | None = None

    @classmethod
    def hit(cls, data: dict[str, Any]) -> TierResult:
        return cls(TierOutcome.HIT, data=data)

    @classmethod
    def miss(cls) -> TierResult:
        return cls(TierOutcome.MISS)

    @classmethod
    def failed(cls, error: Exception) -> TierResult:
        return cls(TierOutcome.ERROR, error=error)


@dataclass
class _Lookup:
    """Per-request state shared by the tiers of one resolution."""

    state: str
    district: str
    fin_year: str
    cache_key: str
    stale_record: StoredMetric | None = None


Tier = Callable[[_Lookup], Awaitable[TierResult]]


# ---------------------------------------------------------------------------
# FreshnessResolver
# ---------------------------------------------------------------------------


class FreshnessResolver:
    """Resolves district metrics across cache, store and upstream.

    Parameters
    ----------
    cache:
        Key-value cache; failures are tolerated.
    store:
        Persisted metrics store.
    upstream:
        data.gov.in client (already guarded by the circuit breaker).
    policy:
        How derived metrics are computed from raw fields.
    freshness_hours:
        Maximum age of a stored row served as fresh.
    cache_ttl:
        TTL for point-lookup answers written back to the cache.
    target_state:
        When set, other states are rejected with
        :class:`RegionNotServedError` before any I/O.
    clock:
        Returns the current aware UTC time.
    """

    def __init__(
        self,
        cache: CacheManager,
        store: MetricStore,
        upstream: DataGovClient,
        policy: DerivationPolicy = DerivationPolicy.COMPUTED,
        *,
        freshness_hours: float = DEFAULT_FRESHNESS_HOURS,
        cache_ttl: int = DISTRICT_METRICS_TTL,
        target_state: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._cache = cache
        self._store = store
        self._upstream = upstream
        self._policy = policy
        self._freshness = timedelta(hours=freshness_hours)
        self._cache_ttl = cache_ttl
        self._target_state = normalise_name(target_state) if target_state else None
        self._clock = clock

        self._tiers: tuple[tuple[DataSource, Tier], ...] = (
            (DataSource.CACHE, self._from_cache),
            (DataSource.DATABASE, self._from_store),
            (DataSource.API, self._from_upstream),
            (DataSource.DATABASE_STALE, self._from_stale_store),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, region: Region, fin_year: str) -> ResolvedMetrics:
        """Return metrics for ``region.district`` in *fin_year*.

        Raises
        ------
        RegionNotServedError
            The state lies outside the configured target state.
        MetricsNotFoundError
            No tier produced data.
        """
        if region.district is None:
            raise ValueError("A district is required for a metrics lookup")
        self._ensure_served(region.state)

        lookup = _Lookup(
            state=region.state,
            district=region.district,
            fin_year=fin_year,
            cache_key=district_metrics_key(region.state, region.district, fin_year),
        )

        for source, tier in self._tiers:
            result = await tier(lookup)
            if result.outcome is TierOutcome.HIT:
                logger.info(
                    "resolver.hit",
                    source=source.value,
                    state=lookup.state,
                    district=lookup.district,
                    fin_year=fin_year,
                )
                return ResolvedMetrics(source=source, data=result.data or {})
            if result.outcome is TierOutcome.ERROR:
                logger.warning(
                    "resolver.tier_failed",
                    tier=source.value,
                    district=lookup.district,
                    fin_year=fin_year,
                    error=str(result.error),
                )

        logger.info(
            "resolver.not_found",
            state=lookup.state,
            district=lookup.district,
            fin_year=fin_year,
        )
        raise MetricsNotFoundError(
            f"No data found for {lookup.district}, {lookup.state} in {fin_year}"
        )

    async def list_districts(self, state: str) -> list[str]:
        """Districts with stored data for *state*, cached for 24 h when non-empty."""
        state = normalise_name(state)
        self._ensure_served(state)

        key = districts_key(state)
        cached = await self._cache_get(key)
        if isinstance(cached, list):
            return cached

        districts = await self._store.list_districts(state)
        if districts:
            await self._cache_put(key, districts, DISTRICTS_TTL)
        return districts

    async def historical_series(self, state: str, district: str) -> list[dict[str, Any]]:
        """Yearly aggregates for a district, oldest first, cached for 1 h when non-empty."""
        state, district = normalise_name(state), normalise_name(district)
        self._ensure_served(state)

        key = historical_key(state, district)
        cached = await self._cache_get(key)
        if isinstance(cached, list):
            return cached

        rows = await self._store.historical_aggregates(state, district)
        series = [
            normalize_history_row(row, self._policy).model_dump(mode="json") for row in rows
        ]
        if series:
            await self._cache_put(key, series, HISTORICAL_TTL)
        return series

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    async def _from_cache(self, lookup: _Lookup) -> TierResult:
        try:
            cached = await self._cache.get(lookup.cache_key)
        except Exception as exc:
            return TierResult.failed(exc)
        if isinstance(cached, dict):
            return TierResult.hit(cached)
        return TierResult.miss()

    async def _from_store(self, lookup: _Lookup) -> TierResult:
        try:
            record = await self._store.latest_record(lookup.state, lookup.district, lookup.fin_year)
        except Exception as exc:
            return TierResult.failed(exc)
        if record is None:
            return TierResult.miss()

        age = self._clock() - record.updated_at
        if age >= self._freshness:
            logger.debug(
                "resolver.store_row_stale",
                district=lookup.district,
                age_hours=round(age.total_seconds() / 3600, 1),
            )
            lookup.stale_record = record
            return TierResult.miss()

        data = self._normalize(record.as_record())
        await self._cache_put(lookup.cache_key, data, self._cache_ttl)
        return TierResult.hit(data)

    async def _from_upstream(self, lookup: _Lookup) -> TierResult:
        try:
            record = await self._upstream.fetch_district(
                lookup.state, lookup.district, lookup.fin_year
            )
        except UpstreamError as exc:
            return TierResult.failed(exc)
        if not record:
            return TierResult.miss()

        data = self._normalize(record)
        await self._cache_put(lookup.cache_key, data, self._cache_ttl)
        return TierResult.hit(data)

    async def _from_stale_store(self, lookup: _Lookup) -> TierResult:
        if lookup.stale_record is None:
            return TierResult.miss()
        return TierResult.hit(self._normalize(lookup.stale_record.as_record()))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_served(self, state: str) -> None:
        if self._target_state and state != self._target_state:
            raise RegionNotServedError(state, self._target_state)

    def _normalize(self, record: dict[str, Any]) -> dict[str, Any]:
        return normalize_record(record, self._policy).model_dump(mode="json")

    async def _cache_get(self, key: str) -> Any:
        try:
            return await self._cache.get(key)
        except Exception:
            logger.warning("resolver.cache_read_failed", key=key, exc_info=True)
            return None

    async def _cache_put(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._cache.set(key, value, ttl_seconds=ttl_seconds)
        except Exception:
            logger.warning("resolver.cache_write_failed", key=key, exc_info=True)
