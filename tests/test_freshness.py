"""Tests for multi-tier freshness resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from src.models.enums import DataSource, DerivationPolicy, TierOutcome
from src.models.metrics import Region
from src.services.errors import (
    CircuitOpenError,
    MetricsNotFoundError,
    RegionNotServedError,
    UpstreamError,
)
from src.services.freshness import FreshnessResolver, TierResult
from src.services.storage.repository import StoredMetric

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
LUCKNOW = Region.of("Uttar Pradesh", "Lucknow")
FIN_YEAR = "2024-2025"
CACHE_KEY = "district:UTTAR PRADESH:LUCKNOW:2024-2025"

RAW_PAYLOAD = {
    "state_name": "UTTAR PRADESH",
    "district_name": "LUCKNOW",
    "fin_year": FIN_YEAR,
    "Total_No_of_Active_Job_Cards": 1000,
    "Average_days_of_employment_provided_per_Household": 40,
    "Women_Persondays": 12000,
}


# -----------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------


class FakeCache:
    def __init__(self, data: dict[str, Any] | None = None, *, fail: bool = False) -> None:
        self.data = dict(data or {})
        self.fail = fail
        self.sets: list[tuple[str, Any, int | None]] = []

    async def get(self, key: str, default: Any = None) -> Any:
        if self.fail:
            raise RuntimeError("cache down")
        return self.data.get(key, default)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        if self.fail:
            raise RuntimeError("cache down")
        self.sets.append((key, value, ttl_seconds))
        self.data[key] = value


class FakeStore:
    def __init__(
        self,
        record: StoredMetric | None = None,
        *,
        districts: list[str] | None = None,
        history: list[dict[str, Any]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.record = record
        self.districts = districts or []
        self.history = history or []
        self.error = error
        self.calls = 0

    async def latest_record(self, state: str, district: str, fin_year: str) -> StoredMetric | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.record

    async def list_districts(self, state: str) -> list[str]:
        self.calls += 1
        return self.districts

    async def historical_aggregates(self, state: str, district: str, limit: int = 10) -> list[dict]:
        self.calls += 1
        return self.history


class FakeUpstream:
    def __init__(self, record: dict[str, Any] | None = None, *, error: Exception | None = None) -> None:
        self.record = record
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    async def fetch_district(self, state: str, district: str, fin_year: str) -> dict[str, Any] | None:
        self.calls.append((state, district, fin_year))
        if self.error is not None:
            raise self.error
        return self.record


def _stored(age: timedelta, payload: dict[str, Any] | None = None) -> StoredMetric:
    return StoredMetric(
        columns={"state_name": "UTTAR PRADESH", "district_name": "LUCKNOW", "fin_year": FIN_YEAR},
        data_payload=dict(payload if payload is not None else RAW_PAYLOAD),
        updated_at=NOW - age,
    )


def _resolver(
    cache: FakeCache | None = None,
    store: FakeStore | None = None,
    upstream: FakeUpstream | None = None,
    **kwargs: Any,
) -> FreshnessResolver:
    return FreshnessResolver(
        cache or FakeCache(),  # type: ignore[arg-type]
        store or FakeStore(),  # type: ignore[arg-type]
        upstream or FakeUpstream(),  # type: ignore[arg-type]
        kwargs.pop("policy", DerivationPolicy.COMPUTED),
        clock=lambda: NOW,
        **kwargs,
    )


# -----------------------------------------------------------------------
# Tier order
# -----------------------------------------------------------------------


class TestCacheTier:
    async def test_cache_hit_returned_verbatim(self) -> None:
        cached = {"person_days_generated": 1, "anything": "as stored"}
        store, upstream = FakeStore(), FakeUpstream()
        resolver = _resolver(FakeCache({CACHE_KEY: cached}), store, upstream)

        resolved = await resolver.resolve(LUCKNOW, FIN_YEAR)

        assert resolved.source is DataSource.CACHE
        assert resolved.data == cached
        assert store.calls == 0, "a cache hit must not touch the store"
        assert upstream.calls == [], "a cache hit must not touch upstream"

    async def test_cache_failure_does_not_abort(self) -> None:
        resolver = _resolver(FakeCache(fail=True), FakeStore(_stored(timedelta(hours=1))))
        resolved = await resolver.resolve(LUCKNOW, FIN_YEAR)
        assert resolved.source is DataSource.DATABASE


class TestStoreTier:
    async def test_lucknow_fresh_row_end_to_end(self) -> None:
        cache = FakeCache()
        upstream = FakeUpstream()
        resolver = _resolver(cache, FakeStore(_stored(timedelta(hours=2))), upstream)

        resolved = await resolver.resolve(LUCKNOW, FIN_YEAR)

        assert resolved.source is DataSource.DATABASE
        assert resolved.data["person_days_generated"] == 40_000
        assert resolved.data["women_participation_percent"] == "30.0"
        assert upstream.calls == []
        assert cache.sets == [(CACHE_KEY, resolved.data, 3600)], "fresh store hit is cached for 1 h"

    async def test_row_at_threshold_is_stale(self) -> None:
        upstream = FakeUpstream(RAW_PAYLOAD)
        resolver = _resolver(store=FakeStore(_stored(timedelta(hours=24))), upstream=upstream)

        resolved = await resolver.resolve(LUCKNOW, FIN_YEAR)

        assert resolved.source is DataSource.API
        assert len(upstream.calls) == 1

    async def test_custom_freshness_threshold(self) -> None:
        resolver = _resolver(store=FakeStore(_stored(timedelta(hours=3))), freshness_hours=6)
        assert (await resolver.resolve(LUCKNOW, FIN_YEAR)).source is DataSource.DATABASE

    async def test_store_error_falls_through_to_upstream(self) -> None:
        resolver = _resolver(
            store=FakeStore(error=RuntimeError("db down")),
            upstream=FakeUpstream(RAW_PAYLOAD),
        )
        assert (await resolver.resolve(LUCKNOW, FIN_YEAR)).source is DataSource.API


class TestUpstreamTier:
    async def test_upstream_hit_is_normalised_and_cached(self) -> None:
        cache = FakeCache()
        upstream = FakeUpstream(RAW_PAYLOAD)
        resolver = _resolver(cache, FakeStore(), upstream)

        resolved = await resolver.resolve(LUCKNOW, FIN_YEAR)

        assert resolved.source is DataSource.API
        assert resolved.data["person_days_generated"] == 40_000
        assert upstream.calls == [("UTTAR PRADESH", "LUCKNOW", FIN_YEAR)]
        assert cache.sets == [(CACHE_KEY, resolved.data, 3600)]

    async def test_overflowing_upstream_values_still_resolve(self) -> None:
        record = {
            **RAW_PAYLOAD,
            "Total_No_of_Active_Job_Cards": "1e200",
            "Average_days_of_employment_provided_per_Household": "1e200",
        }
        resolved = await _resolver(upstream=FakeUpstream(record)).resolve(LUCKNOW, FIN_YEAR)

        assert resolved.source is DataSource.API
        assert resolved.data["person_days_generated"] == 0

    async def test_stale_row_preferred_over_nothing_when_upstream_fails(self) -> None:
        cache = FakeCache()
        resolver = _resolver(
            cache,
            FakeStore(_stored(timedelta(days=3))),
            FakeUpstream(error=UpstreamError("timeout")),
        )

        resolved = await resolver.resolve(LUCKNOW, FIN_YEAR)

        assert resolved.source is DataSource.DATABASE_STALE
        assert resolved.data["person_days_generated"] == 40_000
        assert cache.sets == [], "stale answers are never cached"

    async def test_stale_row_served_when_circuit_open(self) -> None:
        resolver = _resolver(
            store=FakeStore(_stored(timedelta(days=3))),
            upstream=FakeUpstream(error=CircuitOpenError(30.0)),
        )
        assert (await resolver.resolve(LUCKNOW, FIN_YEAR)).source is DataSource.DATABASE_STALE

    async def test_empty_upstream_answer_falls_back_to_stale(self) -> None:
        resolver = _resolver(
            store=FakeStore(_stored(timedelta(days=3))),
            upstream=FakeUpstream(None),
        )
        assert (await resolver.resolve(LUCKNOW, FIN_YEAR)).source is DataSource.DATABASE_STALE


class TestNotFound:
    async def test_absent_everywhere(self) -> None:
        with pytest.raises(MetricsNotFoundError):
            await _resolver().resolve(LUCKNOW, FIN_YEAR)

    async def test_upstream_failure_without_stale_row(self) -> None:
        resolver = _resolver(upstream=FakeUpstream(error=UpstreamError("HTTP 502")))
        with pytest.raises(MetricsNotFoundError):
            await resolver.resolve(LUCKNOW, FIN_YEAR)

    async def test_district_required(self) -> None:
        with pytest.raises(ValueError):
            await _resolver().resolve(Region.of("UTTAR PRADESH"), FIN_YEAR)


class TestTargetState:
    async def test_other_state_rejected_before_io(self) -> None:
        store, upstream = FakeStore(), FakeUpstream()
        resolver = _resolver(store=store, upstream=upstream, target_state="Uttar Pradesh")

        with pytest.raises(RegionNotServedError):
            await resolver.resolve(Region.of("Bihar", "Patna"), FIN_YEAR)
        assert store.calls == 0
        assert upstream.calls == []

    async def test_target_state_served(self) -> None:
        resolver = _resolver(
            store=FakeStore(_stored(timedelta(hours=1))),
            target_state="UTTAR PRADESH",
        )
        assert (await resolver.resolve(LUCKNOW, FIN_YEAR)).source is DataSource.DATABASE

    async def test_list_districts_rejects_other_state(self) -> None:
        with pytest.raises(RegionNotServedError):
            await _resolver(target_state="UTTAR PRADESH").list_districts("bihar")


# -----------------------------------------------------------------------
# Listing and history
# -----------------------------------------------------------------------


class TestListDistricts:
    async def test_store_result_cached_for_a_day(self) -> None:
        cache = FakeCache()
        resolver = _resolver(cache, FakeStore(districts=["AGRA", "LUCKNOW"]))

        assert await resolver.list_districts("uttar pradesh") == ["AGRA", "LUCKNOW"]
        assert cache.sets == [("districts:UTTAR PRADESH", ["AGRA", "LUCKNOW"], 86_400)]

    async def test_empty_result_not_cached(self) -> None:
        cache = FakeCache()
        assert await _resolver(cache, FakeStore()).list_districts("GOA") == []
        assert cache.sets == []

    async def test_cache_hit_skips_store(self) -> None:
        store = FakeStore(districts=["X"])
        resolver = _resolver(FakeCache({"districts:UTTAR PRADESH": ["AGRA"]}), store)
        assert await resolver.list_districts("UTTAR PRADESH") == ["AGRA"]
        assert store.calls == 0


class TestHistoricalSeries:
    async def test_rows_normalised_and_cached(self) -> None:
        history = [
            {
                "fin_year": "2023-2024",
                "active_job_cards": 1000.0,
                "avg_days_employment": 40.0,
                "women_persondays": 12000.0,
            },
            {"fin_year": "2024-2025", "active_job_cards": 500.0, "avg_days_employment": 10.0},
        ]
        cache = FakeCache()
        resolver = _resolver(cache, FakeStore(history=history))

        series = await resolver.historical_series("Uttar Pradesh", "Lucknow")

        assert [year["year"] for year in series] == ["2023-2024", "2024-2025"]
        assert series[0]["person_days_generated"] == 40_000
        assert series[0]["women_participation_percent"] == "30.0"
        assert cache.sets == [("historical:UTTAR PRADESH:LUCKNOW", series, 3600)]

    async def test_empty_history_not_cached(self) -> None:
        cache = FakeCache()
        assert await _resolver(cache).historical_series("UTTAR PRADESH", "LUCKNOW") == []
        assert cache.sets == []


class TestTierResult:
    def test_constructors(self) -> None:
        assert TierResult.hit({"a": 1}).outcome is TierOutcome.HIT
        assert TierResult.miss().data is None
        err = RuntimeError("x")
        failed = TierResult.failed(err)
        assert failed.outcome is TierOutcome.ERROR
        assert failed.error is err
