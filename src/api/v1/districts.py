"""District metrics endpoints.

Endpoints
---------
- ``GET /api/v1/states/{state}/districts``                        -- district list
- ``GET /api/v1/states/{state}/districts/{district}?fin_year=``    -- point lookup
- ``GET /api/v1/states/{state}/districts/{district}/historical``   -- yearly series
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, ValidationError

from src.models.metrics import Region
from src.services.errors import MetricsNotFoundError, RegionNotServedError
from src.services.freshness import FreshnessResolver

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/states", tags=["districts"])

DEFAULT_FIN_YEAR = "2024-2025"
_FIN_YEAR_PATTERN = r"^\d{4}-\d{4}$"


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class DistrictMetricsResponse(BaseModel):
    source: str
    state: str
    district: str
    fin_year: str
    data: dict[str, Any]


class DistrictListResponse(BaseModel):
    state: str
    districts: list[str]


class HistoricalResponse(BaseModel):
    state: str
    district: str
    data: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_resolver(request: Request) -> FreshnessResolver:
    """Retrieve the freshness resolver from app state, or raise 503."""
    resolver = getattr(request.app.state, "resolver", None)
    if resolver is None:
        raise HTTPException(status_code=503, detail="Metrics service not initialised.")
    return resolver


def _region(state: str, district: str | None = None) -> Region:
    try:
        return Region.of(state, district)
    except ValidationError:
        raise HTTPException(status_code=400, detail="State name must not be blank.") from None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/{state}/districts", response_model=DistrictListResponse)
async def list_districts(state: str, request: Request) -> DistrictListResponse:
    """Districts with stored data for a state."""
    resolver = _get_resolver(request)
    region = _region(state)
    try:
        districts = await resolver.list_districts(region.state)
    except RegionNotServedError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return DistrictListResponse(state=region.state, districts=districts)


@router.get("/{state}/districts/{district}", response_model=DistrictMetricsResponse)
async def get_district_metrics(
    state: str,
    district: str,
    request: Request,
    fin_year: str | None = Query(default=None, pattern=_FIN_YEAR_PATTERN),
) -> DistrictMetricsResponse:
    """Metrics for one district and fiscal year.

    ``source`` tells which tier answered: ``cache``, ``database``,
    ``api`` or ``database-stale``.
    """
    resolver = _get_resolver(request)
    region = _region(state, district)
    year = fin_year or getattr(request.app.state, "default_fin_year", DEFAULT_FIN_YEAR)

    try:
        resolved = await resolver.resolve(region, year)
    except (MetricsNotFoundError, RegionNotServedError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return DistrictMetricsResponse(
        source=resolved.source.value,
        state=region.state,
        district=region.district or "",
        fin_year=year,
        data=resolved.data,
    )


@router.get("/{state}/districts/{district}/historical", response_model=HistoricalResponse)
async def get_historical(state: str, district: str, request: Request) -> HistoricalResponse:
    """Per-fiscal-year aggregates, oldest first, at most ten years."""
    resolver = _get_resolver(request)
    region = _region(state, district)
    try:
        series = await resolver.historical_series(region.state, region.district or "")
    except RegionNotServedError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return HistoricalResponse(state=region.state, district=region.district or "", data=series)
