"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the
FastAPI application only needs to include a single router.

Includes:
    * Metrics: district lookup, district list, historical series
    * Sync: on-demand trigger and status
    * Geo: coordinate to district detection
    * Health: liveness and readiness probes
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import districts, geo, health, sync

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(districts.router)
api_router.include_router(sync.router)
api_router.include_router(geo.router)
api_router.include_router(health.router)
