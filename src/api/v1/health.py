"""Health check endpoints.

Provides liveness and readiness probes.  The readiness check verifies
the cache and the database.
"""

from __future__ import annotations

import time
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    environment: str
    target_state: str | None = None
    uptime_seconds: float
    circuit_breaker: dict[str, Any] | None = None


class ReadinessResponse(BaseModel):
    """Readiness check response with individual service statuses."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.

    Returns 200 if the process can handle requests.  Does *not* check
    downstream dependencies; the breaker state is reported for
    visibility only.
    """
    state = request.app.state
    start_time: float = getattr(state, "start_time", time.time())
    breaker = getattr(state, "circuit_breaker", None)

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        environment=getattr(state, "environment", "development"),
        target_state=getattr(state, "target_state", None),
        uptime_seconds=round(time.time() - start_time, 2),
        circuit_breaker=breaker.get_status() if breaker is not None else None,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> Any:
    """Readiness probe: 200 when the database answers, 503 otherwise.

    The cache never blocks readiness; it degrades to in-memory.
    """
    checks: dict[str, str] = {}
    ready = True

    # -- Cache -------------------------------------------------------------
    cache = getattr(request.app.state, "cache", None)
    if cache is not None:
        try:
            probe = await cache.ping()
            checks["cache"] = f"ok ({probe['backend']})"
        except Exception as exc:
            checks["cache"] = f"error: {exc!s}"
    else:
        checks["cache"] = "not_configured"

    # -- Database ----------------------------------------------------------
    database = getattr(request.app.state, "database", None)
    if database is None:
        checks["database"] = "not_configured"
        ready = False
    elif await database.ping():
        checks["database"] = "ok"
    else:
        checks["database"] = "unreachable"
        ready = False

    status = "ready" if ready else "not_ready"
    logger.info("health.readiness_check", status=status, checks=checks)

    body = ReadinessResponse(status=status, checks=checks)
    if not ready:
        return ORJSONResponse(status_code=503, content=body.model_dump())
    return body
