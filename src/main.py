"""MGNREGA dashboard API entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of all backend services (cache, database, circuit
breaker, data.gov.in client, freshness resolver, geocoder, sync pipeline
and scheduler).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config.settings import settings
from src.api.router import api_router
from src.middleware.rate_limit import RateLimitMiddleware

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(settings.log_level),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every service once and tear them down in reverse.

    On startup:
      1. Cache manager (Redis, in-memory fallback)
      2. Database engine and tables, metric store
      3. Circuit breaker and data.gov.in client
      4. Freshness resolver
      5. Reverse geocoder
      6. Sync pipeline and scheduler
      7. Store everything on ``app.state``

    On shutdown:
      - Stop the scheduler.
      - Close HTTP clients, the cache and the database engine.
    """
    _configure_logging()
    logger.info(
        "app.startup",
        env=settings.env,
        target_state=settings.target_state,
        derivation_policy=settings.derivation_policy.value,
    )

    app.state.start_time = time.time()
    app.state.environment = settings.env
    app.state.target_state = settings.target_state
    app.state.default_fin_year = settings.default_fin_year

    # -- 1. Cache -----------------------------------------------------------
    from src.services.cache import CacheManager

    cache = CacheManager(
        redis_url=settings.redis_url if settings.redis_url else None,
        namespace="mgnrega:",
    )
    app.state.cache = cache
    logger.info("app.cache_initialised")

    # -- 2. Database ----------------------------------------------------------
    from src.services.storage import Database, MetricStore

    database = Database(
        settings.database_url,
        echo=settings.database_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    try:
        await database.create_all()
    except Exception:
        # The API still answers from cache and upstream without a store.
        logger.error("app.database_init_failed", exc_info=True)
    store = MetricStore(database)
    app.state.database = database
    app.state.store = store
    logger.info("app.database_initialised")

    # -- 3. Upstream ----------------------------------------------------------
    from src.services.circuit_breaker import CircuitBreaker
    from src.services.ingestion import DataGovClient

    breaker = CircuitBreaker("data.gov.in")
    upstream = DataGovClient(
        breaker,
        settings.data_gov_api_key,
        resource_id=settings.data_gov_resource_id,
        base_url=settings.data_gov_base_url,
        timeout=settings.upstream_timeout_seconds,
        target_state=settings.target_state,
    )
    if not settings.data_gov_api_key:
        logger.warning("app.data_gov_api_key_missing")
    app.state.circuit_breaker = breaker
    app.state.upstream = upstream
    logger.info("app.upstream_initialised")

    # -- 4. Freshness resolver ------------------------------------------------
    from src.services.freshness import FreshnessResolver

    app.state.resolver = FreshnessResolver(
        cache,
        store,
        upstream,
        settings.derivation_policy,
        freshness_hours=settings.freshness_threshold_hours,
        target_state=settings.target_state,
    )
    logger.info("app.resolver_initialised")

    # -- 5. Geocoder ----------------------------------------------------------
    from src.services.geocoding import ReverseGeocoder

    geocoder = ReverseGeocoder(
        cache,
        base_url=settings.geocoder_base_url,
        user_agent=settings.geocoder_user_agent,
        target_state=settings.target_state,
    )
    app.state.geocoder = geocoder
    logger.info("app.geocoder_initialised")

    # -- 6. Sync pipeline and scheduler ---------------------------------------
    from src.services.ingestion import MetricsSyncPipeline, SyncScheduler

    pipeline = MetricsSyncPipeline(
        upstream,
        store,
        settings.sync_fiscal_years,
        page_size=settings.sync_page_size,
        target_state=settings.target_state,
    )
    scheduler = SyncScheduler(
        pipeline,
        interval_seconds=settings.sync_interval_seconds,
        run_on_startup=settings.sync_on_startup,
        single_flight=settings.sync_single_flight,
    )
    app.state.sync_pipeline = pipeline
    app.state.scheduler = scheduler

    if settings.enable_auto_sync:
        scheduler.start()
        logger.info("app.auto_sync_started", interval_seconds=settings.sync_interval_seconds)
    else:
        logger.info("app.auto_sync_disabled")

    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")

    await scheduler.stop()
    await geocoder.close()
    await upstream.close()
    await cache.close()
    await database.dispose()

    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="MGNREGA Dashboard API",
    description=(
        "District-level MGNREGA performance metrics from data.gov.in, "
        "served through a cache and a persisted store."
    ),
    version="1.0.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    """Render unexpected errors as a generic 500."""
    logger.error(
        "app.unhandled_exception",
        path=request.url.path,
        method=request.method,
        exc_info=exc,
    )
    content: dict[str, str] = {"error": "Something went wrong!"}
    if settings.env == "development":
        content["message"] = str(exc)
    return ORJSONResponse(status_code=500, content=content)


# -- CORS middleware --------------------------------------------------------
# allow_credentials=True must not be combined with allow_origins=["*"].
_cors_origins = settings.cors_origin_list or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials="*" not in _cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Authorization"],
)

# -- Rate limiting ----------------------------------------------------------
app.add_middleware(
    RateLimitMiddleware,
    max_requests=settings.rate_limit_max_requests,
    window_seconds=settings.rate_limit_window_seconds,
    trusted_proxy_count=settings.trusted_proxy_count,
)

# -- Prometheus metrics -----------------------------------------------------
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/api/v1/health"],
).instrument(app).expose(
    app,
    endpoint="/metrics",
    include_in_schema=not settings.is_production,
)

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "MGNREGA Dashboard API",
        "version": app.version,
        "docs": "/docs",
        "target_state": settings.target_state,
        "endpoints": {
            "district_metrics": "/api/v1/states/{state}/districts/{district}",
            "districts": "/api/v1/states/{state}/districts",
            "historical": "/api/v1/states/{state}/districts/{district}/historical",
            "sync": "/api/v1/sync",
            "sync_status": "/api/v1/sync/status",
            "detect_district": "/api/v1/detect-district",
            "health": "/api/v1/health",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.main:app", host=settings.api_host, port=settings.api_port)
