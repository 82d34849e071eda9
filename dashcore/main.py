"""
FastAPI application factory with request tracing and scheduler lifecycle.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dashcore import __version__
from dashcore.config import get_settings
from dashcore.dependencies import get_scheduler, get_threshold_registry
from dashcore.exceptions import AggregationFailure, DataSourceUnavailable
from dashcore.routers import aggregation, kpis, metrics, system
from dashcore.utils.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Loads KPI thresholds (failing fast on misconfiguration) and runs the
    cadence scheduler when enabled.
    """
    settings = get_settings()

    registry = get_threshold_registry()
    logger.info(
        "application_startup",
        version=app.version,
        dev_mode=settings.dev_mode,
        kpi_thresholds=len(registry),
        scheduler_enabled=settings.scheduler_enabled,
    )

    scheduler = get_scheduler() if settings.scheduler_enabled else None
    if scheduler is not None:
        scheduler.start()

    yield

    if scheduler is not None:
        scheduler.stop()
    logger.info("application_shutdown")


def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures FastAPI application instance.
    """
    app = FastAPI(
        title="dashcore API",
        description="Multi-granularity metric rollup and KPI evaluation",
        version=__version__,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def request_tracing_middleware(request: Request, call_next):
        """Add request ID to all requests and bind it to the log context."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info("request_started", method=request.method, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response

    @app.exception_handler(AggregationFailure)
    async def aggregation_failure_handler(request: Request, exc: AggregationFailure):
        logger.error("aggregation_request_failed", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": str(exc), "run_id": exc.run_id},
        )

    @app.exception_handler(DataSourceUnavailable)
    async def data_source_handler(request: Request, exc: DataSourceUnavailable):
        logger.error("data_source_unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})

    @app.get("/health", tags=["System"])
    async def health_check():
        """Liveness check for load balancers."""
        return {"status": "healthy", "version": app.version}

    app.include_router(aggregation.router, prefix="/api/v1/aggregation", tags=["Aggregation"])
    app.include_router(metrics.router, prefix="/api/v1/metrics", tags=["Metrics"])
    app.include_router(kpis.router, prefix="/api/v1/kpis", tags=["KPIs"])
    app.include_router(system.router, prefix="/api/v1/system", tags=["System"])

    logger.info("application_configured", routers_count=4)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "dashcore.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
