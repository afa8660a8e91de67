"""License tracker service entry point.

Initializes the FastAPI application with:
- Structured logging
- Report dataset database (tables created on startup)
- Compute Engine and Cloud Logging adapters sharing one HTTP client
- Report services stored on app state for dependency injection
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from license_tracker import __version__
from license_tracker.adapters.audit_log import AuditLogAdapter
from license_tracker.adapters.compute_engine import ComputeEngineAdapter
from license_tracker.adapters.database import close_database, get_session_factory, init_database
from license_tracker.adapters.report_store import SqlReportSink
from license_tracker.adapters.retry import BackoffSchedule
from license_tracker.api.router import router
from license_tracker.core.services import (
    InstanceHistoryService,
    LookupService,
    PlacementReportService,
    ReportDatasetService,
)
from license_tracker.observability import configure_logging, get_logger
from license_tracker.settings import Settings

logger = get_logger(__name__)

settings = Settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    configure_logging(settings.log_level, json_output=settings.log_json)

    # Startup: report database
    logger.info("Initializing report database", service=settings.service_name)
    await init_database(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
    )
    async with get_session_factory()() as session:
        await ReportDatasetService(SqlReportSink(session)).prepare()
        await session.commit()

    # Startup: Google API adapters
    http_client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)
    backoff = BackoffSchedule(
        initial_delay_ms=settings.initial_backoff_ms,
        max_delay_ms=settings.max_backoff_ms,
        max_retries=settings.max_retries,
    )
    compute_engine = ComputeEngineAdapter(
        settings.compute_api_url,
        access_token=settings.access_token,
        backoff=backoff,
        client=http_client,
    )
    audit_log = AuditLogAdapter(
        settings.logging_api_url,
        page_size=settings.log_page_size,
        access_token=settings.access_token,
        backoff=backoff,
        client=http_client,
    )

    # Store shared services on app state for dependency injection
    app.state.settings = settings
    app.state.report_service = PlacementReportService(
        InstanceHistoryService(compute_engine, audit_log),
        LookupService(compute_engine),
    )

    logger.info("License tracker startup complete", version=__version__)

    yield

    # Shutdown
    logger.info("Shutting down license tracker")
    await http_client.aclose()
    await close_database()
    logger.info("License tracker shutdown complete")


app = FastAPI(
    title="license-tracker",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router, prefix="/api/v1")


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok", "service": settings.service_name}
