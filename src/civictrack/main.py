"""
CivicTrack - Main Application
=============================

Citizen request tracking with deadline control.

Modules:
- Request Control: lifecycle, deadline control status, due-soon and
  overdue notifications, audit trail and proceedings

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services, DTOs and background jobs
- Domain: Entities and value objects
- Infrastructure: Database, SMTP, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from civictrack.config import settings
from civictrack.control.application import (
    HealthResponse,
    run_deadline_refresh_once,
    run_notification_sweep_once,
)
from civictrack.control.infrastructure import (
    ControlServiceFactory,
    DeadlineScheduler,
    build_mailer,
)
from civictrack.control.interfaces import router as requests_router
from civictrack.infrastructure.database import close_database, create_tables, init_database
from civictrack.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    register_exception_handlers,
)
from civictrack.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Build mailer and service factory
    4. Run the deadline refresh once (before serving traffic)
    5. Start the deadline scheduler

    SHUTDOWN:
    1. Stop the scheduler
    2. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting CivicTrack", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    database_ready = True
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        database_ready = False
        logger.warning(f"Database not available - running in degraded mode: {e}")

    factory = ControlServiceFactory(build_mailer(settings), settings)
    app.state.control_factory = factory

    async def deadline_refresh_job():
        return await run_deadline_refresh_once(factory.scope, settings.reconciliation_batch_size)

    async def notification_sweep_job():
        return await run_notification_sweep_once(factory.scope)

    if database_ready:
        logger.info("Running startup deadline refresh")
        try:
            await deadline_refresh_job()
        except Exception:
            logger.exception("Startup deadline refresh failed")

    scheduler = DeadlineScheduler(
        deadline_refresh_job,
        notification_sweep_job,
        refresh_cron=settings.deadline_refresh_cron,
        notification_cron=settings.notification_cron,
    )
    app.state.scheduler = scheduler
    if settings.scheduler_enabled:
        await scheduler.start()
    else:
        logger.info("Deadline scheduler disabled")

    logger.info("CivicTrack started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down CivicTrack")
    await scheduler.stop()
    await close_database()
    logger.info("CivicTrack shutdown complete")


app = FastAPI(
    title="CivicTrack API",
    description="""
    ## Citizen Request Tracking

    Registers citizen requests, tracks their deadlines and notifies
    executors and supervisors before and after a due date passes.

    **Endpoints:**
    - `POST /requests` - Register a request
    - `GET /requests` - List requests (filters, sorting, pagination)
    - `GET /requests/{id}` - Get a request
    - `PATCH /requests/{id}` - Update a request
    - `PATCH /requests/{id}/remove-from-control` - Remove a request from control

    **Control status:** `no`, `normal`, `approaching` (due within 48 hours), `overdue`
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
register_exception_handlers(app)

# === Include Module Routers ===
app.include_router(requests_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint for load balancers and orchestrators."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        scheduler_running=bool(scheduler and scheduler.is_running),
    )
