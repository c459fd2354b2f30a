import logging
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.alerts import router as alerts_router
from app.api.decisions import router as decisions_router
from app.api.statistics import router as statistics_router
from app.api.status import router as status_router
from app.core.config import APP_VERSION, settings
from app.core.errors import HTTPError, http_error_handler
from app.core.exceptions import ConfigurationError
from app.core.logging import setup_logging
from app.db.session import async_session_maker, init_models
from app.services.lapi_client import LAPIClient
from app.services.scheduler import SchedulerService
from app.services.sync import SyncService
from app.services.version_check import VersionChecker

logger = logging.getLogger(__name__)

SYNC_TASK_NAME = "lapi_sync"
VERSION_CHECK_TASK_NAME = "version_check"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    # Setup structured logging first
    setup_logging()

    # Startup
    missing = settings.missing_credentials()
    if missing:
        raise ConfigurationError(
            "Missing required environment variables: " + ", ".join(missing)
            + ". Configure them in the environment or in a .env file."
        )

    logger.info("Initializing database")
    await init_models()

    client = LAPIClient(
        settings.CROWDSEC_LAPI_URL,
        settings.CROWDSEC_USER,
        settings.CROWDSEC_PASSWORD,
        timeout=settings.LAPI_TIMEOUT_SECONDS,
        status_timeout=settings.LAPI_STATUS_TIMEOUT_SECONDS,
    )
    sync_service = SyncService(client, async_session_maker, retention=settings.DATA_RETENTION)
    scheduler_service = SchedulerService()
    version_checker = VersionChecker(APP_VERSION)

    app.state.lapi_client = client
    app.state.sync_service = sync_service
    app.state.scheduler_service = scheduler_service
    app.state.version_checker = version_checker

    logger.info("Testing CrowdSec LAPI connection at %s", settings.CROWDSEC_LAPI_URL)
    if await client.test_connection():
        logger.info("CrowdSec LAPI connection successful, running initial sync")
        await sync_service.sync_all()
    else:
        logger.warning("Unable to connect to CrowdSec LAPI, will keep retrying on schedule")

    scheduler_service.schedule(SYNC_TASK_NAME, sync_service.sync_all, settings.SYNC_INTERVAL_SECONDS)
    if settings.DATA_RETENTION:
        logger.info("Data retention enabled: %s", settings.DATA_RETENTION)

    if settings.VERSION_CHECK_ENABLED:
        scheduler_service.schedule(
            VERSION_CHECK_TASK_NAME,
            version_checker.check,
            settings.VERSION_CHECK_INTERVAL_SECONDS,
            run_immediately=True,
        )

    yield

    # Shutdown
    logger.info("Stopping scheduler service")
    scheduler_service.shutdown()

    logger.info("Closing CrowdSec LAPI client")
    await client.close()


app = FastAPI(
    title=settings.APP_NAME,
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Register custom exception handler for standardized error responses
app.add_exception_handler(HTTPError, http_error_handler)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID for tracking and debugging."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    # Bind request_id to all log entries during this request
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()

    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.get("/")
async def root():
    return {
        "message": settings.APP_NAME,
        "version": APP_VERSION,
        "endpoints": {
            "health": "/api/v1/health",
            "status": "/api/v1/status",
            "alerts": "/api/v1/alerts",
            "decisions": "/api/v1/decisions",
            "statistics": "/api/v1/statistics",
        },
    }


# Include routers with /api/v1 prefix
app.include_router(status_router, prefix="/api/v1")
app.include_router(alerts_router, prefix="/api/v1")
app.include_router(decisions_router, prefix="/api/v1")
app.include_router(statistics_router, prefix="/api/v1")
