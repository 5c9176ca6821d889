"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tlyt import __version__
from tlyt.core.config import settings
from tlyt.core.logging import setup_logging
from tlyt.core.middleware import setup_cors_middleware, security_middleware, setup_exception_handlers
from tlyt.core.otel import initialize_otel, setup_otel_logging, instrument_fastapi, instrument_httpx, instrument_sqlalchemy
from tlyt.db.session import engine, init_db
from tlyt.db.redis import get_redis_client
from tlyt.models import Base  # noqa: F401 - registers all models with Base.metadata

# Import routers
from tlyt.api import accounts, chips, billing, videos, monitoring

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    otel_initialized = initialize_otel()
    if otel_initialized:
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
        instrument_sqlalchemy(engine)
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    # Start background tasks
    from tlyt.tasks.reconcile import reconcile_task
    reconcile = asyncio.create_task(reconcile_task())
    logger.info("Reconciliation task started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    reconcile.cancel()


# Create FastAPI app
app = FastAPI(
    title="TLYT Backend",
    description="Chip-metered YouTube video summaries",
    version=__version__,
    lifespan=lifespan
)

instrument_fastapi(app)
instrument_httpx()

app.middleware("http")(security_middleware)
setup_cors_middleware(app)  # Outermost, so 429s carry CORS headers too
setup_exception_handlers(app)

# Include routers
app.include_router(accounts.router)
app.include_router(chips.router)
app.include_router(billing.router)
app.include_router(videos.router)
app.include_router(monitoring.router)
