"""FastAPI application entry point"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.core.config import settings
from marketplace.core.logging import setup_logging
from marketplace.core.otel import (
    initialize_otel, setup_otel_logging, instrument_fastapi, instrument_httpx, instrument_sqlalchemy
)
from marketplace.db.session import engine, init_db
from marketplace.db.redis import get_redis_client
from marketplace.services.email_service import validate_email_config

# Import routers
from marketplace.api import monitoring, orders, payment_events

setup_logging()

logger = logging.getLogger(__name__)
api_access_logger = logging.getLogger("api_access")


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
        # Only the lookup rate limiter uses Redis and it fails open
        logger.warning(f"Redis connection failed, rate limiting disabled: {e}")

    instrument_sqlalchemy(engine)

    email_ok, email_error = validate_email_config()
    if not email_ok:
        logger.warning(f"Buyer confirmation emails disabled: {email_error}")

    # Start background tasks
    logger.info("Starting notification sweeper...")
    from marketplace.tasks.notification_sweeper import notification_sweeper_task

    sweeper = asyncio.create_task(notification_sweeper_task())
    logger.info("Notification sweeper started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper


# Create FastAPI app
app = FastAPI(
    title="Marketplace Orders",
    description="Payment event to order materialization pipeline",
    version="1.0.0",
    lifespan=lifespan
)

# Instrument FastAPI with OpenTelemetry
instrument_fastapi(app)

# Instrument HTTPX
instrument_httpx()

# CORS middleware (the confirmation page polls /orders from the storefront)
allowed_origins = [settings.FRONTEND_URL]
if settings.ENVIRONMENT == "development":
    allowed_origins.extend([
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Include routers
app.include_router(payment_events.router)
app.include_router(orders.router)
app.include_router(monitoring.router)


@app.middleware("http")
async def access_log_middleware(request: Request, call_next):
    """Log method, path, status and duration of every request"""
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        api_access_logger.info(f"{request.method} {request.url.path} -> {status_code} ({elapsed_ms:.1f}ms)")


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
