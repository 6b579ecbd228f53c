"""
FastAPI Server for the License API
Serves the crypto subscription and payment page endpoints
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from config.config import (
    API_RATE_LIMIT,
    BILLING_SWEEP_ENABLED,
    BILLING_SWEEP_HOUR,
    ENVIRONMENT,
    PUBLIC_BASE_URL,
    validate_config,
)
from config.logging import setup_logging
from config.sentry import init_sentry
from license_api import __version__
from license_api.api.dependencies import to_http_exception
from license_api.api.router import router as api_router
from license_api.cache.redis_manager import get_redis_manager
from license_api.core.exceptions import BillingError
from license_api.database.engine import check_connection, dispose_engine, get_session_maker
from license_api.tasks.billing_sweep import BillingSweepJob

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()
init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events
    """
    # Startup
    logger.info("Starting License API Server...")

    # NOTE: Database tables managed by Alembic migrations
    # Run: alembic upgrade head

    redis = get_redis_manager()
    await redis.initialize()

    # In-process daily sweep, for deployments without a crontab entry
    sweep_job = None
    if BILLING_SWEEP_ENABLED:
        sweep_job = BillingSweepJob(get_session_maker, hour=BILLING_SWEEP_HOUR)
        sweep_job.start()

    yield

    # Shutdown
    logger.info("Shutting down License API Server...")

    if sweep_job:
        sweep_job.stop()

    await redis.close()

    await dispose_engine()
    logger.info("Database connections closed")


# Rate limiter, per IP address (configurable in .env)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[API_RATE_LIMIT],
    storage_uri="memory://",
)

app = FastAPI(
    title="License API",
    description="Recurring crypto subscriptions for license keys",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


# CORS: exact origins only, no wildcards
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

if PUBLIC_BASE_URL and PUBLIC_BASE_URL not in allowed_origins:
    allowed_origins.append(PUBLIC_BASE_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Adds security headers to every response

    The API serves JSON only, so the CSP denies everything.
    """
    response = await call_next(request)

    is_production = ENVIRONMENT == "production"

    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    if is_production and request.url.scheme == "https":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


# All API endpoints live under /api
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": "License API",
        "version": __version__,
        "status": "running",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """
    Health check endpoint

    Redis is optional; a database outage makes the service unhealthy.
    """
    database_ok = await check_connection()
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "healthy" if database_ok else "unhealthy",
            "database": database_ok,
            "cache": get_redis_manager().get_stats(),
        },
    )


@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError):
    """
    BillingError that escaped an endpoint: same mapping as the endpoints use
    """
    return await http_exception_handler(request, to_http_exception(exc))


# Error handler for HTTPException (must be before generic Exception handler)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handle HTTPException properly - return correct status code and detail
    """
    # Log 4xx as warning, 5xx as error
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code} {request.url.path}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code} {request.url.path}: {exc.detail}")

    content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content)


# Error handler for unexpected exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unexpected errors
    """
    logger.exception(f"Unhandled exception on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
        },
    )


if __name__ == "__main__":
    import uvicorn

    try:
        validate_config()
    except ValueError as e:
        logger.error(str(e))
        raise SystemExit(1)

    logger.info("Configuration validated successfully")

    # Listen on localhost only, public access goes through the reverse proxy
    uvicorn.run(
        "api_server:app",
        host="127.0.0.1",
        port=8000,
        reload=ENVIRONMENT == "development",
        log_level="info",
    )
