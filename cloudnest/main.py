"""
CloudNest Storage Engine - Main Application
FastAPI application for storage admission and file/folder management.
"""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from cloudnest.core.config import settings
from cloudnest.core.exceptions import (
    StorageEngineError,
    ValidationError,
    QuotaExceededError,
    NotFoundError,
    ConflictError,
    NoBackendAvailableError,
    InvalidOperationError,
    AdmissionCancelledError,
)
from cloudnest.core.logging import setup_logging
from cloudnest.api.v1 import api_router
from cloudnest.db import SessionLocal, check_db_connection, init_db
from cloudnest.middleware import MetricsMiddleware
from cloudnest.metrics import app_info, app_uptime_seconds
from cloudnest.storage.engine import StorageEngine

# Configure logging
setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

logger = logging.getLogger(__name__)

# Track application start time for uptime metric
_app_start_time = time.time()

# Core error kinds -> HTTP status
ERROR_STATUS_CODES = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    QuotaExceededError: status.HTTP_507_INSUFFICIENT_STORAGE,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    NoBackendAvailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    InvalidOperationError: status.HTTP_400_BAD_REQUEST,
    AdmissionCancelledError: status.HTTP_408_REQUEST_TIMEOUT,
}


def status_for(exc: StorageEngineError) -> int:
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    # Startup
    logger.info("Starting CloudNest Storage Engine...")
    logger.info(f"Version: {settings.APP_VERSION}")

    app_info.labels(version=settings.APP_VERSION, environment="production").set(1)

    if check_db_connection():
        logger.info("Database connection: OK")
        init_db()
    else:
        logger.error("Database connection: FAILED")

    if getattr(app.state, "engine", None) is None:
        app.state.engine = StorageEngine(settings, session_factory=SessionLocal)
    engine: StorageEngine = app.state.engine
    engine.monitor.start()

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down CloudNest Storage Engine...")
    await engine.monitor.stop()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Storage admission, quota enforcement and file/folder hierarchy "
                "management across multiple storage backends.",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add Prometheus Metrics Middleware
app.add_middleware(MetricsMiddleware)


# Exception handlers
@app.exception_handler(StorageEngineError)
async def storage_engine_exception_handler(request: Request, exc: StorageEngineError):
    """Map core error kinds to HTTP statuses with a structured body."""
    code = status_for(exc)
    if code >= 500 and not isinstance(exc, NoBackendAvailableError):
        logger.error(f"Storage engine error: {exc.message}", exc_info=True)
    return JSONResponse(status_code=code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "http_error",
            "message": exc.detail,
            "details": {"status_code": exc.status_code},
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": str(exc) if settings.LOG_LEVEL == "DEBUG" else "An unexpected error occurred",
            "details": {},
        },
    )


# Health check endpoints
@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """
    Service health: database connectivity plus a summary of storage
    backend health as last recorded (no probes are run here).
    """
    db_ok = check_db_connection()
    result = {
        "status": "healthy" if db_ok else "unhealthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": "healthy" if db_ok else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    engine = getattr(request.app.state, "engine", None)
    if db_ok and engine is not None:
        db = engine.session_factory()
        try:
            stats = engine.registry(db).aggregate_stats()
        finally:
            db.close()
        result["storage_backends"] = {
            "active": stats["active_backends"],
            "healthy": stats["healthy_backends"],
            "default_backend_id": stats["default_backend_id"],
        }
        if stats["active_backends"] and not stats["healthy_backends"]:
            result["status"] = "degraded"

    return result


# Include API router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


# Prometheus metrics endpoint
@app.get("/metrics", tags=["monitoring"])
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    This endpoint is excluded from metrics collection to avoid feedback loops.
    """
    app_uptime_seconds.set(time.time() - _app_start_time)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Root endpoint
@app.get("/", tags=["root"])
async def root():
    """
    Root endpoint.
    Provides basic API information.
    """
    return {
        "message": "Welcome to CloudNest Storage Engine",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    # Owner locks and the quota ledger are per process; run a single worker
    uvicorn.run(
        "cloudnest.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        workers=1,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
    )
