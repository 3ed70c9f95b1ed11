"""
OEE Monitor - Main FastAPI Application

This is the main entry point for the OEE Monitor backend API. It serves
production interval entry, OEE calculation and history, shift lookups and
threshold alerts for the plant's machines.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response
import structlog

from oee_monitor.config import settings
from oee_monitor.database import check_database_health, close_db, init_db
from oee_monitor.api.dependencies import create_production_service
from oee_monitor.api.v1 import alerts, oee, production
from oee_monitor.utils.exceptions import OEEMonitorException

logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    logger.info("Starting OEE Monitor API", environment=settings.ENVIRONMENT)
    engine = await init_db()
    app.state.production_service = create_production_service(engine)

    yield

    # Shutdown
    logger.info("Shutting down OEE Monitor API")
    await app.state.production_service.wait_for_dispatch(
        timeout=settings.ALERT_DISPATCH_SHUTDOWN_TIMEOUT_SECONDS
    )
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title="OEE Monitor API",
    description="""
    Overall Equipment Effectiveness monitoring API.

    This API provides:
    - Production interval entry with automatic OEE calculation
    - Shift attribution, including the overnight shift
    - OEE history with daily, weekly and monthly rollups
    - Threshold alerts for low OEE, downtime and production shortfall
    - Role-based access control
    """,
    version=settings.VERSION,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    openapi_url="/openapi.json" if settings.ENVIRONMENT != "production" else None,
    lifespan=lifespan
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handlers
@app.exception_handler(OEEMonitorException)
async def oee_monitor_exception_handler(request: Request, exc: OEEMonitorException) -> JSONResponse:
    """Handle custom OEE Monitor exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "OEE Monitor exception occurred",
        exception_type=type(exc).__name__,
        message=exc.message,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors."""
    errors = [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]
    logger.warning(
        "Validation error occurred",
        errors=errors,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": errors
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "Unexpected error occurred",
        exception_type=type(exc).__name__,
        message=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred",
            "details": None if settings.ENVIRONMENT == "production" else str(exc)
        }
    )


# Health check endpoints
@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    """Health check with record store connectivity."""
    db_status = await check_database_health()
    return {
        "status": db_status["status"],
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "database": db_status,
            "api": "healthy"
        }
    }


# Metrics endpoint for Prometheus
@app.get("/metrics", tags=["Monitoring"])
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    if not settings.ENABLE_METRICS:
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    return Response(
        generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Include API routers
app.include_router(production.router, prefix="/api/v1/production", tags=["Production Intervals"])
app.include_router(oee.router, prefix="/api/v1/oee", tags=["OEE & History"])
app.include_router(alerts.router, prefix="/api/v1/alerts", tags=["Alerts"])


# Root endpoint
@app.get("/", tags=["Root"])
async def root() -> Dict[str, str]:
    """Root endpoint with API information."""
    return {
        "message": settings.APP_NAME,
        "version": settings.VERSION,
        "docs": "/docs" if settings.ENVIRONMENT != "production" else "Documentation not available in production",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "oee_monitor.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True
    )
