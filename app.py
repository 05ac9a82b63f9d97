"""
CareCadence Backend
Main FastAPI application for medication scheduling and adherence
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Configuration and database
from config import settings, scheduling_config
from database import init_db, DatabaseHealthCheck
from errors import (
    CareCadenceError,
    NotFoundError,
    PersistenceError,
    StateConflictError,
    ValidationError,
)

from api import include_routers

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


# ==================== LIFESPAN ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENV}")

    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}")


# ==================== APP INITIALIZATION ====================

app = FastAPI(
    title=settings.APP_NAME,
    description="""
    ## CareCadence API

    Medication scheduling and adherence engine.

    ### Features
    - **Frequency normalization**: free-text frequencies mapped to canonical codes
    - **Idempotent scheduling**: dose events materialized over date ranges without duplicates
    - **Dose lifecycle**: take, skip, snooze and reschedule with derived missed status
    - **Medication lifecycle**: hold, resume, discontinue and replace with an audit log
    - **Adherence**: windowed rates, timing and streaks computed from dose events
    - **Repair**: diagnose and fix schedule inconsistencies
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Attach modular API routers
include_routers(app, prefix=settings.API_PREFIX)


# ==================== EXCEPTION HANDLERS ====================

ERROR_STATUS_CODES = {
    ValidationError: 422,
    StateConflictError: 409,
    NotFoundError: 404,
    PersistenceError: 503,
}


def _error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "message": message,
            "status_code": status_code,
            "timestamp": datetime.utcnow().isoformat(),
            **extra,
        }
    )


@app.exception_handler(CareCadenceError)
async def engine_error_handler(request: Request, exc: CareCadenceError):
    status_code = next(
        (code for cls, code in ERROR_STATUS_CODES.items() if isinstance(exc, cls)),
        400,
    )
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.reason}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.reason}")

    context = {k: v for k, v in exc.context.items() if v is not None}
    return _error_response(status_code, exc.reason, code=exc.code, context=context)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(exc.status_code, exc.detail, code="http_error")


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return _error_response(
        500,
        "An unexpected error occurred" if not settings.DEBUG else str(exc),
        code="internal_error",
    )


# ==================== HEALTH ENDPOINTS ====================

@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic health check"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat()
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check endpoint"""
    db_connected = DatabaseHealthCheck.is_connected()

    return {
        "status": "healthy" if db_connected else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": {
            "database": {
                "status": "up" if db_connected else "down",
                "type": "sqlite" if "sqlite" in settings.DATABASE_URL else "postgresql"
            },
        },
        "config": {
            "missed_grace_minutes": settings.MISSED_GRACE_MINUTES,
            "on_time_tolerance_minutes": settings.ON_TIME_TOLERANCE_MINUTES,
            "generation_window_days": settings.GENERATION_WINDOW_DAYS,
            "time_buckets": [b["name"] for b in scheduling_config.DEFAULT_TIME_BUCKETS],
        },
        "version": settings.APP_VERSION,
        "environment": settings.ENV
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
