"""
FastAPI backend for AEO query generation and analysis
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import os

import sentry_sdk
from pydantic import ValidationError

from .config.settings import Settings, get_settings
from .core.logger import add_log_context, get_logger, setup_logging
from .core.telemetry import metrics_endpoint
from .core.state import worker_state
from .api.projects import router as projects_router

# Configure logging FIRST so settings errors are visible
setup_logging(os.getenv("LOG_LEVEL", "INFO"), os.getenv("LOG_FORMAT", "json"))
logger = get_logger(__name__)

APP_VERSION = "1.0.0"
DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


def load_settings() -> Optional[Settings]:
    """Load settings, or None when required configuration is missing"""
    try:
        return get_settings()
    except ValidationError as e:
        logger.warning(f"Settings invalid or incomplete, starting in degraded mode: {e}")
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handle startup and shutdown events using the lifespan pattern
    """
    worker_id = os.getpid()

    # Startup
    logger.info(
        "=== Worker Startup ===",
        extra=add_log_context(worker_pid=worker_id)
    )

    settings = load_settings()
    initialization_success = False

    if settings is not None:
        setup_logging(settings.log_level, settings.log_format)

        if settings.sentry_dsn:
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                environment=settings.environment,
                release=APP_VERSION,
                traces_sample_rate=0.1
            )
            logger.info("Sentry error tracking enabled")

        initialization_success = worker_state.initialize(settings)

    if initialization_success:
        app.state.orchestrator = worker_state.orchestrator
        logger.info(
            "Worker orchestrator initialized successfully",
            extra=add_log_context(
                worker_pid=worker_id,
                environment=settings.environment,
                requests_per_minute=settings.requests_per_minute,
                max_retries=settings.max_retries,
                analysis_batch_size=settings.analysis_batch_size
            )
        )
    else:
        # Degraded mode - service starts but API calls return 503
        app.state.orchestrator = None
        logger.warning(
            "Worker starting in degraded mode - GEMINI_API_KEY not configured",
            extra=add_log_context(worker_pid=worker_id)
        )

    yield  # Application runs here

    # Shutdown
    logger.info(
        "=== Worker Shutdown ===",
        extra=add_log_context(worker_pid=worker_id)
    )
    logger.info(
        "Worker statistics",
        extra=add_log_context(**worker_state.get_stats())
    )

    await worker_state.cleanup()
    app.state.orchestrator = None

    logger.info(
        "Worker shutdown complete",
        extra=add_log_context(worker_pid=worker_id)
    )


app = FastAPI(
    title="AEO Query API",
    description="Gemini-backed AEO query generation and brand/source analysis",
    version=APP_VERSION,
    lifespan=lifespan
)

_startup_settings = load_settings()
ALLOWED_ORIGINS = _startup_settings.cors_origins if _startup_settings else DEFAULT_CORS_ORIGINS

# Validate origins
for origin in ALLOWED_ORIGINS:
    if origin == "*":
        logger.warning("WARNING: Using wildcard (*) for CORS origins with credentials is a security risk!")
        if _startup_settings and _startup_settings.environment == "production":
            raise ValueError("CORS wildcard origin not allowed in production with credentials enabled")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.include_router(projects_router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "AEO Query API",
        "version": APP_VERSION,
        "status": "operational"
    }


@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns 200 while the process is running, even in degraded mode, and
    reports whether the Gemini components were initialized.
    """
    health_data = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
        "worker_pid": os.getpid(),
        "checks": {
            "service_running": True
        }
    }

    if getattr(request.app.state, "orchestrator", None) is not None:
        health_data["checks"]["orchestrator"] = "initialized"
        health_data["checks"]["api_key"] = "configured"
        health_data["checks"]["rate_limiter"] = request.app.state.orchestrator.invoker.rate_limiter.get_status()
    else:
        health_data["status"] = "degraded"
        health_data["checks"]["orchestrator"] = "not_initialized"
        health_data["checks"]["api_key"] = "not_configured"
        health_data["message"] = "Service in degraded mode - GEMINI_API_KEY not configured"

    return health_data


@app.get("/metrics")
async def metrics():
    """Prometheus metrics"""
    return await metrics_endpoint()


@app.get("/api/stats")
async def get_stats(request: Request):
    """Invoker statistics, rate limiter status and worker counters"""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="Service in degraded mode - GEMINI_API_KEY not configured"
        )

    return {
        "invoker": orchestrator.invoker.get_stats(),
        "rate_limiter": orchestrator.invoker.rate_limiter.get_status(),
        "worker": worker_state.get_stats()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
