"""Student Suite API - Main Application.

FastAPI application backing the Student Suite mobile and web apps:
callable endpoints (AI generation, IAP receipts, referrals, promotional
offers), the Stripe webhook, and internal trigger endpoints.

Security: callables require Firebase Auth; /internal requires the shared
event token; the Stripe webhook is verified by signature.

Usage:
    uvicorn suite_api.main:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import ALLOWED_ORIGINS, API_VERSION, DEBUG_MODE
from .dependencies import get_firebase_app, get_firestore, get_generation_config
from .errors import CallableError, callable_error_handler
from .middleware.rate_limit import setup_rate_limiting
from .routers import billing, events, generation, health, referrals

# Logging setup
logging.basicConfig(
    level=logging.DEBUG if DEBUG_MODE else logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("api.main")


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    logger.info(f"Starting Student Suite API v{API_VERSION}")
    logger.info(f"Debug mode: {DEBUG_MODE}")

    try:
        get_firebase_app()
        logger.info("Firebase initialized")

        get_firestore()
        logger.info("Firestore connected")

        generation = get_generation_config()
        logger.info(f"AI models: {generation.google_model}, {generation.openai_model}")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    yield

    logger.info("Shutting down Student Suite API")


# =============================================================================
# APPLICATION
# =============================================================================

if DEBUG_MODE:
    app = FastAPI(
        title="Student Suite API",
        version=API_VERSION,
        lifespan=lifespan,
    )
else:
    # Production: disable docs endpoints
    app = FastAPI(
        title="Student Suite API",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )


# =============================================================================
# MIDDLEWARE
# =============================================================================

setup_rate_limiting(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(ALLOWED_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    if "server" in response.headers:
        del response.headers["server"]

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests for debugging."""
    start_time = datetime.utcnow()

    response = await call_next(request)

    duration_ms = (datetime.utcnow() - start_time).total_seconds() * 1000
    logger.debug(
        f"{request.method} {request.url.path} "
        f"-> {response.status_code} ({duration_ms:.0f}ms)"
    )

    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

app.add_exception_handler(CallableError, callable_error_handler)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions with generic error response."""
    logger.exception(f"Unhandled exception on {request.url.path}")

    error = {"status": "INTERNAL", "message": "Internal server error"}
    if DEBUG_MODE:
        error["details"] = {"error": str(exc), "type": type(exc).__name__}
    return JSONResponse(status_code=500, content={"error": error})


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(generation.router, prefix="/api", tags=["Generation"])
app.include_router(billing.router, prefix="/api", tags=["Billing"])
app.include_router(referrals.router, prefix="/api", tags=["Referrals"])
app.include_router(events.router, prefix="/internal/events", tags=["Events"])


@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": "Student Suite API",
        "version": API_VERSION,
        "status": "running"
    }
