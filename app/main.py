"""
StudyCards Backend - Main FastAPI Application

Entry point for the API server.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import get_settings
from app.core.exceptions import AggregateInconsistencyError
from app.database import create_tables
from app.rate_limit import limiter

from app.cards import cards_router, decks_router

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Runs startup and shutdown logic.
    """
    # Startup
    logger.info(f"[Startup] Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"[Startup] Debug mode: {settings.debug}")

    try:
        await create_tables()
        logger.info("[Startup] Database tables created/verified")
    except Exception as e:
        logger.error(f"[Startup] Database initialization failed: {e}")
        # Migrations may own the schema; keep serving

    yield

    # Shutdown
    logger.info("[Shutdown] Application shutting down...")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    StudyCards Backend API - Spaced-repetition study decks.

    ## Features

    * **Decks** - Owned collections of cards with per-status progress counters
    * **Cards** - Question/answer cards scheduled with an SM-2 variant
    * **Reviews** - Submit a 0-5 recall score, get the next review date
    * **Due cards** - Most overdue cards of a deck first

    ## Architecture

    Built with FastAPI, SQLAlchemy 2.0 (async), and PostgreSQL.
    Uses a 3-layer architecture: Router → Service → Repository.
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AggregateInconsistencyError)
async def aggregate_inconsistency_handler(request: Request, exc: AggregateInconsistencyError):
    """Deck counters no longer match the cards; the request was rolled back."""
    logger.critical(f"Aggregate inconsistency on deck {exc.deck_id}: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": exc.message, "code": "AGGREGATE_INCONSISTENCY"},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "code": "INTERNAL_ERROR"},
    )


# Health check endpoints
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API info."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health", tags=["Health"])
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# API v1 routes
API_V1_PREFIX = "/api/v1"


@app.get(f"{API_V1_PREFIX}/health", tags=["Health"])
async def api_health():
    """API health check with version."""
    return {
        "status": "healthy",
        "version": settings.app_version,
    }


# Include routers
app.include_router(decks_router, prefix=API_V1_PREFIX)
app.include_router(cards_router, prefix=API_V1_PREFIX)
