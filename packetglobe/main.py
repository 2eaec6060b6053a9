"""
PacketGlobe - FastAPI Application Entry Point

Main application module with logging infrastructure,
middleware configuration, and route mounting.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from packetglobe.config import settings
from packetglobe.enrichment.cache import IntelligenceCache, PersistenceError
from packetglobe.enrichment.pipeline import RequestThrottle
from packetglobe.logging_config import configure_logging

# Configure logging on module load
configure_logging()

# Get logger for this module
logger = structlog.get_logger(__name__)

VERSION = "0.1.0"


# =============================================================================
# Application Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Opens the process-wide intelligence cache, HTTP client and request
    throttle on startup, flushes and closes them on shutdown.
    """
    # Startup
    logger.info(
        "packetglobe_starting",
        version=VERSION,
        host=settings.host,
        port=settings.port,
        debug=settings.debug,
    )

    # Log API key status
    logger.info(
        "api_keys_status",
        abstractapi=settings.has_abstractapi,
        ipapi_key=bool(settings.ipapi_api_key),
    )

    # Ensure temp directory exists
    settings.ensure_temp_dir()
    logger.info("temp_dir_ready", path=str(settings.temp_dir))

    app.state.cache = IntelligenceCache(settings.cache_path)
    app.state.http_client = httpx.AsyncClient()
    app.state.request_throttle = RequestThrottle(settings.request_delay_seconds)

    yield

    # Shutdown
    try:
        app.state.cache.flush()
    except PersistenceError as e:
        logger.error("cache_shutdown_flush_failed", error=str(e))
    app.state.cache.close()
    await app.state.http_client.aclose()

    logger.info("packetglobe_shutdown")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="PacketGlobe",
    description="PCAP-NG endpoint extraction with IP geolocation and threat intelligence",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# =============================================================================
# Middleware
# =============================================================================

# CORS middleware for the map frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health Check
# =============================================================================


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns service status and configuration info.
    """
    return {
        "status": "healthy",
        "service": "packetglobe",
        "version": VERSION,
        "providers": {
            "abstractapi": settings.has_abstractapi,
            "ipapi": True,
        },
    }


# =============================================================================
# API Routes
# =============================================================================

# Import and include API routes
from packetglobe.api.routes import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api")


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "packetglobe.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
