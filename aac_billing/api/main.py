"""
FastAPI Main Application
Entry point for the billing API server
Source: https://fastapi.tiangolo.com/
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aac_billing.api.config import settings
from aac_billing.api.routes import billing, health
from aac_billing.db.connection import close_db_connection, get_session_maker, init_db
from aac_billing.services.billing_container import build_billing_services
from aac_billing.utils.logging import get_logger, setup_logging

# Setup logging
setup_logging(
    level=settings.LOG_LEVEL,
    log_file=settings.LOG_FILE,
    json_logs=settings.is_production,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    """
    Application lifespan manager.

    Builds the billing services on startup and releases the clearinghouse
    client and database pool on shutdown.
    Source: https://fastapi.tiangolo.com/advanced/events/
    """
    # Startup
    logger.info(f"Starting billing API in {settings.ENVIRONMENT} mode")
    logger.info(f"Debug mode: {settings.DEBUG}")

    if settings.is_sqlite:
        await init_db()

    app.state.billing = build_billing_services(get_session_maker())

    yield

    # Shutdown
    logger.info("Shutting down billing API")
    await app.state.billing.close()
    await close_db_connection()
    logger.info("Database connections closed")


app = FastAPI(
    title="AAC Therapy Billing API",
    description="Insurance claims, authorizations and billing reports for AAC therapy",
    version="1.0.0",
    docs_url="/docs" if not settings.is_production else None,  # Disable docs in production
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
    lifespan=lifespan,
)

# CORS middleware
# Source: https://fastapi.tiangolo.com/tutorial/cors/
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_CREDENTIALS,
    allow_methods=settings.CORS_METHODS,
    allow_headers=settings.CORS_HEADERS,
)

# Include routers
app.include_router(health.router)
app.include_router(billing.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "name": "AAC Therapy Billing API",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "docs": "/docs" if not settings.is_production else "disabled",
    }
