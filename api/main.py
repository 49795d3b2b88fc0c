"""Solar Monitoring API: FastAPI entry point.

Mounts the monitoring router under /api/monitoring behind tenant and CORS
middleware. Startup configures logging and the optional tracer; shutdown
disposes the database engine.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import TenantMiddleware
from api.routes import router as monitoring_router
from core.config import MonitoringConfig, configure_logging
from core.database import close_db
from core.integrations.registry import ADAPTER_FACTORIES
from core.observability.otel_setup import setup_otel
from providers.legacy import LEGACY_PROVIDERS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
).split(",")
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
DEFAULT_TENANT = os.getenv("DEFAULT_TENANT", "default")
VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    config = MonitoringConfig.from_env()
    configure_logging("DEBUG" if DEBUG else config.log_level)
    app.state.tracer = setup_otel()
    logger.info(
        "Solar Monitoring API started (%d adapters, %d legacy providers)",
        len(ADAPTER_FACTORIES), len(LEGACY_PROVIDERS),
    )
    yield
    await close_db()
    logger.info("Solar Monitoring API shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Solar Monitoring",
    description="Multi-vendor solar inverter monitoring ingestion",
    version=VERSION,
    debug=DEBUG,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(TenantMiddleware, default_tenant=DEFAULT_TENANT)

app.include_router(monitoring_router, prefix="/api/monitoring", tags=["Monitoring"])


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@app.get("/")
async def root():
    return {
        "name": "Solar Monitoring",
        "version": VERSION,
        "docs": "/docs",
        "providers": sorted([*ADAPTER_FACTORIES, *LEGACY_PROVIDERS]),
    }
