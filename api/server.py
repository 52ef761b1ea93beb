"""FastAPI server for TTB onboarding.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health, onboarding, ttb
from api.services.container import Services
from core.config import get_settings
from core.observability.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    logger.info("TTB onboarding API starting up", extra_fields={"db_path": str(app.state.services.repository.db_path)})

    yield

    # Shutdown
    logger.info("TTB onboarding API shutting down")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built collaborators; built from environment settings when omitted
    """
    if services is None:
        settings = get_settings()
        configure_logging(level=settings.log_level_value, json_format=settings.log_json)
        services = Services.from_settings(settings)

    app = FastAPI(
        title="TTB Onboarding API",
        description="Opening balances, reconciliation against system inventory and the onboarding commit",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(ttb.router, prefix="/ttb", tags=["TTB"])
    app.include_router(onboarding.router, prefix="/onboarding", tags=["Onboarding"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
