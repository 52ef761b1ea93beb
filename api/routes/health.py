"""Health check endpoints."""

import sqlite3
from datetime import datetime
from typing import Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.services.container import Services, get_services
from core import __version__
from inventory.db import PersistenceError
from workflows.commit import TemporalCommitExecutor


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
def health_check(services: Services = Depends(get_services)) -> HealthResponse:
    """Health check endpoint."""
    try:
        services.repository.get_onboarding_completed_at()
        database = "up"
    except (PersistenceError, sqlite3.Error):
        database = "down"

    return HealthResponse(
        status="healthy" if database == "up" else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        version=__version__,
        services={
            "api": "up",
            "database": database,
            "commit_mode": "temporal" if isinstance(services.executor, TemporalCommitExecutor) else "local",
        },
    )


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness check for Kubernetes."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness check for Kubernetes."""
    return {"status": "alive"}
