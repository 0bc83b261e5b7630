"""Health check and metrics endpoints."""

import sqlite3
from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Response
from pydantic import BaseModel

from connectors.erp_base import list_available_connectors
from core.database import get_db_connection
from core.observability.metrics import get_metrics


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]
    connectors: List[str]


def _storage_status() -> str:
    try:
        conn = get_db_connection()
        conn.execute("SELECT 1")
        conn.close()
    except sqlite3.Error:
        return "down"
    return "up"


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Health check endpoint."""
    storage = _storage_status()
    return HealthResponse(
        status="healthy" if storage == "up" else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        version="1.0.0",
        services={
            "api": "up",
            "storage": storage,
        },
        connectors=list_available_connectors(),
    )


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness check for Kubernetes."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check(response: Response) -> Dict[str, str]:
    """Liveness check for Kubernetes."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics_summary() -> Dict[str, Any]:
    """In-process document, batch and timing counters."""
    return get_metrics().get_summary()
