"""ERP connection endpoints.

Checks that a stored connection's credentials are accepted by its ERP.
"""

import time
from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from connectors.connection_store import create_sender
from core.errors import SalesDocumentError
from api.services.documents import to_http_error


router = APIRouter()


class ConnectionTestResult(BaseModel):
    """Result of a connection test."""
    erp_connection_id: str
    success: bool
    message: str
    latency_ms: Optional[float] = None
    details: Dict[str, Any] = {}


@router.post("/{erp_connection_id}/test-connection", response_model=ConnectionTestResult)
async def test_connection(erp_connection_id: str) -> ConnectionTestResult:
    """Log in to the ERP with the connection's stored credentials."""
    try:
        connector = create_sender(erp_connection_id)
    except SalesDocumentError as e:
        raise to_http_error(e)

    start = time.monotonic()
    success = await connector.test_connection()
    latency_ms = (time.monotonic() - start) * 1000

    return ConnectionTestResult(
        erp_connection_id=erp_connection_id,
        success=success,
        message="Connection successful" if success else "ERP rejected the stored credentials",
        latency_ms=round(latency_ms, 1),
        details={"connector_type": connector.config.connector_type},
    )
