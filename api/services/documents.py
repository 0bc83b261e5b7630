"""
Document service wiring for the API.

Routes build a SalesDocumentService per request from the tenant and
connection in the query string. The order source (core.models.orders) and
the optional ERP sender override are process-wide; the marketplace sync or a
test installs them with set_order_source() / set_sender().
"""

from typing import Optional

from fastapi import HTTPException

from connectors.erp_base import ErpSender
from core.errors import (
    ConfigurationError,
    ConnectionNotFoundError,
    DocumentNotFoundError,
    GenerationError,
    InvalidStateTransition,
    OrderNotFoundError,
    SalesDocumentError,
    SendError,
    TemplateNotFoundError,
)
from core.models.orders import get_order_source, set_order_source
from documents.service import SalesDocumentService

_sender: Optional[ErpSender] = None


def set_sender(sender: Optional[ErpSender]) -> None:
    """Send every document through this sender instead of its stored connection."""
    global _sender
    _sender = sender


def document_service(tenant_id: str, erp_connection_id: Optional[str] = None) -> SalesDocumentService:
    return SalesDocumentService(
        tenant_id=tenant_id,
        erp_connection_id=erp_connection_id,
        order_source=get_order_source(),
        sender=_sender,
    )


_NOT_FOUND = (
    DocumentNotFoundError,
    OrderNotFoundError,
    TemplateNotFoundError,
    ConnectionNotFoundError,
)


def to_http_error(error: SalesDocumentError) -> HTTPException:
    """Map a domain error to the HTTP status the API reports."""
    if isinstance(error, _NOT_FOUND):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidStateTransition):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=422, detail={"message": str(error), "errors": error.errors})
    if isinstance(error, GenerationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, SendError):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
