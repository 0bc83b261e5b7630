"""API Services Package."""

from api.services.documents import (
    document_service,
    get_order_source,
    set_order_source,
    set_sender,
    to_http_error,
)

__all__ = [
    "document_service",
    "get_order_source",
    "set_order_source",
    "set_sender",
    "to_http_error",
]
