"""
Documents Package

Lifecycle of ERP sales documents: generation from orders, sending to the ERP,
cancellation, regeneration and batch processing.

Usage:
    from documents import SalesDocumentService, generate_batch

    service = SalesDocumentService("tenant-1", "conn-1", order_source, sender)
    document = service.generate("order-1")
    document = await service.send(document.id)
"""

from core.errors import (
    SalesDocumentError,
    ConfigurationError,
    GenerationError,
    SendError,
    InvalidStateTransition,
    DocumentNotFoundError,
    OrderNotFoundError,
    TemplateNotFoundError,
    ConnectionNotFoundError,
)

from .models import (
    DocumentStatus,
    ErpSalesDocument,
    BatchItemResult,
    BatchResult,
    AutoBatchResult,
    NEED_DOCUMENT,
)

from .db import init_document_db

from .service import SalesDocumentService

from .batch import (
    generate_batch,
    send_selected,
    send_all_pending,
    generate_missing,
    generates_for_tenant,
    send_pending,
    process_auto_batch,
)

__all__ = [
    # Errors
    "SalesDocumentError",
    "ConfigurationError",
    "GenerationError",
    "SendError",
    "InvalidStateTransition",
    "DocumentNotFoundError",
    "OrderNotFoundError",
    "TemplateNotFoundError",
    "ConnectionNotFoundError",

    # Models
    "DocumentStatus",
    "ErpSalesDocument",
    "BatchItemResult",
    "BatchResult",
    "AutoBatchResult",
    "NEED_DOCUMENT",

    # Service
    "init_document_db",
    "SalesDocumentService",
    "generate_batch",
    "send_selected",
    "send_all_pending",
    "generate_missing",
    "generates_for_tenant",
    "send_pending",
    "process_auto_batch",
]
