"""Activity definitions module."""

from activities.erp_documents import (
    list_auto_connections,
    generate_pending_documents,
    send_pending_documents,
    ListAutoConnectionsInput,
    AutoConnection,
    ConnectionBatchInput,
    BatchSummary,
)

__all__ = [
    "list_auto_connections",
    "generate_pending_documents",
    "send_pending_documents",
    "ListAutoConnectionsInput",
    "AutoConnection",
    "ConnectionBatchInput",
    "BatchSummary",
]
