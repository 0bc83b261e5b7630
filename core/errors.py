"""Exception hierarchy for sales document generation and delivery.

- ConfigurationError: template rejected at save time
- GenerationError: an order cannot be turned into a document
- SendError: the ERP rejected the document or did not answer in time
- InvalidStateTransition: operation not allowed from the document's status
- *NotFoundError: referenced entity does not exist
"""

from typing import List, Optional


class SalesDocumentError(Exception):
    """Base class for all sales document errors."""


class ConfigurationError(SalesDocumentError):
    """Template references an unsupported value source, duplicates a field, etc."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: " + "; ".join(self.errors)
        super().__init__(message)


class GenerationError(SalesDocumentError):
    """Order yields no lines, or already has an active document."""

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class SendError(SalesDocumentError):
    """ERP sender returned a failure or timed out."""

    def __init__(self, message: str, document_id: Optional[str] = None):
        super().__init__(message)
        self.document_id = document_id


class InvalidStateTransition(SalesDocumentError):
    """Operation is not legal from the document's current status."""

    def __init__(self, operation: str, current_status: str, document_id: Optional[str] = None):
        super().__init__(f"Cannot {operation} a document in status {current_status}")
        self.operation = operation
        self.current_status = current_status
        self.document_id = document_id


class DocumentNotFoundError(SalesDocumentError):
    def __init__(self, document_id: str):
        super().__init__(f"Sales document not found: {document_id}")
        self.document_id = document_id


class OrderNotFoundError(SalesDocumentError):
    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class TemplateNotFoundError(SalesDocumentError):
    def __init__(self, erp_connection_id: str):
        super().__init__(f"No active sales template for ERP connection {erp_connection_id}")
        self.erp_connection_id = erp_connection_id


class ConnectionNotFoundError(SalesDocumentError):
    def __init__(self, erp_connection_id: str):
        super().__init__(f"ERP connection not found: {erp_connection_id}")
        self.erp_connection_id = erp_connection_id
