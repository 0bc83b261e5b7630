"""Abstract ERP Sender Interface.

This module defines the boundary between the sales document engine and the
ERP systems documents are booked into. It is intentionally ERP-agnostic - no
ECount specifics here.

Connectors implement this interface to:
1. Authenticate with their ERP
2. Render the canonical document lines into the ERP's payload format
3. Submit the document and report the ERP-assigned document id

Key Design Principles:
- The document service depends ONLY on ErpSender
- A connector never raises out of send_sales_document; failures come back as
  SendResult(success=False) so the document always lands in SENT or FAILED
- ERP-specific implementations live in connector subfolders
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from documents.models import ErpSalesDocument


# =============================================================================
# Configuration and results
# =============================================================================

@dataclass
class ERPConfig:
    """Configuration for an ERP connector.

    Generic configuration that can be extended by specific connectors.
    """
    connector_type: str                     # "ecount", ...
    connection_id: Optional[str] = None     # ERP connection this config belongs to
    tenant_id: Optional[str] = None         # Multi-tenant identifier

    # Authentication (connector-specific, decrypted)
    auth_config: Dict[str, Any] = field(default_factory=dict)

    # Behavior
    timeout_seconds: float = 30.0

    # ERP-specific settings
    custom_settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SendResult:
    """Outcome of submitting one sales document to the ERP."""
    success: bool
    erp_document_id: Optional[str] = None   # ERP slip/document number
    error_message: Optional[str] = None
    validation_errors: List[str] = field(default_factory=list)
    sent_at: Optional[datetime] = None

    # Raw response for debugging
    raw_response: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, erp_document_id: str, raw_response: Optional[Dict[str, Any]] = None) -> "SendResult":
        return cls(
            success=True,
            erp_document_id=erp_document_id,
            sent_at=datetime.utcnow(),
            raw_response=raw_response,
        )

    @classmethod
    def failed(cls, error_message: str, **kwargs) -> "SendResult":
        return cls(success=False, error_message=error_message, **kwargs)


# =============================================================================
# Sender / Connector Interface
# =============================================================================

class ErpSender(ABC):
    """Anything that can book a sales document into an ERP."""

    @abstractmethod
    async def send_sales_document(self, document: "ErpSalesDocument") -> SendResult:
        """Submit a fully built document.

        Args:
            document: Document whose lines are sent as-is

        Returns:
            SendResult with the ERP document id, or the error message
        """


class ERPConnector(ErpSender):
    """Abstract base class for ERP connectors.

    Implementations:
    - connectors/ecount/connector.py
    """

    def __init__(self, config: ERPConfig):
        """Initialize connector with configuration."""
        self.config = config

    @abstractmethod
    async def connect(self) -> bool:
        """Authenticate against the ERP.

        Returns:
            True if authentication succeeded
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Release sessions and HTTP resources."""

    async def test_connection(self) -> bool:
        """Check the stored credentials by authenticating once."""
        try:
            return await self.connect()
        finally:
            await self.disconnect()


# =============================================================================
# Connector Registry
# =============================================================================

_connector_registry: Dict[str, type] = {}


def register_connector(connector_type: str):
    """Decorator to register a connector implementation."""
    def decorator(cls):
        _connector_registry[connector_type] = cls
        return cls
    return decorator


def create_connector(config: ERPConfig) -> ERPConnector:
    """Create a connector instance from configuration.

    Args:
        config: ERPConfig with connector_type specified

    Returns:
        Configured connector instance

    Raises:
        ValueError: If connector_type is not registered
    """
    connector_type = config.connector_type.lower()

    if connector_type not in _connector_registry:
        available = list(_connector_registry.keys())
        raise ValueError(
            f"Unknown connector type: {connector_type}. "
            f"Available: {available}"
        )

    connector_class = _connector_registry[connector_type]
    return connector_class(config)


def list_available_connectors() -> List[str]:
    """List all registered connector types."""
    return list(_connector_registry.keys())
