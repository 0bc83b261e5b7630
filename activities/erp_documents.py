"""ERP sales document activities.

Activities behind the automatic ERP batch: find the connections with
automation enabled, generate documents for eligible orders, send PENDING
documents. Each activity opens its own database connections and returns
plain dataclasses so results serialize through Temporal.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from temporalio import activity

from connectors.connection_store import get_connection, list_connections
from core.models.orders import get_order_source
from documents.batch import generate_missing, generates_for_tenant, send_pending
from documents.db import init_document_db
from documents.models import BatchResult
from documents.service import SalesDocumentService


@dataclass
class ListAutoConnectionsInput:
    """Input for list_auto_connections activity.

    Attributes:
        tenant_id: Restrict to one tenant (None = all tenants)
    """
    tenant_id: Optional[str] = None


@dataclass
class AutoConnection:
    """A connection with at least one automation flag on."""
    erp_connection_id: str
    tenant_id: str
    auto_generate_document: bool
    auto_send_to_erp: bool


@dataclass
class ConnectionBatchInput:
    """Input for generate/send activities.

    Attributes:
        erp_connection_id: Connection to process
    """
    erp_connection_id: str


@dataclass
class BatchSummary:
    """Counts of a batch activity; error texts capped for payload size."""
    erp_connection_id: str
    total_count: int = 0
    success_count: int = 0
    fail_count: int = 0
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_result(cls, erp_connection_id: str, result: BatchResult, max_errors: int = 50) -> "BatchSummary":
        return cls(
            erp_connection_id=erp_connection_id,
            total_count=result.total_count,
            success_count=result.success_count,
            fail_count=result.fail_count,
            errors=[
                f"{item.id}: {item.error_message}"
                for item in result.results if not item.success
            ][:max_errors],
        )


def _service(erp_connection_id: str) -> SalesDocumentService:
    connection = get_connection(erp_connection_id)
    return SalesDocumentService(connection.tenant_id, connection.id, get_order_source())


@activity.defn
async def list_auto_connections(input: ListAutoConnectionsInput) -> List[AutoConnection]:
    """List active connections with auto generation or auto send enabled."""
    connections = list_connections(tenant_id=input.tenant_id, automated_only=True)
    activity.logger.info(f"Found {len(connections)} connection(s) with ERP automation")
    return [
        AutoConnection(
            erp_connection_id=c.id,
            tenant_id=c.tenant_id,
            auto_generate_document=c.auto_generate_document,
            auto_send_to_erp=c.auto_send_to_erp,
        )
        for c in connections
    ]


@activity.defn
async def generate_pending_documents(input: ConnectionBatchInput) -> BatchSummary:
    """
    Generate documents for eligible orders of the connection's tenant.

    Only the tenant's primary connection generates; for any other the
    summary is empty.
    """
    init_document_db()
    connection = get_connection(input.erp_connection_id)
    if not generates_for_tenant(connection):
        return BatchSummary(erp_connection_id=connection.id)
    service = _service(connection.id)
    result = generate_missing(service)
    activity.logger.info(
        f"Connection {input.erp_connection_id}: generated {result.success_count}/{result.total_count}"
    )
    return BatchSummary.from_result(input.erp_connection_id, result)


@activity.defn
async def send_pending_documents(input: ConnectionBatchInput) -> BatchSummary:
    """Send the PENDING documents generated for the connection."""
    service = _service(input.erp_connection_id)
    result = await send_pending(service)
    activity.logger.info(
        f"Connection {input.erp_connection_id}: sent {result.success_count}/{result.total_count}"
    )
    return BatchSummary.from_result(input.erp_connection_id, result)
