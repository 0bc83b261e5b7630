"""
Batch operations over the document service.

Each input id is processed on its own: a failing item is recorded in its
BatchItemResult and never aborts the others. Only systemic errors (the
database being unavailable) propagate. Results come back in input order,
one per input id, duplicates included.
"""

import asyncio
import uuid
from typing import Iterable, List, Optional

from connectors.connection_store import ErpConnection, primary_connection
from connectors.erp_base import ErpSender
from core.config import Settings
from core.errors import SalesDocumentError
from core.models.orders import OrderSource
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from . import db
from .models import AutoBatchResult, BatchItemResult, BatchResult, DocumentStatus
from .service import SalesDocumentService

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Batch cancelled before this document was sent"
DUPLICATE_MESSAGE = "Duplicate id in batch; processed once"


def _log_summary(kind: str, result: BatchResult) -> None:
    get_metrics().record_batch(kind, result.total_count, result.fail_count)
    logger.info(
        f"Batch {kind}: {result.success_count}/{result.total_count} succeeded",
        extra_fields={
            "total_count": result.total_count,
            "success_count": result.success_count,
            "fail_count": result.fail_count,
        },
    )


def generate_batch(service: SalesDocumentService, order_ids: Iterable[str]) -> BatchResult:
    """
    Generate documents for several orders.

    Args:
        service: Document service of the connection
        order_ids: Orders to generate for

    Returns:
        BatchResult with one item per order id
    """
    items: List[BatchItemResult] = []
    with with_correlation(batch_id=str(uuid.uuid4())):
        for order_id in order_ids:
            try:
                document = service.generate(order_id)
                items.append(BatchItemResult(id=order_id, success=True, document_id=document.id))
            except SalesDocumentError as e:
                items.append(BatchItemResult(id=order_id, success=False, error_message=str(e)))

        result = BatchResult.from_items(items)
        _log_summary("generate", result)
    return result


async def send_selected(
    service: SalesDocumentService,
    document_ids: Iterable[str],
    cancel_event: Optional[asyncio.Event] = None,
) -> BatchResult:
    """
    Send several documents with bounded concurrency.

    At most settings.erp_batch_concurrency sends run at once. Setting
    cancel_event stops the batch between items: sends already in flight
    finish, the rest are reported as failed with a cancellation message.

    Args:
        service: Document service of the connection
        document_ids: Documents to send
        cancel_event: Optional cooperative cancellation flag

    Returns:
        BatchResult with one item per document id
    """
    ids = list(document_ids)
    semaphore = asyncio.Semaphore(max(1, service.settings.erp_batch_concurrency))
    seen = set()

    async def _send_one(document_id: str) -> BatchItemResult:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return BatchItemResult(id=document_id, success=False, document_id=document_id, error_message=CANCELLED_MESSAGE)
            try:
                document = await service.send(document_id)
            except SalesDocumentError as e:
                return BatchItemResult(id=document_id, success=False, document_id=document_id, error_message=str(e))
            return BatchItemResult(
                id=document_id,
                success=True,
                document_id=document.id,
                erp_document_id=document.erp_document_id,
            )

    async def _duplicate(document_id: str) -> BatchItemResult:
        return BatchItemResult(id=document_id, success=False, document_id=document_id, error_message=DUPLICATE_MESSAGE)

    tasks = []
    for document_id in ids:
        if document_id in seen:
            tasks.append(_duplicate(document_id))
        else:
            seen.add(document_id)
            tasks.append(_send_one(document_id))

    with with_correlation(batch_id=str(uuid.uuid4())):
        items = await asyncio.gather(*tasks)
        result = BatchResult.from_items(list(items))
        _log_summary("send", result)
    return result


async def send_all_pending(
    service: SalesDocumentService,
    cancel_event: Optional[asyncio.Event] = None,
) -> BatchResult:
    """
    Send every PENDING or FAILED document of the service's tenant.

    A service bound to a connection sends only that connection's documents.
    """
    ids = db.list_document_ids_by_status(
        service.tenant_id,
        [DocumentStatus.PENDING, DocumentStatus.FAILED],
        erp_connection_id=service.erp_connection_id,
    )
    return await send_selected(service, ids, cancel_event=cancel_event)


def generate_missing(service: SalesDocumentService) -> BatchResult:
    """Generate for every eligible order of the tenant that lacks an active document."""
    candidates = [
        order_id
        for order_id in service.order_source.list_eligible_order_ids(service.tenant_id)
        if service.should_generate(order_id)
    ]
    return generate_batch(service, candidates)


async def send_pending(service: SalesDocumentService) -> BatchResult:
    """Send the connection's PENDING documents (FAILED ones wait for an explicit retry)."""
    ids = db.list_document_ids_by_status(
        service.tenant_id,
        [DocumentStatus.PENDING],
        erp_connection_id=service.erp_connection_id,
    )
    return await send_selected(service, ids)


def generates_for_tenant(connection: ErpConnection) -> bool:
    """True when automatic generation for the tenant belongs to this connection."""
    primary = primary_connection(connection.tenant_id)
    if primary is None or primary.id == connection.id:
        return True
    logger.warning(
        f"Connection {connection.id} has auto_generate_document on but is not the tenant's "
        f"primary connection ({primary.id}); skipping generation",
        extra_fields={"primary_connection_id": primary.id},
    )
    return False


async def process_auto_batch(
    connection: ErpConnection,
    order_source: OrderSource,
    sender: Optional[ErpSender] = None,
    settings: Optional[Settings] = None,
) -> AutoBatchResult:
    """
    One automatic pass over an ERP connection.

    Generates documents for eligible orders when auto_generate_document is
    on and the connection is the tenant's primary one (see
    primary_connection), then sends the connection's PENDING documents when
    auto_send_to_erp is on.
    """
    service = SalesDocumentService(connection.tenant_id, connection.id, order_source, sender, settings)
    summary = AutoBatchResult(erp_connection_id=connection.id)

    with with_correlation(tenant_id=connection.tenant_id, erp_connection_id=connection.id):
        if connection.auto_generate_document and generates_for_tenant(connection):
            generated = generate_missing(service)
            summary.generated_count = generated.success_count
            summary.generate_failed_count = generated.fail_count
            summary.errors.extend(
                f"{item.id}: {item.error_message}" for item in generated.results if not item.success
            )

        if connection.auto_send_to_erp:
            sent = await send_pending(service)
            summary.sent_count = sent.success_count
            summary.send_failed_count = sent.fail_count
            summary.errors.extend(
                f"{item.id}: {item.error_message}" for item in sent.results if not item.success
            )

        logger.info(
            f"Auto batch for connection {connection.id}: generated {summary.generated_count}, "
            f"sent {summary.sent_count}",
            extra_fields=summary.model_dump(exclude={"errors"}),
        )
    return summary
