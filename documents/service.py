"""
Sales document service

Owns the document lifecycle for one ERP connection of one tenant:

- generate / regenerate: order + active template → PENDING document
- send: PENDING/FAILED → SENT or FAILED (bounded by ERP_SEND_TIMEOUT_SECONDS,
  never retried here; retry means calling send again)
- cancel: PENDING/FAILED → CANCELLED
- delete: PENDING/FAILED documents only

Any other transition raises InvalidStateTransition and changes nothing.
"""

import asyncio
import time
import uuid
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from connectors.connection_store import create_sender
from connectors.erp_base import ERPConnector, ErpSender, SendResult
from core.config import Settings, get_settings
from core.errors import (
    ConfigurationError,
    DocumentNotFoundError,
    GenerationError,
    InvalidStateTransition,
    OrderNotFoundError,
    SalesDocumentError,
    SendError,
)
from core.models.orders import Order, OrderSource
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from sales_engine.builder import build_document_lines
from sales_engine.db import get_active_template
from . import db
from .models import ALLOWED_FROM, NEED_DOCUMENT, SENDING, DocumentStatus, ErpSalesDocument

logger = get_logger(__name__)

# Margin past the send timeout before an unsettled claim is considered abandoned
SEND_CLAIM_GRACE = timedelta(seconds=60)


class SalesDocumentService:
    """
    Document state machine over the document store.

    Args:
        tenant_id: Tenant the documents belong to
        erp_connection_id: ERP connection whose template generation uses;
            may be None for services that only list, send or cancel
        order_source: Read access to collected orders
        sender: ERP sender for every document; when omitted each document is
            sent through the stored connection it was generated for
        settings: Runtime settings (send timeout, batch concurrency)
    """

    def __init__(
        self,
        tenant_id: str,
        erp_connection_id: Optional[str],
        order_source: OrderSource,
        sender: Optional[ErpSender] = None,
        settings: Optional[Settings] = None,
    ):
        self.tenant_id = tenant_id
        self.erp_connection_id = erp_connection_id
        self.order_source = order_source
        self.settings = settings or get_settings()
        self._sender = sender
        self._senders: Dict[str, ErpSender] = {}

    def sender_for(self, erp_connection_id: str) -> ErpSender:
        """The injected sender, or the connector of the given stored connection."""
        if self._sender is not None:
            return self._sender
        if erp_connection_id not in self._senders:
            self._senders[erp_connection_id] = create_sender(erp_connection_id)
        return self._senders[erp_connection_id]

    @staticmethod
    def _connector_type(sender: ErpSender) -> str:
        if isinstance(sender, ERPConnector):
            return sender.config.connector_type
        return type(sender).__name__

    def _require_connection(self) -> str:
        if not self.erp_connection_id:
            raise ConfigurationError("An ERP connection is required to generate documents")
        return self.erp_connection_id

    def _correlation(self, **kwargs):
        return with_correlation(
            tenant_id=self.tenant_id,
            erp_connection_id=self.erp_connection_id,
            **kwargs,
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    def get(self, document_id: str) -> ErpSalesDocument:
        document = db.get_document(document_id)
        if document is None or document.tenant_id != self.tenant_id:
            raise DocumentNotFoundError(document_id)
        return document

    def list(
        self,
        status: Optional[DocumentStatus] = None,
        order_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ErpSalesDocument]:
        return db.list_documents(
            tenant_id=self.tenant_id,
            status=status,
            order_id=order_id,
            limit=limit,
            offset=offset,
        )

    def _require_order(self, order_id: str) -> Order:
        order = self.order_source.get_order(order_id)
        if order is None or order.tenant_id != self.tenant_id:
            raise OrderNotFoundError(order_id)
        return order

    def counts(self) -> Dict[str, int]:
        """
        Document count per status plus NEED_DOCUMENT.

        NEED_DOCUMENT counts eligible orders (shipping or delivered) that
        have no active document yet.
        """
        counts = db.count_by_status(self.tenant_id)
        eligible = self.order_source.list_eligible_order_ids(self.tenant_id)
        covered = db.active_order_ids(eligible)
        counts[NEED_DOCUMENT] = len([oid for oid in eligible if oid not in covered])
        return counts

    def should_generate(self, order_id: str) -> bool:
        """True when the order is eligible and has no active document."""
        order = self.order_source.get_order(order_id)
        if order is None or order.tenant_id != self.tenant_id:
            return False
        if not order.is_document_eligible or not order.items:
            return False
        return db.get_active_document(order_id) is None

    # =========================================================================
    # Generation
    # =========================================================================

    def _create(self, order: Order) -> ErpSalesDocument:
        erp_connection_id = self._require_connection()
        template = get_active_template(erp_connection_id)

        start = time.monotonic()
        try:
            result = build_document_lines(order, template)
        except GenerationError:
            get_metrics().record_generation_failed()
            raise

        document = ErpSalesDocument(
            id=str(uuid.uuid4()),
            tenant_id=self.tenant_id,
            order_id=order.id,
            marketplace_order_id=order.marketplace_order_id,
            erp_connection_id=erp_connection_id,
            status=DocumentStatus.PENDING,
            document_date=order.ordered_at.date() if order.ordered_at else date.today(),
            marketplace_type=order.marketplace_type,
            customer_code=result.customer_code,
            customer_name=result.customer_name,
            total_amount=result.total_amount,
            lines=result.lines,
        )
        try:
            document = db.insert_document(document)
        except GenerationError:
            get_metrics().record_generation_failed()
            raise

        duration_ms = (time.monotonic() - start) * 1000
        get_metrics().record_document_generated(duration_ms)
        logger.info(
            f"Generated sales document {document.id} for order {order.id}",
            extra_fields={
                "document_id": document.id,
                "line_count": len(document.lines),
                "total_amount": str(document.total_amount),
                "skipped_items": len(result.warnings),
            },
        )
        return document

    def generate(self, order_id: str) -> ErpSalesDocument:
        """
        Generate a PENDING document for an order.

        Raises:
            OrderNotFoundError: Unknown order
            TemplateNotFoundError: Connection has no active template
            GenerationError: Order already has an active document, or yields no lines
        """
        with self._correlation(order_id=order_id):
            order = self._require_order(order_id)
            existing = db.get_active_document(order_id)
            if existing is not None:
                get_metrics().record_generation_failed()
                raise GenerationError(
                    f"Order {order_id} already has an active sales document "
                    f"({existing.id}, {existing.status.value})",
                    order_id=order_id,
                )
            return self._create(order)

    def regenerate(self, order_id: str) -> ErpSalesDocument:
        """
        Generate a fresh document after the previous one was cancelled.

        The cancelled document is kept. Allowed only when the order has no
        active document.

        Raises:
            InvalidStateTransition: The order's latest document is not CANCELLED
        """
        with self._correlation(order_id=order_id):
            order = self._require_order(order_id)
            active = db.get_active_document(order_id)
            if active is not None:
                raise InvalidStateTransition("regenerate", active.status.value, document_id=active.id)

            previous = db.get_latest_document(order_id)
            document = self._create(order)
            if previous is not None:
                logger.info(
                    f"Regenerated order {order_id}: {previous.id} → {document.id}",
                    extra_fields={"previous_document_id": previous.id},
                )
            return document

    def try_generate(self, order_id: str) -> Optional[ErpSalesDocument]:
        """Generate if should_generate() says so; failures are logged, not raised."""
        if not self.should_generate(order_id):
            return None
        try:
            return self.generate(order_id)
        except SalesDocumentError as e:
            logger.warning(
                f"Automatic generation skipped for order {order_id}: {e}",
                extra_fields={"order_id": order_id},
            )
            return None

    # =========================================================================
    # Send
    # =========================================================================

    def _claim_cutoff(self) -> datetime:
        """Claims taken before this moment belong to sends that never settled."""
        timeout = timedelta(seconds=self.settings.erp_send_timeout_seconds)
        return datetime.utcnow() - timeout - SEND_CLAIM_GRACE

    def _check_not_sending(self, document: ErpSalesDocument, operation: str) -> None:
        if document.sending_since is not None and document.sending_since >= self._claim_cutoff():
            raise InvalidStateTransition(operation, SENDING, document_id=document.id)

    async def _call_sender(self, sender: ErpSender, document: ErpSalesDocument) -> Tuple[SendResult, bool]:
        """Run the sender under the timeout. Returns (result, timed_out)."""
        timeout = self.settings.erp_send_timeout_seconds
        try:
            return await asyncio.wait_for(sender.send_sales_document(document), timeout=timeout), False
        except asyncio.TimeoutError:
            return SendResult.failed(f"ERP did not respond within {timeout:g}s"), True
        except Exception as e:
            logger.error(
                f"ERP sender raised for document {document.id}",
                extra_fields={"error_type": type(e).__name__},
                exc_info=True,
            )
            return SendResult.failed(f"{type(e).__name__}: {e}"), False

    async def send(self, document_id: str) -> ErpSalesDocument:
        """
        Send a PENDING or FAILED document to the ERP.

        The document is claimed before the ERP call, so cancel, delete and a
        second send fail with InvalidStateTransition until this send settles.
        On success the document becomes SENT with the ERP document id. On
        failure or timeout it becomes FAILED with the error message, then
        SendError is raised. Lines are never touched.

        Raises:
            InvalidStateTransition: Document is SENT, CANCELLED or already being sent
            SendError: ERP rejected the document or timed out
        """
        with self._correlation(document_id=document_id):
            document = self.get(document_id)
            if not document.can("send"):
                raise InvalidStateTransition("send", document.status.value, document_id=document.id)
            self._check_not_sending(document, "send")

            sender = self.sender_for(document.erp_connection_id)
            connector_type = self._connector_type(sender)

            if not db.claim_for_send(document.id, document.status, self._claim_cutoff()):
                current = self.get(document_id)
                status = SENDING if current.status == document.status else current.status.value
                raise InvalidStateTransition("send", status, document_id=document.id)

            start = time.monotonic()
            result, timed_out = await self._call_sender(sender, document)
            duration_ms = (time.monotonic() - start) * 1000

            if result.success:
                sent = document.model_copy(update={
                    "status": DocumentStatus.SENT,
                    "erp_document_id": result.erp_document_id,
                    "sent_at": result.sent_at or datetime.utcnow(),
                    "error_message": None,
                })
                sent = db.update_document(sent, document.status, "send", claimed=True)
                get_metrics().record_document_sent(connector_type, duration_ms)
                logger.info(
                    f"Sent document {document.id} to ERP as {result.erp_document_id}",
                    extra_fields={"erp_document_id": result.erp_document_id, "duration_ms": round(duration_ms, 1)},
                )
                return sent

            message = result.error_message or "ERP send failed"
            if result.validation_errors:
                message = f"{message}: " + "; ".join(result.validation_errors)
            failed = document.model_copy(update={
                "status": DocumentStatus.FAILED,
                "error_message": message,
            })
            db.update_document(failed, document.status, "send", claimed=True)
            get_metrics().record_send_failed(connector_type, timed_out=timed_out)
            logger.warning(
                f"Send failed for document {document.id}: {message}",
                extra_fields={"duration_ms": round(duration_ms, 1)},
            )
            raise SendError(message, document_id=document.id)

    # =========================================================================
    # Cancel / delete
    # =========================================================================

    def cancel(self, document_id: str) -> ErpSalesDocument:
        """
        Cancel a PENDING or FAILED document (order cancelled upstream).

        Raises:
            InvalidStateTransition: Document is SENT, already CANCELLED or being sent
        """
        with self._correlation(document_id=document_id):
            document = self.get(document_id)
            if not document.can("cancel"):
                raise InvalidStateTransition("cancel", document.status.value, document_id=document.id)
            self._check_not_sending(document, "cancel")

            cancelled = db.update_document(
                document.model_copy(update={"status": DocumentStatus.CANCELLED}),
                document.status,
                "cancel",
                claim_cutoff=self._claim_cutoff(),
            )
            get_metrics().record_document_cancelled()
            logger.info(f"Cancelled document {document.id} of order {document.order_id}")
            return cancelled

    def delete(self, document_id: str) -> None:
        """
        Delete a PENDING or FAILED document.

        Raises:
            InvalidStateTransition: Document is SENT, CANCELLED or being sent
        """
        with self._correlation(document_id=document_id):
            document = self.get(document_id)
            if not document.can("delete"):
                raise InvalidStateTransition("delete", document.status.value, document_id=document.id)
            self._check_not_sending(document, "delete")

            if not db.delete_document(document.id, ALLOWED_FROM["delete"], claim_cutoff=self._claim_cutoff()):
                current = db.get_document(document.id)
                if current is None:
                    status = "DELETED"
                elif current.can("delete"):
                    status = SENDING
                else:
                    status = current.status.value
                raise InvalidStateTransition("delete", status, document_id=document.id)
            get_metrics().record_document_deleted()
            logger.info(f"Deleted document {document.id} of order {document.order_id}")
