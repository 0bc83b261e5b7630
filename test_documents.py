"""
Document lifecycle tests: generation, send, cancel, delete, regeneration,
counts and batch operations.
"""

import asyncio
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from conftest import FakeSender, make_order
from connectors.connection_store import ErpConnection, get_connection, save_connection
from connectors.erp_base import ErpSender
from core.config import Settings
from core.database import get_db_connection
from core.errors import (
    ConfigurationError,
    DocumentNotFoundError,
    GenerationError,
    InvalidStateTransition,
    OrderNotFoundError,
    SendError,
    TemplateNotFoundError,
)
from core.models.orders import InMemoryOrderSource, OrderStatus
from core.observability.metrics import get_metrics
from documents import (
    NEED_DOCUMENT,
    DocumentStatus,
    SalesDocumentService,
    generate_batch,
    generate_missing,
    generates_for_tenant,
    process_auto_batch,
    send_all_pending,
    send_pending,
    send_selected,
)
from documents import db as document_db
from documents.batch import CANCELLED_MESSAGE, DUPLICATE_MESSAGE
from documents.models import SENDING
from sales_engine import LineRole, TemplatePreset, new_template, save_template


@pytest.fixture
def template():
    return save_template(new_template("conn-1", "tenant-1", TemplatePreset.SIMPLE_SALE))


@pytest.fixture
def service(template, order_source, sender):
    return SalesDocumentService("tenant-1", "conn-1", order_source, sender=sender)


class SlowSender(ErpSender):
    async def send_sales_document(self, document):
        await asyncio.sleep(1)


class RaisingSender(ErpSender):
    async def send_sales_document(self, document):
        raise RuntimeError("connection reset")


# =============================================================================
# Generation
# =============================================================================

class TestGenerate:
    """Order + active template -> PENDING document."""

    def test_generate_pending_document(self, service):
        document = service.generate("ORD-1")

        assert document.status == DocumentStatus.PENDING
        assert document.order_id == "ORD-1"
        assert document.marketplace_order_id == "MKT-ORD-1"
        assert document.erp_connection_id == "conn-1"
        assert document.document_date == date(2024, 3, 15)
        assert document.total_amount == Decimal("52900")
        assert [line.line_type for line in document.lines] == [
            LineRole.PRODUCT_SALE, LineRole.PRODUCT_SALE, LineRole.DELIVERY_FEE,
        ]

        stored = service.get(document.id)
        assert stored.lines == document.lines
        assert stored.total_amount == Decimal("52900")
        assert get_metrics().get_summary()["documents"]["generated"] == 1

    def test_second_generate_is_rejected(self, service):
        service.generate("ORD-1")
        with pytest.raises(GenerationError, match="already has an active sales document"):
            service.generate("ORD-1")
        assert len(service.list(order_id="ORD-1")) == 1

    def test_unknown_order(self, service):
        with pytest.raises(OrderNotFoundError):
            service.generate("NOPE")

    def test_order_of_another_tenant(self, template, order_source, sender):
        other = SalesDocumentService("tenant-2", "conn-1", order_source, sender=sender)
        with pytest.raises(OrderNotFoundError):
            other.generate("ORD-1")

    def test_missing_template(self, order_source, sender):
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=sender)
        with pytest.raises(TemplateNotFoundError):
            service.generate("ORD-1")

    def test_connection_required(self, template, order_source, sender):
        service = SalesDocumentService("tenant-1", None, order_source, sender=sender)
        with pytest.raises(ConfigurationError):
            service.generate("ORD-1")

    def test_order_without_lines_leaves_no_document(self, template, sender):
        order = make_order("ORD-X", delivery_fee="0")
        for item in order.items:
            item.erp_product_code = None
        service = SalesDocumentService("tenant-1", "conn-1", InMemoryOrderSource([order]), sender=sender)

        with pytest.raises(GenerationError):
            service.generate("ORD-X")
        assert service.list() == []

    def test_document_date_defaults_to_today(self, template, sender):
        order = make_order("ORD-X")
        order.ordered_at = None
        service = SalesDocumentService("tenant-1", "conn-1", InMemoryOrderSource([order]), sender=sender)
        assert service.generate("ORD-X").document_date == date.today()

    def test_should_generate(self, service, order_source):
        order_source.add(make_order("ORD-NEW", status=OrderStatus.COLLECTED))

        assert service.should_generate("ORD-1") is True
        service.generate("ORD-1")
        assert service.should_generate("ORD-1") is False
        assert service.should_generate("ORD-NEW") is False
        assert service.should_generate("NOPE") is False

    def test_try_generate_swallows_domain_errors(self, order_source, sender):
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=sender)
        assert service.try_generate("ORD-1") is None


# =============================================================================
# Send
# =============================================================================

class TestSend:
    """PENDING/FAILED -> SENT or FAILED."""

    def test_send_success(self, service, sender):
        document = service.generate("ORD-1")

        sent = asyncio.run(service.send(document.id))

        assert sent.status == DocumentStatus.SENT
        assert sent.erp_document_id == "SLIP-1"
        assert sent.sent_at is not None
        assert sent.error_message is None
        assert sent.lines == document.lines
        assert service.get(document.id).status == DocumentStatus.SENT
        assert sender.sent == [document.id]
        assert get_metrics().get_summary()["documents"]["by_connector"]["FakeSender"]["sent"] == 1

    def test_send_failure_marks_failed_then_raises(self, template, order_source):
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender(fail_ids={"ORD-1"}))
        document = service.generate("ORD-1")

        with pytest.raises(SendError) as exc:
            asyncio.run(service.send(document.id))

        assert exc.value.document_id == document.id
        failed = service.get(document.id)
        assert failed.status == DocumentStatus.FAILED
        assert failed.error_message == "ERP rejected the document: PROD_CD unknown"
        assert failed.erp_document_id is None
        assert get_metrics().get_summary()["documents"]["send_failed"] == 1

    def test_failed_document_can_be_resent(self, template, order_source):
        failing = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender(fail_ids={"ORD-1"}))
        document = failing.generate("ORD-1")
        with pytest.raises(SendError):
            asyncio.run(failing.send(document.id))

        working = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender())
        sent = asyncio.run(working.send(document.id))

        assert sent.status == DocumentStatus.SENT
        assert sent.error_message is None

    def test_sent_document_cannot_be_sent_again(self, service, sender):
        document = service.generate("ORD-1")
        asyncio.run(service.send(document.id))

        with pytest.raises(InvalidStateTransition):
            asyncio.run(service.send(document.id))
        assert len(sender.sent) == 1

    def test_cancelled_document_cannot_be_sent(self, service):
        document = service.generate("ORD-1")
        service.cancel(document.id)
        with pytest.raises(InvalidStateTransition):
            asyncio.run(service.send(document.id))

    def test_send_timeout(self, template, order_source, temp_db):
        settings = Settings(db_path=temp_db, erp_send_timeout_seconds=0.05)
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=SlowSender(), settings=settings)
        document = service.generate("ORD-1")

        with pytest.raises(SendError, match="did not respond"):
            asyncio.run(service.send(document.id))

        assert service.get(document.id).status == DocumentStatus.FAILED
        assert get_metrics().get_summary()["documents"]["send_timeouts"] == 1

    def test_sender_exception_becomes_failure(self, template, order_source):
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=RaisingSender())
        document = service.generate("ORD-1")

        with pytest.raises(SendError, match="RuntimeError: connection reset"):
            asyncio.run(service.send(document.id))
        assert service.get(document.id).status == DocumentStatus.FAILED


class TestSendInFlight:
    """A document waiting on the ERP cannot be cancelled, deleted or sent twice."""

    def test_concurrent_operations_are_refused(self, template, order_source):
        sender = FakeSender(delay=0.2)
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=sender)
        document = service.generate("ORD-1")

        async def run():
            sending = asyncio.create_task(service.send(document.id))
            await asyncio.sleep(0.05)

            with pytest.raises(InvalidStateTransition) as exc:
                service.cancel(document.id)
            assert exc.value.current_status == SENDING
            with pytest.raises(InvalidStateTransition) as exc:
                service.delete(document.id)
            assert exc.value.current_status == SENDING
            with pytest.raises(InvalidStateTransition) as exc:
                await service.send(document.id)
            assert exc.value.current_status == SENDING

            return await sending

        sent = asyncio.run(run())

        assert sent.status == DocumentStatus.SENT
        assert sent.erp_document_id == "SLIP-1"
        stored = service.get(document.id)
        assert stored.status == DocumentStatus.SENT
        assert stored.sending_since is None
        assert sender.sent == [document.id]

    def test_failed_send_releases_claim(self, template, order_source):
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender(fail_ids={"ORD-1"}))
        document = service.generate("ORD-1")
        with pytest.raises(SendError):
            asyncio.run(service.send(document.id))

        assert service.get(document.id).sending_since is None
        service.delete(document.id)

    def test_claim_is_exclusive(self, service):
        document = service.generate("ORD-1")
        cutoff = datetime.utcnow() - timedelta(minutes=5)

        assert document_db.claim_for_send(document.id, DocumentStatus.PENDING, cutoff) is True
        assert document_db.claim_for_send(document.id, DocumentStatus.PENDING, cutoff) is False
        assert document_db.claim_for_send(document.id, DocumentStatus.FAILED, cutoff) is False

        # A cancel that read the row before the claim is still refused on write
        with pytest.raises(InvalidStateTransition) as exc:
            document_db.update_document(
                document.model_copy(update={"status": DocumentStatus.CANCELLED}),
                DocumentStatus.PENDING,
                "cancel",
                claim_cutoff=cutoff,
            )
        assert exc.value.current_status == SENDING
        assert document_db.delete_document(document.id, [DocumentStatus.PENDING], claim_cutoff=cutoff) is False
        assert service.get(document.id).status == DocumentStatus.PENDING

    def test_abandoned_claim_expires(self, service, sender):
        document = service.generate("ORD-1")
        conn = get_db_connection()
        conn.execute(
            "UPDATE erp_sales_document SET sending_since = ? WHERE id = ?",
            ((datetime.utcnow() - timedelta(hours=1)).isoformat(), document.id),
        )
        conn.commit()
        conn.close()

        # The worker that claimed it is gone; the document can be sent again
        sent = asyncio.run(service.send(document.id))
        assert sent.status == DocumentStatus.SENT
        assert service.get(document.id).sending_since is None


# =============================================================================
# Cancel / delete / regenerate
# =============================================================================

class TestTransitions:
    def test_cancel_pending(self, service):
        document = service.generate("ORD-1")
        cancelled = service.cancel(document.id)

        assert cancelled.status == DocumentStatus.CANCELLED
        with pytest.raises(InvalidStateTransition):
            service.cancel(document.id)

    def test_cancel_failed(self, template, order_source):
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender(fail_ids={"ORD-1"}))
        document = service.generate("ORD-1")
        with pytest.raises(SendError):
            asyncio.run(service.send(document.id))

        assert service.cancel(document.id).status == DocumentStatus.CANCELLED

    def test_sent_document_cannot_be_cancelled_or_deleted(self, service):
        document = service.generate("ORD-1")
        asyncio.run(service.send(document.id))

        with pytest.raises(InvalidStateTransition) as exc:
            service.cancel(document.id)
        assert exc.value.current_status == "SENT"
        with pytest.raises(InvalidStateTransition):
            service.delete(document.id)
        assert service.get(document.id).status == DocumentStatus.SENT

    def test_delete_pending(self, service):
        document = service.generate("ORD-1")
        service.delete(document.id)

        with pytest.raises(DocumentNotFoundError):
            service.get(document.id)
        assert get_metrics().get_summary()["documents"]["deleted"] == 1
        # The order can be generated again
        assert service.generate("ORD-1").status == DocumentStatus.PENDING

    def test_cancelled_document_cannot_be_deleted(self, service):
        document = service.generate("ORD-1")
        service.cancel(document.id)
        with pytest.raises(InvalidStateTransition):
            service.delete(document.id)

    def test_regenerate_after_cancel_keeps_history(self, service):
        first = service.generate("ORD-1")
        service.cancel(first.id)

        second = service.regenerate("ORD-1")

        assert second.id != first.id
        assert second.status == DocumentStatus.PENDING
        history = service.list(order_id="ORD-1")
        assert len(history) == 2
        assert {d.status for d in history} == {DocumentStatus.PENDING, DocumentStatus.CANCELLED}
        assert service.get(first.id).status == DocumentStatus.CANCELLED

    def test_regeneration_cycle_after_failed_send(self, template, order_source):
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender(fail_ids={"ORD-1"}))
        first = service.generate("ORD-1")
        with pytest.raises(SendError):
            asyncio.run(service.send(first.id))
        service.cancel(first.id)

        # Delivery fee refunded upstream before the document is rebuilt
        order_source.add(make_order("ORD-1", delivery_fee="0"))
        second = service.regenerate("ORD-1")

        assert second.status == DocumentStatus.PENDING
        assert second.total_amount == Decimal("49400")
        assert [line.line_type for line in second.lines] == [LineRole.PRODUCT_SALE, LineRole.PRODUCT_SALE]

        history = service.list(order_id="ORD-1")
        assert len(history) == 2
        assert {d.status for d in history} == {DocumentStatus.PENDING, DocumentStatus.CANCELLED}
        cancelled = service.get(first.id)
        assert cancelled.total_amount == Decimal("52900")
        assert cancelled.lines == first.lines
        assert cancelled.error_message == "ERP rejected the document: PROD_CD unknown"

    def test_one_active_document_per_order(self, service):
        document = service.generate("ORD-1")
        duplicate = document.model_copy(update={"id": "doc-duplicate", "created_at": None})

        with pytest.raises(GenerationError, match="already has an active sales document"):
            document_db.insert_document(duplicate)

        service.cancel(document.id)
        document_db.insert_document(duplicate)
        assert len(service.list(order_id="ORD-1")) == 2

    def test_regenerate_with_active_document(self, service):
        document = service.generate("ORD-1")
        with pytest.raises(InvalidStateTransition) as exc:
            service.regenerate("ORD-1")
        assert exc.value.document_id == document.id

    def test_other_tenant_cannot_see_document(self, service, order_source, sender):
        document = service.generate("ORD-1")
        other = SalesDocumentService("tenant-2", None, order_source, sender=sender)
        with pytest.raises(DocumentNotFoundError):
            other.get(document.id)
        with pytest.raises(DocumentNotFoundError):
            other.cancel(document.id)


class TestCounts:
    def test_counts_include_need_document(self, service):
        sent = service.generate("ORD-1")
        asyncio.run(service.send(sent.id))
        cancelled = service.generate("ORD-2")
        service.cancel(cancelled.id)

        counts = service.counts()

        assert counts == {
            "PENDING": 0,
            "SENT": 1,
            "FAILED": 0,
            "CANCELLED": 1,
            NEED_DOCUMENT: 2,
        }

    def test_counts_empty_tenant(self, template, sender):
        service = SalesDocumentService("tenant-9", "conn-1", InMemoryOrderSource(), sender=sender)
        assert service.counts() == {"PENDING": 0, "SENT": 0, "FAILED": 0, "CANCELLED": 0, NEED_DOCUMENT: 0}


# =============================================================================
# Batches
# =============================================================================

class TestBatches:
    """Per-item failures never abort a batch."""

    def test_generate_batch_partial_failure(self, service):
        result = generate_batch(service, ["ORD-1", "MISSING", "ORD-2", "ORD-1"])

        assert result.total_count == 4
        assert result.success_count == 2
        assert result.fail_count == 2
        assert [item.id for item in result.results] == ["ORD-1", "MISSING", "ORD-2", "ORD-1"]
        assert [item.success for item in result.results] == [True, False, True, False]
        assert "Order not found" in result.results[1].error_message

    def test_generate_batch_with_unmapped_order(self, service, order_source):
        unmapped = make_order("ORD-UNMAPPED", delivery_fee="0")
        for item in unmapped.items:
            item.erp_product_code = None
        order_source.add(unmapped)

        result = generate_batch(service, ["ORD-1", "ORD-UNMAPPED"])

        assert result.total_count == 2
        assert result.success_count == 1
        assert result.fail_count == 1
        assert [item.success for item in result.results] == [True, False]
        assert result.results[1].error_message
        assert [d.order_id for d in service.list()] == ["ORD-1"]

    def test_send_selected_partial_failure(self, template, order_source):
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender(fail_ids={"ORD-2"}))
        ids = [service.generate(order_id).id for order_id in ("ORD-1", "ORD-2", "ORD-3")]

        result = asyncio.run(send_selected(service, ids + ["missing-doc"]))

        assert result.total_count == 4
        assert result.success_count == 2
        assert [item.id for item in result.results] == ids + ["missing-doc"]
        assert [item.success for item in result.results] == [True, False, True, False]
        assert result.results[0].erp_document_id is not None
        assert service.get(ids[1]).status == DocumentStatus.FAILED

    def test_send_selected_duplicate_ids(self, service, sender):
        document = service.generate("ORD-1")

        result = asyncio.run(send_selected(service, [document.id, document.id]))

        assert result.total_count == 2
        assert result.results[0].success is True
        assert result.results[1].error_message == DUPLICATE_MESSAGE
        assert sender.sent == [document.id]

    def test_send_selected_bounded_concurrency(self, template, temp_db):
        source = InMemoryOrderSource([make_order(f"ORD-{i}") for i in range(6)])
        sender = FakeSender(delay=0.02)
        settings = Settings(db_path=temp_db, erp_batch_concurrency=2)
        service = SalesDocumentService("tenant-1", "conn-1", source, sender=sender, settings=settings)
        ids = [service.generate(f"ORD-{i}").id for i in range(6)]

        result = asyncio.run(send_selected(service, ids))

        assert result.success_count == 6
        assert 1 <= sender.max_in_flight <= 2

    def test_send_selected_cancelled(self, service, sender):
        ids = [service.generate(order_id).id for order_id in ("ORD-1", "ORD-2")]

        async def run():
            cancel = asyncio.Event()
            cancel.set()
            return await send_selected(service, ids, cancel_event=cancel)

        result = asyncio.run(run())

        assert result.fail_count == 2
        assert all(item.error_message == CANCELLED_MESSAGE for item in result.results)
        assert sender.sent == []
        assert all(service.get(i).status == DocumentStatus.PENDING for i in ids)

    def test_send_all_pending_retries_failed(self, template, order_source):
        failing = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender(fail_ids={"ORD-1"}))
        failed_id = failing.generate("ORD-1").id
        with pytest.raises(SendError):
            asyncio.run(failing.send(failed_id))
        failing.generate("ORD-2")

        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender())
        result = asyncio.run(send_all_pending(service))

        assert result.total_count == 2
        assert result.success_count == 2

    def test_send_pending_skips_failed(self, template, order_source):
        failing = SalesDocumentService("tenant-1", "conn-1", order_source, sender=FakeSender(fail_ids={"ORD-1"}))
        failed_id = failing.generate("ORD-1").id
        with pytest.raises(SendError):
            asyncio.run(failing.send(failed_id))
        pending_id = failing.generate("ORD-2").id

        sender = FakeSender()
        service = SalesDocumentService("tenant-1", "conn-1", order_source, sender=sender)
        result = asyncio.run(send_pending(service))

        assert [item.id for item in result.results] == [pending_id]
        assert service.get(failed_id).status == DocumentStatus.FAILED

    def test_generate_missing(self, service, order_source):
        order_source.add(make_order("ORD-COLLECTED", status=OrderStatus.COLLECTED))
        service.generate("ORD-1")

        result = generate_missing(service)

        assert sorted(item.id for item in result.results) == ["ORD-2", "ORD-3"]
        assert result.success_count == 2

    def test_batch_metrics(self, service):
        generate_batch(service, ["ORD-1", "MISSING"])
        batches = get_metrics().get_summary()["batches"]
        assert batches["runs"] == 1
        assert batches["items"] == 2
        assert batches["item_failures"] == 1


class TestAutoBatch:
    def test_generate_and_send(self, template, order_source, sender):
        connection = ErpConnection(
            id="conn-1",
            tenant_id="tenant-1",
            auto_generate_document=True,
            auto_send_to_erp=True,
        )

        summary = asyncio.run(process_auto_batch(connection, order_source, sender=sender))

        assert summary.generated_count == 3
        assert summary.sent_count == 3
        assert summary.errors == []
        assert len(sender.sent) == 3

    def test_generate_only(self, template, order_source, sender):
        connection = ErpConnection(id="conn-1", tenant_id="tenant-1", auto_generate_document=True)

        summary = asyncio.run(process_auto_batch(connection, order_source, sender=sender))

        assert summary.generated_count == 3
        assert summary.sent_count == 0
        assert sender.sent == []

    def test_failures_are_reported(self, template, order_source):
        connection = ErpConnection(
            id="conn-1",
            tenant_id="tenant-1",
            auto_generate_document=True,
            auto_send_to_erp=True,
        )

        summary = asyncio.run(process_auto_batch(connection, order_source, sender=FakeSender(fail_ids={"ORD-3"})))

        assert summary.sent_count == 2
        assert summary.send_failed_count == 1
        assert len(summary.errors) == 1


class TestConnectionScope:
    """Two ERP connections of one tenant never act on each other's documents."""

    @pytest.fixture
    def connections(self):
        for connection_id in ("conn-A", "conn-B"):
            save_template(new_template(connection_id, "tenant-1", TemplatePreset.SIMPLE_SALE))
        save_connection(ErpConnection(
            id="conn-A",
            tenant_id="tenant-1",
            auto_generate_document=True,
            auto_send_to_erp=True,
        ))
        save_connection(ErpConnection(id="conn-B", tenant_id="tenant-1", auto_send_to_erp=True))

    def test_send_all_pending_stays_on_its_connection(self, connections, order_source):
        a_sender, b_sender = FakeSender(), FakeSender()
        service_a = SalesDocumentService("tenant-1", "conn-A", order_source, sender=a_sender)
        service_b = SalesDocumentService("tenant-1", "conn-B", order_source, sender=b_sender)
        a_doc = service_a.generate("ORD-1")
        b_doc = service_b.generate("ORD-2")

        result = asyncio.run(send_all_pending(service_a))

        assert [item.id for item in result.results] == [a_doc.id]
        assert a_sender.sent == [a_doc.id]
        assert service_b.get(b_doc.id).status == DocumentStatus.PENDING

        result = asyncio.run(send_pending(service_b))
        assert [item.id for item in result.results] == [b_doc.id]
        assert b_sender.sent == [b_doc.id]

    def test_auto_batch_sends_only_its_own_documents(self, connections, order_source, sender):
        other = SalesDocumentService("tenant-1", "conn-B", order_source, sender=FakeSender())
        b_doc = other.generate("ORD-1")

        summary = asyncio.run(process_auto_batch(get_connection("conn-A"), order_source, sender=sender))

        # ORD-1 already has a document; conn-A generates and sends the rest
        assert summary.generated_count == 2
        assert summary.sent_count == 2
        assert b_doc.id not in sender.sent
        assert other.get(b_doc.id).status == DocumentStatus.PENDING
        assert other.get(b_doc.id).erp_connection_id == "conn-B"

    def test_only_primary_connection_generates(self, connections, order_source, sender):
        save_connection(ErpConnection(
            id="conn-B",
            tenant_id="tenant-1",
            auto_generate_document=True,
            auto_send_to_erp=True,
        ))
        assert generates_for_tenant(get_connection("conn-A")) is True
        assert generates_for_tenant(get_connection("conn-B")) is False

        summary = asyncio.run(process_auto_batch(get_connection("conn-B"), order_source, sender=sender))

        assert summary.generated_count == 0
        assert summary.sent_count == 0
        assert sender.sent == []
        service = SalesDocumentService("tenant-1", None, order_source, sender=sender)
        assert service.list() == []
