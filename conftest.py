"""Shared pytest fixtures: isolated SQLite file, fresh settings and metrics."""

import asyncio
import base64
from datetime import datetime
from decimal import Decimal

import pytest

import core.config as config_module
import core.database as database_module
from connectors.connection_store import init_connection_db
from connectors.erp_base import ErpSender, SendResult
from core.models.orders import (
    InMemoryOrderSource,
    MarketplaceType,
    Order,
    OrderLineItem,
    OrderStatus,
)
from core.observability.metrics import get_metrics
from documents.db import init_document_db
from sales_engine.db import init_template_db


TEST_CREDENTIAL_KEY = base64.b64encode(b"k" * 32).decode("utf-8")


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point every store at a fresh database file and create the tables."""
    db_path = tmp_path / "sales_documents.db"
    monkeypatch.setattr(database_module, "DB_PATH", db_path)
    monkeypatch.setenv("SALES_DB_PATH", str(db_path))
    monkeypatch.setenv("ERP_CREDENTIAL_KEY", TEST_CREDENTIAL_KEY)
    config_module.reset_settings()
    get_metrics().reset()

    init_template_db()
    init_document_db()
    init_connection_db()

    yield db_path

    config_module.reset_settings()


# =============================================================================
# Orders
# =============================================================================

def make_order(
    order_id: str = "ORD-1",
    tenant_id: str = "tenant-1",
    marketplace: MarketplaceType = MarketplaceType.COUPANG,
    status: OrderStatus = OrderStatus.SHIPPING,
    items=None,
    delivery_fee: str = "3500",
    commission_amount=None,
    delivery_commission_amount=None,
) -> Order:
    """Two mapped items of 24700 each plus a 3500 delivery fee by default."""
    if items is None:
        items = [
            OrderLineItem(
                product_name="무선 이어폰",
                option_name="블랙",
                quantity=1,
                unit_price=Decimal("24700"),
                total_price=Decimal("24700"),
                erp_product_code="P-100",
                erp_warehouse_code="100",
            ),
            OrderLineItem(
                product_name="무선 이어폰",
                option_name="화이트",
                quantity=1,
                unit_price=Decimal("24700"),
                total_price=Decimal("24700"),
                erp_product_code="P-101",
                erp_warehouse_code="100",
            ),
        ]
    return Order(
        id=order_id,
        tenant_id=tenant_id,
        marketplace_type=marketplace,
        marketplace_order_id=f"MKT-{order_id}",
        status=status,
        buyer_name="홍길동",
        receiver_name="김철수",
        ordered_at=datetime(2024, 3, 15, 9, 30),
        total_amount=Decimal("52900"),
        delivery_fee=Decimal(delivery_fee),
        items=items,
        commission_amount=commission_amount,
        delivery_commission_amount=delivery_commission_amount,
    )


@pytest.fixture
def order():
    return make_order()


@pytest.fixture
def order_source():
    return InMemoryOrderSource([
        make_order("ORD-1"),
        make_order("ORD-2"),
        make_order("ORD-3", status=OrderStatus.DELIVERED),
    ])


# =============================================================================
# Senders
# =============================================================================

class FakeSender(ErpSender):
    """Records sent documents; fails the ids listed in fail_ids."""

    def __init__(self, fail_ids=(), delay: float = 0.0):
        self.fail_ids = set(fail_ids)
        self.delay = delay
        self.sent = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_sales_document(self, document) -> SendResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.sent.append(document.id)
            if document.order_id in self.fail_ids or document.id in self.fail_ids:
                return SendResult.failed("ERP rejected the document", validation_errors=["PROD_CD unknown"])
            return SendResult.ok(f"SLIP-{len(self.sent)}")
        finally:
            self.in_flight -= 1


@pytest.fixture
def sender():
    return FakeSender()
