"""
Template preview

Runs the builder against a sample order so the template editor can show the
lines a template would produce before it is saved.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from core.models.orders import MarketplaceType, Order, OrderLineItem, OrderStatus
from .builder import build_document_lines
from .models import ErpSalesTemplate


def sample_order(
    marketplace: MarketplaceType = MarketplaceType.COUPANG,
    tenant_id: str = "preview",
) -> Order:
    """Two mapped items, a delivery fee and order-level commissions."""
    return Order(
        id="PREVIEW-ORDER",
        tenant_id=tenant_id,
        marketplace_type=marketplace,
        marketplace_order_id="2024010112345",
        status=OrderStatus.SHIPPING,
        buyer_name="홍길동",
        receiver_name="홍길동",
        ordered_at=datetime(2024, 1, 1, 10, 0, 0),
        total_amount=Decimal("52900"),
        delivery_fee=Decimal("3500"),
        commission_amount=Decimal("2470"),
        delivery_commission_amount=Decimal("116"),
        items=[
            OrderLineItem(
                product_name="샘플 상품",
                option_name="블랙 / L",
                quantity=2,
                unit_price=Decimal("12350"),
                total_price=Decimal("24700"),
                erp_product_code="SAMPLE-001",
                erp_warehouse_code="100",
            ),
            OrderLineItem(
                product_name="샘플 상품",
                option_name="화이트 / M",
                quantity=1,
                unit_price=Decimal("24700"),
                total_price=Decimal("24700"),
                erp_product_code="SAMPLE-002",
                erp_warehouse_code="100",
            ),
        ],
    )


def preview_document(
    template: ErpSalesTemplate,
    order: Optional[Order] = None,
    marketplace: MarketplaceType = MarketplaceType.COUPANG,
) -> Dict[str, Any]:
    """
    Build lines for a sample (or given) order without persisting anything.

    Args:
        template: Template to preview, saved or not
        order: Order to build from; defaults to sample_order(marketplace)
        marketplace: Marketplace of the sample order

    Returns:
        Dict with order_id, customer, lines, total_amount and warnings
    """
    order = order or sample_order(marketplace, tenant_id=template.tenant_id)
    result = build_document_lines(order, template)
    return {
        "order_id": order.id,
        "marketplace_type": order.marketplace_type.value,
        "customer_code": result.customer_code,
        "customer_name": result.customer_name,
        "lines": [line.model_dump(mode="json") for line in result.lines],
        "total_amount": str(result.total_amount),
        "warnings": result.warnings,
    }
