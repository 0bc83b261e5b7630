"""
Value Resolver

Turns a named value source into a scalar for one order (and optionally one
item and one already-split line). Used by the builder for line quantities
and amounts, and for global field mappings after the VAT split.

Missing upstream values resolve to 0 / "" instead of failing; templates are
validated when they are saved, not here.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Union

from core.models.orders import MarketplaceType, Order, OrderLineItem
from .models import (
    ComputedFieldMapping,
    FieldMappingBase,
    FieldValueSource,
    FixedFieldMapping,
    PriceSource,
    QuantitySource,
    TemplateFieldMapping,
)
from .vat import ZERO, round_half_up, to_decimal

ScalarValue = Union[str, int, Decimal]

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

_COUPANG_DELIVERY_COMMISSION_RATE = Decimal("0.033")
_NAVER_DELIVERY_COMMISSION = Decimal("67")


@dataclass(frozen=True)
class LineAmounts:
    """Post-split figures of the line being built."""
    total: Decimal
    supply: Decimal
    vat: Decimal
    quantity: int


@dataclass(frozen=True)
class ValueContext:
    order: Order
    item: Optional[OrderLineItem] = None
    amounts: Optional[LineAmounts] = None


def format_amount(value: Optional[Decimal]) -> str:
    """Whole-unit plain string, e.g. Decimal('44909') -> '44909'."""
    return format(round_half_up(to_decimal(value)), "f")


# =============================================================================
# Order-derived amounts
# =============================================================================

def sales_commission_amount(order: Order) -> Decimal:
    """Order-level commission, else item commissions, else item rate x total."""
    if order.commission_amount is not None:
        return order.commission_amount

    item_amounts = [i.commission_amount for i in order.items if i.commission_amount is not None]
    if item_amounts:
        return sum(item_amounts, ZERO)

    return sum(
        (
            round_half_up(to_decimal(i.total_price) * i.commission_rate / Decimal("100"))
            for i in order.items
            if i.commission_rate is not None
        ),
        ZERO,
    )


def delivery_commission_amount(order: Order) -> Decimal:
    """Commission charged on the delivery fee; zero when there is no fee."""
    if not order.delivery_fee:
        return ZERO

    if order.delivery_commission_amount is not None:
        return order.delivery_commission_amount

    item_amounts = [
        i.delivery_commission_amount for i in order.items
        if i.delivery_commission_amount is not None
    ]
    if item_amounts:
        return sum(item_amounts, ZERO)

    # marketplace estimates
    if order.marketplace_type == MarketplaceType.COUPANG:
        return round_half_up(order.delivery_fee * _COUPANG_DELIVERY_COMMISSION_RATE)
    if order.marketplace_type == MarketplaceType.NAVER:
        return _NAVER_DELIVERY_COMMISSION
    return ZERO


# =============================================================================
# Template substitution
# =============================================================================

def _template_variables(ctx: ValueContext) -> Dict[str, Callable[[], str]]:
    order, item = ctx.order, ctx.item
    return {
        "orderId": lambda: order.id or "",
        "marketplaceOrderId": lambda: order.marketplace_order_id or "",
        "buyerName": lambda: order.buyer_name or "",
        "receiverName": lambda: order.receiver_name or "",
        "productName": lambda: (item.product_name or "") if item else "",
        "optionName": lambda: (item.option_name or "") if item else "",
        "quantity": lambda: str(item.quantity) if item else "",
        "marketplace": lambda: order.marketplace_type.display_name,
        "marketplaceCode": lambda: order.marketplace_type.value,
        "orderDate": lambda: order.ordered_at.strftime("%Y%m%d") if order.ordered_at else "",
        "totalAmount": lambda: format_amount(order.total_amount),
        "deliveryFee": lambda: format_amount(order.delivery_fee),
    }


def render_template(template: Optional[str], ctx: ValueContext) -> str:
    """
    Replace {var} placeholders from the order/item context.

    Unknown placeholders are kept as written:
        render_template("주문:{orderId} {unknownVar}", ctx) -> "주문:ORD-1 {unknownVar}"
    """
    if not template:
        return ""
    variables = _template_variables(ctx)

    def _sub(match: "re.Match[str]") -> str:
        getter = variables.get(match.group(1))
        return getter() if getter else match.group(0)

    return _PLACEHOLDER.sub(_sub, template)


# =============================================================================
# Source resolution
# =============================================================================

def _resolve_quantity(source: QuantitySource, ctx: ValueContext) -> int:
    if source == QuantitySource.ORDER_QUANTITY:
        if ctx.item is not None:
            return ctx.item.quantity or 0
        return ctx.order.total_quantity
    return 1


def _resolve_price(source: PriceSource, ctx: ValueContext) -> Decimal:
    order = ctx.order
    if source == PriceSource.ORDER_TOTAL_PRICE:
        if ctx.item is not None:
            return to_decimal(ctx.item.total_price)
        return order.items_total
    if source == PriceSource.ORDER_DELIVERY_FEE:
        return to_decimal(order.delivery_fee)
    if source == PriceSource.COMMISSION_AMOUNT:
        return sales_commission_amount(order)
    if source == PriceSource.DELIVERY_COMMISSION:
        return delivery_commission_amount(order)
    return ZERO


def _unit_price_vat(amounts: Optional[LineAmounts]) -> Decimal:
    if amounts is None or amounts.quantity <= 0:
        return ZERO
    return round_half_up(amounts.total / Decimal(amounts.quantity))


def _resolve_field(source: FieldValueSource, ctx: ValueContext, literal: Optional[str]) -> ScalarValue:
    order, item, amounts = ctx.order, ctx.item, ctx.amounts

    if source == FieldValueSource.FIXED:
        return literal or ""
    if source == FieldValueSource.TEMPLATE:
        return render_template(literal, ctx)

    if source == FieldValueSource.UNIT_PRICE_VAT:
        return _unit_price_vat(amounts)
    if source == FieldValueSource.TOTAL_AMOUNT:
        return amounts.total if amounts else ZERO
    if source == FieldValueSource.SUPPLY_AMOUNT:
        return amounts.supply if amounts else ZERO
    if source == FieldValueSource.VAT_AMOUNT:
        return amounts.vat if amounts else ZERO

    if source == FieldValueSource.ORDER_ID:
        return order.id or ""
    if source == FieldValueSource.MARKETPLACE_ORDER_ID:
        return order.marketplace_order_id or ""
    if source == FieldValueSource.BUYER_NAME:
        return order.buyer_name or ""
    if source == FieldValueSource.RECEIVER_NAME:
        return order.receiver_name or ""
    if source == FieldValueSource.PRODUCT_NAME:
        return (item.product_name or "") if item else ""
    if source == FieldValueSource.OPTION_NAME:
        return (item.option_name or "") if item else ""
    return ""


def resolve(
    source: Union[QuantitySource, PriceSource, FieldValueSource],
    ctx: ValueContext,
    literal: Optional[str] = None,
) -> ScalarValue:
    """
    Resolve a value source against the context.

    Args:
        source: Quantity, price or field value source
        ctx: Order, optional item, optional post-split line amounts
        literal: Fixed value or template string for FIXED / TEMPLATE

    Returns:
        int for quantity sources, Decimal for amounts, str otherwise
    """
    if isinstance(source, QuantitySource):
        return _resolve_quantity(source, ctx)
    if isinstance(source, PriceSource):
        return _resolve_price(source, ctx)
    return _resolve_field(source, ctx, literal)


def resolve_mapping(mapping: FieldMappingBase, ctx: ValueContext) -> str:
    """Resolve a global field mapping to the string stored on the line."""
    if isinstance(mapping, FixedFieldMapping):
        value = resolve(FieldValueSource.FIXED, ctx, mapping.value)
    elif isinstance(mapping, TemplateFieldMapping):
        value = resolve(FieldValueSource.TEMPLATE, ctx, mapping.template)
    elif isinstance(mapping, ComputedFieldMapping):
        value = resolve(mapping.source, ctx)
    else:
        return ""

    if isinstance(value, Decimal):
        return format_amount(value)
    return str(value)
