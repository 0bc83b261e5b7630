"""Core data models - marketplace orders as seen by the document engine."""

from core.models.orders import (
    DecimalValue,
    IntValue,
    DateTimeValue,
    MarketplaceType,
    MARKETPLACE_DISPLAY_NAMES,
    OrderStatus,
    DOCUMENT_ELIGIBLE_STATUSES,
    OrderLineItem,
    Order,
    OrderSource,
    InMemoryOrderSource,
    get_order_source,
    set_order_source,
)

__all__ = [
    "DecimalValue",
    "IntValue",
    "DateTimeValue",
    "MarketplaceType",
    "MARKETPLACE_DISPLAY_NAMES",
    "OrderStatus",
    "DOCUMENT_ELIGIBLE_STATUSES",
    "OrderLineItem",
    "Order",
    "OrderSource",
    "InMemoryOrderSource",
    "get_order_source",
    "set_order_source",
]
