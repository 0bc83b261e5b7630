"""Marketplace order models consumed by the sales document engine.

Orders are collected upstream by the marketplace sync jobs; the engine only
reads them. Amounts are KRW and arrive as strings, ints or floats depending
on the marketplace API, so lenient parsers run before validation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from various formats ("24,700", "24700원", 24700, 24700.0)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip().replace(",", "").replace("원", "")
        if s == "":
            return None
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        return Decimal(s)
    return value


def _parse_int(value):
    """Parse integer from various formats."""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        return int(value)
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if s == "":
            return None
        return int(Decimal(s))
    return value


def _parse_datetime(value):
    """Parse order timestamps (ISO strings, dates, yyyyMMdd)."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        if len(s) == 8 and s.isdigit():
            return datetime.strptime(s, "%Y%m%d")
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    return value


DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
IntValue = Annotated[int, BeforeValidator(_parse_int)]
DateTimeValue = Annotated[datetime, BeforeValidator(_parse_datetime)]


# =============================================================================
# Enums
# =============================================================================

class MarketplaceType(str, Enum):
    """Supported marketplaces."""
    NAVER = "NAVER"
    COUPANG = "COUPANG"
    ELEVEN_ST = "ELEVEN_ST"
    GMARKET = "GMARKET"
    AUCTION = "AUCTION"
    WEMAKEPRICE = "WEMAKEPRICE"
    TMON = "TMON"

    @property
    def display_name(self) -> str:
        return MARKETPLACE_DISPLAY_NAMES[self]


MARKETPLACE_DISPLAY_NAMES: Dict[MarketplaceType, str] = {
    MarketplaceType.NAVER: "네이버 스마트스토어",
    MarketplaceType.COUPANG: "쿠팡",
    MarketplaceType.ELEVEN_ST: "11번가",
    MarketplaceType.GMARKET: "G마켓",
    MarketplaceType.AUCTION: "옥션",
    MarketplaceType.WEMAKEPRICE: "위메프",
    MarketplaceType.TMON: "티몬",
}


class OrderStatus(str, Enum):
    """Order lifecycle as reported by the marketplace sync."""
    COLLECTED = "COLLECTED"
    CONFIRMED = "CONFIRMED"
    READY_TO_SHIP = "READY_TO_SHIP"
    SHIPPING = "SHIPPING"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


# Orders in these states are expected to carry a sales document
DOCUMENT_ELIGIBLE_STATUSES = (OrderStatus.SHIPPING, OrderStatus.DELIVERED)


# =============================================================================
# Order Models
# =============================================================================

class OrderBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)


class OrderLineItem(OrderBase):
    """One purchased product/option within an order."""
    product_name: str = ""
    option_name: Optional[str] = None
    quantity: IntValue = 1
    unit_price: DecimalValue = Decimal("0")
    total_price: DecimalValue = Decimal("0")

    # Set by the product mapping step; None means the item is unmapped
    erp_product_code: Optional[str] = None
    erp_warehouse_code: Optional[str] = None

    commission_rate: Optional[DecimalValue] = None  # percent, e.g. 10.8
    commission_amount: Optional[DecimalValue] = None
    delivery_commission_amount: Optional[DecimalValue] = None

    @property
    def display_name(self) -> str:
        """'product / option' as shown on document lines."""
        if self.option_name and self.option_name.strip():
            return f"{self.product_name} / {self.option_name}"
        return self.product_name


class Order(OrderBase):
    """A collected marketplace order."""
    id: str
    tenant_id: str
    marketplace_type: MarketplaceType
    marketplace_order_id: str = ""
    status: OrderStatus = OrderStatus.COLLECTED
    buyer_name: Optional[str] = None
    receiver_name: Optional[str] = None
    ordered_at: Optional[DateTimeValue] = None
    total_amount: DecimalValue = Decimal("0")
    delivery_fee: DecimalValue = Decimal("0")
    items: List[OrderLineItem] = Field(default_factory=list)

    # Order-level settlement figures; None means derive from items
    commission_amount: Optional[DecimalValue] = None
    delivery_commission_amount: Optional[DecimalValue] = None

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity or 0 for item in self.items)

    @property
    def items_total(self) -> Decimal:
        return sum((item.total_price or Decimal("0") for item in self.items), Decimal("0"))

    @property
    def default_warehouse_code(self) -> Optional[str]:
        """First mapped warehouse code; used for lines not tied to an item."""
        for item in self.items:
            if item.erp_warehouse_code and item.erp_warehouse_code.strip():
                return item.erp_warehouse_code
        return None

    @property
    def is_document_eligible(self) -> bool:
        return self.status in DOCUMENT_ELIGIBLE_STATUSES


# =============================================================================
# Order Source Boundary
# =============================================================================

class OrderSource(ABC):
    """Read access to collected orders.

    The marketplace sync owns order storage; the engine only looks orders up.
    """

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        """Return the order, or None if it does not exist."""

    @abstractmethod
    def list_eligible_order_ids(self, tenant_id: str) -> List[str]:
        """Ids of the tenant's orders that should carry a sales document."""


class InMemoryOrderSource(OrderSource):
    """Dict-backed order source for local runs, previews and tests."""

    def __init__(self, orders: Iterable[Order] = ()):
        self._orders: Dict[str, Order] = {o.id: o for o in orders}

    def add(self, order: Order) -> None:
        self._orders[order.id] = order

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def list_eligible_order_ids(self, tenant_id: str) -> List[str]:
        return [
            o.id for o in self._orders.values()
            if o.tenant_id == tenant_id and o.is_document_eligible
        ]


_default_source: OrderSource = InMemoryOrderSource()


def get_order_source() -> OrderSource:
    """Process-wide order source used by the API and the worker activities."""
    return _default_source


def set_order_source(source: OrderSource) -> None:
    global _default_source
    _default_source = source
