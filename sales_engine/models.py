"""
Sales Engine Models

Defines data structures for:
- ERP sales templates (header fields, four canonical line slots,
  additional lines, global field mappings)
- Global field mappings as a tagged union over fixed / template / computed
  value sources
- The canonical document line produced by the builder
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing_extensions import Annotated

from core.models.orders import DecimalValue, IntValue, MarketplaceType


# Sentinel product code: take the item's mapped ERP product code
FROM_MAPPING = "FROM_MAPPING"


# =============================================================================
# Enums
# =============================================================================

class LineRole(str, Enum):
    """Role of a generated document line."""
    PRODUCT_SALE = "PRODUCT_SALE"
    DELIVERY_FEE = "DELIVERY_FEE"
    SALES_COMMISSION = "SALES_COMMISSION"
    DELIVERY_COMMISSION = "DELIVERY_COMMISSION"
    ADDITIONAL = "ADDITIONAL"


CANONICAL_ROLES = (
    LineRole.PRODUCT_SALE,
    LineRole.DELIVERY_FEE,
    LineRole.SALES_COMMISSION,
    LineRole.DELIVERY_COMMISSION,
)


class LineTypeTarget(str, Enum):
    """Line types a global field mapping applies to."""
    ALL = "ALL"
    PRODUCT_SALE = "PRODUCT_SALE"
    DELIVERY_FEE = "DELIVERY_FEE"
    SALES_COMMISSION = "SALES_COMMISSION"
    DELIVERY_COMMISSION = "DELIVERY_COMMISSION"


class QuantitySource(str, Enum):
    FIXED_1 = "FIXED_1"
    ORDER_QUANTITY = "ORDER_QUANTITY"


class PriceSource(str, Enum):
    ORDER_TOTAL_PRICE = "ORDER_TOTAL_PRICE"
    ORDER_DELIVERY_FEE = "ORDER_DELIVERY_FEE"
    COMMISSION_AMOUNT = "COMMISSION_AMOUNT"
    DELIVERY_COMMISSION = "DELIVERY_COMMISSION"


class VatPolicy(str, Enum):
    """How a gross amount is split into supply and VAT."""
    SUPPLY_DIV_11 = "SUPPLY_DIV_11"  # tax-inclusive, supply = total / 1.1
    NO_VAT = "NO_VAT"


class FieldValueSource(str, Enum):
    """Where a global field mapping takes its value from."""
    FIXED = "FIXED"
    TEMPLATE = "TEMPLATE"
    # computed from the line being built (post VAT split)
    UNIT_PRICE_VAT = "UNIT_PRICE_VAT"
    TOTAL_AMOUNT = "TOTAL_AMOUNT"
    SUPPLY_AMOUNT = "SUPPLY_AMOUNT"
    VAT_AMOUNT = "VAT_AMOUNT"
    # copied from the order / item
    ORDER_ID = "ORDER_ID"
    MARKETPLACE_ORDER_ID = "MARKETPLACE_ORDER_ID"
    BUYER_NAME = "BUYER_NAME"
    RECEIVER_NAME = "RECEIVER_NAME"
    PRODUCT_NAME = "PRODUCT_NAME"
    OPTION_NAME = "OPTION_NAME"


NUMERIC_SOURCES = frozenset({
    FieldValueSource.UNIT_PRICE_VAT,
    FieldValueSource.TOTAL_AMOUNT,
    FieldValueSource.SUPPLY_AMOUNT,
    FieldValueSource.VAT_AMOUNT,
})

STRING_SOURCES = frozenset({
    FieldValueSource.TEMPLATE,
    FieldValueSource.ORDER_ID,
    FieldValueSource.MARKETPLACE_ORDER_ID,
    FieldValueSource.BUYER_NAME,
    FieldValueSource.RECEIVER_NAME,
    FieldValueSource.PRODUCT_NAME,
    FieldValueSource.OPTION_NAME,
})


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"


# ECount extra fields a global mapping may target
ERP_EXTRA_FIELDS: Dict[str, FieldType] = {
    "REMARKS": FieldType.STRING,
    "P_REMARKS1": FieldType.STRING,
    "P_REMARKS2": FieldType.STRING,
    "P_REMARKS3": FieldType.STRING,
    "ITEM_CD": FieldType.STRING,
    "ADD_TXT_01": FieldType.STRING,
    "ADD_TXT_02": FieldType.STRING,
    "ADD_TXT_03": FieldType.STRING,
    "USER_PRICE_VAT": FieldType.NUMBER,
    "P_AMT1": FieldType.NUMBER,
    "P_AMT2": FieldType.NUMBER,
    "ADD_NUM_01": FieldType.NUMBER,
    "ADD_NUM_02": FieldType.NUMBER,
    "ADD_NUM_03": FieldType.NUMBER,
}


def allowed_sources(field_type: FieldType) -> frozenset:
    """Value sources usable for a field of the given type."""
    if field_type == FieldType.NUMBER:
        return NUMERIC_SOURCES | {FieldValueSource.FIXED}
    return STRING_SOURCES | {FieldValueSource.FIXED}


# =============================================================================
# Template Models
# =============================================================================

class TemplateBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MarketplaceProductCode(TemplateBase):
    """Per-marketplace override of a line's product code/description."""
    code: str = ""
    description: str = ""


class SalesLineTemplate(TemplateBase):
    """
    Configuration of one canonical line slot.

    Attributes:
        product_code: Literal ERP code, FROM_MAPPING, or empty
        product_description: Literal description; empty derives it from the order
        quantity_source: FIXED_1 or ORDER_QUANTITY
        price_source: Amount source. For the commission slots this doubles as the
            on/off switch: the slot is active only when it names the matching
            commission source.
        vat_policy: Supply/VAT split rule
        negate_amount: Negate the gross before the VAT split
        skip_if_zero: Drop the line when the resolved gross is zero
        remarks: Free text copied to the line
        extra_fields: Literal ERP field values copied to the line
        marketplace_product_codes: Marketplace-specific code/description overrides
    """
    product_code: str = ""
    product_description: str = ""
    quantity_source: QuantitySource = QuantitySource.FIXED_1
    price_source: Optional[PriceSource] = None
    vat_policy: VatPolicy = VatPolicy.SUPPLY_DIV_11
    negate_amount: bool = False
    skip_if_zero: bool = True
    remarks: str = ""
    extra_fields: Dict[str, str] = Field(default_factory=dict)
    marketplace_product_codes: Dict[MarketplaceType, MarketplaceProductCode] = Field(default_factory=dict)

    def override_for(self, marketplace: MarketplaceType) -> Optional[MarketplaceProductCode]:
        return self.marketplace_product_codes.get(marketplace)


class AdditionalLineTemplate(TemplateBase):
    """A fixed line added to every document regardless of order content."""
    product_code: str = ""
    product_description: str = ""
    warehouse_code: str = ""
    quantity: IntValue = 1
    unit_price: DecimalValue = Decimal("0")
    vat_policy: VatPolicy = VatPolicy.SUPPLY_DIV_11
    negate_amount: bool = False
    enabled: bool = True
    remarks: str = ""


# -----------------------------------------------------------------------------
# Global field mappings (tagged union)
# -----------------------------------------------------------------------------

class FieldMappingBase(TemplateBase):
    field_name: str
    line_types: List[LineTypeTarget] = Field(default_factory=lambda: [LineTypeTarget.ALL])

    def applies_to(self, role: LineRole) -> bool:
        """ALL reaches the four canonical roles; additional lines have no role to match."""
        if role == LineRole.ADDITIONAL:
            return False
        return any(t == LineTypeTarget.ALL or t.value == role.value for t in self.line_types)

    @property
    def field_type(self) -> Optional[FieldType]:
        return ERP_EXTRA_FIELDS.get(self.field_name)


class FixedFieldMapping(FieldMappingBase):
    kind: Literal["fixed"] = "fixed"
    value: str = ""

    @property
    def value_source(self) -> FieldValueSource:
        return FieldValueSource.FIXED


class TemplateFieldMapping(FieldMappingBase):
    kind: Literal["template"] = "template"
    template: str = ""

    @property
    def value_source(self) -> FieldValueSource:
        return FieldValueSource.TEMPLATE


class ComputedFieldMapping(FieldMappingBase):
    kind: Literal["computed"] = "computed"
    source: FieldValueSource

    @field_validator("source")
    @classmethod
    def _not_fixed_or_template(cls, v: FieldValueSource) -> FieldValueSource:
        if v in (FieldValueSource.FIXED, FieldValueSource.TEMPLATE):
            raise ValueError(f"{v.value} is not a computed source")
        return v

    @property
    def value_source(self) -> FieldValueSource:
        return self.source


GlobalFieldMapping = Annotated[
    Union[FixedFieldMapping, TemplateFieldMapping, ComputedFieldMapping],
    Field(discriminator="kind"),
]


def normalize_field_mapping(data: Any) -> Any:
    """
    Accept the flat editor shape and turn it into the tagged shape.

    Flat shape (what the settings UI posts):
        {"fieldName": "P_REMARKS1", "valueSource": "TEMPLATE",
         "fixedValue": "", "templateValue": "주문:{orderId}", "lineTypes": ["ALL"]}
    """
    if not isinstance(data, dict) or "kind" in data:
        return data

    source = data.get("valueSource", data.get("value_source", FieldValueSource.FIXED.value))
    if isinstance(source, FieldValueSource):
        source = source.value
    line_types = data.get("lineTypes", data.get("line_types"))
    if isinstance(line_types, str):
        line_types = [line_types]

    out: Dict[str, Any] = {"field_name": data.get("fieldName", data.get("field_name", ""))}
    if line_types:
        out["line_types"] = line_types

    if source == FieldValueSource.FIXED.value:
        out["kind"] = "fixed"
        out["value"] = str(data.get("fixedValue", data.get("value", "")) or "")
    elif source == FieldValueSource.TEMPLATE.value:
        out["kind"] = "template"
        out["template"] = data.get("templateValue", data.get("template", "")) or ""
    else:
        out["kind"] = "computed"
        out["source"] = source
    return out


# -----------------------------------------------------------------------------
# Template aggregate
# -----------------------------------------------------------------------------

def _default_product_sale() -> SalesLineTemplate:
    return SalesLineTemplate(
        product_code=FROM_MAPPING,
        quantity_source=QuantitySource.ORDER_QUANTITY,
        price_source=PriceSource.ORDER_TOTAL_PRICE,
        skip_if_zero=False,
    )


def _default_delivery_fee() -> SalesLineTemplate:
    return SalesLineTemplate(
        product_description="택배비",
        price_source=PriceSource.ORDER_DELIVERY_FEE,
    )


def _default_sales_commission() -> SalesLineTemplate:
    return SalesLineTemplate(product_description="판매수수료", negate_amount=True)


def _default_delivery_commission() -> SalesLineTemplate:
    return SalesLineTemplate(product_description="배송수수료", negate_amount=True)


class ErpSalesTemplate(TemplateBase):
    """
    Document template for one ERP connection.

    Read at generation time and never modified by it. Header precedence on a
    generated line is: default_header < marketplace_headers[mkt] < slot extra_fields.
    """
    erp_connection_id: str
    tenant_id: str
    default_header: Dict[str, str] = Field(default_factory=dict)
    marketplace_headers: Dict[MarketplaceType, Dict[str, str]] = Field(default_factory=dict)

    product_sale: SalesLineTemplate = Field(default_factory=_default_product_sale)
    delivery_fee: SalesLineTemplate = Field(default_factory=_default_delivery_fee)
    sales_commission: SalesLineTemplate = Field(default_factory=_default_sales_commission)
    delivery_commission: SalesLineTemplate = Field(default_factory=_default_delivery_commission)

    additional_lines: List[AdditionalLineTemplate] = Field(default_factory=list)
    global_field_mappings: List[GlobalFieldMapping] = Field(default_factory=list)

    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("global_field_mappings", mode="before")
    @classmethod
    def _normalize_mappings(cls, v):
        if isinstance(v, list):
            return [normalize_field_mapping(item) for item in v]
        return v

    @model_validator(mode="after")
    def _fixed_price_sources(self) -> "ErpSalesTemplate":
        # product sale and delivery fee always price from their own order fields
        if self.product_sale.price_source is None:
            self.product_sale.price_source = PriceSource.ORDER_TOTAL_PRICE
        if self.delivery_fee.price_source is None:
            self.delivery_fee.price_source = PriceSource.ORDER_DELIVERY_FEE
        return self

    def slot(self, role: LineRole) -> SalesLineTemplate:
        return {
            LineRole.PRODUCT_SALE: self.product_sale,
            LineRole.DELIVERY_FEE: self.delivery_fee,
            LineRole.SALES_COMMISSION: self.sales_commission,
            LineRole.DELIVERY_COMMISSION: self.delivery_commission,
        }[role]

    def header_for(self, marketplace: MarketplaceType) -> Dict[str, str]:
        """Default header overlaid with the marketplace's overrides."""
        header = dict(self.default_header)
        header.update(self.marketplace_headers.get(marketplace, {}))
        return header

    @property
    def sales_commission_active(self) -> bool:
        return self.sales_commission.price_source == PriceSource.COMMISSION_AMOUNT

    @property
    def delivery_commission_active(self) -> bool:
        return self.delivery_commission.price_source == PriceSource.DELIVERY_COMMISSION


# =============================================================================
# Document Line
# =============================================================================

class SalesDocumentLine(TemplateBase):
    """One accounting line of a sales document (canonical shape)."""
    line_number: int
    line_type: LineRole
    product_code: str = ""
    description: str = ""
    warehouse_code: Optional[str] = None
    quantity: int = 1
    supply_amount: DecimalValue = Decimal("0")
    vat_amount: DecimalValue = Decimal("0")
    total_amount: DecimalValue = Decimal("0")
    remarks: str = ""
    extra_fields: Dict[str, str] = Field(default_factory=dict)
