"""
Document Line Builder

Turns one order into the ordered lines of one sales document:

1. Product sale lines, one per item with an ERP product mapping
2. Delivery fee line
3. Sales commission line (only when the slot prices from COMMISSION_AMOUNT)
4. Delivery commission line (only when the slot prices from DELIVERY_COMMISSION)
5. Enabled additional lines
6. Global field mappings, resolved per canonical line against its post-VAT
   amounts (additional lines keep only their own fields)

Lines are numbered in that order starting at 1. The function is pure given
(order, template); preview and generation both call it.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from core.errors import GenerationError
from core.models.orders import Order, OrderLineItem
from core.observability.logging import get_logger
from .models import (
    FROM_MAPPING,
    AdditionalLineTemplate,
    ErpSalesTemplate,
    LineRole,
    SalesDocumentLine,
    SalesLineTemplate,
)
from .resolver import LineAmounts, ValueContext, resolve, resolve_mapping
from .vat import ZERO, VatBreakdown, apply_vat, to_decimal

logger = get_logger(__name__)

DEFAULT_DESCRIPTIONS: Dict[LineRole, str] = {
    LineRole.DELIVERY_FEE: "택배비",
    LineRole.SALES_COMMISSION: "판매수수료",
    LineRole.DELIVERY_COMMISSION: "배송수수료",
}

# ERP header fields carrying the customer (거래처) of the document
CUSTOMER_CODE_FIELD = "CUST"
CUSTOMER_NAME_FIELD = "CUST_DES"


@dataclass
class BuildResult:
    """Lines of one document plus what the caller needs to persist it."""
    lines: List[SalesDocumentLine]
    total_amount: Decimal
    header: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def customer_code(self) -> Optional[str]:
        return self.header.get(CUSTOMER_CODE_FIELD) or None

    @property
    def customer_name(self) -> Optional[str]:
        return self.header.get(CUSTOMER_NAME_FIELD) or None


class _LineCollector:
    """Numbers lines as they are emitted and remembers each line's context."""

    def __init__(self, header: Dict[str, str]):
        self.header = header
        self.entries: List[Tuple[SalesDocumentLine, ValueContext]] = []

    def emit(
        self,
        role: LineRole,
        ctx: ValueContext,
        split: VatBreakdown,
        quantity: int,
        product_code: str,
        description: str,
        warehouse_code: Optional[str],
        remarks: str,
        extra_fields: Optional[Dict[str, str]] = None,
    ) -> SalesDocumentLine:
        fields = {k: v for k, v in self.header.items() if v is not None and str(v).strip()}
        for k, v in (extra_fields or {}).items():
            if v is not None and str(v).strip():
                fields[k] = str(v)

        line = SalesDocumentLine(
            line_number=len(self.entries) + 1,
            line_type=role,
            product_code=product_code or "",
            description=description or "",
            warehouse_code=warehouse_code or None,
            quantity=quantity,
            supply_amount=split.supply,
            vat_amount=split.vat,
            total_amount=split.total,
            remarks=remarks or "",
            extra_fields=fields,
        )
        amounts = LineAmounts(total=split.total, supply=split.supply, vat=split.vat, quantity=quantity)
        self.entries.append((line, ValueContext(order=ctx.order, item=ctx.item, amounts=amounts)))
        return line


def _slot_code(slot: SalesLineTemplate, order: Order) -> Tuple[str, str]:
    """Code/description for an order-level slot; marketplace override first."""
    override = slot.override_for(order.marketplace_type)
    code = slot.product_code if slot.product_code != FROM_MAPPING else ""
    description = slot.product_description
    if override is not None:
        code = override.code or code
        description = override.description or description
    return code, description


def _product_code(slot: SalesLineTemplate, order: Order, item: OrderLineItem) -> Tuple[str, str]:
    if slot.product_code in (FROM_MAPPING, ""):
        code = item.erp_product_code or ""
        description = slot.product_description
        override = slot.override_for(order.marketplace_type)
        if override is not None and override.description:
            description = override.description
    else:
        code, description = _slot_code(slot, order)
    return code, description or item.display_name


def _build_product_lines(order: Order, template: ErpSalesTemplate, out: _LineCollector, warnings: List[str]) -> None:
    slot = template.product_sale
    for index, item in enumerate(order.items):
        if not (item.erp_product_code and item.erp_product_code.strip()):
            message = f"Item {index + 1} ({item.display_name}) has no ERP product mapping; skipped"
            warnings.append(message)
            logger.warning(message, extra_fields={"order_id": order.id, "item_index": index})
            continue

        ctx = ValueContext(order=order, item=item)
        quantity = resolve(slot.quantity_source, ctx)
        gross = resolve(slot.price_source, ctx)
        if slot.skip_if_zero and to_decimal(gross) == ZERO:
            continue

        code, description = _product_code(slot, order, item)
        out.emit(
            LineRole.PRODUCT_SALE,
            ctx,
            apply_vat(gross, slot.vat_policy, slot.negate_amount),
            quantity,
            code,
            description,
            item.erp_warehouse_code or order.default_warehouse_code,
            slot.remarks,
            slot.extra_fields,
        )


def _build_slot_line(order: Order, role: LineRole, slot: SalesLineTemplate, out: _LineCollector) -> None:
    ctx = ValueContext(order=order)
    gross = to_decimal(resolve(slot.price_source, ctx))
    if slot.skip_if_zero and gross == ZERO:
        return

    code, description = _slot_code(slot, order)
    out.emit(
        role,
        ctx,
        apply_vat(gross, slot.vat_policy, slot.negate_amount),
        resolve(slot.quantity_source, ctx),
        code,
        description or DEFAULT_DESCRIPTIONS.get(role, ""),
        order.default_warehouse_code,
        slot.remarks,
        slot.extra_fields,
    )


def _build_additional_line(order: Order, line: AdditionalLineTemplate, out: _LineCollector) -> None:
    gross = to_decimal(line.unit_price) * Decimal(line.quantity)
    out.emit(
        LineRole.ADDITIONAL,
        ValueContext(order=order),
        apply_vat(gross, line.vat_policy, line.negate_amount),
        line.quantity,
        line.product_code,
        line.product_description,
        line.warehouse_code or order.default_warehouse_code,
        line.remarks,
    )


def _apply_global_mappings(template: ErpSalesTemplate, out: _LineCollector) -> None:
    if not template.global_field_mappings:
        return
    for line, ctx in out.entries:
        for mapping in template.global_field_mappings:
            if not mapping.applies_to(line.line_type):
                continue
            value = resolve_mapping(mapping, ctx)
            if value.strip():
                line.extra_fields[mapping.field_name] = value


def build_document_lines(order: Order, template: ErpSalesTemplate) -> BuildResult:
    """
    Build the document lines for an order.

    Args:
        order: Collected order (items, delivery fee, commissions)
        template: Sales template of the ERP connection

    Returns:
        BuildResult with numbered lines, total and skipped-item warnings

    Raises:
        GenerationError: If the order yields no lines at all
    """
    header = template.header_for(order.marketplace_type)
    out = _LineCollector(header)
    warnings: List[str] = []

    _build_product_lines(order, template, out, warnings)

    _build_slot_line(order, LineRole.DELIVERY_FEE, template.delivery_fee, out)

    if template.sales_commission_active:
        _build_slot_line(order, LineRole.SALES_COMMISSION, template.sales_commission, out)

    if template.delivery_commission_active:
        _build_slot_line(order, LineRole.DELIVERY_COMMISSION, template.delivery_commission, out)

    for additional in template.additional_lines:
        if additional.enabled:
            _build_additional_line(order, additional, out)

    _apply_global_mappings(template, out)

    lines = [line for line, _ in out.entries]
    if not lines:
        raise GenerationError(
            f"Order {order.id} produced no document lines"
            + (f" ({len(warnings)} unmapped item(s))" if warnings else ""),
            order_id=order.id,
        )

    total = sum((line.total_amount for line in lines), ZERO)
    logger.debug(
        f"Built {len(lines)} line(s) for order {order.id}",
        extra_fields={"total_amount": str(total), "skipped_items": len(warnings)},
    )
    return BuildResult(lines=lines, total_amount=total, header=header, warnings=warnings)
