"""
Template presets

A preset is a named, pre-filled combination of the four canonical line
slots offered as a starting point in the template editor:

- SIMPLE_SALE: product sale + delivery fee
- WITH_COMMISSION: SIMPLE_SALE + negated sales commission
- FULL_SETTLEMENT: WITH_COMMISSION + negated delivery commission
- CUSTOM: whatever the editor saved

detect_preset() goes the other way and classifies saved slots. It is an
editor convenience only; the builder never looks at presets.
"""

from enum import Enum
from typing import Dict, List

from .models import (
    FROM_MAPPING,
    ErpSalesTemplate,
    PriceSource,
    QuantitySource,
    SalesLineTemplate,
    VatPolicy,
)


class TemplatePreset(str, Enum):
    SIMPLE_SALE = "SIMPLE_SALE"
    WITH_COMMISSION = "WITH_COMMISSION"
    FULL_SETTLEMENT = "FULL_SETTLEMENT"
    CUSTOM = "CUSTOM"


PRESET_LABELS: Dict[TemplatePreset, str] = {
    TemplatePreset.SIMPLE_SALE: "단순 판매 (상품 + 택배비)",
    TemplatePreset.WITH_COMMISSION: "수수료 포함 (상품 + 택배비 + 판매수수료)",
    TemplatePreset.FULL_SETTLEMENT: "정산 전체 (상품 + 택배비 + 판매/배송 수수료)",
    TemplatePreset.CUSTOM: "직접 설정",
}


def _product_sale() -> SalesLineTemplate:
    return SalesLineTemplate(
        product_code=FROM_MAPPING,
        quantity_source=QuantitySource.ORDER_QUANTITY,
        price_source=PriceSource.ORDER_TOTAL_PRICE,
        vat_policy=VatPolicy.SUPPLY_DIV_11,
        skip_if_zero=False,
    )


def _delivery_fee() -> SalesLineTemplate:
    return SalesLineTemplate(
        product_description="택배비",
        quantity_source=QuantitySource.FIXED_1,
        price_source=PriceSource.ORDER_DELIVERY_FEE,
        vat_policy=VatPolicy.SUPPLY_DIV_11,
        skip_if_zero=True,
    )


def _sales_commission(active: bool) -> SalesLineTemplate:
    return SalesLineTemplate(
        product_description="판매수수료",
        quantity_source=QuantitySource.FIXED_1,
        price_source=PriceSource.COMMISSION_AMOUNT if active else None,
        vat_policy=VatPolicy.SUPPLY_DIV_11,
        negate_amount=True,
        skip_if_zero=True,
    )


def _delivery_commission(active: bool) -> SalesLineTemplate:
    return SalesLineTemplate(
        product_description="배송수수료",
        quantity_source=QuantitySource.FIXED_1,
        price_source=PriceSource.DELIVERY_COMMISSION if active else None,
        vat_policy=VatPolicy.SUPPLY_DIV_11,
        negate_amount=True,
        skip_if_zero=True,
    )


def preset_slots(preset: TemplatePreset) -> Dict[str, SalesLineTemplate]:
    """Fresh slot configuration for a preset, keyed by template attribute name."""
    commission = preset in (TemplatePreset.WITH_COMMISSION, TemplatePreset.FULL_SETTLEMENT)
    delivery_commission = preset == TemplatePreset.FULL_SETTLEMENT
    return {
        "product_sale": _product_sale(),
        "delivery_fee": _delivery_fee(),
        "sales_commission": _sales_commission(commission),
        "delivery_commission": _delivery_commission(delivery_commission),
    }


def apply_preset(template: ErpSalesTemplate, preset: TemplatePreset) -> ErpSalesTemplate:
    """
    Return a copy of the template with its four slots replaced by the preset.

    Header fields, additional lines and global mappings are kept. CUSTOM
    leaves the slots untouched.
    """
    if preset == TemplatePreset.CUSTOM:
        return template.model_copy(deep=True)
    return template.model_copy(update=preset_slots(preset), deep=True)


def new_template(erp_connection_id: str, tenant_id: str, preset: TemplatePreset = TemplatePreset.SIMPLE_SALE) -> ErpSalesTemplate:
    """Blank template for a connection, pre-filled from a preset."""
    template = ErpSalesTemplate(erp_connection_id=erp_connection_id, tenant_id=tenant_id)
    return apply_preset(template, preset)


def _has_content(slot: SalesLineTemplate) -> bool:
    return bool(slot.product_code.strip() or slot.product_description.strip())


def detect_preset(template: ErpSalesTemplate) -> TemplatePreset:
    """
    Guess which preset a saved template corresponds to.

    A slot counts as configured when it carries a code or description; the
    commission slots additionally need their commission price source.
    """
    has_product_sale = _has_content(template.product_sale)
    has_delivery_fee = bool(template.delivery_fee.product_description.strip())
    has_sales_commission = (
        bool(template.sales_commission.product_description.strip())
        and template.sales_commission.price_source == PriceSource.COMMISSION_AMOUNT
    )
    has_delivery_commission = (
        bool(template.delivery_commission.product_description.strip())
        and template.delivery_commission.price_source == PriceSource.DELIVERY_COMMISSION
    )

    if has_product_sale and has_delivery_fee and has_sales_commission and has_delivery_commission:
        return TemplatePreset.FULL_SETTLEMENT
    if has_product_sale and has_delivery_fee and has_sales_commission and not has_delivery_commission:
        return TemplatePreset.WITH_COMMISSION
    if has_product_sale and has_delivery_fee and not has_sales_commission and not has_delivery_commission:
        return TemplatePreset.SIMPLE_SALE
    return TemplatePreset.CUSTOM


def list_presets() -> List[Dict[str, object]]:
    """Preset catalogue for the editor: name, label and slot configuration."""
    catalogue = []
    for preset in TemplatePreset:
        entry: Dict[str, object] = {"preset": preset.value, "label": PRESET_LABELS[preset]}
        if preset != TemplatePreset.CUSTOM:
            entry["slots"] = {
                name: slot.model_dump(mode="json")
                for name, slot in preset_slots(preset).items()
            }
        catalogue.append(entry)
    return catalogue
