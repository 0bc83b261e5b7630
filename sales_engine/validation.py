"""
Template validation, run when a template is saved.

Generation trusts saved templates, so everything that would make a mapping
unresolvable for its field type is rejected here.
"""

from decimal import Decimal, InvalidOperation
from typing import List

from core.errors import ConfigurationError
from .models import (
    ERP_EXTRA_FIELDS,
    ErpSalesTemplate,
    FieldType,
    FixedFieldMapping,
    LineTypeTarget,
    PriceSource,
    allowed_sources,
)


def _is_number(value: str) -> bool:
    try:
        Decimal(value.replace(",", "").strip())
    except InvalidOperation:
        return False
    return True


def collect_template_errors(template: ErpSalesTemplate) -> List[str]:
    """Return every problem found in the template (empty list when valid)."""
    errors: List[str] = []

    if template.product_sale.price_source != PriceSource.ORDER_TOTAL_PRICE:
        errors.append("product_sale.price_source must be ORDER_TOTAL_PRICE")
    if template.delivery_fee.price_source != PriceSource.ORDER_DELIVERY_FEE:
        errors.append("delivery_fee.price_source must be ORDER_DELIVERY_FEE")

    for i, line in enumerate(template.additional_lines):
        if line.quantity < 0:
            errors.append(f"additional_lines[{i}].quantity must not be negative")

    seen = set()
    for i, mapping in enumerate(template.global_field_mappings):
        label = f"global_field_mappings[{i}] ({mapping.field_name or '?'})"

        if not mapping.field_name:
            errors.append(f"{label}: field_name is required")
            continue

        field_type = ERP_EXTRA_FIELDS.get(mapping.field_name)
        if field_type is None:
            errors.append(f"{label}: unknown field {mapping.field_name}")
            continue

        if mapping.field_name in seen:
            errors.append(f"{label}: duplicate mapping for {mapping.field_name}")
        seen.add(mapping.field_name)

        source = mapping.value_source
        if source not in allowed_sources(field_type):
            errors.append(
                f"{label}: value source {source.value} cannot fill a {field_type.value} field"
            )
        elif (
            isinstance(mapping, FixedFieldMapping)
            and field_type == FieldType.NUMBER
            and not _is_number(mapping.value)
        ):
            errors.append(f"{label}: fixed value {mapping.value!r} is not a number")

        if not mapping.line_types:
            errors.append(f"{label}: line_types must not be empty")
        elif LineTypeTarget.ALL in mapping.line_types and len(mapping.line_types) > 1:
            errors.append(f"{label}: ALL cannot be combined with specific line types")

    return errors


def validate_template(template: ErpSalesTemplate) -> ErpSalesTemplate:
    """
    Validate a template before it is stored.

    Raises:
        ConfigurationError: With one message per problem found
    """
    errors = collect_template_errors(template)
    if errors:
        raise ConfigurationError("Invalid sales template", errors=errors)
    return template
