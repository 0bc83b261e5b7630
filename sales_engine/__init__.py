"""
Sales Engine Package

Turns collected marketplace orders into ERP sales document lines, driven by a
per-connection sales template.

Features:
- Value sources for quantity, price and global ERP field mappings
- Supply/VAT split with half-up rounding
- Presets (simple sale, with commission, full settlement) and detection
- Template validation at save time
- Preview against a sample order

Usage:
    from sales_engine import build_document_lines, get_active_template

    template = get_active_template("conn-1")
    result = build_document_lines(order, template)
"""

from .models import (
    # Enums
    LineRole,
    LineTypeTarget,
    QuantitySource,
    PriceSource,
    VatPolicy,
    FieldValueSource,
    FieldType,

    # Constants
    FROM_MAPPING,
    ERP_EXTRA_FIELDS,

    # Template models
    MarketplaceProductCode,
    SalesLineTemplate,
    AdditionalLineTemplate,
    FixedFieldMapping,
    TemplateFieldMapping,
    ComputedFieldMapping,
    GlobalFieldMapping,
    ErpSalesTemplate,
    SalesDocumentLine,
)

from .vat import VatBreakdown, apply_vat, round_half_up

from .resolver import (
    LineAmounts,
    ValueContext,
    render_template,
    resolve,
    resolve_mapping,
)

from .validation import collect_template_errors, validate_template

from .builder import BuildResult, build_document_lines

from .presets import (
    TemplatePreset,
    apply_preset,
    detect_preset,
    list_presets,
    new_template,
)

from .preview import preview_document, sample_order

from .db import (
    init_template_db,
    save_template,
    get_template,
    get_active_template,
    list_templates,
    delete_template,
)

__all__ = [
    # Enums
    "LineRole",
    "LineTypeTarget",
    "QuantitySource",
    "PriceSource",
    "VatPolicy",
    "FieldValueSource",
    "FieldType",
    "FROM_MAPPING",
    "ERP_EXTRA_FIELDS",

    # Template models
    "MarketplaceProductCode",
    "SalesLineTemplate",
    "AdditionalLineTemplate",
    "FixedFieldMapping",
    "TemplateFieldMapping",
    "ComputedFieldMapping",
    "GlobalFieldMapping",
    "ErpSalesTemplate",
    "SalesDocumentLine",

    # VAT / values
    "VatBreakdown",
    "apply_vat",
    "round_half_up",
    "LineAmounts",
    "ValueContext",
    "render_template",
    "resolve",
    "resolve_mapping",

    # Builder
    "BuildResult",
    "build_document_lines",
    "preview_document",
    "sample_order",

    # Validation / presets
    "collect_template_errors",
    "validate_template",
    "TemplatePreset",
    "apply_preset",
    "detect_preset",
    "list_presets",
    "new_template",

    # Database
    "init_template_db",
    "save_template",
    "get_template",
    "get_active_template",
    "list_templates",
    "delete_template",
]
