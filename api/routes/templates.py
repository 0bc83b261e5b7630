"""Sales template endpoints.

Per-connection sales template editing: load, save (validated), delete,
preview against a sample order, and the preset catalogue.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException, Query, Response
from pydantic import BaseModel, ValidationError

from core.errors import ConfigurationError, GenerationError
from core.models.orders import MarketplaceType
from sales_engine.db import delete_template, get_template, save_template
from sales_engine.models import ErpSalesTemplate
from sales_engine.presets import TemplatePreset, apply_preset, detect_preset, list_presets
from sales_engine.preview import preview_document


router = APIRouter()


class SalesTemplateResponse(BaseModel):
    """Stored template plus the preset it matches."""
    template: ErpSalesTemplate
    preset: TemplatePreset


def _parse_template(erp_connection_id: str, body: Dict[str, Any]) -> ErpSalesTemplate:
    data = dict(body)
    data["erp_connection_id"] = erp_connection_id
    try:
        return ErpSalesTemplate.model_validate(data)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": "Invalid sales template", "errors": [err["msg"] for err in e.errors()]},
        )


@router.get("/presets")
def get_presets() -> List[Dict[str, Any]]:
    """Preset catalogue with the slot configuration of each preset."""
    return list_presets()


@router.get("/{erp_connection_id}/sales-template", response_model=SalesTemplateResponse)
def get_sales_template(erp_connection_id: str) -> SalesTemplateResponse:
    """Get the sales template of a connection."""
    template = get_template(erp_connection_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"No sales template for ERP connection {erp_connection_id}")
    return SalesTemplateResponse(template=template, preset=detect_preset(template))


@router.put("/{erp_connection_id}/sales-template", response_model=SalesTemplateResponse)
def put_sales_template(
    erp_connection_id: str,
    body: Dict[str, Any] = Body(...),
    preset: Optional[TemplatePreset] = Query(None, description="Replace the line slots with a preset before saving"),
) -> SalesTemplateResponse:
    """Validate and save the sales template of a connection."""
    template = _parse_template(erp_connection_id, body)
    if preset is not None:
        template = apply_preset(template, preset)
    try:
        stored = save_template(template)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail={"message": "Invalid sales template", "errors": e.errors})
    return SalesTemplateResponse(template=stored, preset=detect_preset(stored))


@router.delete("/{erp_connection_id}/sales-template", status_code=204)
def delete_sales_template(erp_connection_id: str) -> Response:
    """Delete the sales template of a connection."""
    if not delete_template(erp_connection_id):
        raise HTTPException(status_code=404, detail=f"No sales template for ERP connection {erp_connection_id}")
    return Response(status_code=204)


@router.post("/{erp_connection_id}/sales-template/preview")
def preview_sales_template(
    erp_connection_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    marketplace: MarketplaceType = Query(MarketplaceType.COUPANG, description="Marketplace of the sample order"),
) -> Dict[str, Any]:
    """
    Preview the lines a template produces for a sample order.

    Uses the template in the body when given (unsaved edits), otherwise the
    stored one.
    """
    if body:
        template = _parse_template(erp_connection_id, body)
    else:
        template = get_template(erp_connection_id)
        if template is None:
            raise HTTPException(status_code=404, detail=f"No sales template for ERP connection {erp_connection_id}")

    try:
        return preview_document(template, marketplace=marketplace)
    except GenerationError as e:
        raise HTTPException(status_code=422, detail=str(e))
