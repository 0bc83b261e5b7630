"""ERP sales document endpoints.

Generation, sending, cancellation and regeneration of sales documents, plus
the status counts shown on the documents screen.
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Query, Response
from pydantic import BaseModel, Field

from core.errors import SalesDocumentError
from documents.batch import generate_batch, send_all_pending, send_selected
from documents.models import BatchResult, DocumentStatus, ErpSalesDocument
from api.services.documents import document_service, to_http_error


router = APIRouter()


class GenerateBatchRequest(BaseModel):
    """Orders to generate documents for."""
    order_ids: List[str] = Field(..., description="Order ids")


class SendSelectedRequest(BaseModel):
    """Documents to send to the ERP."""
    document_ids: List[str] = Field(..., description="Document ids")


@router.post("/generate-batch", response_model=BatchResult)
def generate_documents(
    request: GenerateBatchRequest,
    tenant_id: str = Query(..., description="Tenant ID"),
    erp_connection_id: str = Query(..., description="ERP connection whose template is used"),
) -> BatchResult:
    """Generate one document per order; failures are reported per order."""
    service = document_service(tenant_id, erp_connection_id)
    return generate_batch(service, request.order_ids)


@router.post("/send-selected", response_model=BatchResult)
async def send_selected_documents(
    request: SendSelectedRequest,
    tenant_id: str = Query(..., description="Tenant ID"),
) -> BatchResult:
    """Send the selected documents; failures are reported per document."""
    service = document_service(tenant_id)
    return await send_selected(service, request.document_ids)


@router.post("/send-all-pending", response_model=BatchResult)
async def send_all_pending_documents(
    tenant_id: str = Query(..., description="Tenant ID"),
    erp_connection_id: Optional[str] = Query(None, description="Only documents generated for this connection"),
) -> BatchResult:
    """Send every PENDING or FAILED document of the tenant, or of one connection."""
    service = document_service(tenant_id, erp_connection_id)
    return await send_all_pending(service)


@router.get("/counts")
def document_counts(
    tenant_id: str = Query(..., description="Tenant ID"),
) -> Dict[str, int]:
    """Document count per status, plus NEED_DOCUMENT."""
    return document_service(tenant_id).counts()


@router.post("/regenerate/{order_id}", response_model=ErpSalesDocument)
def regenerate_document(
    order_id: str,
    tenant_id: str = Query(..., description="Tenant ID"),
    erp_connection_id: str = Query(..., description="ERP connection whose template is used"),
) -> ErpSalesDocument:
    """Generate a new document for an order whose document was cancelled."""
    try:
        return document_service(tenant_id, erp_connection_id).regenerate(order_id)
    except SalesDocumentError as e:
        raise to_http_error(e)


@router.get("", response_model=List[ErpSalesDocument])
def list_documents(
    tenant_id: str = Query(..., description="Tenant ID"),
    status: Optional[DocumentStatus] = Query(None, description="Filter by status"),
    order_id: Optional[str] = Query(None, description="Filter by order"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[ErpSalesDocument]:
    """List documents, newest first."""
    return document_service(tenant_id).list(status=status, order_id=order_id, limit=limit, offset=offset)


@router.get("/{document_id}", response_model=ErpSalesDocument)
def get_document(
    document_id: str,
    tenant_id: str = Query(..., description="Tenant ID"),
) -> ErpSalesDocument:
    """Get a document with its lines."""
    try:
        return document_service(tenant_id).get(document_id)
    except SalesDocumentError as e:
        raise to_http_error(e)


@router.post("/{document_id}/send", response_model=ErpSalesDocument)
async def send_document(
    document_id: str,
    tenant_id: str = Query(..., description="Tenant ID"),
) -> ErpSalesDocument:
    """Send one PENDING or FAILED document to the ERP."""
    try:
        return await document_service(tenant_id).send(document_id)
    except SalesDocumentError as e:
        raise to_http_error(e)


@router.post("/{document_id}/cancel", response_model=ErpSalesDocument)
def cancel_document(
    document_id: str,
    tenant_id: str = Query(..., description="Tenant ID"),
) -> ErpSalesDocument:
    """Cancel a PENDING or FAILED document."""
    try:
        return document_service(tenant_id).cancel(document_id)
    except SalesDocumentError as e:
        raise to_http_error(e)


@router.delete("/{document_id}", status_code=204)
def delete_document(
    document_id: str,
    tenant_id: str = Query(..., description="Tenant ID"),
) -> Response:
    """Delete a PENDING or FAILED document."""
    try:
        document_service(tenant_id).delete(document_id)
    except SalesDocumentError as e:
        raise to_http_error(e)
    return Response(status_code=204)
