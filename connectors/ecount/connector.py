"""ECount ERP Connector.

Renders canonical sales document lines into ECount SaveSale BulkDatas and
submits them. Registered as connector type "ecount".
"""

import random
from typing import Any, Dict, Optional

from connectors.erp_base import (
    ERPConfig,
    ERPConnector,
    SendResult,
    register_connector,
)
from core.observability.logging import get_logger
from documents.models import ErpSalesDocument
from sales_engine.resolver import format_amount
from .client import ECountApiError, ECountAuthenticationError, ECountClient, ECountCredentials

logger = get_logger(__name__)


def new_upload_serial() -> str:
    """4-digit UPLOAD_SER_NO grouping the lines of one slip."""
    return str(random.randint(1000, 9999))


def render_bulk_datas(document: ErpSalesDocument, upload_ser_no: str) -> list:
    """One BulkDatas dict per document line, every value rendered as a string."""
    io_date = document.document_date.strftime("%Y%m%d")
    rows = []
    for line in document.lines:
        row: Dict[str, str] = {
            "IO_DATE": io_date,
            "UPLOAD_SER_NO": upload_ser_no,
            "LINE_NO": str(line.line_number),
            "PROD_CD": line.product_code,
            "PROD_DES": line.description,
            "QTY": str(line.quantity),
            "SUPPLY_AMT": format_amount(line.supply_amount),
            "VAT_AMT": format_amount(line.vat_amount),
            "PRICE": format_amount(line.total_amount),
        }
        if line.warehouse_code:
            row["WH_CD"] = line.warehouse_code
        if line.remarks:
            row["REMARKS"] = line.remarks
        # Header, slot extras and global mappings; mappings were applied last
        row.update(line.extra_fields)
        rows.append(row)
    return rows


def render_save_sale_body(document: ErpSalesDocument, upload_ser_no: Optional[str] = None) -> Dict[str, Any]:
    """SaveSale request body for a document."""
    serial = upload_ser_no or new_upload_serial()
    return {
        "SaleList": [{"BulkDatas": row} for row in render_bulk_datas(document, serial)],
    }


@register_connector("ecount")
class ECountConnector(ERPConnector):
    """ECount connector.

    auth_config keys: company_code, user_id, api_cert_key (zone optional).
    """

    def __init__(self, config: ERPConfig):
        super().__init__(config)
        self.credentials = ECountCredentials.from_dict(config.auth_config)
        self._client: Optional[ECountClient] = None

    def _new_client(self) -> ECountClient:
        return ECountClient(self.credentials, timeout_seconds=self.config.timeout_seconds)

    async def connect(self) -> bool:
        """Resolve the zone and log in; False when ECount refuses."""
        self._client = self._new_client()
        try:
            await self._client.connect()
        except ECountApiError as e:
            logger.warning(f"ECount connection failed: {e}")
            return False
        return True

    async def disconnect(self) -> None:
        if self._client:
            await self._client.disconnect()
            self._client = None

    async def send_sales_document(self, document: ErpSalesDocument) -> SendResult:
        """Log in, call SaveSale and map the outcome to a SendResult."""
        body = render_save_sale_body(document)
        client = self._new_client()
        try:
            await client.connect()
            result = await client.save_sale(body)
        except ECountAuthenticationError as e:
            return SendResult.failed(f"ECount authentication failed: {e}", raw_response=_raw(e))
        except ECountApiError as e:
            return SendResult.failed(str(e), raw_response=_raw(e))
        finally:
            await client.disconnect()

        if result.success:
            logger.info(
                f"ECount SaveSale accepted document {document.id} as slip {result.slip_no}",
                extra_fields={"document_id": document.id, "line_count": result.success_count},
            )
            return SendResult.ok(result.slip_no, raw_response=result.raw_response)

        logger.warning(
            f"ECount SaveSale rejected document {document.id}: {result.error_message}",
            extra_fields={"document_id": document.id, "fail_count": result.fail_count},
        )
        return SendResult.failed(result.error_message or "SaveSale failed", raw_response=result.raw_response)


def _raw(error: ECountApiError) -> Optional[Dict[str, Any]]:
    return error.response_body if isinstance(error.response_body, dict) else None
