"""
Sales document models.

ErpSalesDocument is the persisted result of generating one order against a
template. Its status follows:

    PENDING ──send ok──▶ SENT
       │  ▲
       │  └──send again── FAILED ◀──send error── PENDING
       │
       └──cancel (PENDING/FAILED)──▶ CANCELLED ──regenerate──▶ new PENDING

While a send waits on the ERP the row carries sending_since, and cancel,
delete and a second send are refused until the send settles.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models.orders import DecimalValue, MarketplaceType
from sales_engine.models import SalesDocumentLine


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# Statuses each operation may start from
ALLOWED_FROM: Dict[str, FrozenSet[DocumentStatus]] = {
    "send": frozenset({DocumentStatus.PENDING, DocumentStatus.FAILED}),
    "cancel": frozenset({DocumentStatus.PENDING, DocumentStatus.FAILED}),
    "delete": frozenset({DocumentStatus.PENDING, DocumentStatus.FAILED}),
}

# Reported in place of the status while a send holds the document
SENDING = "SENDING"

# Extra bucket reported by counts(): eligible orders without an active document
NEED_DOCUMENT = "NEED_DOCUMENT"


class ErpSalesDocument(BaseModel):
    """One ERP sales document (전표) generated from one order."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    tenant_id: str
    order_id: str
    marketplace_order_id: str = ""
    erp_connection_id: str
    status: DocumentStatus = DocumentStatus.PENDING
    document_date: date
    marketplace_type: MarketplaceType
    customer_code: Optional[str] = None
    customer_name: Optional[str] = None
    total_amount: DecimalValue = Decimal("0")
    lines: List[SalesDocumentLine] = Field(default_factory=list)

    # Set only on SENT
    erp_document_id: Optional[str] = None
    sent_at: Optional[datetime] = None

    # Set only on FAILED
    error_message: Optional[str] = None

    # Set while a send is waiting on the ERP
    sending_since: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def can(self, operation: str) -> bool:
        return self.status in ALLOWED_FROM.get(operation, frozenset())

    @property
    def is_active(self) -> bool:
        return self.status != DocumentStatus.CANCELLED


class BatchItemResult(BaseModel):
    """Outcome for one input id of a batch operation."""
    id: str
    success: bool
    document_id: Optional[str] = None
    erp_document_id: Optional[str] = None
    error_message: Optional[str] = None


class BatchResult(BaseModel):
    total_count: int = 0
    success_count: int = 0
    fail_count: int = 0
    results: List[BatchItemResult] = Field(default_factory=list)

    @classmethod
    def from_items(cls, items: List[BatchItemResult]) -> "BatchResult":
        success = sum(1 for item in items if item.success)
        return cls(
            total_count=len(items),
            success_count=success,
            fail_count=len(items) - success,
            results=items,
        )


class AutoBatchResult(BaseModel):
    """Summary of one automatic generate/send pass over a connection."""
    erp_connection_id: str
    generated_count: int = 0
    generate_failed_count: int = 0
    sent_count: int = 0
    send_failed_count: int = 0
    errors: List[str] = Field(default_factory=list)
