"""
Sales Document Database

- erp_sales_document: one row per generated document, lines embedded as JSON

At most one non-cancelled document may exist per order. The partial unique
index below is what enforces it: two concurrent generate calls race on the
INSERT and the loser gets an IntegrityError, surfaced as GenerationError.
Status changes are compare-and-set on the previous status. A send first
claims the row (sending_since); while the claim is held, cancel, delete and
another send are refused, so a document the ERP is booking cannot be
cancelled underneath it.
"""

import json
import sqlite3
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from core.database import get_db_connection
from core.errors import GenerationError, InvalidStateTransition
from .models import SENDING, DocumentStatus, ErpSalesDocument

_COLUMNS = (
    "id, tenant_id, order_id, marketplace_order_id, erp_connection_id, status, "
    "document_date, marketplace_type, customer_code, customer_name, total_amount, "
    "lines_json, erp_document_id, sent_at, error_message, created_at, updated_at"
)


def init_document_db() -> None:
    """Create the erp_sales_document table and its indexes."""
    conn = get_db_connection()
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS erp_sales_document (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            order_id TEXT NOT NULL,
            marketplace_order_id TEXT,
            erp_connection_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'PENDING',
            document_date TEXT NOT NULL,
            marketplace_type TEXT NOT NULL,
            customer_code TEXT,
            customer_name TEXT,
            total_amount TEXT NOT NULL DEFAULT '0',
            lines_json TEXT NOT NULL,
            erp_document_id TEXT,
            sent_at TIMESTAMP,
            error_message TEXT,
            sending_since TIMESTAMP,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL
        )
    """)

    # Tables created before send claims existed
    try:
        cursor.execute("ALTER TABLE erp_sales_document ADD COLUMN sending_since TIMESTAMP")
    except sqlite3.OperationalError:
        pass  # Column already exists

    # One active document per order
    cursor.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_erp_sales_document_active_order
        ON erp_sales_document(order_id) WHERE status != 'CANCELLED'
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_erp_sales_document_order
        ON erp_sales_document(order_id, created_at)
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_erp_sales_document_status
        ON erp_sales_document(tenant_id, status)
    """)

    conn.commit()
    conn.close()


def _row_to_document(row: sqlite3.Row) -> ErpSalesDocument:
    return ErpSalesDocument(
        id=row["id"],
        tenant_id=row["tenant_id"],
        order_id=row["order_id"],
        marketplace_order_id=row["marketplace_order_id"] or "",
        erp_connection_id=row["erp_connection_id"],
        status=DocumentStatus(row["status"]),
        document_date=date.fromisoformat(row["document_date"]),
        marketplace_type=row["marketplace_type"],
        customer_code=row["customer_code"],
        customer_name=row["customer_name"],
        total_amount=row["total_amount"],
        lines=json.loads(row["lines_json"]),
        erp_document_id=row["erp_document_id"],
        sent_at=row["sent_at"],
        error_message=row["error_message"],
        sending_since=row["sending_since"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _lines_json(document: ErpSalesDocument) -> str:
    return json.dumps(
        [line.model_dump(mode="json") for line in document.lines],
        ensure_ascii=False,
    )


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# Writes
# =============================================================================

def insert_document(document: ErpSalesDocument) -> ErpSalesDocument:
    """
    Insert a new document.

    Raises:
        GenerationError: If the order already has a non-cancelled document
    """
    now = datetime.utcnow()
    document = document.model_copy(update={
        "created_at": document.created_at or now,
        "updated_at": now,
    })

    conn = get_db_connection()
    try:
        conn.execute(f"""
            INSERT INTO erp_sales_document ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            document.id,
            document.tenant_id,
            document.order_id,
            document.marketplace_order_id,
            document.erp_connection_id,
            document.status.value,
            document.document_date.isoformat(),
            document.marketplace_type.value,
            document.customer_code,
            document.customer_name,
            str(document.total_amount),
            _lines_json(document),
            document.erp_document_id,
            _ts(document.sent_at),
            document.error_message,
            _ts(document.created_at),
            _ts(document.updated_at),
        ))
        conn.commit()
    except sqlite3.IntegrityError as e:
        conn.rollback()
        raise GenerationError(
            f"Order {document.order_id} already has an active sales document",
            order_id=document.order_id,
        ) from e
    finally:
        conn.close()

    return document


def _claim_guard(claimed: bool, claim_cutoff: Optional[datetime]) -> Tuple[str, tuple]:
    """WHERE fragment matching rows whose send claim is (or is not) held."""
    if claimed:
        return "sending_since IS NOT NULL", ()
    if claim_cutoff is not None:
        # Claims older than the cutoff belong to a send that never finished
        return "(sending_since IS NULL OR sending_since < ?)", (_ts(claim_cutoff),)
    return "sending_since IS NULL", ()


def _rejected_status(document_id: str, expected_status: DocumentStatus) -> str:
    current = get_document(document_id)
    if current is None:
        return "DELETED"
    if current.status == expected_status and current.sending_since is not None:
        return SENDING
    return current.status.value


def claim_for_send(document_id: str, expected_status: DocumentStatus, claim_cutoff: datetime) -> bool:
    """
    Mark a document as being sent, provided it is still in expected_status
    and no live claim exists. Returns True when this caller holds the claim.
    """
    guard, guard_params = _claim_guard(False, claim_cutoff)
    conn = get_db_connection()
    cursor = conn.execute(f"""
        UPDATE erp_sales_document
        SET sending_since = ?
        WHERE id = ? AND status = ? AND {guard}
    """, (_ts(datetime.utcnow()), document_id, expected_status.value, *guard_params))
    claimed = cursor.rowcount > 0
    conn.commit()
    conn.close()
    return claimed


def update_document(
    document: ErpSalesDocument,
    expected_status: DocumentStatus,
    operation: str,
    claimed: bool = False,
    claim_cutoff: Optional[datetime] = None,
) -> ErpSalesDocument:
    """
    Persist a status change, provided the row is still in expected_status.

    The send claim is always released. With claimed=True the row must hold a
    claim (the sender finishing its own send); otherwise it must hold none,
    or only one older than claim_cutoff.

    Raises:
        InvalidStateTransition: If another caller changed the status first,
            or a send is in flight
    """
    document = document.model_copy(update={"updated_at": datetime.utcnow(), "sending_since": None})
    guard, guard_params = _claim_guard(claimed, claim_cutoff)

    conn = get_db_connection()
    cursor = conn.execute(f"""
        UPDATE erp_sales_document
        SET status = ?, erp_document_id = ?, sent_at = ?, error_message = ?,
            sending_since = NULL, updated_at = ?
        WHERE id = ? AND status = ? AND {guard}
    """, (
        document.status.value,
        document.erp_document_id,
        _ts(document.sent_at),
        document.error_message,
        _ts(document.updated_at),
        document.id,
        expected_status.value,
        *guard_params,
    ))
    updated = cursor.rowcount
    conn.commit()
    conn.close()

    if updated == 0:
        raise InvalidStateTransition(
            operation,
            _rejected_status(document.id, expected_status),
            document_id=document.id,
        )
    return document


def delete_document(
    document_id: str,
    allowed: Iterable[DocumentStatus],
    claim_cutoff: Optional[datetime] = None,
) -> bool:
    """
    Delete a document if its status is one of allowed and no send is in
    flight. Returns rows deleted > 0.
    """
    statuses = [s.value for s in allowed]
    placeholders = ", ".join("?" for _ in statuses)
    guard, guard_params = _claim_guard(False, claim_cutoff)

    conn = get_db_connection()
    cursor = conn.execute(
        f"DELETE FROM erp_sales_document WHERE id = ? AND status IN ({placeholders}) AND {guard}",
        (document_id, *statuses, *guard_params),
    )
    deleted = cursor.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


# =============================================================================
# Reads
# =============================================================================

def get_document(document_id: str) -> Optional[ErpSalesDocument]:
    conn = get_db_connection()
    row = conn.execute(
        "SELECT * FROM erp_sales_document WHERE id = ?", (document_id,)
    ).fetchone()
    conn.close()
    return _row_to_document(row) if row else None


def get_active_document(order_id: str) -> Optional[ErpSalesDocument]:
    """The order's non-cancelled document, if any."""
    conn = get_db_connection()
    row = conn.execute(
        "SELECT * FROM erp_sales_document WHERE order_id = ? AND status != 'CANCELLED'",
        (order_id,),
    ).fetchone()
    conn.close()
    return _row_to_document(row) if row else None


def get_latest_document(order_id: str) -> Optional[ErpSalesDocument]:
    """Most recently created document of the order, whatever its status."""
    conn = get_db_connection()
    row = conn.execute("""
        SELECT * FROM erp_sales_document
        WHERE order_id = ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT 1
    """, (order_id,)).fetchone()
    conn.close()
    return _row_to_document(row) if row else None


def list_documents(
    tenant_id: Optional[str] = None,
    status: Optional[DocumentStatus] = None,
    order_id: Optional[str] = None,
    erp_connection_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[ErpSalesDocument]:
    """List documents, newest first, filtered by any of the given fields."""
    clauses = []
    params: list = []
    if tenant_id:
        clauses.append("tenant_id = ?")
        params.append(tenant_id)
    if status:
        clauses.append("status = ?")
        params.append(status.value)
    if order_id:
        clauses.append("order_id = ?")
        params.append(order_id)
    if erp_connection_id:
        clauses.append("erp_connection_id = ?")
        params.append(erp_connection_id)

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    conn = get_db_connection()
    rows = conn.execute(f"""
        SELECT * FROM erp_sales_document
        {where}
        ORDER BY created_at DESC, rowid DESC
        LIMIT ? OFFSET ?
    """, (*params, limit, offset)).fetchall()
    conn.close()
    return [_row_to_document(row) for row in rows]


def list_document_ids_by_status(
    tenant_id: str,
    statuses: Iterable[DocumentStatus],
    erp_connection_id: Optional[str] = None,
) -> List[str]:
    """Ids of the tenant's documents in the given statuses, oldest first.

    With erp_connection_id, only documents generated for that connection.
    """
    values = [s.value for s in statuses]
    placeholders = ", ".join("?" for _ in values)
    query = f"""
        SELECT id FROM erp_sales_document
        WHERE tenant_id = ? AND status IN ({placeholders})
    """
    params: list = [tenant_id, *values]
    if erp_connection_id:
        query += " AND erp_connection_id = ?"
        params.append(erp_connection_id)
    query += " ORDER BY created_at, rowid"

    conn = get_db_connection()
    rows = conn.execute(query, params).fetchall()
    conn.close()
    return [row["id"] for row in rows]


def count_by_status(tenant_id: str) -> Dict[str, int]:
    """Document count per status (every status present, zero if none)."""
    counts = {s.value: 0 for s in DocumentStatus}
    conn = get_db_connection()
    rows = conn.execute("""
        SELECT status, COUNT(*) AS n FROM erp_sales_document
        WHERE tenant_id = ?
        GROUP BY status
    """, (tenant_id,)).fetchall()
    conn.close()
    for row in rows:
        counts[row["status"]] = row["n"]
    return counts


def active_order_ids(order_ids: Iterable[str]) -> set:
    """Subset of order_ids that already have a non-cancelled document."""
    ids = list(order_ids)
    if not ids:
        return set()
    placeholders = ", ".join("?" for _ in ids)
    conn = get_db_connection()
    rows = conn.execute(f"""
        SELECT DISTINCT order_id FROM erp_sales_document
        WHERE status != 'CANCELLED' AND order_id IN ({placeholders})
    """, ids).fetchall()
    conn.close()
    return {row["order_id"] for row in rows}
