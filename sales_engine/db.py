"""
Sales Template Database

One template per ERP connection, stored as the JSON dump of ErpSalesTemplate:
- erp_sales_template: erp_connection_id → template_json
"""

import json
from datetime import datetime
from typing import List, Optional

from core.database import get_db_connection
from core.errors import TemplateNotFoundError
from core.observability.logging import get_logger
from .models import ErpSalesTemplate
from .validation import validate_template

logger = get_logger(__name__)


def init_template_db() -> None:
    """Create the erp_sales_template table."""
    conn = get_db_connection()
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS erp_sales_template (
            erp_connection_id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            template_json TEXT NOT NULL,
            is_active INTEGER DEFAULT 1,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_erp_sales_template_tenant
        ON erp_sales_template(tenant_id)
    """)

    conn.commit()
    conn.close()


def _row_to_template(row) -> ErpSalesTemplate:
    return ErpSalesTemplate.model_validate(json.loads(row["template_json"]))


# =============================================================================
# CRUD
# =============================================================================

def save_template(template: ErpSalesTemplate) -> ErpSalesTemplate:
    """
    Validate and upsert the template of an ERP connection.

    Args:
        template: Template to store

    Returns:
        The stored template with timestamps set

    Raises:
        ConfigurationError: If the template fails validation (nothing is written)
    """
    validate_template(template)

    now = datetime.utcnow()
    existing = get_template(template.erp_connection_id)
    stored = template.model_copy(update={
        "created_at": existing.created_at if existing and existing.created_at else now,
        "updated_at": now,
    })

    conn = get_db_connection()
    conn.execute("""
        INSERT INTO erp_sales_template
        (erp_connection_id, tenant_id, template_json, is_active, updated_at)
        VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(erp_connection_id) DO UPDATE SET
            tenant_id = excluded.tenant_id,
            template_json = excluded.template_json,
            is_active = excluded.is_active,
            updated_at = CURRENT_TIMESTAMP
    """, (
        stored.erp_connection_id,
        stored.tenant_id,
        json.dumps(stored.model_dump(mode="json"), ensure_ascii=False),
        1 if stored.active else 0,
    ))
    conn.commit()
    conn.close()

    logger.info(
        f"Saved sales template for connection {stored.erp_connection_id}",
        extra_fields={"erp_connection_id": stored.erp_connection_id, "tenant_id": stored.tenant_id},
    )
    return stored


def get_template(erp_connection_id: str) -> Optional[ErpSalesTemplate]:
    """Get the stored template of a connection, active or not."""
    conn = get_db_connection()
    row = conn.execute(
        "SELECT * FROM erp_sales_template WHERE erp_connection_id = ?",
        (erp_connection_id,),
    ).fetchone()
    conn.close()
    return _row_to_template(row) if row else None


def get_active_template(erp_connection_id: str) -> ErpSalesTemplate:
    """
    Get the template generation should use.

    Raises:
        TemplateNotFoundError: If there is no template or it is inactive
    """
    template = get_template(erp_connection_id)
    if template is None or not template.active:
        raise TemplateNotFoundError(erp_connection_id)
    return template


def list_templates(tenant_id: str) -> List[ErpSalesTemplate]:
    conn = get_db_connection()
    rows = conn.execute(
        "SELECT * FROM erp_sales_template WHERE tenant_id = ? ORDER BY erp_connection_id",
        (tenant_id,),
    ).fetchall()
    conn.close()
    return [_row_to_template(row) for row in rows]


def delete_template(erp_connection_id: str) -> bool:
    """Delete a connection's template. Returns False if there was none."""
    conn = get_db_connection()
    cursor = conn.execute(
        "DELETE FROM erp_sales_template WHERE erp_connection_id = ?",
        (erp_connection_id,),
    )
    deleted = cursor.rowcount > 0
    conn.commit()
    conn.close()
    if deleted:
        logger.info(f"Deleted sales template for connection {erp_connection_id}")
    return deleted
