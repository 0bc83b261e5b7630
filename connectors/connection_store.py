"""ERP Connection Store.

Persists the ERP connections of each tenant:
- erp_connection: connector type, automation flags, encrypted credentials

Credentials are encrypted with AES-256-GCM under ERP_CREDENTIAL_KEY and bound
to the tenant id, so a blob copied to another tenant's row fails to decrypt.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.config import get_settings
from core.database import get_db_connection
from core.errors import ConfigurationError, ConnectionNotFoundError
from core.observability.logging import get_logger
from core.security.encryption import CredentialEncryption, EncryptedCredentials
from connectors.erp_base import ERPConfig, ERPConnector, create_connector

logger = get_logger(__name__)


@dataclass
class ErpConnection:
    """One tenant's link to one ERP company."""
    id: str
    tenant_id: str
    connector_type: str = "ecount"
    name: str = ""
    active: bool = True

    # Automation (used by the scheduled auto batch)
    auto_generate_document: bool = False
    auto_send_to_erp: bool = False

    settings: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def init_connection_db() -> None:
    """Create the erp_connection table."""
    conn = get_db_connection()
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS erp_connection (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            connector_type TEXT NOT NULL,
            name TEXT,
            is_active INTEGER DEFAULT 1,
            auto_generate_document INTEGER DEFAULT 0,
            auto_send_to_erp INTEGER DEFAULT 0,
            settings_json TEXT,
            credentials_json TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_erp_connection_tenant
        ON erp_connection(tenant_id)
    """)

    conn.commit()
    conn.close()


def _encryption() -> CredentialEncryption:
    key = get_settings().credential_key
    if not key:
        raise ConfigurationError("ERP_CREDENTIAL_KEY is not set; cannot store or read ERP credentials")
    return CredentialEncryption(key)


def _row_to_connection(row: sqlite3.Row) -> ErpConnection:
    return ErpConnection(
        id=row["id"],
        tenant_id=row["tenant_id"],
        connector_type=row["connector_type"],
        name=row["name"] or "",
        active=bool(row["is_active"]),
        auto_generate_document=bool(row["auto_generate_document"]),
        auto_send_to_erp=bool(row["auto_send_to_erp"]),
        settings=json.loads(row["settings_json"]) if row["settings_json"] else {},
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
        updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
    )


# =============================================================================
# CRUD
# =============================================================================

def save_connection(connection: ErpConnection, credentials: Optional[Dict[str, Any]] = None) -> ErpConnection:
    """
    Insert or update a connection.

    Args:
        connection: Connection to store
        credentials: Plain credentials to encrypt; None keeps the stored ones
    """
    now = datetime.utcnow().isoformat()
    encrypted = None
    if credentials is not None:
        encrypted = json.dumps(_encryption().encrypt(credentials, connection.tenant_id).to_dict())

    conn = get_db_connection()
    conn.execute("""
        INSERT INTO erp_connection
        (id, tenant_id, connector_type, name, is_active, auto_generate_document,
         auto_send_to_erp, settings_json, credentials_json, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            tenant_id = excluded.tenant_id,
            connector_type = excluded.connector_type,
            name = excluded.name,
            is_active = excluded.is_active,
            auto_generate_document = excluded.auto_generate_document,
            auto_send_to_erp = excluded.auto_send_to_erp,
            settings_json = excluded.settings_json,
            credentials_json = COALESCE(excluded.credentials_json, erp_connection.credentials_json),
            updated_at = excluded.updated_at
    """, (
        connection.id,
        connection.tenant_id,
        connection.connector_type,
        connection.name,
        1 if connection.active else 0,
        1 if connection.auto_generate_document else 0,
        1 if connection.auto_send_to_erp else 0,
        json.dumps(connection.settings),
        encrypted,
        now,
        now,
    ))
    conn.commit()
    conn.close()

    logger.info(
        f"Saved ERP connection {connection.id}",
        extra_fields={"erp_connection_id": connection.id, "connector_type": connection.connector_type},
    )
    return get_connection(connection.id)


def get_connection(connection_id: str) -> ErpConnection:
    """
    Raises:
        ConnectionNotFoundError: Unknown connection id
    """
    conn = get_db_connection()
    row = conn.execute("SELECT * FROM erp_connection WHERE id = ?", (connection_id,)).fetchone()
    conn.close()
    if row is None:
        raise ConnectionNotFoundError(connection_id)
    return _row_to_connection(row)


def list_connections(tenant_id: Optional[str] = None, automated_only: bool = False) -> List[ErpConnection]:
    """Active connections, optionally of one tenant and/or with automation enabled."""
    query = "SELECT * FROM erp_connection WHERE is_active = 1"
    params: list = []
    if tenant_id:
        query += " AND tenant_id = ?"
        params.append(tenant_id)
    if automated_only:
        query += " AND (auto_generate_document = 1 OR auto_send_to_erp = 1)"
    query += " ORDER BY tenant_id, id"

    conn = get_db_connection()
    rows = conn.execute(query, params).fetchall()
    conn.close()
    return [_row_to_connection(row) for row in rows]


def primary_connection(tenant_id: str) -> Optional[ErpConnection]:
    """
    The tenant's first configured active connection.

    Eligible orders are not tied to a connection, so automatic generation
    runs for this connection only; the others send what they generated.
    """
    conn = get_db_connection()
    row = conn.execute("""
        SELECT * FROM erp_connection
        WHERE tenant_id = ? AND is_active = 1
        ORDER BY created_at, rowid
        LIMIT 1
    """, (tenant_id,)).fetchone()
    conn.close()
    return _row_to_connection(row) if row else None


def get_credentials(connection_id: str) -> Dict[str, Any]:
    """
    Decrypt the stored credentials of a connection.

    Raises:
        ConnectionNotFoundError: Unknown connection id
        ConfigurationError: No credentials stored, or the key cannot decrypt them
    """
    conn = get_db_connection()
    row = conn.execute(
        "SELECT credentials_json FROM erp_connection WHERE id = ?", (connection_id,)
    ).fetchone()
    conn.close()
    if row is None:
        raise ConnectionNotFoundError(connection_id)
    if not row["credentials_json"]:
        raise ConfigurationError(f"ERP connection {connection_id} has no stored credentials")

    blob = EncryptedCredentials.from_dict(json.loads(row["credentials_json"]))
    try:
        return _encryption().decrypt(blob)
    except ValueError as e:
        raise ConfigurationError(f"Cannot decrypt credentials of ERP connection {connection_id}: {e}") from e


def build_erp_config(connection_id: str) -> ERPConfig:
    """Connector configuration (with decrypted credentials) for a connection."""
    connection = get_connection(connection_id)
    return ERPConfig(
        connector_type=connection.connector_type,
        connection_id=connection.id,
        tenant_id=connection.tenant_id,
        auth_config=get_credentials(connection_id),
        timeout_seconds=get_settings().erp_send_timeout_seconds,
        custom_settings=dict(connection.settings),
    )


def create_sender(connection_id: str) -> ERPConnector:
    """Instantiate the registered connector of a stored connection."""
    # Registers the bundled connectors
    import connectors.ecount  # noqa: F401

    config = build_erp_config(connection_id)
    try:
        return create_connector(config)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
