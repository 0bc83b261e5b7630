"""ERP Connectors - Pluggable ERP system integrations.

This package contains the ERP sender interface and concrete implementations
for specific ERP systems (ECount today).

The document engine is ERP-neutral. This package handles:
- ERP-specific authentication
- Rendering canonical document lines into the ERP's payload
- API communication
- Stored connections and their encrypted credentials

To add a new ERP:
1. Create a new folder (e.g., douzone/)
2. Implement the ERPConnector interface
3. Register using @register_connector decorator
"""

from connectors.erp_base import (
    # Core interface
    ErpSender,
    ERPConnector,
    ERPConfig,
    SendResult,

    # Factory functions
    create_connector,
    register_connector,
    list_available_connectors,
)

from connectors.ecount import ECountConnector

from connectors.connection_store import (
    ErpConnection,
    init_connection_db,
    save_connection,
    get_connection,
    list_connections,
    primary_connection,
    get_credentials,
    build_erp_config,
    create_sender,
)

__all__ = [
    # Core interface
    "ErpSender",
    "ERPConnector",
    "ERPConfig",
    "SendResult",

    # Factory functions
    "create_connector",
    "register_connector",
    "list_available_connectors",

    # Implementations
    "ECountConnector",

    # Connections
    "ErpConnection",
    "init_connection_db",
    "save_connection",
    "get_connection",
    "list_connections",
    "primary_connection",
    "get_credentials",
    "build_erp_config",
    "create_sender",
]
