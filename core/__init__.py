"""Core module - settings, persistence, order models, observability, security.

This module is ERP-agnostic. ERP-specific logic (ECount, ...) belongs in
/connectors/; document rules live in /sales_engine/ and /documents/.
"""

__version__ = "1.0.0"
