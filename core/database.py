"""
SQLite connection handling shared by the template store, the document
store and the ERP connection store.

Every call opens its own connection so batch items running on different
tasks or threads never share one.
"""

import sqlite3
from pathlib import Path

from core.config import get_settings

DB_PATH: Path = get_settings().db_path


def get_db_connection() -> sqlite3.Connection:
    """Get database connection with row factory"""
    conn = sqlite3.connect(str(DB_PATH), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn

