"""Runtime settings for the sales document engine.

Values come from environment variables. A `.env` file at the repo root is
loaded first when present, the same way temporal_client.py does it.

Environment variables:
- SALES_DB_PATH: SQLite file holding templates, documents and ERP connections
- ERP_SEND_TIMEOUT_SECONDS: upper bound for a single ERP send call
- ERP_BATCH_CONCURRENCY: max documents sent in parallel by send_selected
- ERP_CREDENTIAL_KEY: base64 AES-256 key for ERP credentials at rest
- LOG_LEVEL / LOG_JSON: logging configuration
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Process-wide settings snapshot."""
    db_path: Path
    erp_send_timeout_seconds: float = 30.0
    erp_batch_concurrency: int = 4
    credential_key: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=Path(os.getenv("SALES_DB_PATH", str(REPO_ROOT / "sales_documents.db"))),
            erp_send_timeout_seconds=float(os.getenv("ERP_SEND_TIMEOUT_SECONDS", "30")),
            erp_batch_concurrency=max(1, int(os.getenv("ERP_BATCH_CONCURRENCY", "4"))),
            credential_key=os.getenv("ERP_CREDENTIAL_KEY") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", False),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the cached settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
