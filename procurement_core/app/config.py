"""
Runtime configuration for the procurement core.
"""

from dotenv import load_dotenv
load_dotenv()

import hashlib
import os
import warnings
from pathlib import Path
from typing import List, Optional


def _default_database_url() -> str:
    # Local SQLite file in a `data/` folder adjacent to the package directory.
    pkg_root = Path(__file__).resolve().parents[1]
    data_dir = pkg_root / "data"
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        return "sqlite:///:memory:"
    return f"sqlite:///{(data_dir / 'procurement.db').as_posix()}"


def _secret_key(environment: str) -> str:
    secret = os.getenv("PROCUREMENT_SECRET_KEY")
    if not secret:
        if environment == "production":
            raise RuntimeError(
                "CRITICAL: Secret key must be set in production! "
                "Set PROCUREMENT_SECRET_KEY environment variable."
            )
        warnings.warn(
            "No secret key set! Using development key. "
            "Set PROCUREMENT_SECRET_KEY for production.",
            RuntimeWarning
        )
        secret = hashlib.sha256(b"dev-mode-only").hexdigest()
    return secret


class Settings:
    """Settings resolved from the environment (and `.env`, when present)."""

    def __init__(self, env: Optional[str] = None):
        self.ENVIRONMENT: str = (env or os.getenv("ENVIRONMENT", "development")).lower()
        self.DATABASE_URL: str = os.getenv("DATABASE_URL") or _default_database_url()
        self.SECRET_KEY: str = _secret_key(self.ENVIRONMENT)
        self.ALGORITHM: str = "HS256"
        self.TOKEN_EXPIRE_MINUTES: int = int(os.getenv("TOKEN_EXPIRE_MINUTES", "60"))

        # Calendar dates (approval date, delivery-date checks) are taken in this zone
        self.BUSINESS_TIMEZONE: str = os.getenv("BUSINESS_TIMEZONE", "Asia/Kolkata")
        self.DUPLICATE_REQUEST_WINDOW_MINUTES: int = int(
            os.getenv("DUPLICATE_REQUEST_WINDOW_MINUTES", "5")
        )

        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "DEBUG" if self.ENVIRONMENT == "test" else "INFO").upper()
        self.LOG_FORMAT: str = os.getenv(
            "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        self.LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() == "true"

        self.CORS_ORIGINS: List[str] = self._cors_origins()

    @staticmethod
    def _cors_origins() -> List[str]:
        origins_env = os.getenv("CORS_ORIGINS", "")
        if origins_env:
            return [o.strip() for o in origins_env.split(",") if o.strip()]
        return [
            "http://127.0.0.1:3000",
            "http://localhost:3000",
            "http://127.0.0.1:8080",
            "http://localhost:8080",
        ]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, building them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
