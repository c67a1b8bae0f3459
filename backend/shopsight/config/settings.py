"""
Ingestion settings loader.

Loads tunables for the Shopify catalog client, retry policy and the periodic
sync scheduler from config/ingestion.yml. The file is optional: missing keys
(or a missing file) fall back to built-in defaults, and a handful of keys can
be overridden through environment variables.

Secrets (SHOPIFY_WEBHOOK_SECRET, ENCRYPTION_KEY, JWT_SECRET, DATABASE_URL)
are read from the environment only and are never part of this object.

Usage:
    from shopsight.config.settings import get_ingestion_settings

    settings = get_ingestion_settings()
    settings.page_size            # 250
    settings.retry_policy()       # RetryPolicy(max_retries=3, ...)
"""

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 250

_DEFAULTS: Dict[str, Any] = {
    "api_version": "2024-01",
    "page_size": MAX_PAGE_SIZE,
    "request_timeout_seconds": 30.0,
    "connect_timeout_seconds": 10.0,
    "max_retries": 3,
    "base_delay_seconds": 1.0,
    "max_delay_seconds": 30.0,
    "jitter_factor": 0.25,
    "sync_interval_seconds": 900,
    "scheduler_enabled": True,
    "sync_lease_minutes": 120,
}

# key -> environment variable
_ENV_OVERRIDES = {
    "api_version": "SHOPIFY_API_VERSION",
    "sync_interval_seconds": "SYNC_INTERVAL_SECONDS",
    "scheduler_enabled": "SYNC_SCHEDULER_ENABLED",
    "sync_lease_minutes": "SYNC_LEASE_MINUTES",
}


def _coerce(value: Any, like: Any) -> Any:
    if isinstance(like, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(like, int):
        return int(value)
    if isinstance(like, float):
        return float(value)
    return str(value)


class IngestionSettings:
    """
    Thread-safe singleton view of config/ingestion.yml.

    Values are resolved once at construction: defaults, then the YAML
    `ingestion:` section, then environment overrides.
    """

    _instance: Optional["IngestionSettings"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path
        self._values: Dict[str, Any] = dict(_DEFAULTS)
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    def _resolve_path(self) -> Optional[Path]:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            # backend/config/ingestion.yml relative to this package
            Path(__file__).parent.parent.parent / "config" / "ingestion.yml",
            Path(os.getcwd()) / "config" / "ingestion.yml",
            Path(os.getcwd()) / "backend" / "config" / "ingestion.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved
        return None

    def _load(self) -> None:
        with self._load_lock:
            values = dict(_DEFAULTS)

            path = self._resolve_path()
            if path is not None and path.exists():
                logger.info("Loading ingestion config from %s", path)
                with open(path, "r") as f:
                    raw = yaml.safe_load(f) or {}
                section = raw.get("ingestion", raw) or {}
                for key, default in _DEFAULTS.items():
                    if key in section and section[key] is not None:
                        values[key] = _coerce(section[key], default)
            else:
                logger.info("ingestion.yml not found, using built-in defaults")

            for key, env_name in _ENV_OVERRIDES.items():
                env_value = os.getenv(env_name)
                if env_value:
                    values[key] = _coerce(env_value, _DEFAULTS[key])

            values["page_size"] = max(1, min(int(values["page_size"]), MAX_PAGE_SIZE))
            self._values = values

    def reload(self) -> None:
        """Re-read the YAML and environment."""
        self._load()

    def __getattr__(self, name: str) -> Any:
        values = self.__dict__.get("_values")
        if values is not None and name in values:
            return values[name]
        raise AttributeError(name)

    def retry_policy(self):
        """RetryPolicy built from the configured retry keys."""
        from shopsight.ingestion.retry import RetryPolicy

        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            jitter_factor=self.jitter_factor,
        )

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)


def get_ingestion_settings(config_path: Optional[str] = None) -> IngestionSettings:
    """Return the singleton IngestionSettings."""
    return IngestionSettings(config_path)


def reset_ingestion_settings() -> None:
    """Reset singleton (for tests only)."""
    IngestionSettings._instance = None


def get_webhook_secret() -> str:
    """Process-wide webhook HMAC key. Empty string disables verification."""
    return os.getenv("SHOPIFY_WEBHOOK_SECRET", "")
