"""Chat room application configuration.

Loads settings from a single YAML file, ``chatroom.settings.yaml`` in the
working directory. Set ``CHATROOM_SETTINGS`` to point at another file.
A missing file falls back to defaults.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatroom.settings.yaml")
SETTINGS_ENV_VAR = "CHATROOM_SETTINGS"


def _settings_path() -> Path:
    override = os.environ.get(SETTINGS_ENV_VAR)
    return Path(override) if override else SETTINGS_FILE


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingSettings(BaseModel):
    level: str = "info"


class ChatSettings(BaseModel):
    """Limits and timing for the room coordinator."""
    history_limit:               int   = 100
    retention_hours:             float = 24
    cleanup_interval_minutes:    float = 60
    persist_retries:             int   = 3
    persist_retry_delay_seconds: float = 0.5
    send_queue_max:              int   = 256

    @field_validator("history_limit", "retention_hours", "cleanup_interval_minutes", "send_queue_max")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("persist_retries", "persist_retry_delay_seconds")
    @classmethod
    def _non_negative(cls, value):
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def retention_ms(self) -> int:
        return int(self.retention_hours * 60 * 60 * 1000)

    @property
    def cleanup_interval_ms(self) -> int:
        return int(self.cleanup_interval_minutes * 60 * 1000)


class StorageSettings(BaseModel):
    db_path: str = "chat_room.duckdb"


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from YAML into a single *AppSettings* object."""
    settings_data = _load_yaml(path or _settings_path())

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, db_path=%s, history_limit=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.db_path,
        app_settings.chat.history_limit,
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()
