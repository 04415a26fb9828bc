"""Application settings and configuration helpers."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

PKG_DIR = Path(__file__).resolve().parents[1]  # .../cramodoro
CONFIG_PATH = PKG_DIR / "config.json"
DATA_DIR = PKG_DIR / "database"


def default_database_url() -> str:
    return "sqlite+aiosqlite:///" + (DATA_DIR / "cramodoro_local.db").as_posix()


class Settings(BaseModel):
    """Runtime configuration for the client."""

    lan_url: str = Field(default="http://127.0.0.1:5000/api", alias="CRAMODORO_LAN_URL")
    tunnel_url: Optional[str] = Field(default=None, alias="CRAMODORO_TUNNEL_URL")
    database_url: str = Field(default_factory=default_database_url, alias="CRAMODORO_DATABASE_URL")
    health_timeout: float = Field(default=2.0, alias="CRAMODORO_HEALTH_TIMEOUT")
    request_timeout: float = Field(default=5.0, alias="CRAMODORO_REQUEST_TIMEOUT")
    auto_sync_interval: float = Field(default=120.0, alias="CRAMODORO_AUTO_SYNC_INTERVAL")
    reachability_poll_interval: float = Field(
        default=15.0, alias="CRAMODORO_REACHABILITY_POLL_INTERVAL"
    )
    password_salt: str = Field(default="cramodoro-salt-2026-secure", alias="CRAMODORO_PASSWORD_SALT")
    log_level: str = Field(default="INFO", alias="CRAMODORO_LOG_LEVEL")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @field_validator("lan_url", "tunnel_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    def base_urls(self) -> list[str]:
        """Configured base URLs, LAN first."""

        return [url for url in (self.lan_url, self.tunnel_url) if url]


def _load_config_file(path: Path = CONFIG_PATH) -> Dict[str, Any]:
    """
    Read ``cramodoro/config.json`` if present.

    A missing or broken file just means "no overrides".
    """
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(config_path: Path = CONFIG_PATH) -> Settings:
    """
    Build Settings from the environment and config.json.

    Priority per field:
    1. Environment variable (CRAMODORO_*; a .env file is loaded first)
    2. config.json -> {"lan_url": "...", "tunnel_url": "...", ...}
    3. Default
    """
    values: Dict[str, Any] = {}
    file_values = _load_config_file(config_path)
    for name, field in Settings.model_fields.items():
        env_value = os.getenv(field.alias) if field.alias else None
        if env_value is not None:
            values[name] = env_value
        elif file_values.get(name) is not None:
            values[name] = file_values[name]
    return Settings(**values)


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return load_settings()
