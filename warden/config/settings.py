"""Warden configuration via environment / .env file."""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if value.startswith("["):
            return json.loads(value)
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WARDEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- File access ---
    ALLOWED_DIRS: Annotated[list[str], NoDecode] = []
    MAX_FILE_SIZE_KB: int = 100
    MAX_LOG_LINES: int = 50
    CONTEXT_DIR: str = ""

    # --- Command execution ---
    COMMAND_TIMEOUT: float = 30.0
    COMMAND_MAX_OUTPUT_BYTES: int = 1024 * 1024

    # --- Plugins ---
    PLUGINS_DIR: str = "plugins.local"
    PLUGIN_INIT_TIMEOUT: float = 10.0
    PLUGIN_DESTROY_TIMEOUT: float = 5.0
    DISABLED_TOOLS: Annotated[list[str], NoDecode] = []

    # --- Database ---
    DATABASE_URL: str = "sqlite:///./data/warden.db"

    # --- Rate limiting ---
    RATE_LIMIT_MAX: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # --- Logging ---
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("ALLOWED_DIRS", "DISABLED_TOOLS", mode="before")
    @classmethod
    def _parse_list(cls, v: Any) -> Any:
        return _split_csv(v)

    @field_validator("MAX_LOG_LINES")
    @classmethod
    def _cap_log_lines(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("MAX_LOG_LINES must be positive")
        return min(v, 500)

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


settings = Settings()
