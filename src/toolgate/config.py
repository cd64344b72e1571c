# Runtime configuration loaded from environment / .env.
# Created: 2026-10-19

from __future__ import annotations

import functools
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """toolgate settings. Every field can be overridden with ``TOOLGATE_<NAME>``."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Public URLs
    base_url: str = "http://localhost:8888"
    resource_path: str = "/mcp"

    # Scopes
    default_scope: str = "mcp:full"
    scopes_supported: list[str] = Field(default_factory=lambda: ["mcp:full", "offline_access"])

    # Storage
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".toolgate")
    storage_backend: Literal["file", "memory"] = "file"
    secret_pepper: str = ""

    # Lifetimes
    access_token_ttl_seconds: int = 3600
    refresh_token_ttl_seconds: int = 30 * 24 * 3600
    auth_code_ttl_seconds: int = 600

    # Caches
    auth_cache_ttl_seconds: float = 300.0
    auth_cache_max_entries: int = 10_000
    session_cache_max_entries: int = 10_000
    cache_shards: int = 16
    session_user_fallback: bool = True

    # Development directory seed (users + tenants), see directory.load_directory_file
    directory_file: Path | None = None

    # Maintenance
    cleanup_interval_seconds: float = 300.0

    # HTTP
    web_host: str = "127.0.0.1"
    web_port: int = 8888
    cors_allowed_origins: list[str] = Field(default_factory=lambda: ["*"])
    login_rate_per_second: float = 1.0
    login_burst: int = 5

    audit_log_enabled: bool = True
    log_level: str = "INFO"

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def resource_url(self) -> str:
        return f"{self.base_url}{self.resource_path}"

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.base_url}/.well-known/oauth-protected-resource"

    @classmethod
    def load(cls) -> Settings:
        """Load settings from the environment (fresh instance, not cached)."""
        return cls()


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    return Settings.load()

