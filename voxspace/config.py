"""
Runtime configuration helpers for the sync core and its companion API.

Loads DATABASE_URL, MIRROR_DATABASE_URL and the Supabase/storage settings from
the .env file located in the project root.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root
BASE_DIR = Path(__file__).resolve().parents[1]

# Absolute path to .env
ENV_PATH = BASE_DIR / ".env"

# Load .env defaults without overriding environment variables provided by the platform
load_dotenv(dotenv_path=ENV_PATH, override=False)

ALLOWED_STORY_TTL_HOURS = (12, 24, 48)


class Settings(BaseSettings):
    # Relational store double used when no Supabase project is configured
    database_url: str = Field(default="sqlite+pysqlite:///./voxspace.db", alias="DATABASE_URL")
    # Per-device durable cache
    mirror_database_url: str = Field(default="sqlite+pysqlite:///./voxspace_mirror.db", alias="MIRROR_DATABASE_URL")

    app_name: str = Field(default="VoxSpace Sync", alias="APP_NAME")
    api_version: str = Field(default="0.1.0", alias="API_VERSION")

    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")

    # S3-compatible blob storage (Supabase Storage exposes an S3 endpoint)
    storage_endpoint: str | None = Field(default=None, alias="STORAGE_ENDPOINT")
    storage_region: str = Field(default="us-east-1", alias="STORAGE_REGION")
    storage_key: str | None = Field(default=None, alias="STORAGE_KEY")
    storage_secret: str | None = Field(default=None, alias="STORAGE_SECRET")
    storage_public_base_url: str | None = Field(default=None, alias="STORAGE_PUBLIC_BASE_URL")

    remote_timeout_seconds: float = Field(default=15.0, alias="REMOTE_TIMEOUT_SECONDS")

    story_default_duration_ms: int = Field(default=5000, alias="STORY_DEFAULT_DURATION_MS")
    story_default_ttl_hours: int = Field(default=24, alias="STORY_DEFAULT_TTL_HOURS")

    vault_quota_bytes: int = Field(default=50 * 1024 * 1024, alias="VAULT_QUOTA_BYTES")
    vault_unlimited_owners: str = Field(default="", alias="VAULT_UNLIMITED_OWNERS")

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @field_validator("story_default_ttl_hours")
    @classmethod
    def _check_ttl(cls, value: int) -> int:
        if value not in ALLOWED_STORY_TTL_HOURS:
            raise ValueError(f"STORY_DEFAULT_TTL_HOURS must be one of {ALLOWED_STORY_TTL_HOURS}")
        return value

    @property
    def unlimited_vault_owners(self) -> frozenset[str]:
        return frozenset(part.strip() for part in self.vault_unlimited_owners.split(",") if part.strip())


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["ALLOWED_STORY_TTL_HOURS", "Settings", "get_settings"]
