"""Application configuration loaded from environment variables."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from brainsync.exceptions import ConfigurationError


class StoreBackend(StrEnum):
    """Remote store implementation to sync against."""

    SUPABASE = "supabase"
    SQL = "sql"


class Settings(BaseSettings):
    """brainsync settings."""

    model_config = SettingsConfigDict(
        env_prefix="BRAINSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Local vault
    vault_dir: Path = Path(".")

    # Remote store
    store_backend: StoreBackend = StoreBackend.SUPABASE
    supabase_url: str = ""
    supabase_anon_key: str = ""
    database_url: str = "sqlite+aiosqlite:///data/brainsync.db"
    storage_dir: Path = Path("./data/storage")
    resource_bucket: str = "resources"

    # Credentials
    email: str = ""
    password: str = ""

    # Sync
    default_site_slug: str = ""
    resource_concurrency: int = Field(default=1, ge=1, le=16)

    def validate_remote(self) -> None:
        """Check that the selected remote store is configured."""
        violations: list[str] = []
        if self.store_backend == StoreBackend.SUPABASE:
            if not self.supabase_url.strip():
                violations.append("SUPABASE_URL must be configured")
            if not self.supabase_anon_key.strip():
                violations.append("SUPABASE_ANON_KEY must be configured")
        elif not self.database_url.strip():
            violations.append("DATABASE_URL must be configured for the sql backend")
        if not self.email.strip():
            violations.append("EMAIL must be configured")

        if violations:
            joined = "; ".join(violations)
            raise ConfigurationError(f"Incomplete remote configuration: {joined}")
