"""Application configuration loaded from environment variables."""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """FnHub application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    secret_key: str = "change-me-in-production"
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/fnhub.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)

    # Auth
    access_token_expire_minutes: int = Field(default=60, ge=1)

    # Admin bootstrap
    admin_username: str = "admin"
    admin_password: str = "admin"

    # Git sync
    git_executable: str = "git"
    git_workspace_dir: Path = Path(tempfile.gettempdir())
    git_clone_timeout_seconds: int = Field(default=120, ge=1)
    function_file_extension: str = Field(default=".ts", pattern=r"^\.[A-Za-z0-9]+$")

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            violations.append(
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars)"
            )
        if self.admin_password == "admin" or len(self.admin_password) < 12:
            violations.append("ADMIN_PASSWORD must be overridden with a strong value (>=12 chars)")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
