"""Git sync schemas."""

from __future__ import annotations

import re
from datetime import datetime
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

_URL_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")


class GitConfigRequest(BaseModel):
    """Create or update the git configuration of the current user."""

    repo_url: str = Field(min_length=1, max_length=2000)
    branch: str = Field(default="main", min_length=1, max_length=255)
    functions_path: str = Field(default="functions", max_length=1000)
    token: str | None = Field(default=None, max_length=2000)
    clear_token: bool = False

    @field_validator("repo_url")
    @classmethod
    def validate_repo_url(cls, value: str) -> str:
        value = value.strip()
        parts = urlsplit(value)
        if not _URL_SCHEME_RE.match(parts.scheme) or not (parts.netloc or parts.path):
            raise ValueError("Invalid repository URL")
        return value

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, value: str) -> str:
        value = value.strip()
        if not value or value.startswith("-") or any(ch.isspace() for ch in value):
            raise ValueError("Invalid branch name")
        return value

    @field_validator("functions_path")
    @classmethod
    def validate_functions_path(cls, value: str) -> str:
        if value.startswith("/") or ".." in value.split("/"):
            raise ValueError("Functions path must be relative to the repository root")
        return value


class GitConfigResponse(BaseModel):
    """Git configuration as shown to its owner; the token itself is never returned."""

    configured: bool
    repo_url: str | None = None
    branch: str | None = None
    functions_path: str | None = None
    last_sync_at: datetime | None = None
    has_token: bool = False


class GitStatusResponse(BaseModel):
    """Whether git sync is configured and when it last completed."""

    configured: bool
    last_sync_at: datetime | None = None


class SyncChangeResponse(BaseModel):
    """One change a pull would apply."""

    name: str
    status: str
    local_code: str | None = None
    remote_code: str | None = None
    local_updated_at: datetime | None = None


class SyncPreviewResponse(BaseModel):
    """Dry-run result of a pull."""

    changes: list[SyncChangeResponse]
    has_conflicts: bool


class PullRequest(BaseModel):
    """Pull request body; a non-empty ``functions`` list selects a subset."""

    functions: list[str] | None = Field(default=None, max_length=1000)


class PullResultResponse(BaseModel):
    """Names written by a pull."""

    added: list[str]
    updated: list[str]
    deleted: list[str]
