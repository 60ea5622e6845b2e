"""Per-user git configuration: lookup, upsert, status."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select

from fnhub.models.git_config import GitConfig
from fnhub.services.datetime_service import now_utc

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from fnhub.services.crypto_service import FernetCredentialVault

logger = logging.getLogger(__name__)


@dataclass
class GitStatus:
    """Whether git sync is configured and when it last completed."""

    configured: bool
    last_sync_at: datetime | None = None


def normalize_functions_path(functions_path: str) -> str:
    """Strip surrounding whitespace and trailing slashes from a functions path."""
    return functions_path.strip().rstrip("/")


async def get_git_config(session: AsyncSession, user_id: int) -> GitConfig | None:
    """Return the user's git configuration, if any."""
    stmt = select(GitConfig).where(GitConfig.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def save_git_config(
    session: AsyncSession,
    vault: FernetCredentialVault,
    user_id: int,
    *,
    repo_url: str,
    branch: str,
    functions_path: str,
    token: str | None = None,
    clear_token: bool = False,
) -> GitConfig:
    """Create or update the user's git configuration.

    A new token replaces the stored one (encrypted). Omitting the token keeps
    the stored one unless ``clear_token`` is set, which is how a user switches
    to a public repository. ``last_sync_at`` is never touched here.
    """
    now = now_utc()
    config = await get_git_config(session, user_id)
    if config is None:
        config = GitConfig(user_id=user_id, created_at=now)
        session.add(config)

    config.repo_url = repo_url.strip()
    config.branch = branch.strip()
    config.functions_path = normalize_functions_path(functions_path)
    config.updated_at = now
    if token:
        config.token = vault.encrypt(token)
    elif clear_token:
        config.token = None

    await session.commit()
    await session.refresh(config)
    logger.info(
        "Saved git config for user %d (branch %s, path %r, token %s)",
        user_id,
        config.branch,
        config.functions_path,
        "set" if config.token else "none",
    )
    return config


async def get_git_status(session: AsyncSession, user_id: int) -> GitStatus:
    """Return whether git sync is configured and the last sync time."""
    config = await get_git_config(session, user_id)
    if config is None:
        return GitStatus(configured=False)
    return GitStatus(configured=True, last_sync_at=config.last_sync_at)


class SqlGitConfigProvider:
    """Git configuration lookup backed by the database session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int) -> GitConfig | None:
        return await get_git_config(self.session, user_id)
