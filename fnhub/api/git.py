"""Git sync API endpoints: configuration, status, preview and pull."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fnhub.api.deps import get_session, get_sync_engine, get_vault, require_auth
from fnhub.models.user import User
from fnhub.schemas.git import (
    GitConfigRequest,
    GitConfigResponse,
    GitStatusResponse,
    PullRequest,
    PullResultResponse,
    SyncChangeResponse,
    SyncPreviewResponse,
)
from fnhub.services.audit_service import record_git_pull
from fnhub.services.crypto_service import FernetCredentialVault
from fnhub.services.git_config_service import get_git_config, get_git_status, save_git_config
from fnhub.services.sync_service import GitSyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/git", tags=["git"])


@router.get("/config", response_model=GitConfigResponse)
async def read_config(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> GitConfigResponse:
    """Get the current user's git configuration."""
    config = await get_git_config(session, user.id)
    if config is None:
        return GitConfigResponse(configured=False)
    return GitConfigResponse(
        configured=True,
        repo_url=config.repo_url,
        branch=config.branch,
        functions_path=config.functions_path,
        last_sync_at=config.last_sync_at,
        has_token=bool(config.token),
    )


@router.put("/config", response_model=GitConfigResponse)
async def update_config(
    body: GitConfigRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    vault: Annotated[FernetCredentialVault, Depends(get_vault)],
    user: Annotated[User, Depends(require_auth)],
) -> GitConfigResponse:
    """Create or update the current user's git configuration."""
    config = await save_git_config(
        session,
        vault,
        user.id,
        repo_url=body.repo_url,
        branch=body.branch,
        functions_path=body.functions_path,
        token=body.token,
        clear_token=body.clear_token,
    )
    return GitConfigResponse(
        configured=True,
        repo_url=config.repo_url,
        branch=config.branch,
        functions_path=config.functions_path,
        last_sync_at=config.last_sync_at,
        has_token=bool(config.token),
    )


@router.get("/status", response_model=GitStatusResponse)
async def read_status(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> GitStatusResponse:
    """Report whether git sync is configured and when it last ran."""
    git_status = await get_git_status(session, user.id)
    return GitStatusResponse(configured=git_status.configured, last_sync_at=git_status.last_sync_at)


@router.get("/preview-pull", response_model=SyncPreviewResponse)
async def preview_pull(
    engine: Annotated[GitSyncEngine, Depends(get_sync_engine)],
    user: Annotated[User, Depends(require_auth)],
) -> SyncPreviewResponse:
    """Show what a pull would change without writing anything."""
    preview = await engine.preview_pull(user.id)
    return SyncPreviewResponse(
        changes=[
            SyncChangeResponse(
                name=change.name,
                status=change.status.value,
                local_code=change.local_code,
                remote_code=change.remote_code,
                local_updated_at=change.local_updated_at,
            )
            for change in preview.changes
        ],
        has_conflicts=preview.has_conflicts,
    )


@router.post("/pull", response_model=PullResultResponse)
async def pull(
    session: Annotated[AsyncSession, Depends(get_session)],
    engine: Annotated[GitSyncEngine, Depends(get_sync_engine)],
    user: Annotated[User, Depends(require_auth)],
    body: PullRequest | None = None,
) -> PullResultResponse:
    """Pull functions from git; a non-empty ``functions`` list pulls only those."""
    names = body.functions if body is not None else None
    if names:
        result = await engine.selective_pull(user.id, names)
    else:
        result = await engine.pull_from_git(user.id)
    await record_git_pull(session, user, result)
    return PullResultResponse(added=result.added, updated=result.updated, deleted=result.deleted)
