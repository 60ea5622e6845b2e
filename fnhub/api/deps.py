"""Shared API dependencies: DB session, auth, git sync engine."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from fnhub.config import Settings
from fnhub.models.user import User
from fnhub.services.auth_service import decode_access_token
from fnhub.services.crypto_service import FernetCredentialVault
from fnhub.services.function_store import SqlFunctionStore
from fnhub.services.git_config_service import SqlGitConfigProvider
from fnhub.services.git_service import GitService
from fnhub.services.sync_service import GitSyncEngine, UserLockRegistry
from fnhub.services.workspace_service import WorkspaceManager

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_git_service(request: Request) -> GitService:
    """Get git service from app state."""
    git_service: GitService = request.app.state.git_service
    return git_service


def get_workspace_manager(request: Request) -> WorkspaceManager:
    """Get workspace manager from app state."""
    workspaces: WorkspaceManager = request.app.state.workspace_manager
    return workspaces


def get_sync_locks(request: Request) -> UserLockRegistry:
    """Get the per-user sync lock registry from app state."""
    locks: UserLockRegistry = request.app.state.sync_locks
    return locks


def get_vault(settings: Annotated[Settings, Depends(get_settings)]) -> FernetCredentialVault:
    """Credential vault keyed by the application secret."""
    return FernetCredentialVault(settings.secret_key)


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session: AsyncSession = Depends(get_session),
) -> User | None:
    """Get current authenticated user, or None if not authenticated."""
    if credentials is None:
        return None

    settings: Settings = request.app.state.settings
    payload = decode_access_token(credentials.credentials, settings.secret_key)
    if payload is None:
        return None
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id.isdigit():
        return None
    return await session.get(User, int(user_id))


async def require_auth(
    user: Annotated[User | None, Depends(get_current_user)],
) -> User:
    """Require authentication. Raises 401 if not authenticated."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_sync_engine(
    settings: Annotated[Settings, Depends(get_settings)],
    session: Annotated[AsyncSession, Depends(get_session)],
    vault: Annotated[FernetCredentialVault, Depends(get_vault)],
    git_service: Annotated[GitService, Depends(get_git_service)],
    workspaces: Annotated[WorkspaceManager, Depends(get_workspace_manager)],
    locks: Annotated[UserLockRegistry, Depends(get_sync_locks)],
) -> GitSyncEngine:
    """Git sync engine wired to the request's database session."""
    return GitSyncEngine(
        SqlGitConfigProvider(session),
        vault,
        SqlFunctionStore(session),
        git_service,
        workspaces,
        extension=settings.function_file_extension,
        locks=locks,
    )
