"""Health check endpoint: database, git executable and workspace root."""

from __future__ import annotations

import logging
import os
import shutil
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fnhub import __version__
from fnhub.api.deps import get_session, get_settings, get_workspace_manager
from fnhub.config import Settings
from fnhub.services.workspace_service import WorkspaceManager

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    git: str
    workspace: str


def _git_status(executable: str) -> str:
    if shutil.which(executable) is None:
        logger.warning("Git executable %r not found on PATH", executable)
        return "missing"
    return "ok"


def _workspace_status(root: Path) -> str:
    if not root.is_dir() or not os.access(root, os.W_OK | os.X_OK):
        logger.warning("Git workspace root %s is not a writable directory", root)
        return "unavailable"
    return "ok"


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    workspaces: Annotated[WorkspaceManager, Depends(get_workspace_manager)],
) -> HealthResponse:
    """Report whether a pull could run: database, git and workspace root."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    git_status = _git_status(settings.git_executable)
    workspace_status = _workspace_status(workspaces.root)
    healthy = db_status == git_status == workspace_status == "ok"
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=__version__,
        database=db_status,
        git=git_status,
        workspace=workspace_status,
    )
