"""Authentication API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from fnhub.api.deps import get_session, get_settings, require_auth
from fnhub.config import Settings
from fnhub.models.user import User
from fnhub.schemas.auth import LoginRequest, TokenResponse, UserResponse
from fnhub.services.auth_service import authenticate_user, create_user_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenResponse:
    """Login with username and password."""
    user = await authenticate_user(session, body.username, body.password)
    if user is None:
        logger.info("Failed login for %r", body.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    return TokenResponse(access_token=create_user_token(user, settings))


@router.get("/me", response_model=UserResponse)
async def me(
    user: Annotated[User, Depends(require_auth)],
) -> UserResponse:
    """Get current user info."""
    return UserResponse(id=user.id, username=user.username, is_admin=user.is_admin)
