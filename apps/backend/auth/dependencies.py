"""
Authentication Dependencies
===========================
Resolve the calling user from the session cookie or a Bearer header.
"""

from typing import Optional

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database import get_db
from exceptions import AuthenticationError, PermissionDeniedError
from logging_config import bind_actor
from models import User

from .tokens import decode_session_token

bearer_scheme = HTTPBearer(auto_error=False)


def set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_max_age_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


async def user_from_token(session: AsyncSession, token: Optional[str]) -> User:
    """
    Load the user a session token belongs to.

    Raises:
        AuthenticationError: Missing or invalid token, or the user is gone
    """
    if not token:
        raise AuthenticationError("Not authenticated")

    user_id = decode_session_token(token)
    user = await session.get(User, user_id)
    if user is None:
        raise AuthenticationError("Not authenticated")
    return user


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get the current authenticated user; 401 otherwise."""
    token = request.cookies.get(get_settings().session_cookie_name)
    if not token and credentials is not None:
        token = credentials.credentials

    user = await user_from_token(db, token)
    request.state.user_id = user.id
    bind_actor(user.id)
    return user


async def require_system_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_system_admin:
        raise PermissionDeniedError("System administrator access required")
    return user
