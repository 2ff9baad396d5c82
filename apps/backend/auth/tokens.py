"""
Session Tokens
==============
Signed HS256 tokens carried in the session cookie (or a Bearer header).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from jose import JWTError, jwt

from config import get_settings
from exceptions import AuthenticationError

ALGORITHM = "HS256"


def create_session_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a session token for ``user_id``."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(seconds=settings.session_max_age_seconds))
    claims = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
        "jti": uuid4().hex,
    }
    return jwt.encode(claims, settings.session_secret, algorithm=ALGORITHM)


def decode_session_token(token: str) -> str:
    """
    Verify a session token and return its user id.

    Raises:
        AuthenticationError: If the token is malformed, tampered or expired
    """
    try:
        payload = jwt.decode(token, get_settings().session_secret, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired session")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid or expired session")
    return user_id
