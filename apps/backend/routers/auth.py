"""
Auth Router
===========
Registration, login and the session cookie.

Endpoints:
- POST /api/auth/register  - Create an account and a personal organization
- POST /api/auth/login     - Start a session (rate limited per client IP)
- POST /api/auth/logout    - End the session
- GET  /api/auth/me        - Current user and memberships
"""

from functools import lru_cache

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import metrics as app_metrics
from auth import (
    clear_session_cookie,
    create_session_token,
    get_current_user,
    hash_password,
    set_session_cookie,
    validate_password_strength,
    verify_password,
)
from config import get_settings
from database import get_db
from exceptions import AuthenticationError, ConflictError, RateLimitExceededError, ValidationError
from logging_config import get_logger
from models import User, utcnow
from rate_limiter import RateLimiter, get_client_ip
from schemas import LoginRequest, MeResponse, MembershipResponse, RegisterRequest, UserResponse
from services.audit_service import log_user_activity
from services.organization_service import create_organization, list_user_organizations

logger = get_logger(__name__)

router = APIRouter()


@lru_cache
def get_login_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        max_requests=settings.login_rate_limit,
        window_seconds=settings.login_rate_window_seconds,
    )


async def build_me(db: AsyncSession, user: User) -> MeResponse:
    memberships = await list_user_organizations(db, user.id)
    return MeResponse(
        user=UserResponse.model_validate(user),
        organizations=[
            MembershipResponse(
                organization_id=org.id,
                organization_name=org.name,
                slug=org.slug,
                role=role,
            )
            for org, role in memberships
        ],
    )


@router.post("/register", response_model=MeResponse, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Create an account.

    The new user owns a personal organization and is signed in right away.
    """
    problems = validate_password_strength(body.password)
    if problems:
        raise ValidationError("Password does not meet requirements", field="password", errors=problems)

    existing = (await db.execute(select(User).where(User.email == body.email))).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("An account with this email already exists")

    user = User(
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        password_hash=hash_password(body.password),
    )
    db.add(user)
    await db.flush()

    display = body.first_name or body.email.split("@")[0]
    org = await create_organization(db, user, f"{display}'s Organization")
    await log_user_activity(db, user.id, "user.register", organization_id=org.id, request=request)
    await db.commit()

    set_session_cookie(response, create_session_token(user.id))
    logger.info("User registered", user_id=user.id)
    return await build_me(db, user)


@router.post("/login", response_model=MeResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    client_ip = get_client_ip(request)
    allowed, retry_after = get_login_limiter().check_rate_limit(client_ip)
    if not allowed:
        app_metrics.login_attempts_total.labels(outcome="rate_limited").inc()
        raise RateLimitExceededError(retry_after=retry_after or 0.0)

    user = (await db.execute(select(User).where(User.email == body.email))).scalar_one_or_none()
    if user is None or not verify_password(body.password, user.password_hash):
        app_metrics.login_attempts_total.labels(outcome="failure").inc()
        logger.warning("Login failed", client_ip=client_ip)
        raise AuthenticationError("Invalid email or password")

    user.last_login_at = utcnow()
    await log_user_activity(db, user.id, "user.login", request=request)
    await db.commit()

    set_session_cookie(response, create_session_token(user.id))
    app_metrics.login_attempts_total.labels(outcome="success").inc()
    return await build_me(db, user)


@router.post("/logout", status_code=204)
async def logout():
    response = Response(status_code=204)
    clear_session_cookie(response)
    return response


@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await build_me(db, user)
