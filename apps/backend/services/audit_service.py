"""
Audit Trail
===========
Records user actions in ``user_activity_logs``.
"""

from typing import Any, Dict, List, Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logging_config import get_logger
from models import UserActivityLog

logger = get_logger(__name__)


async def log_user_activity(
    session: AsyncSession,
    user_id: str,
    action: str,
    organization_id: Optional[int] = None,
    project_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> Optional[UserActivityLog]:
    """
    Append an activity record.

    The insert runs in a SAVEPOINT; if it fails the failure is logged and
    the surrounding transaction carries on without the audit row.
    """
    ip_address = None
    user_agent = None
    if request is not None:
        ip_address = request.client.host if request.client else None
        user_agent = (request.headers.get("user-agent") or "")[:512] or None

    entry = UserActivityLog(
        user_id=user_id,
        action=action,
        organization_id=organization_id,
        project_id=project_id,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    try:
        async with session.begin_nested():
            session.add(entry)
    except SQLAlchemyError as e:
        logger.warning("Failed to record user activity", action=action, user_id=user_id, error=str(e))
        return None

    return entry


async def list_activity(session: AsyncSession, organization_id: int, limit: int = 100) -> List[UserActivityLog]:
    result = await session.execute(
        select(UserActivityLog)
        .where(UserActivityLog.organization_id == organization_id)
        .order_by(UserActivityLog.created_at.desc(), UserActivityLog.id.desc())
        .limit(min(limit, 500))
    )
    return list(result.scalars().all())
