"""
Notification Service
====================
In-app notifications and SMS fan-out to project stakeholders.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from exceptions import NotFoundError
from logging_config import get_logger
from models import Notification, Project, Stakeholder
from services.sms import TwilioSmsClient

logger = get_logger(__name__)


async def notify_user(
    session: AsyncSession,
    user_id: str,
    title: str,
    message: Optional[str] = None,
    type: str = "info",
    project_id: Optional[int] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        project_id=project_id,
        title=title,
        message=message,
        type=type,
    )
    session.add(notification)
    await session.flush()
    return notification


async def list_notifications(session: AsyncSession, user_id: str, limit: int = 50) -> List[Notification]:
    """Unread first, newest first within each group."""
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.read, Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def mark_read(session: AsyncSession, user_id: str, notification_id: int) -> Notification:
    notification = await session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError("Notification", notification_id)
    notification.read = True
    await session.flush()
    return notification


async def mark_all_read(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    return result.rowcount or 0


async def send_project_sms(
    session: AsyncSession,
    project: Project,
    message: str,
    sms_client: TwilioSmsClient,
    stakeholder_ids: Optional[List[int]] = None,
) -> Dict[str, Any]:
    """
    Text ``message`` to the project's stakeholders.

    Stakeholders without a phone number are skipped. Provider failures are
    reported per recipient; they never abort the batch.
    """
    stmt = select(Stakeholder).where(Stakeholder.project_id == project.id).order_by(Stakeholder.id)
    if stakeholder_ids:
        stmt = stmt.where(Stakeholder.id.in_(stakeholder_ids))
    stakeholders = (await session.execute(stmt)).scalars().all()

    deliveries = []
    skipped = 0
    for stakeholder in stakeholders:
        if not stakeholder.phone:
            skipped += 1
            continue
        result = await sms_client.send_sms(stakeholder.phone, f"[{project.code}] {message}")
        deliveries.append({
            "stakeholder_id": stakeholder.id,
            "to": stakeholder.phone,
            "success": result.success,
            "message_id": result.message_id,
            "error": result.error,
        })

    sent = sum(1 for d in deliveries if d["success"])
    logger.info(
        "Project SMS notification sent",
        project_id=project.id,
        sent=sent,
        failed=len(deliveries) - sent,
        skipped=skipped,
    )
    return {
        "sent": sent,
        "failed": len(deliveries) - sent,
        "skipped": skipped,
        "deliveries": deliveries,
    }
