"""
System Management Router
========================
Operational endpoints for system administrators.

Endpoints:
- GET  /info                 - Runtime information
- POST /storage/consistency  - Reconcile document records with stored files
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_system_admin
from config import APP_VERSION, get_settings
from database import get_db
from logging_config import get_logger
from models import User
from services.document_service import DocumentService

logger = get_logger(__name__)

router = APIRouter()


@router.get("/info")
async def system_info(request: Request, user: User = Depends(require_system_admin)):
    """Version, environment and the state of long-lived background services."""
    settings = get_settings()
    state = request.app.state
    hub = getattr(state, "chat_hub", None)
    scheduler = getattr(state, "exchange_scheduler", None)
    sms_client = getattr(state, "sms_client", None)
    exchange_service = getattr(state, "exchange_service", None)

    return {
        "version": APP_VERSION,
        "environment": settings.environment,
        "chat": {
            "connections": hub.connection_count() if hub else 0,
            "redis": hub.uses_redis if hub else False,
        },
        "exchange_scheduler": scheduler.is_running if scheduler else False,
        "sms_configured": sms_client.is_configured if sms_client else False,
        "providers": {
            client.breaker.name: client.breaker.get_stats()
            for client in (exchange_service, sms_client)
            if client is not None
        },
    }


@router.post("/storage/consistency")
async def storage_consistency(
    project_id: Optional[int] = Query(None),
    user: User = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Mark documents whose file is gone as ``missing``.

    Returns counts of checked, healthy and missing documents.
    """
    report = await DocumentService.from_session(db).sync_storage_consistency(project_id)
    await db.commit()
    logger.info("Storage consistency check finished", requested_by=user.id, missing=report["missing"])
    return report
