"""
Projects Router
===============
Projects, the work breakdown (tasks and dependencies), schedule views,
dashboard, import/export and stakeholder SMS.

Every ``/{project_id}`` route resolves the project's organization and
checks the caller's role there; foreign projects answer 403.
"""

from dataclasses import asdict
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import ProjectAccess, get_current_user, require_project_role
from database import get_db
from logging_config import get_logger
from models import User
from routers.deps import get_sms_client
from schemas import (
    DashboardResponse,
    DependencyCreate,
    DependencyResponse,
    GanttTask,
    ImportResponse,
    KanbanColumn,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    ScheduleRequest,
    ScheduleResponse,
    SmsNotifyRequest,
    SmsNotifyResponse,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
)
from security import sanitize_payload
from services import project_service, task_service
from services.audit_service import log_user_activity
from services.dashboard_service import project_dashboard
from services.document_service import sanitize_filename
from services.import_export import (
    build_project_export_payload,
    import_project_data,
    load_export_entities,
    tasks_to_csv,
)
from services.notification_service import send_project_sms
from services.scheduling import run_schedule
from services.sms import TwilioSmsClient

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Projects
# =============================================================================

@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
    body: ProjectCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a project in the organization named by ``organization_id``.

    The caller must be a member (or higher) of that organization.
    """
    project = await project_service.create_project(db, user, body.model_dump())
    await log_user_activity(
        db, user.id, "project.create",
        organization_id=project.organization_id, project_id=project.id,
        entity_type="project", entity_id=str(project.id), request=request,
    )
    await db.commit()
    return project


@router.get("", response_model=List[ProjectResponse])
async def list_projects(
    search: Optional[str] = Query(None, max_length=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await project_service.list_projects_for_user(db, user.id, search)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(access: ProjectAccess = Depends(require_project_role("viewer"))):
    return access.project


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    body: ProjectUpdate,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.update_project(db, access.project, body.model_dump(exclude_unset=True))
    await db.commit()
    return project


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    request: Request,
    access: ProjectAccess = Depends(require_project_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    project_id = access.project.id
    await project_service.delete_project(db, access.project)
    await log_user_activity(
        db, access.user.id, "project.delete",
        organization_id=access.organization_id, entity_type="project", entity_id=str(project_id),
        request=request,
    )
    await db.commit()


# =============================================================================
# Tasks
# =============================================================================

@router.get("/{project_id}/tasks", response_model=List[TaskResponse])
async def list_tasks(
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await task_service.list_tasks(db, access.project.id)


@router.post("/{project_id}/tasks", response_model=TaskResponse, status_code=201)
async def create_task(
    body: TaskCreate,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    task = await task_service.create_task(db, access.project, access.user, body.model_dump())
    await db.commit()
    return task


@router.get("/{project_id}/tasks/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await task_service.get_task(db, access.project.id, task_id)


@router.patch("/{project_id}/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    body: TaskUpdate,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    task = await task_service.get_task(db, access.project.id, task_id)
    task = await task_service.update_task(db, access.project, task, access.user, body.model_dump(exclude_unset=True))
    await db.commit()
    return task


@router.delete("/{project_id}/tasks/{task_id}", status_code=204)
async def delete_task(
    task_id: int,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    task = await task_service.get_task(db, access.project.id, task_id)
    await task_service.delete_task(db, task)
    await db.commit()


# =============================================================================
# Dependencies
# =============================================================================

@router.get("/{project_id}/dependencies", response_model=List[DependencyResponse])
async def list_dependencies(
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await task_service.list_dependencies(db, access.project.id)


@router.post("/{project_id}/dependencies", response_model=DependencyResponse, status_code=201)
async def create_dependency(
    body: DependencyCreate,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    dep = await task_service.create_dependency(
        db, access.project.id, body.predecessor_id, body.successor_id, body.type, body.lag_days
    )
    await db.commit()
    return dep


@router.delete("/{project_id}/dependencies/{dep_id}", status_code=204)
async def delete_dependency(
    dep_id: int,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    await task_service.delete_dependency(db, access.project.id, dep_id)
    await db.commit()


# =============================================================================
# Views & Scheduling
# =============================================================================

@router.get("/{project_id}/kanban", response_model=List[KanbanColumn])
async def kanban(
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await task_service.kanban_board(db, access.project.id)


@router.get("/{project_id}/gantt", response_model=List[GanttTask])
async def gantt(
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    rows = await task_service.gantt_rows(db, access.project.id)
    return [
        GanttTask(
            **TaskResponse.model_validate(row["task"]).model_dump(),
            predecessors=[DependencyResponse.model_validate(d) for d in row["predecessors"]],
            successors=[DependencyResponse.model_validate(d) for d in row["successors"]],
        )
        for row in rows
    ]


@router.post("/{project_id}/schedule", response_model=ScheduleResponse)
async def schedule(
    body: Optional[ScheduleRequest] = None,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    """
    Run the critical path calculation and persist the results.

    Starts from ``start_date``, else the project start date, else today.
    """
    start = (body.start_date if body else None) or access.project.start_date or date.today()
    result = await run_schedule(db, access.project.id, start)
    await db.commit()
    return ScheduleResponse(**asdict(result))


@router.get("/{project_id}/dashboard", response_model=DashboardResponse)
async def dashboard(
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    data = await project_dashboard(db, access.project)
    return DashboardResponse.model_validate(data, from_attributes=True)


# =============================================================================
# Import / Export
# =============================================================================

@router.get("/{project_id}/export")
async def export_project(
    format: str = Query("json", pattern="^(json|csv)$"),
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    entities = await load_export_entities(db, access.project)
    stem = sanitize_filename(access.project.code)

    if format == "csv":
        return Response(
            content=tasks_to_csv(entities.tasks),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{stem}-tasks.csv"'},
        )

    return JSONResponse(
        content=build_project_export_payload(entities),
        headers={"Content-Disposition": f'attachment; filename="{stem}-export.json"'},
    )


@router.post("/{project_id}/import", response_model=ImportResponse)
async def import_project(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    """Load an export document into this project in one transaction."""
    created = await import_project_data(db, access.project, sanitize_payload(payload), access.user.id)
    await log_user_activity(
        db, access.user.id, "project.import",
        organization_id=access.organization_id, project_id=access.project.id,
        details=created, request=request,
    )
    await db.commit()
    return ImportResponse(success=True, created=created)


# =============================================================================
# Notifications
# =============================================================================

@router.post("/{project_id}/notify-sms", response_model=SmsNotifyResponse)
async def notify_sms(
    body: SmsNotifyRequest,
    access: ProjectAccess = Depends(require_project_role("admin")),
    db: AsyncSession = Depends(get_db),
    sms_client: TwilioSmsClient = Depends(get_sms_client),
):
    return await send_project_sms(db, access.project, body.message, sms_client, body.stakeholder_ids)
