"""
Resources Router
================
Project resources, task assignments and time tracking.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import ProjectAccess, require_project_role
from database import get_db
from schemas import (
    AssignmentCreate,
    AssignmentResponse,
    AssignmentUpdate,
    ResourceCreate,
    ResourceResponse,
    ResourceUpdate,
    TimeEntryCreate,
    TimeEntryResponse,
    UtilizationResponse,
)
from services import resource_service
from services.task_service import get_task

router = APIRouter()

viewer = require_project_role("viewer")
member = require_project_role("member")


# =============================================================================
# Resources
# =============================================================================

@router.get("/{project_id}/resources", response_model=List[ResourceResponse])
async def list_resources(access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await resource_service.list_resources(db, access.project.id)


@router.post("/{project_id}/resources", response_model=ResourceResponse, status_code=201)
async def create_resource(
    body: ResourceCreate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    resource = await resource_service.create_resource(db, access.project.id, body.model_dump())
    await db.commit()
    return resource


@router.get("/{project_id}/resources/{resource_id}", response_model=ResourceResponse)
async def get_resource(resource_id: int, access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await resource_service.get_resource(db, access.project.id, resource_id)


@router.patch("/{project_id}/resources/{resource_id}", response_model=ResourceResponse)
async def update_resource(
    resource_id: int,
    body: ResourceUpdate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    resource = await resource_service.get_resource(db, access.project.id, resource_id)
    resource = await resource_service.update_resource(db, resource, body.model_dump(exclude_unset=True))
    await db.commit()
    return resource


@router.delete("/{project_id}/resources/{resource_id}", status_code=204)
async def delete_resource(resource_id: int, access: ProjectAccess = Depends(member), db: AsyncSession = Depends(get_db)):
    resource = await resource_service.get_resource(db, access.project.id, resource_id)
    await resource_service.delete_resource(db, resource)
    await db.commit()


@router.get("/{project_id}/resources/{resource_id}/utilization", response_model=UtilizationResponse)
async def resource_utilization(
    resource_id: int,
    access: ProjectAccess = Depends(viewer),
    db: AsyncSession = Depends(get_db),
):
    resource = await resource_service.get_resource(db, access.project.id, resource_id)
    return await resource_service.resource_utilization(db, resource)


# =============================================================================
# Assignments
# =============================================================================

@router.get("/{project_id}/tasks/{task_id}/assignments", response_model=List[AssignmentResponse])
async def list_assignments(task_id: int, access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    task = await get_task(db, access.project.id, task_id)
    return await resource_service.list_assignments(db, task.id)


@router.post("/{project_id}/tasks/{task_id}/assignments", response_model=AssignmentResponse, status_code=201)
async def create_assignment(
    task_id: int,
    body: AssignmentCreate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    task = await get_task(db, access.project.id, task_id)
    assignment = await resource_service.create_assignment(db, task, body.model_dump())
    await db.commit()
    return assignment


@router.patch("/{project_id}/tasks/{task_id}/assignments/{assignment_id}", response_model=AssignmentResponse)
async def update_assignment(
    task_id: int,
    assignment_id: int,
    body: AssignmentUpdate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    task = await get_task(db, access.project.id, task_id)
    assignment = await resource_service.get_assignment(db, task.id, assignment_id)
    assignment = await resource_service.update_assignment(db, assignment, body.model_dump(exclude_unset=True, exclude_none=True))
    await db.commit()
    return assignment


@router.delete("/{project_id}/tasks/{task_id}/assignments/{assignment_id}", status_code=204)
async def delete_assignment(
    task_id: int,
    assignment_id: int,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    task = await get_task(db, access.project.id, task_id)
    assignment = await resource_service.get_assignment(db, task.id, assignment_id)
    await db.delete(assignment)
    await db.commit()


# =============================================================================
# Time Entries
# =============================================================================

@router.get("/{project_id}/time-entries", response_model=List[TimeEntryResponse])
async def list_time_entries(
    resource_id: Optional[int] = Query(None),
    task_id: Optional[int] = Query(None),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    access: ProjectAccess = Depends(viewer),
    db: AsyncSession = Depends(get_db),
):
    return await resource_service.list_time_entries(db, access.project.id, resource_id, task_id, start, end)


@router.post("/{project_id}/time-entries", response_model=TimeEntryResponse, status_code=201)
async def log_time(
    body: TimeEntryCreate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    entry = await resource_service.log_time(db, access.project.id, access.user.id, body.model_dump())
    await db.commit()
    return entry


@router.delete("/{project_id}/time-entries/{entry_id}", status_code=204)
async def delete_time_entry(entry_id: int, access: ProjectAccess = Depends(member), db: AsyncSession = Depends(get_db)):
    await resource_service.delete_time_entry(db, access.project.id, entry_id)
    await db.commit()
