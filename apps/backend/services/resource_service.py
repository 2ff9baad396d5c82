"""
Resource Service
================
Resources, task assignments, time tracking and utilization.

Assignment cost is always derived through the tiered pricing calculator
from the resource's tier table (or its flat base rate).
"""

from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from exceptions import ConflictError, NotFoundError, ValidationError
from logging_config import get_logger
from models import Resource, ResourceAssignment, ResourceTimeEntry, Task
from services.pricing import calculate_tiered_cost, validate_pricing_tiers

logger = get_logger(__name__)


def _check_tiers(tiers: Optional[List[Dict[str, Any]]]) -> None:
    if not tiers:
        return
    valid, errors = validate_pricing_tiers(tiers)
    if not valid:
        raise ValidationError("Invalid pricing tiers", field="pricing_tiers", errors=errors)


def resource_cost(resource: Resource, quantity: float) -> float:
    return calculate_tiered_cost(
        quantity,
        resource.pricing_tiers or [],
        default_rate=resource.base_rate or 0.0,
        currency=resource.currency or "USD",
    ).total_cost


def assignment_cost(resource: Resource, effort_hours: float, allocation: int) -> float:
    return round(resource_cost(resource, (effort_hours or 0.0) * (allocation or 100) / 100), 2)


# =============================================================================
# Resources
# =============================================================================

async def get_resource(session: AsyncSession, project_id: int, resource_id: int) -> Resource:
    resource = await session.get(Resource, resource_id)
    if resource is None or resource.project_id != project_id:
        raise NotFoundError("Resource", resource_id)
    return resource


async def list_resources(session: AsyncSession, project_id: int) -> List[Resource]:
    result = await session.execute(
        select(Resource).where(Resource.project_id == project_id).order_by(Resource.name)
    )
    return list(result.scalars().all())


async def create_resource(session: AsyncSession, project_id: int, data: Dict[str, Any]) -> Resource:
    _check_tiers(data.get("pricing_tiers"))
    resource = Resource(project_id=project_id, **{k: v for k, v in data.items() if v is not None})
    session.add(resource)
    await session.flush()
    return resource


async def update_resource(session: AsyncSession, resource: Resource, changes: Dict[str, Any]) -> Resource:
    """Apply changes; assignment costs follow new rates or tiers."""
    if "pricing_tiers" in changes:
        _check_tiers(changes["pricing_tiers"])

    for key, value in changes.items():
        setattr(resource, key, value)

    if {"pricing_tiers", "base_rate"} & changes.keys():
        assignments = (await session.execute(
            select(ResourceAssignment).where(ResourceAssignment.resource_id == resource.id)
        )).scalars().all()
        for a in assignments:
            a.cost = assignment_cost(resource, a.effort_hours, a.allocation)

    await session.flush()
    return resource


async def delete_resource(session: AsyncSession, resource: Resource) -> None:
    await session.delete(resource)
    await session.flush()


# =============================================================================
# Assignments
# =============================================================================

async def list_assignments(session: AsyncSession, task_id: int) -> List[ResourceAssignment]:
    result = await session.execute(
        select(ResourceAssignment).where(ResourceAssignment.task_id == task_id).order_by(ResourceAssignment.id)
    )
    return list(result.scalars().all())


async def get_assignment(session: AsyncSession, task_id: int, assignment_id: int) -> ResourceAssignment:
    assignment = await session.get(ResourceAssignment, assignment_id)
    if assignment is None or assignment.task_id != task_id:
        raise NotFoundError("Assignment", assignment_id)
    return assignment


async def create_assignment(session: AsyncSession, task: Task, data: Dict[str, Any]) -> ResourceAssignment:
    resource = await session.get(Resource, data["resource_id"])
    if resource is None or resource.project_id != task.project_id:
        raise ValidationError("Resource must belong to the task's project", field="resource_id")

    allocation = data.get("allocation") or 100
    effort = data.get("effort_hours") or 0.0
    assignment = ResourceAssignment(
        task_id=task.id,
        resource_id=resource.id,
        allocation=allocation,
        effort_hours=effort,
        cost=assignment_cost(resource, effort, allocation),
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
    )
    session.add(assignment)
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError("Resource is already assigned to this task", original_error=e)

    logger.info("Resource assigned", task_id=task.id, resource_id=resource.id, cost=assignment.cost)
    return assignment


async def update_assignment(
    session: AsyncSession, assignment: ResourceAssignment, changes: Dict[str, Any]
) -> ResourceAssignment:
    for key, value in changes.items():
        setattr(assignment, key, value)
    resource = await session.get(Resource, assignment.resource_id)
    assignment.cost = assignment_cost(resource, assignment.effort_hours, assignment.allocation)
    await session.flush()
    return assignment


# =============================================================================
# Time Entries
# =============================================================================

async def list_time_entries(
    session: AsyncSession,
    project_id: int,
    resource_id: Optional[int] = None,
    task_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[ResourceTimeEntry]:
    stmt = select(ResourceTimeEntry).where(ResourceTimeEntry.project_id == project_id)
    if resource_id is not None:
        stmt = stmt.where(ResourceTimeEntry.resource_id == resource_id)
    if task_id is not None:
        stmt = stmt.where(ResourceTimeEntry.task_id == task_id)
    if start is not None:
        stmt = stmt.where(ResourceTimeEntry.date >= start)
    if end is not None:
        stmt = stmt.where(ResourceTimeEntry.date <= end)
    stmt = stmt.order_by(ResourceTimeEntry.date.desc(), ResourceTimeEntry.id.desc())
    return list((await session.execute(stmt)).scalars().all())


async def log_time(session: AsyncSession, project_id: int, user_id: str, data: Dict[str, Any]) -> ResourceTimeEntry:
    """Record hours; hours logged against a task count toward its actuals."""
    await get_resource(session, project_id, data["resource_id"])

    task = None
    if data.get("task_id") is not None:
        task = await session.get(Task, data["task_id"])
        if task is None or task.project_id != project_id:
            raise ValidationError("Task must belong to the project", field="task_id")

    entry = ResourceTimeEntry(project_id=project_id, created_by=user_id, **data)
    session.add(entry)
    if task is not None:
        task.actual_hours = (task.actual_hours or 0.0) + entry.hours
    await session.flush()
    return entry


async def delete_time_entry(session: AsyncSession, project_id: int, entry_id: int) -> None:
    entry = await session.get(ResourceTimeEntry, entry_id)
    if entry is None or entry.project_id != project_id:
        raise NotFoundError("Time entry", entry_id)

    if entry.task_id is not None:
        task = await session.get(Task, entry.task_id)
        if task is not None:
            task.actual_hours = max(0.0, (task.actual_hours or 0.0) - entry.hours)

    await session.delete(entry)
    await session.flush()


async def resource_utilization(session: AsyncSession, resource: Resource) -> Dict[str, Any]:
    assigned = (await session.execute(
        select(func.coalesce(func.sum(
            ResourceAssignment.effort_hours * ResourceAssignment.allocation / 100.0
        ), 0.0)).where(ResourceAssignment.resource_id == resource.id)
    )).scalar_one()
    logged = (await session.execute(
        select(func.coalesce(func.sum(ResourceTimeEntry.hours), 0.0))
        .where(ResourceTimeEntry.resource_id == resource.id)
    )).scalar_one()

    assigned = float(assigned or 0.0)
    logged = float(logged or 0.0)
    return {
        "resource_id": resource.id,
        "assigned_hours": round(assigned, 2),
        "logged_hours": round(logged, 2),
        "utilization_percent": round(logged / assigned * 100, 1) if assigned > 0 else 0.0,
        "cost_to_date": round(resource_cost(resource, logged), 2),
        "currency": resource.currency,
    }
