"""
Task Service
============
WBS tasks, dependencies and the Kanban / Gantt views.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from exceptions import ConflictError, NotFoundError, SchedulingError, ValidationError
from logging_config import get_logger
from models import Project, Task, TaskDependency, User, UserOrganization
from models.project import TASK_STATUSES
from services.notification_service import notify_user
from services.scheduling import creates_cycle

logger = get_logger(__name__)


def clamp_progress(value: Optional[int]) -> int:
    return min(100, max(0, int(value or 0)))


def apply_status_side_effects(task: Task, today: Optional[date] = None) -> None:
    """Completed tasks are 100% done; started tasks get an actual start."""
    today = today or date.today()
    if task.status == "completed":
        task.progress = 100
        if task.actual_finish_date is None:
            task.actual_finish_date = today
        if task.actual_start_date is None:
            task.actual_start_date = task.start_date or today
    elif task.status == "in-progress" and task.actual_start_date is None:
        task.actual_start_date = today


async def get_task(session: AsyncSession, project_id: int, task_id: int) -> Task:
    task = await session.get(Task, task_id)
    if task is None or task.project_id != project_id:
        raise NotFoundError("Task", task_id)
    return task


async def list_tasks(session: AsyncSession, project_id: int) -> List[Task]:
    result = await session.execute(
        select(Task).where(Task.project_id == project_id).order_by(Task.wbs_code, Task.id)
    )
    return list(result.scalars().all())


async def _validate_parent(session: AsyncSession, project_id: int, task_id: Optional[int], parent_id: Optional[int]) -> None:
    if parent_id is None:
        return
    if parent_id == task_id:
        raise ValidationError("A task cannot be its own parent", field="parent_id", value=parent_id)

    parent = await session.get(Task, parent_id)
    if parent is None or parent.project_id != project_id:
        raise ValidationError("Parent task must belong to the same project", field="parent_id", value=parent_id)

    if task_id is None:
        return
    # Walk up from the new parent; meeting the task itself means a loop
    seen = set()
    current = parent
    while current is not None and current.parent_id is not None:
        if current.parent_id == task_id:
            raise ValidationError("Parent assignment would create a cycle", field="parent_id", value=parent_id)
        if current.parent_id in seen:
            break
        seen.add(current.parent_id)
        current = await session.get(Task, current.parent_id)


async def _validate_assignee(session: AsyncSession, project: Project, user_id: Optional[str]) -> Optional[User]:
    if not user_id:
        return None
    row = (await session.execute(
        select(User)
        .join(UserOrganization, UserOrganization.user_id == User.id)
        .where(User.id == user_id, UserOrganization.organization_id == project.organization_id)
    )).scalar_one_or_none()
    if row is None:
        raise ValidationError("Assignee must be a member of the project's organization", field="assigned_to")
    return row


async def _notify_assignment(session: AsyncSession, task: Task, actor: User) -> None:
    if task.assigned_to and task.assigned_to != actor.id:
        await notify_user(
            session,
            task.assigned_to,
            title="Task assigned",
            message=f"{actor.display_name} assigned you to {task.wbs_code} {task.name}",
            type="task_assigned",
            project_id=task.project_id,
        )


async def create_task(session: AsyncSession, project: Project, actor: User, data: Dict[str, Any]) -> Task:
    await _validate_parent(session, project.id, None, data.get("parent_id"))
    assignee = await _validate_assignee(session, project, data.get("assigned_to"))

    values = {k: v for k, v in data.items() if v is not None}
    values["progress"] = clamp_progress(values.get("progress"))
    if assignee is not None and not values.get("assigned_to_name"):
        values["assigned_to_name"] = assignee.display_name

    task = Task(project_id=project.id, created_by=actor.id, **values)
    apply_status_side_effects(task)
    session.add(task)
    await session.flush()

    await _notify_assignment(session, task, actor)
    logger.info("Task created", project_id=project.id, task_id=task.id, wbs=task.wbs_code)
    return task


async def update_task(
    session: AsyncSession,
    project: Project,
    task: Task,
    actor: User,
    changes: Dict[str, Any],
) -> Task:
    if "parent_id" in changes:
        await _validate_parent(session, project.id, task.id, changes["parent_id"])

    previous_assignee = task.assigned_to
    previous_status = task.status
    assignee = None
    if changes.get("assigned_to"):
        assignee = await _validate_assignee(session, project, changes["assigned_to"])

    for key, value in changes.items():
        if key == "progress":
            value = clamp_progress(value)
        setattr(task, key, value)

    if assignee is not None and "assigned_to_name" not in changes:
        task.assigned_to_name = assignee.display_name
    if task.status != previous_status:
        apply_status_side_effects(task)

    await session.flush()

    if task.assigned_to and task.assigned_to != previous_assignee:
        await _notify_assignment(session, task, actor)
    return task


async def delete_task(session: AsyncSession, task: Task) -> None:
    """Delete a task; its children move up to the task's parent."""
    await session.execute(
        update(Task)
        .where(Task.parent_id == task.id)
        .values(parent_id=task.parent_id)
        .execution_options(synchronize_session="fetch")
    )
    await session.delete(task)
    await session.flush()


# =============================================================================
# Dependencies
# =============================================================================

async def list_dependencies(session: AsyncSession, project_id: int) -> List[TaskDependency]:
    result = await session.execute(
        select(TaskDependency).where(TaskDependency.project_id == project_id).order_by(TaskDependency.id)
    )
    return list(result.scalars().all())


async def create_dependency(
    session: AsyncSession,
    project_id: int,
    predecessor_id: int,
    successor_id: int,
    type: str = "FS",
    lag_days: int = 0,
) -> TaskDependency:
    """
    Link two tasks of the same project.

    Raises:
        ValidationError: Self link or a task outside the project
        ConflictError: The link already exists
        SchedulingError: The link would close a cycle
    """
    if predecessor_id == successor_id:
        raise ValidationError("A task cannot depend on itself")

    for tid in (predecessor_id, successor_id):
        t = await session.get(Task, tid)
        if t is None or t.project_id != project_id:
            raise ValidationError("Both tasks must belong to the project", field="task_id", value=tid)

    existing = await list_dependencies(session, project_id)
    if any(d.predecessor_id == predecessor_id and d.successor_id == successor_id for d in existing):
        raise ConflictError("Dependency already exists")

    edges = [(d.predecessor_id, d.successor_id) for d in existing]
    if creates_cycle(edges, predecessor_id, successor_id):
        raise SchedulingError(
            "Dependency would create a cycle",
            task_ids=[predecessor_id, successor_id],
        )

    dep = TaskDependency(
        project_id=project_id,
        predecessor_id=predecessor_id,
        successor_id=successor_id,
        type=type,
        lag_days=lag_days,
    )
    session.add(dep)
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError("Dependency already exists", original_error=e)
    return dep


async def delete_dependency(session: AsyncSession, project_id: int, dep_id: int) -> None:
    dep = await session.get(TaskDependency, dep_id)
    if dep is None or dep.project_id != project_id:
        raise NotFoundError("Dependency", dep_id)
    await session.delete(dep)
    await session.flush()


# =============================================================================
# Views
# =============================================================================

async def kanban_board(session: AsyncSession, project_id: int) -> List[Dict[str, Any]]:
    """One column per status, in workflow order."""
    tasks = await list_tasks(session, project_id)
    columns = {status: [] for status in TASK_STATUSES}
    for task in tasks:
        columns.setdefault(task.status, []).append(task)
    return [{"status": status, "tasks": items} for status, items in columns.items()]


async def gantt_rows(session: AsyncSession, project_id: int) -> List[Dict[str, Any]]:
    """Tasks with their incoming and outgoing links."""
    tasks = await list_tasks(session, project_id)
    deps = await list_dependencies(session, project_id)

    preds: Dict[int, List[TaskDependency]] = {}
    succs: Dict[int, List[TaskDependency]] = {}
    for dep in deps:
        preds.setdefault(dep.successor_id, []).append(dep)
        succs.setdefault(dep.predecessor_id, []).append(dep)

    return [
        {"task": task, "predecessors": preds.get(task.id, []), "successors": succs.get(task.id, [])}
        for task in tasks
    ]
