"""
Critical Path Scheduling
========================
Forward/backward pass over the task network, float calculation and
critical path identification. Working days are Monday to Friday.

The pure functions here operate on ``ScheduleTask`` values;
``run_schedule`` loads a project's tasks, schedules them and writes the
results back.
"""

import math
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import metrics as app_metrics
from exceptions import SchedulingError
from logging_config import get_logger
from models import Task, TaskDependency

logger = get_logger(__name__)

HOURS_PER_DAY = 8


@dataclass
class Link:
    task_id: int
    type: str = "FS"
    lag_days: int = 0


@dataclass
class ScheduleTask:
    id: int
    name: str = ""
    wbs_code: str = ""
    duration: int = 1
    constraint_type: str = "asap"
    constraint_date: Optional[date] = None
    predecessors: List[Link] = field(default_factory=list)
    successors: List[Link] = field(default_factory=list)
    early_start: Optional[date] = None
    early_finish: Optional[date] = None
    late_start: Optional[date] = None
    late_finish: Optional[date] = None
    total_float: Optional[int] = None
    free_float: Optional[int] = None
    is_critical_path: bool = False


@dataclass
class ScheduleResult:
    success: bool
    message: str
    tasks_updated: int = 0
    critical_path_length: int = 0
    project_end_date: Optional[date] = None
    critical_tasks: List[int] = field(default_factory=list)


# =============================================================================
# Calendar helpers
# =============================================================================

def _is_business_day(d: date) -> bool:
    return d.weekday() < 5


def calculate_duration(estimated_hours: Optional[float], hours_per_day: int = HOURS_PER_DAY) -> int:
    """Working days needed for ``estimated_hours``; never less than one."""
    if not estimated_hours or estimated_hours <= 0:
        return 1
    return max(1, math.ceil(float(estimated_hours) / hours_per_day))


def add_business_days(start: date, days: int) -> date:
    """Move ``days`` working days forward (backward when negative)."""
    if days < 0:
        return subtract_business_days(start, -days)

    result = start
    remaining = days
    while remaining > 0:
        result += timedelta(days=1)
        if _is_business_day(result):
            remaining -= 1
    return result


def subtract_business_days(end: date, days: int) -> date:
    if days < 0:
        return add_business_days(end, -days)

    result = end
    remaining = days
    while remaining > 0:
        result -= timedelta(days=1)
        if _is_business_day(result):
            remaining -= 1
    return result


def business_days_between(start: date, end: date) -> int:
    """
    Working days in ``(start, end]``.

    Negative when ``end`` precedes ``start``.
    """
    if end < start:
        return -business_days_between(end, start)

    count = 0
    current = start
    while current < end:
        current += timedelta(days=1)
        if _is_business_day(current):
            count += 1
    return count


# =============================================================================
# Network ordering
# =============================================================================

def topological_order(tasks: Dict[int, ScheduleTask]) -> List[int]:
    """
    Predecessors-first ordering of the network.

    Raises:
        SchedulingError: If the dependencies contain a cycle
    """
    in_degree = {tid: 0 for tid in tasks}
    for task in tasks.values():
        for link in task.successors:
            if link.task_id in in_degree:
                in_degree[link.task_id] += 1

    queue = deque(sorted(tid for tid, deg in in_degree.items() if deg == 0))
    order: List[int] = []

    while queue:
        tid = queue.popleft()
        order.append(tid)
        for link in tasks[tid].successors:
            if link.task_id not in in_degree:
                continue
            in_degree[link.task_id] -= 1
            if in_degree[link.task_id] == 0:
                queue.append(link.task_id)

    if len(order) != len(tasks):
        stuck = sorted(tid for tid, deg in in_degree.items() if deg > 0)
        raise SchedulingError(
            f"Dependency cycle detected between tasks {stuck}",
            task_ids=stuck,
        )
    return order


def creates_cycle(edges: Iterable[Tuple[int, int]], predecessor_id: int, successor_id: int) -> bool:
    """
    Whether adding ``predecessor_id -> successor_id`` closes a loop.

    True when ``predecessor_id`` is already reachable from ``successor_id``.
    """
    if predecessor_id == successor_id:
        return True

    adjacency: Dict[int, List[int]] = {}
    for pred, succ in edges:
        adjacency.setdefault(pred, []).append(succ)

    seen = {successor_id}
    stack = [successor_id]
    while stack:
        node = stack.pop()
        for nxt in adjacency.get(node, ()):
            if nxt == predecessor_id:
                return True
            if nxt not in seen:
                seen.add(nxt)
                stack.append(nxt)
    return False


# =============================================================================
# Passes
# =============================================================================

def _apply_start_constraint(task: ScheduleTask) -> None:
    if not task.constraint_date:
        return
    if task.constraint_type == "snet":
        if task.constraint_date > task.early_start:
            task.early_start = task.constraint_date
    elif task.constraint_type == "mso":
        task.early_start = task.constraint_date


def _apply_finish_constraint(task: ScheduleTask) -> None:
    if not task.constraint_date:
        return
    if task.constraint_type == "fnet":
        if task.constraint_date < task.late_finish:
            task.late_finish = task.constraint_date
    elif task.constraint_type == "mfo":
        task.late_finish = task.constraint_date


def forward_pass(tasks: Dict[int, ScheduleTask], order: List[int], project_start: date) -> None:
    """Early start / early finish for every task, in topological order."""
    for tid in order:
        task = tasks[tid]
        candidates: List[date] = []

        for link in task.predecessors:
            pred = tasks.get(link.task_id)
            if pred is None or pred.early_finish is None:
                continue

            if link.type == "SS":
                candidates.append(add_business_days(pred.early_start, link.lag_days))
            elif link.type == "FF":
                candidates.append(add_business_days(
                    subtract_business_days(pred.early_finish, task.duration - 1), link.lag_days
                ))
            elif link.type == "SF":
                candidates.append(add_business_days(
                    subtract_business_days(pred.early_start, task.duration - 1), link.lag_days
                ))
            else:
                # FS: start the working day after the predecessor finishes
                candidates.append(add_business_days(pred.early_finish, 1 + link.lag_days))

        task.early_start = max(candidates) if candidates else project_start
        _apply_start_constraint(task)

        # A one-day task starts and finishes on the same day
        task.early_finish = (
            task.early_start if task.duration <= 1
            else add_business_days(task.early_start, task.duration - 1)
        )


def backward_pass(tasks: Dict[int, ScheduleTask], order: List[int], project_end: date) -> None:
    """Late finish / late start for every task, in reverse topological order."""
    for tid in reversed(order):
        task = tasks[tid]
        candidates: List[date] = []

        for link in task.successors:
            succ = tasks.get(link.task_id)
            if succ is None or succ.late_start is None:
                continue

            if link.type == "SS":
                candidates.append(add_business_days(
                    subtract_business_days(succ.late_start, link.lag_days), task.duration - 1
                ))
            elif link.type == "FF":
                candidates.append(subtract_business_days(succ.late_finish, link.lag_days))
            elif link.type == "SF":
                candidates.append(add_business_days(
                    subtract_business_days(succ.late_finish, link.lag_days), task.duration - 1
                ))
            else:
                candidates.append(subtract_business_days(succ.late_start, 1 + link.lag_days))

        task.late_finish = min(candidates) if candidates else project_end
        _apply_finish_constraint(task)

        task.late_start = (
            task.late_finish if task.duration <= 1
            else subtract_business_days(task.late_finish, task.duration - 1)
        )


def calculate_float(tasks: Dict[int, ScheduleTask]) -> List[int]:
    """Fill total/free float and flag the critical path; returns critical ids."""
    critical: List[int] = []

    for tid in sorted(tasks):
        task = tasks[tid]
        if None in (task.early_start, task.early_finish, task.late_start, task.late_finish):
            continue

        task.total_float = business_days_between(task.early_finish, task.late_finish)

        successor_starts = [
            tasks[link.task_id].early_start
            for link in task.successors
            if link.task_id in tasks and tasks[link.task_id].early_start is not None
        ]
        if successor_starts:
            task.free_float = max(0, business_days_between(task.early_finish, min(successor_starts)) - 1)
        else:
            task.free_float = task.total_float

        task.is_critical_path = task.total_float <= 0
        if task.is_critical_path:
            critical.append(tid)

    return critical


def compute_schedule(tasks: List[ScheduleTask], project_start: date) -> ScheduleResult:
    """
    Run the full CPM calculation in place.

    Raises:
        SchedulingError: If the dependencies contain a cycle
    """
    if not tasks:
        return ScheduleResult(success=True, message="No tasks to schedule")

    network = {t.id: t for t in tasks}
    order = topological_order(network)

    forward_pass(network, order, project_start)
    project_end = max(t.early_finish for t in network.values())
    backward_pass(network, order, project_end)
    critical = calculate_float(network)

    return ScheduleResult(
        success=True,
        message=f"Successfully scheduled {len(network)} tasks",
        tasks_updated=len(network),
        critical_path_length=sum(network[tid].duration for tid in critical),
        project_end_date=project_end,
        critical_tasks=critical,
    )


# =============================================================================
# Persistence
# =============================================================================

async def load_network(session: AsyncSession, project_id: int) -> Tuple[List[Task], List[ScheduleTask]]:
    """Project tasks and their schedule view, linked by dependencies."""
    tasks = list((await session.execute(
        select(Task).where(Task.project_id == project_id).order_by(Task.id)
    )).scalars().all())
    deps = (await session.execute(
        select(TaskDependency).where(TaskDependency.project_id == project_id)
    )).scalars().all()

    network = {
        t.id: ScheduleTask(
            id=t.id,
            name=t.name,
            wbs_code=t.wbs_code,
            duration=calculate_duration(t.estimated_hours),
            constraint_type=t.constraint_type or "asap",
            constraint_date=t.constraint_date,
        )
        for t in tasks
    }
    for dep in deps:
        if dep.predecessor_id in network and dep.successor_id in network:
            network[dep.successor_id].predecessors.append(
                Link(dep.predecessor_id, dep.type, dep.lag_days)
            )
            network[dep.predecessor_id].successors.append(
                Link(dep.successor_id, dep.type, dep.lag_days)
            )
    return tasks, list(network.values())


async def run_schedule(
    session: AsyncSession,
    project_id: int,
    project_start: Optional[date] = None,
) -> ScheduleResult:
    """
    Schedule a project and persist dates, floats and critical flags.

    The caller owns the transaction.
    """
    started = time.perf_counter()
    tasks, network = await load_network(session, project_id)
    start = project_start or date.today()

    try:
        result = compute_schedule(network, start)
    except SchedulingError:
        app_metrics.schedule_runs_total.labels(status="cycle").inc()
        raise

    by_id = {t.id: t for t in tasks}
    for sched in network:
        row = by_id[sched.id]
        row.duration = sched.duration
        row.early_start = sched.early_start
        row.early_finish = sched.early_finish
        row.late_start = sched.late_start
        row.late_finish = sched.late_finish
        row.total_float = sched.total_float
        row.free_float = sched.free_float
        row.is_critical_path = sched.is_critical_path
        row.start_date = sched.early_start
        row.end_date = sched.early_finish

    await session.flush()

    elapsed = time.perf_counter() - started
    app_metrics.schedule_runs_total.labels(status="success").inc()
    app_metrics.schedule_duration_seconds.observe(elapsed)
    logger.info(
        "Project scheduled",
        project_id=project_id,
        tasks=result.tasks_updated,
        critical=len(result.critical_tasks),
        end_date=str(result.project_end_date),
        latency_ms=round(elapsed * 1000, 2),
    )
    return result
