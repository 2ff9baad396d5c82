"""
Dashboard Service
=================
Project dashboard and organization portfolio roll-ups, including earned
value metrics.
"""

from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import CostItem, Issue, Project, Risk, Task
from models.project import PRIORITIES, TASK_STATUSES
from models.tracking import IMPACT_LEVELS

CLOSED_ISSUE_STATUSES = ("resolved", "closed")
MILESTONE_WINDOW_DAYS = 14
TOP_RISKS = 5


def _ratio(numerator: float, denominator: float) -> Optional[float]:
    return round(numerator / denominator, 3) if denominator else None


def calculate_evm(planned_value: float, earned_value: float, actual_cost: float) -> Dict[str, Any]:
    """CPI/SPI are None when their divisor is zero."""
    return {
        "planned_value": round(planned_value, 2),
        "earned_value": round(earned_value, 2),
        "actual_cost": round(actual_cost, 2),
        "cpi": _ratio(earned_value, actual_cost),
        "spi": _ratio(earned_value, planned_value),
        "cost_variance": round(earned_value - actual_cost, 2),
        "schedule_variance": round(earned_value - planned_value, 2),
    }


def project_evm(project: Project, tasks: Iterable[Task]) -> Dict[str, Any]:
    """Project-level values win; task sums are the fallback."""
    tasks = list(tasks)

    def pick(project_value: Optional[float], attr: str) -> float:
        if project_value:
            return float(project_value)
        return float(sum(getattr(t, attr) or 0.0 for t in tasks))

    return calculate_evm(
        pick(project.baseline_cost, "baseline_cost"),
        pick(project.earned_value, "earned_value"),
        pick(project.actual_cost, "actual_cost"),
    )


def average_progress(tasks: Iterable[Task]) -> float:
    tasks = list(tasks)
    if not tasks:
        return 0.0
    return round(sum(t.progress or 0 for t in tasks) / len(tasks), 1)


async def _project_tasks(session: AsyncSession, project_id: int) -> List[Task]:
    result = await session.execute(select(Task).where(Task.project_id == project_id).order_by(Task.wbs_code))
    return list(result.scalars().all())


async def _open_risks(session: AsyncSession, project_id: int) -> List[Risk]:
    result = await session.execute(
        select(Risk).where(Risk.project_id == project_id, Risk.status != "closed")
    )
    return list(result.scalars().all())


async def _open_issues(session: AsyncSession, project_id: int) -> List[Issue]:
    result = await session.execute(
        select(Issue).where(Issue.project_id == project_id, Issue.status.not_in(CLOSED_ISSUE_STATUSES))
    )
    return list(result.scalars().all())


async def cost_totals(session: AsyncSession, project_id: int) -> Dict[str, float]:
    row = (await session.execute(
        select(
            func.coalesce(func.sum(CostItem.budgeted), 0.0),
            func.coalesce(func.sum(CostItem.actual), 0.0),
            func.coalesce(func.sum(CostItem.committed), 0.0),
            func.coalesce(func.sum(CostItem.forecast), 0.0),
        ).where(CostItem.project_id == project_id)
    )).one()
    budgeted, actual, committed, forecast = (float(v or 0.0) for v in row)
    return {
        "budgeted": round(budgeted, 2),
        "actual": round(actual, 2),
        "committed": round(committed, 2),
        "forecast": round(forecast, 2),
        "variance": round(budgeted - actual, 2),
    }


async def project_dashboard(session: AsyncSession, project: Project, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    tasks = await _project_tasks(session, project.id)
    risks = await _open_risks(session, project.id)
    issues = await _open_issues(session, project.id)

    by_status = {s: 0 for s in TASK_STATUSES}
    for t in tasks:
        by_status[t.status] = by_status.get(t.status, 0) + 1

    horizon = today + timedelta(days=MILESTONE_WINDOW_DAYS)
    overdue = [t for t in tasks if t.end_date and t.end_date < today and t.status != "completed"]
    milestones = [
        t for t in tasks
        if t.is_milestone and t.end_date and today <= t.end_date <= horizon and t.status != "completed"
    ]
    milestones.sort(key=lambda t: t.end_date)

    risks_by_impact = {i: 0 for i in IMPACT_LEVELS}
    for r in risks:
        risks_by_impact[r.impact] = risks_by_impact.get(r.impact, 0) + 1
    top_risks = sorted(risks, key=lambda r: (r.risk_exposure is None, -(r.risk_exposure or 0.0), r.code))[:TOP_RISKS]

    issues_by_priority = {p: 0 for p in PRIORITIES}
    for i in issues:
        issues_by_priority[i.priority] = issues_by_priority.get(i.priority, 0) + 1

    return {
        "project_id": project.id,
        "tasks_by_status": by_status,
        "total_tasks": len(tasks),
        "average_progress": average_progress(tasks),
        "overdue_tasks": overdue,
        "upcoming_milestones": milestones,
        "open_risks_by_impact": risks_by_impact,
        "top_risks": top_risks,
        "open_issues_by_priority": issues_by_priority,
        "costs": await cost_totals(session, project.id),
        "evm": project_evm(project, tasks),
    }


async def organization_portfolio(session: AsyncSession, organization_id: int) -> List[Dict[str, Any]]:
    projects = (await session.execute(
        select(Project).where(Project.organization_id == organization_id).order_by(Project.name)
    )).scalars().all()

    portfolio = []
    for project in projects:
        tasks = await _project_tasks(session, project.id)
        evm = project_evm(project, tasks)
        portfolio.append({
            "project_id": project.id,
            "name": project.name,
            "code": project.code,
            "status": project.status,
            "progress": average_progress(tasks),
            "open_risks": len(await _open_risks(session, project.id)),
            "open_issues": len(await _open_issues(session, project.id)),
            "cpi": evm["cpi"],
            "spi": evm["spi"],
        })
    return portfolio
