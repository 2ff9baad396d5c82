"""
Import / Export Service
=======================
Serializes a complete project (tasks, risks, issues, stakeholders, cost
items, document register) to the portable JSON format and loads that
format back into a project.

The file format uses camelCase keys. Import also accepts the snake_case
spelling of every key.
"""

import csv
import io
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import metrics as app_metrics
from logging_config import get_logger
from models import CostItem, Document, Issue, Project, Risk, Stakeholder, Task

logger = get_logger(__name__)

EXPORT_VERSION = "1.0"


@dataclass
class ExportEntities:
    project: Project
    tasks: List[Task] = field(default_factory=list)
    risks: List[Risk] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)
    stakeholders: List[Stakeholder] = field(default_factory=list)
    cost_items: List[CostItem] = field(default_factory=list)
    documents: List[Document] = field(default_factory=list)


# =============================================================================
# Value coercion
# =============================================================================

def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _pick(raw: Dict[str, Any], *keys: str) -> Any:
    """First non-empty value among ``keys`` (camelCase or snake_case)."""
    for key in keys:
        for candidate in (key, _snake(key)):
            value = raw.get(candidate)
            if value is not None and value != "":
                return value
    return None


def normalize_datetime(value: Any) -> Optional[datetime]:
    """ISO strings and dates to naive UTC datetimes; unparsable values to None."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def normalize_date(value: Any) -> Optional[date]:
    parsed = normalize_datetime(value)
    return parsed.date() if parsed else None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    return int(number) if number is not None else None


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "y"}
    return bool(value)


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if isinstance(value, (date, datetime)) else value


# =============================================================================
# Vocabulary mapping
# =============================================================================

_TASK_STATUS = {
    "not-started": {"not-started", "not started", "notstarted", "todo", "to do", "to-do", "pending", "new", "backlog", "open"},
    "in-progress": {"in-progress", "in progress", "inprogress", "active", "started", "doing", "wip"},
    "review": {"review", "in review", "in-review", "qa", "testing"},
    "completed": {"completed", "complete", "done", "finished", "closed", "resolved"},
    "on-hold": {"on-hold", "on hold", "hold", "blocked", "paused", "deferred"},
}

_PRIORITY = {
    "low": {"low", "minor", "trivial", "lowest"},
    "medium": {"medium", "normal", "moderate", "med"},
    "high": {"high", "major", "important"},
    "critical": {"critical", "urgent", "highest", "blocker"},
}

_RISK_STATUS = {
    "identified": {"identified", "new", "open"},
    "assessed": {"assessed", "analyzed", "analysed", "evaluated"},
    "mitigating": {"mitigating", "mitigation", "in-progress", "in progress", "active", "monitoring"},
    "closed": {"closed", "resolved", "retired"},
}

_IMPACT = {
    "low": {"low", "minor", "negligible", "1", "2"},
    "medium": {"medium", "moderate", "3"},
    "high": {"high", "major", "significant", "4"},
    "critical": {"critical", "severe", "catastrophic", "5"},
}

_ISSUE_STATUS = {
    "open": {"open", "new", "todo", "reported"},
    "in-progress": {"in-progress", "in progress", "active", "investigating", "working"},
    "resolved": {"resolved", "fixed", "done"},
    "closed": {"closed", "cancelled", "canceled"},
}


def _map(value: Any, table: Dict[str, Set[str]], default: str) -> str:
    if value is None:
        return default
    needle = str(value).strip().lower().replace("_", "-")
    for canonical, synonyms in table.items():
        if needle in synonyms or needle.replace("-", " ") in synonyms:
            return canonical
    return default


def map_task_status(value: Any) -> str:
    return _map(value, _TASK_STATUS, "not-started")


def map_priority(value: Any) -> str:
    return _map(value, _PRIORITY, "medium")


def map_risk_status(value: Any) -> str:
    return _map(value, _RISK_STATUS, "identified")


def map_impact(value: Any) -> str:
    return _map(value, _IMPACT, "medium")


def map_issue_status(value: Any) -> str:
    return _map(value, _ISSUE_STATUS, "open")


# =============================================================================
# Export
# =============================================================================

def map_task_to_export(task: Task) -> Dict[str, Any]:
    return {
        "wbsCode": task.wbs_code,
        "name": task.name,
        "description": task.description,
        "status": task.status,
        "progress": task.progress,
        "startDate": _iso(task.start_date),
        "endDate": _iso(task.end_date),
        "assignedTo": task.assigned_to_name or task.assigned_to,
        "priority": task.priority,
        "estimatedHours": task.estimated_hours,
        "actualHours": task.actual_hours,
        "discipline": task.discipline,
        "disciplineLabel": task.discipline_label,
        "areaCode": task.area_code,
        "weightFactor": task.weight_factor,
        "constraintType": task.constraint_type,
        "constraintDate": _iso(task.constraint_date),
        "baselineStart": _iso(task.baseline_start),
        "baselineFinish": _iso(task.baseline_finish),
        "actualStartDate": _iso(task.actual_start_date),
        "actualFinishDate": _iso(task.actual_finish_date),
        "workMode": task.work_mode,
        "isMilestone": task.is_milestone,
        "isCriticalPath": task.is_critical_path,
        "baselineCost": task.baseline_cost,
        "actualCost": task.actual_cost,
        "earnedValue": task.earned_value,
    }


def map_risk_to_export(risk: Risk) -> Dict[str, Any]:
    return {
        "code": risk.code,
        "title": risk.title,
        "description": risk.description,
        "category": risk.category,
        "probability": risk.probability,
        "impact": risk.impact,
        "status": risk.status,
        "owner": risk.owner,
        "assignedTo": risk.assigned_to,
        "mitigationPlan": risk.mitigation_plan,
        "responseStrategy": risk.response_strategy,
        "costImpact": risk.cost_impact,
        "scheduleImpact": risk.schedule_impact,
        "riskExposure": risk.risk_exposure,
        "contingencyReserve": risk.contingency_reserve,
        "targetResolutionDate": _iso(risk.target_resolution_date),
        "identifiedDate": _iso(risk.identified_date),
        "closedDate": _iso(risk.closed_date),
    }


def map_issue_to_export(issue: Issue) -> Dict[str, Any]:
    return {
        "code": issue.code,
        "title": issue.title,
        "description": issue.description,
        "priority": issue.priority,
        "status": issue.status,
        "assignedTo": issue.assigned_to,
        "reportedBy": issue.reported_by,
        "resolution": issue.resolution,
        "issueType": issue.issue_type,
        "category": issue.category,
        "impactCost": issue.impact_cost,
        "impactSchedule": issue.impact_schedule,
        "impactQuality": issue.impact_quality,
        "impactSafety": issue.impact_safety,
        "discipline": issue.discipline,
        "escalationLevel": issue.escalation_level,
        "targetResolutionDate": _iso(issue.target_resolution_date),
        "reportedDate": _iso(issue.reported_date),
        "resolvedDate": _iso(issue.resolved_date),
    }


def build_project_export_payload(entities: ExportEntities) -> Dict[str, Any]:
    """Portable JSON document for a whole project."""
    project = entities.project
    return {
        "exportDate": datetime.now(timezone.utc).isoformat(),
        "version": EXPORT_VERSION,
        "project": {
            "name": project.name,
            "code": project.code,
            "description": project.description,
            "status": project.status,
            "startDate": _iso(project.start_date),
            "endDate": _iso(project.end_date),
            "budget": project.budget,
            "currency": project.currency,
        },
        "tasks": [map_task_to_export(t) for t in entities.tasks],
        "risks": [map_risk_to_export(r) for r in entities.risks],
        "issues": [map_issue_to_export(i) for i in entities.issues],
        "stakeholders": [
            {
                "name": s.name,
                "role": s.role,
                "organization": s.organization,
                "email": s.email,
                "phone": s.phone,
                "influence": s.influence,
                "interest": s.interest,
            }
            for s in entities.stakeholders
        ],
        "costItems": [
            {
                "description": c.description,
                "category": c.category,
                "budgeted": c.budgeted,
                "actual": c.actual,
                "currency": c.currency,
            }
            for c in entities.cost_items
        ],
        "documents": [
            {
                "documentNumber": d.document_number,
                "title": d.title or d.name,
                "revision": d.revision,
                "discipline": d.discipline,
                "documentType": d.document_type,
                "status": d.status.value if d.status else None,
            }
            for d in entities.documents
        ],
    }


TASK_CSV_COLUMNS = [
    "wbsCode", "name", "status", "priority", "progress", "startDate", "endDate",
    "assignedTo", "discipline", "estimatedHours", "actualHours", "isMilestone",
]


def tasks_to_csv(tasks: List[Task]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=TASK_CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for task in tasks:
        writer.writerow(map_task_to_export(task))
    return buffer.getvalue()


async def load_export_entities(session: AsyncSession, project: Project) -> ExportEntities:
    async def _all(model, order):
        result = await session.execute(
            select(model).where(model.project_id == project.id).order_by(order)
        )
        return list(result.scalars().all())

    return ExportEntities(
        project=project,
        tasks=await _all(Task, Task.wbs_code),
        risks=await _all(Risk, Risk.code),
        issues=await _all(Issue, Issue.code),
        stakeholders=await _all(Stakeholder, Stakeholder.id),
        cost_items=await _all(CostItem, CostItem.id),
        documents=await _all(Document, Document.id),
    )


# =============================================================================
# Import row builders
# =============================================================================

def build_task_insert_data(
    raw_task: Dict[str, Any],
    *,
    project_id: int,
    parent_id: Optional[int],
    created_by: Optional[str],
) -> Dict[str, Any]:
    """
    Column values for an imported task.

    Imported tasks are never linked to a user account; the source's
    assignee is kept as a display name only.
    """
    progress = _to_int(raw_task.get("progress")) or 0
    assignee = _pick(raw_task, "assignedToName", "assignedTo")

    return {
        "project_id": project_id,
        "parent_id": parent_id,
        "name": _pick(raw_task, "name", "title") or "Untitled Task",
        "wbs_code": _pick(raw_task, "wbsCode") or f"{int(time.time() * 1000)}-{uuid4().hex[:9]}",
        "created_by": created_by,
        "description": _pick(raw_task, "description"),
        "status": map_task_status(_pick(raw_task, "status")),
        "priority": map_priority(_pick(raw_task, "priority")),
        "progress": min(100, max(0, progress)),
        "start_date": normalize_date(_pick(raw_task, "startDate")),
        "end_date": normalize_date(_pick(raw_task, "endDate")),
        "assigned_to": None,
        "assigned_to_name": str(assignee) if assignee else None,
        "discipline": _pick(raw_task, "discipline") or "general",
        "discipline_label": _pick(raw_task, "disciplineLabel"),
        "area_code": _pick(raw_task, "areaCode"),
        "weight_factor": _to_float(_pick(raw_task, "weightFactor")),
        "constraint_type": _pick(raw_task, "constraintType"),
        "constraint_date": normalize_date(_pick(raw_task, "constraintDate")),
        "baseline_start": normalize_date(_pick(raw_task, "baselineStart")),
        "baseline_finish": normalize_date(_pick(raw_task, "baselineFinish")),
        "actual_start_date": normalize_date(_pick(raw_task, "actualStartDate")),
        "actual_finish_date": normalize_date(_pick(raw_task, "actualFinishDate")),
        "work_mode": _pick(raw_task, "workMode") or "fixed-duration",
        "is_milestone": _to_bool(_pick(raw_task, "isMilestone")),
        "is_critical_path": _to_bool(_pick(raw_task, "isCriticalPath")),
        "estimated_hours": _to_float(_pick(raw_task, "estimatedHours")),
        "actual_hours": _to_float(_pick(raw_task, "actualHours")),
        "baseline_cost": _to_float(_pick(raw_task, "baselineCost")) or 0.0,
        "actual_cost": _to_float(_pick(raw_task, "actualCost")) or 0.0,
        "earned_value": _to_float(_pick(raw_task, "earnedValue")) or 0.0,
    }


def build_risk_insert_data(raw_risk: Dict[str, Any], *, project_id: int, code: str) -> Dict[str, Any]:
    """
    Column values for an imported risk.

    Probability is clamped to 1..5 (unparsable or zero becomes 3). When the
    source has no identified date the key is left out so the column default
    applies.
    """
    probability = _to_int(_pick(raw_risk, "probability")) or 3

    data = {
        "project_id": project_id,
        "code": code,
        "title": _pick(raw_risk, "title") or "Untitled Risk",
        "description": _pick(raw_risk, "description"),
        "category": _pick(raw_risk, "category") or "other",
        "probability": min(5, max(1, probability)),
        "impact": map_impact(_pick(raw_risk, "impact")),
        "status": map_risk_status(_pick(raw_risk, "status")),
        "owner": _pick(raw_risk, "owner"),
        "assigned_to": _pick(raw_risk, "assignedTo"),
        "mitigation_plan": _pick(raw_risk, "mitigationPlan", "mitigationStrategy", "mitigation"),
        "response_strategy": _pick(raw_risk, "responseStrategy"),
        "cost_impact": _to_float(_pick(raw_risk, "costImpact")),
        "schedule_impact": _to_int(_pick(raw_risk, "scheduleImpact")),
        "risk_exposure": _to_float(_pick(raw_risk, "riskExposure")),
        "contingency_reserve": _to_float(_pick(raw_risk, "contingencyReserve")),
        "target_resolution_date": normalize_date(_pick(raw_risk, "targetResolutionDate")),
        "closed_date": normalize_datetime(_pick(raw_risk, "closedDate")),
    }
    identified = normalize_datetime(_pick(raw_risk, "identifiedDate"))
    if identified is not None:
        data["identified_date"] = identified
    return data


def build_issue_insert_data(
    raw_issue: Dict[str, Any],
    *,
    project_id: int,
    code: str,
    fallback_reporter: Optional[str],
) -> Dict[str, Any]:
    data = {
        "project_id": project_id,
        "code": code,
        "title": _pick(raw_issue, "title") or "Untitled Issue",
        "description": _pick(raw_issue, "description"),
        "priority": map_priority(_pick(raw_issue, "priority")),
        "status": map_issue_status(_pick(raw_issue, "status")),
        "assigned_to": _pick(raw_issue, "assignedTo"),
        "reported_by": _pick(raw_issue, "reportedBy") or fallback_reporter,
        "resolution": _pick(raw_issue, "resolution"),
        "issue_type": _pick(raw_issue, "issueType") or "standard",
        "category": _pick(raw_issue, "category"),
        "impact_cost": _to_float(_pick(raw_issue, "impactCost")),
        "impact_schedule": _to_int(_pick(raw_issue, "impactSchedule")),
        "impact_quality": _pick(raw_issue, "impactQuality"),
        "impact_safety": _pick(raw_issue, "impactSafety"),
        "discipline": _pick(raw_issue, "discipline"),
        "escalation_level": _pick(raw_issue, "escalationLevel"),
        "target_resolution_date": normalize_date(_pick(raw_issue, "targetResolutionDate")),
        "resolved_date": normalize_datetime(_pick(raw_issue, "resolvedDate")),
    }
    reported = normalize_datetime(_pick(raw_issue, "reportedDate"))
    if reported is not None:
        data["reported_date"] = reported
    return data


def parent_wbs_code(wbs_code: str) -> Optional[str]:
    """``1.2.3`` -> ``1.2``; top-level codes have no parent."""
    if "." not in wbs_code:
        return None
    return wbs_code.rsplit(".", 1)[0]


def _wbs_sort_key(raw: Dict[str, Any]):
    code = str(_pick(raw, "wbsCode") or "")
    parts = code.split(".") if code else []
    return (len(parts), [(0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts])


def next_code(prefix: str, used: Set[str]) -> str:
    """Smallest-unused-after-highest ``PREFIX-NNN`` code."""
    highest = 0
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    for code in used:
        match = pattern.match(code)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{highest + 1:03d}"


# =============================================================================
# Import
# =============================================================================

async def _existing_codes(session: AsyncSession, model, project_id: int) -> Set[str]:
    result = await session.execute(select(model.code).where(model.project_id == project_id))
    return set(result.scalars().all())


async def import_project_data(
    session: AsyncSession,
    project: Project,
    payload: Dict[str, Any],
    user_id: Optional[str],
) -> Dict[str, int]:
    """
    Load an export document into ``project``.

    Tasks are inserted parents first; each task's parent is the task whose
    WBS code is its own minus the last segment. The caller owns the
    transaction.

    Returns:
        Created row counts per entity type.
    """
    counts = {"tasks": 0, "risks": 0, "issues": 0, "stakeholders": 0, "cost_items": 0, "documents": 0}

    try:
        wbs_to_id: Dict[str, int] = {}
        for raw in sorted(payload.get("tasks") or [], key=_wbs_sort_key):
            code = _pick(raw, "wbsCode")
            parent_code = parent_wbs_code(str(code)) if code else None
            data = build_task_insert_data(
                raw,
                project_id=project.id,
                parent_id=wbs_to_id.get(parent_code) if parent_code else None,
                created_by=user_id,
            )
            task = Task(**data)
            session.add(task)
            await session.flush()
            wbs_to_id[task.wbs_code] = task.id
            counts["tasks"] += 1

        risk_codes = await _existing_codes(session, Risk, project.id)
        for raw in payload.get("risks") or []:
            code = _pick(raw, "code")
            if not code or code in risk_codes:
                code = next_code("R", risk_codes)
            risk_codes.add(code)
            session.add(Risk(**build_risk_insert_data(raw, project_id=project.id, code=code)))
            counts["risks"] += 1

        issue_codes = await _existing_codes(session, Issue, project.id)
        for raw in payload.get("issues") or []:
            code = _pick(raw, "code")
            if not code or code in issue_codes:
                code = next_code("I", issue_codes)
            issue_codes.add(code)
            session.add(Issue(**build_issue_insert_data(
                raw, project_id=project.id, code=code, fallback_reporter=user_id
            )))
            counts["issues"] += 1

        for raw in payload.get("stakeholders") or []:
            session.add(Stakeholder(
                project_id=project.id,
                name=_pick(raw, "name") or "Unnamed Stakeholder",
                role=_pick(raw, "role"),
                organization=_pick(raw, "organization"),
                email=_pick(raw, "email"),
                phone=_pick(raw, "phone"),
                influence=_pick(raw, "influence"),
                interest=_pick(raw, "interest"),
            ))
            counts["stakeholders"] += 1

        for raw in payload.get("costItems") or payload.get("cost_items") or []:
            budgeted = _to_float(_pick(raw, "budgeted")) or 0.0
            actual = _to_float(_pick(raw, "actual")) or 0.0
            session.add(CostItem(
                project_id=project.id,
                description=_pick(raw, "description") or "Imported cost item",
                category=_pick(raw, "category") or "other",
                budgeted=budgeted,
                actual=actual,
                variance=budgeted - actual,
                currency=_pick(raw, "currency") or project.currency,
            ))
            counts["cost_items"] += 1

        for raw in payload.get("documents") or []:
            title = _pick(raw, "title") or _pick(raw, "documentNumber") or "Untitled Document"
            session.add(Document(
                project_id=project.id,
                name=str(title),
                title=title,
                document_number=_pick(raw, "documentNumber"),
                revision=str(_pick(raw, "revision") or "0"),
                discipline=_pick(raw, "discipline"),
                document_type=_pick(raw, "documentType"),
            ))
            counts["documents"] += 1

        await session.flush()
    except Exception:
        app_metrics.project_imports_total.labels(status="failed").inc()
        raise

    app_metrics.project_imports_total.labels(status="success").inc()
    logger.info("Project data imported", project_id=project.id, **counts)
    return counts
