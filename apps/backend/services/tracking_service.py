"""
Tracking Service
================
Risk register, issue log, stakeholders and cost items.
"""

from typing import Any, Dict, List, Optional, Type

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from exceptions import ConflictError, NotFoundError
from logging_config import get_logger
from models import CostItem, Issue, Risk, Stakeholder, utcnow
from models.tracking import IMPACT_LEVELS
from services.import_export import next_code

logger = get_logger(__name__)

RISK_PROBABILITIES = (1, 2, 3, 4, 5)


def calculate_risk_exposure(cost_impact: Optional[float], probability: Optional[int]) -> Optional[float]:
    """Expected cost: ``cost_impact`` weighted by probability on the 1..5 scale."""
    if cost_impact is None:
        return None
    return round(float(cost_impact) * (probability or 3) / 5, 2)


async def get_project_row(session: AsyncSession, model: Type, project_id: int, row_id: int):
    row = await session.get(model, row_id)
    if row is None or row.project_id != project_id:
        raise NotFoundError(model.__name__, row_id)
    return row


async def list_project_rows(session: AsyncSession, model: Type, project_id: int, order=None) -> list:
    stmt = select(model).where(model.project_id == project_id).order_by(order if order is not None else model.id)
    return list((await session.execute(stmt)).scalars().all())


async def _used_codes(session: AsyncSession, model: Type, project_id: int) -> set:
    return set((await session.execute(
        select(model.code).where(model.project_id == project_id)
    )).scalars().all())


async def _assign_code(session: AsyncSession, model: Type, project_id: int, prefix: str, code: Optional[str]) -> str:
    used = await _used_codes(session, model, project_id)
    if code:
        if code in used:
            raise ConflictError(f"{model.__name__} code '{code}' already exists in this project")
        return code
    return next_code(prefix, used)


async def _flush_unique(session: AsyncSession, label: str) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError(f"{label} code already exists in this project", original_error=e)


# =============================================================================
# Risks
# =============================================================================

async def create_risk(session: AsyncSession, project_id: int, data: Dict[str, Any]) -> Risk:
    values = {k: v for k, v in data.items() if v is not None}
    values["code"] = await _assign_code(session, Risk, project_id, "R", values.get("code"))
    if values.get("risk_exposure") is None:
        exposure = calculate_risk_exposure(values.get("cost_impact"), values.get("probability"))
        if exposure is not None:
            values["risk_exposure"] = exposure
    if values.get("status") == "closed":
        values["closed_date"] = utcnow()

    risk = Risk(project_id=project_id, **values)
    session.add(risk)
    await _flush_unique(session, "Risk")
    logger.info("Risk created", project_id=project_id, code=risk.code)
    return risk


async def update_risk(session: AsyncSession, risk: Risk, changes: Dict[str, Any]) -> Risk:
    new_code = changes.get("code")
    if new_code and new_code != risk.code and new_code in await _used_codes(session, Risk, risk.project_id):
        raise ConflictError(f"Risk code '{new_code}' already exists in this project")

    was_closed = risk.status == "closed"
    for key, value in changes.items():
        setattr(risk, key, value)

    if "risk_exposure" not in changes and ("cost_impact" in changes or "probability" in changes):
        risk.risk_exposure = calculate_risk_exposure(risk.cost_impact, risk.probability)
    if risk.status == "closed" and not was_closed and risk.closed_date is None:
        risk.closed_date = utcnow()

    await _flush_unique(session, "Risk")
    return risk


async def risk_matrix(session: AsyncSession, project_id: int) -> Dict[str, Any]:
    """Probability x impact counts of risks that are not closed."""
    rows = (await session.execute(
        select(Risk.probability, Risk.impact).where(Risk.project_id == project_id, Risk.status != "closed")
    )).all()

    cells = {p: {i: 0 for i in IMPACT_LEVELS} for p in RISK_PROBABILITIES}
    for probability, impact in rows:
        if probability in cells and impact in cells[probability]:
            cells[probability][impact] += 1

    return {
        "probabilities": list(RISK_PROBABILITIES),
        "impacts": list(IMPACT_LEVELS),
        "cells": cells,
        "total_open": len(rows),
    }


# =============================================================================
# Issues
# =============================================================================

async def create_issue(session: AsyncSession, project_id: int, data: Dict[str, Any], reporter: str) -> Issue:
    values = {k: v for k, v in data.items() if v is not None}
    values["code"] = await _assign_code(session, Issue, project_id, "I", values.get("code"))
    values.setdefault("reported_by", reporter)
    if values.get("status") in ("resolved", "closed"):
        values["resolved_date"] = utcnow()

    issue = Issue(project_id=project_id, **values)
    session.add(issue)
    await _flush_unique(session, "Issue")
    logger.info("Issue created", project_id=project_id, code=issue.code)
    return issue


async def update_issue(session: AsyncSession, issue: Issue, changes: Dict[str, Any]) -> Issue:
    new_code = changes.get("code")
    if new_code and new_code != issue.code and new_code in await _used_codes(session, Issue, issue.project_id):
        raise ConflictError(f"Issue code '{new_code}' already exists in this project")

    for key, value in changes.items():
        setattr(issue, key, value)
    if issue.status in ("resolved", "closed") and issue.resolved_date is None:
        issue.resolved_date = utcnow()

    await _flush_unique(session, "Issue")
    return issue


# =============================================================================
# Stakeholders & Cost Items
# =============================================================================

async def create_stakeholder(session: AsyncSession, project_id: int, data: Dict[str, Any]) -> Stakeholder:
    stakeholder = Stakeholder(project_id=project_id, **{k: v for k, v in data.items() if v is not None})
    session.add(stakeholder)
    await session.flush()
    return stakeholder


async def create_cost_item(session: AsyncSession, project_id: int, data: Dict[str, Any], currency: str) -> CostItem:
    values = {k: v for k, v in data.items() if v is not None}
    values.setdefault("currency", currency)
    item = CostItem(project_id=project_id, **values)
    item.variance = (item.budgeted or 0.0) - (item.actual or 0.0)
    session.add(item)
    await session.flush()
    return item


async def update_cost_item(session: AsyncSession, item: CostItem, changes: Dict[str, Any]) -> CostItem:
    for key, value in changes.items():
        setattr(item, key, value)
    item.variance = (item.budgeted or 0.0) - (item.actual or 0.0)
    await session.flush()
    return item


async def update_row(session: AsyncSession, row, changes: Dict[str, Any]):
    for key, value in changes.items():
        setattr(row, key, value)
    await session.flush()
    return row


async def delete_row(session: AsyncSession, row) -> None:
    await session.delete(row)
    await session.flush()
