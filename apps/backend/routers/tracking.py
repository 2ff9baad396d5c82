"""
Tracking Router
===============
Project registers: risks, issues, stakeholders and cost items.

Endpoints (all under /api/projects/{project_id}):
- GET/POST          /risks, /issues, /stakeholders, /cost-items
- GET/PATCH/DELETE  /risks/{id}, /issues/{id}, /stakeholders/{id}, /cost-items/{id}
- GET               /risks/matrix
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import ProjectAccess, require_project_role
from database import get_db
from models import CostItem, Issue, Risk, Stakeholder
from schemas import (
    CostItemCreate,
    CostItemResponse,
    CostItemUpdate,
    IssueCreate,
    IssueResponse,
    IssueUpdate,
    RiskCreate,
    RiskMatrixResponse,
    RiskResponse,
    RiskUpdate,
    StakeholderCreate,
    StakeholderResponse,
    StakeholderUpdate,
)
from services import tracking_service
from services.tracking_service import get_project_row, list_project_rows

router = APIRouter()

viewer = require_project_role("viewer")
member = require_project_role("member")


# =============================================================================
# Risks
# =============================================================================

@router.get("/{project_id}/risks", response_model=List[RiskResponse])
async def list_risks(access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await list_project_rows(db, Risk, access.project.id, Risk.code)


@router.get("/{project_id}/risks/matrix", response_model=RiskMatrixResponse)
async def risk_matrix(access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await tracking_service.risk_matrix(db, access.project.id)


@router.post("/{project_id}/risks", response_model=RiskResponse, status_code=201)
async def create_risk(body: RiskCreate, access: ProjectAccess = Depends(member), db: AsyncSession = Depends(get_db)):
    risk = await tracking_service.create_risk(db, access.project.id, body.model_dump())
    await db.commit()
    return risk


@router.get("/{project_id}/risks/{risk_id}", response_model=RiskResponse)
async def get_risk(risk_id: int, access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await get_project_row(db, Risk, access.project.id, risk_id)


@router.patch("/{project_id}/risks/{risk_id}", response_model=RiskResponse)
async def update_risk(
    risk_id: int,
    body: RiskUpdate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    risk = await get_project_row(db, Risk, access.project.id, risk_id)
    risk = await tracking_service.update_risk(db, risk, body.model_dump(exclude_unset=True))
    await db.commit()
    return risk


@router.delete("/{project_id}/risks/{risk_id}", status_code=204)
async def delete_risk(risk_id: int, access: ProjectAccess = Depends(member), db: AsyncSession = Depends(get_db)):
    await tracking_service.delete_row(db, await get_project_row(db, Risk, access.project.id, risk_id))
    await db.commit()


# =============================================================================
# Issues
# =============================================================================

@router.get("/{project_id}/issues", response_model=List[IssueResponse])
async def list_issues(access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await list_project_rows(db, Issue, access.project.id, Issue.code)


@router.post("/{project_id}/issues", response_model=IssueResponse, status_code=201)
async def create_issue(body: IssueCreate, access: ProjectAccess = Depends(member), db: AsyncSession = Depends(get_db)):
    reporter = access.user.display_name
    issue = await tracking_service.create_issue(db, access.project.id, body.model_dump(), reporter)
    await db.commit()
    return issue


@router.get("/{project_id}/issues/{issue_id}", response_model=IssueResponse)
async def get_issue(issue_id: int, access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await get_project_row(db, Issue, access.project.id, issue_id)


@router.patch("/{project_id}/issues/{issue_id}", response_model=IssueResponse)
async def update_issue(
    issue_id: int,
    body: IssueUpdate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    issue = await get_project_row(db, Issue, access.project.id, issue_id)
    issue = await tracking_service.update_issue(db, issue, body.model_dump(exclude_unset=True))
    await db.commit()
    return issue


@router.delete("/{project_id}/issues/{issue_id}", status_code=204)
async def delete_issue(issue_id: int, access: ProjectAccess = Depends(member), db: AsyncSession = Depends(get_db)):
    await tracking_service.delete_row(db, await get_project_row(db, Issue, access.project.id, issue_id))
    await db.commit()


# =============================================================================
# Stakeholders
# =============================================================================

@router.get("/{project_id}/stakeholders", response_model=List[StakeholderResponse])
async def list_stakeholders(access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await list_project_rows(db, Stakeholder, access.project.id, Stakeholder.name)


@router.post("/{project_id}/stakeholders", response_model=StakeholderResponse, status_code=201)
async def create_stakeholder(
    body: StakeholderCreate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    stakeholder = await tracking_service.create_stakeholder(db, access.project.id, body.model_dump())
    await db.commit()
    return stakeholder


@router.get("/{project_id}/stakeholders/{stakeholder_id}", response_model=StakeholderResponse)
async def get_stakeholder(
    stakeholder_id: int,
    access: ProjectAccess = Depends(viewer),
    db: AsyncSession = Depends(get_db),
):
    return await get_project_row(db, Stakeholder, access.project.id, stakeholder_id)


@router.patch("/{project_id}/stakeholders/{stakeholder_id}", response_model=StakeholderResponse)
async def update_stakeholder(
    stakeholder_id: int,
    body: StakeholderUpdate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    row = await get_project_row(db, Stakeholder, access.project.id, stakeholder_id)
    row = await tracking_service.update_row(db, row, body.model_dump(exclude_unset=True))
    await db.commit()
    return row


@router.delete("/{project_id}/stakeholders/{stakeholder_id}", status_code=204)
async def delete_stakeholder(
    stakeholder_id: int,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    await tracking_service.delete_row(db, await get_project_row(db, Stakeholder, access.project.id, stakeholder_id))
    await db.commit()


# =============================================================================
# Cost Items
# =============================================================================

@router.get("/{project_id}/cost-items", response_model=List[CostItemResponse])
async def list_cost_items(access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await list_project_rows(db, CostItem, access.project.id)


@router.post("/{project_id}/cost-items", response_model=CostItemResponse, status_code=201)
async def create_cost_item(
    body: CostItemCreate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    item = await tracking_service.create_cost_item(db, access.project.id, body.model_dump(), access.project.currency)
    await db.commit()
    return item


@router.get("/{project_id}/cost-items/{item_id}", response_model=CostItemResponse)
async def get_cost_item(item_id: int, access: ProjectAccess = Depends(viewer), db: AsyncSession = Depends(get_db)):
    return await get_project_row(db, CostItem, access.project.id, item_id)


@router.patch("/{project_id}/cost-items/{item_id}", response_model=CostItemResponse)
async def update_cost_item(
    item_id: int,
    body: CostItemUpdate,
    access: ProjectAccess = Depends(member),
    db: AsyncSession = Depends(get_db),
):
    item = await get_project_row(db, CostItem, access.project.id, item_id)
    item = await tracking_service.update_cost_item(db, item, body.model_dump(exclude_unset=True))
    await db.commit()
    return item


@router.delete("/{project_id}/cost-items/{item_id}", status_code=204)
async def delete_cost_item(item_id: int, access: ProjectAccess = Depends(member), db: AsyncSession = Depends(get_db)):
    await tracking_service.delete_row(db, await get_project_row(db, CostItem, access.project.id, item_id))
    await db.commit()
