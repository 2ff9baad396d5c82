"""
Organizations Router
====================
Tenants, memberships, the activity log and the project portfolio.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth import OrgAccess, get_current_user, require_org_role
from database import get_db
from models import User
from schemas import (
    ActivityResponse,
    MemberAdd,
    MemberResponse,
    MemberRoleUpdate,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationUpdate,
    OrganizationWithRole,
    PortfolioProject,
    ProjectResponse,
)
from services import organization_service
from services.audit_service import list_activity, log_user_activity
from services.dashboard_service import organization_portfolio
from services.project_service import list_organization_projects

router = APIRouter()


def _member(user: User, membership) -> MemberResponse:
    return MemberResponse(
        user_id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=membership.role,
        joined_at=membership.created_at,
    )


@router.get("", response_model=List[OrganizationWithRole])
async def list_organizations(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    rows = await organization_service.list_user_organizations(db, user.id)
    return [
        OrganizationWithRole(**OrganizationResponse.model_validate(org).model_dump(), role=role)
        for org, role in rows
    ]


@router.post("", response_model=OrganizationWithRole, status_code=201)
async def create_organization(
    body: OrganizationCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = body.model_dump(exclude_none=True)
    org = await organization_service.create_organization(db, user, data.pop("name"), **data)
    await log_user_activity(db, user.id, "organization.create", organization_id=org.id, request=request)
    await db.commit()
    return OrganizationWithRole(**OrganizationResponse.model_validate(org).model_dump(), role="owner")


@router.get("/{org_id}", response_model=OrganizationResponse)
async def get_organization(
    access: OrgAccess = Depends(require_org_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await organization_service.get_organization(db, access.organization_id)


@router.patch("/{org_id}", response_model=OrganizationResponse)
async def update_organization(
    body: OrganizationUpdate,
    request: Request,
    access: OrgAccess = Depends(require_org_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    org = await organization_service.get_organization(db, access.organization_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in changes.items():
        setattr(org, key, value)
    await db.flush()
    await log_user_activity(
        db, access.user.id, "organization.update",
        organization_id=org.id, details={"fields": sorted(changes)}, request=request,
    )
    await db.commit()
    return org


# =============================================================================
# Members
# =============================================================================

@router.get("/{org_id}/members", response_model=List[MemberResponse])
async def list_members(
    access: OrgAccess = Depends(require_org_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return [_member(u, m) for u, m in await organization_service.list_members(db, access.organization_id)]


@router.post("/{org_id}/members", response_model=MemberResponse, status_code=201)
async def add_member(
    body: MemberAdd,
    request: Request,
    access: OrgAccess = Depends(require_org_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    user, membership = await organization_service.add_member(
        db, access.organization_id, access.role, body.email, body.role
    )
    await log_user_activity(
        db, access.user.id, "member.add",
        organization_id=access.organization_id, entity_type="user", entity_id=user.id,
        details={"role": body.role}, request=request,
    )
    await db.commit()
    return _member(user, membership)


@router.patch("/{org_id}/members/{user_id}", response_model=MemberResponse)
async def change_member_role(
    user_id: str,
    body: MemberRoleUpdate,
    request: Request,
    access: OrgAccess = Depends(require_org_role("member")),
    db: AsyncSession = Depends(get_db),
):
    membership = await organization_service.change_member_role(
        db, access.organization_id, access.user.id, access.role, user_id, body.role
    )
    await log_user_activity(
        db, access.user.id, "member.role_change",
        organization_id=access.organization_id, entity_type="user", entity_id=user_id,
        details={"role": body.role}, request=request,
    )
    await db.commit()
    target = await db.get(User, user_id)
    return _member(target, membership)


@router.delete("/{org_id}/members/{user_id}", status_code=204)
async def remove_member(
    user_id: str,
    request: Request,
    access: OrgAccess = Depends(require_org_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    await organization_service.remove_member(db, access.organization_id, access.user.id, access.role, user_id)
    await log_user_activity(
        db, access.user.id, "member.remove",
        organization_id=access.organization_id, entity_type="user", entity_id=user_id, request=request,
    )
    await db.commit()


# =============================================================================
# Activity, Projects, Portfolio
# =============================================================================

@router.get("/{org_id}/activity", response_model=List[ActivityResponse])
async def organization_activity(
    limit: int = Query(100, ge=1, le=500),
    access: OrgAccess = Depends(require_org_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await list_activity(db, access.organization_id, limit=limit)


@router.get("/{org_id}/projects", response_model=List[ProjectResponse])
async def organization_projects(
    search: Optional[str] = Query(None, max_length=100),
    access: OrgAccess = Depends(require_org_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await list_organization_projects(db, access.organization_id, search)


@router.get("/{org_id}/portfolio", response_model=List[PortfolioProject])
async def portfolio(
    access: OrgAccess = Depends(require_org_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await organization_portfolio(db, access.organization_id)
