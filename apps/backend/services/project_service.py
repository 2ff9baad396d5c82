"""
Project Service
===============
Project CRUD scoped to the caller's organizations.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth.rbac import get_membership, has_role
from exceptions import ConflictError, PermissionDeniedError
from logging_config import get_logger
from models import Project, User, UserOrganization

logger = get_logger(__name__)


def _search_clause(search: Optional[str]):
    """Case-insensitive name/code match; the term is always a bound parameter."""
    term = (search or "").strip().lower()
    if not term:
        return None
    return or_(
        func.lower(Project.name).contains(term, autoescape=True),
        func.lower(Project.code).contains(term, autoescape=True),
    )


async def _code_taken(session: AsyncSession, org_id: int, code: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(Project.id).where(Project.organization_id == org_id, Project.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Project.id != exclude_id)
    return (await session.execute(stmt)).first() is not None


async def create_project(session: AsyncSession, user: User, data: Dict[str, Any]) -> Project:
    """
    Create a project in ``data["organization_id"]``.

    Raises:
        PermissionDeniedError: Caller is not a member+ of that organization
        ConflictError: Code already used in the organization
    """
    org_id = data["organization_id"]
    membership = await get_membership(session, user.id, org_id)
    if membership is None:
        raise PermissionDeniedError("Access denied")
    if not has_role(membership.role, "member"):
        raise PermissionDeniedError("This action requires member role or higher", required_role="member")

    if await _code_taken(session, org_id, data["code"]):
        raise ConflictError(f"Project code '{data['code']}' already exists in this organization")

    project = Project(**data)
    session.add(project)
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError(
            f"Project code '{data['code']}' already exists in this organization", original_error=e
        )

    logger.info("Project created", project_id=project.id, organization_id=org_id, code=project.code)
    return project


async def list_projects_for_user(session: AsyncSession, user_id: str, search: Optional[str] = None) -> List[Project]:
    stmt = (
        select(Project)
        .join(UserOrganization, UserOrganization.organization_id == Project.organization_id)
        .where(UserOrganization.user_id == user_id)
        .order_by(Project.name)
    )
    clause = _search_clause(search)
    if clause is not None:
        stmt = stmt.where(clause)
    return list((await session.execute(stmt)).scalars().all())


async def list_organization_projects(session: AsyncSession, org_id: int, search: Optional[str] = None) -> List[Project]:
    stmt = select(Project).where(Project.organization_id == org_id).order_by(Project.name)
    clause = _search_clause(search)
    if clause is not None:
        stmt = stmt.where(clause)
    return list((await session.execute(stmt)).scalars().all())


async def update_project(session: AsyncSession, project: Project, changes: Dict[str, Any]) -> Project:
    new_code = changes.get("code")
    if new_code and new_code != project.code and await _code_taken(
        session, project.organization_id, new_code, exclude_id=project.id
    ):
        raise ConflictError(f"Project code '{new_code}' already exists in this organization")

    for key, value in changes.items():
        setattr(project, key, value)
    await session.flush()
    return project


async def delete_project(session: AsyncSession, project: Project) -> None:
    """Delete a project; owned rows go with it through ON DELETE CASCADE."""
    await session.delete(project)
    await session.flush()
    logger.info("Project deleted", project_id=project.id)
