"""
Role-Based Access Control
=========================
Organization roles and the dependencies that enforce them.

Roles, highest first: owner > admin > member > viewer. A project inherits
the roles of its organization.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from exceptions import NotFoundError, PermissionDeniedError, ValidationError
from logging_config import bind_actor, get_logger
from models import ROLES, Project, User, UserOrganization

from .dependencies import get_current_user

logger = get_logger(__name__)

ROLE_HIERARCHY = {
    "owner": 4,
    "admin": 3,
    "member": 2,
    "viewer": 1,
}


def role_level(role: Optional[str]) -> int:
    return ROLE_HIERARCHY.get(role or "", 0)


def has_role(role: Optional[str], min_role: str) -> bool:
    """Whether ``role`` is at least ``min_role``; unknown roles never are."""
    level = role_level(role)
    return level > 0 and level >= role_level(min_role)


def can_manage_user(actor_role: Optional[str], target_role: Optional[str]) -> bool:
    """Owners manage anyone, admins anyone but owners, others nobody."""
    if actor_role == "owner":
        return True
    if actor_role == "admin":
        return target_role != "owner"
    return False


def check_role_change(
    actor_id: str,
    actor_role: Optional[str],
    target_id: str,
    target_role: Optional[str],
    new_role: str,
) -> None:
    """
    Validate a membership role change.

    Raises:
        ValidationError: Unknown role
        PermissionDeniedError: The actor may not make this change
    """
    if new_role not in ROLES:
        raise ValidationError(f"Invalid role: {new_role}", field="role", value=new_role)
    if actor_id == target_id:
        raise PermissionDeniedError("You cannot change your own role")
    if not has_role(actor_role, "admin"):
        raise PermissionDeniedError("This action requires admin role or higher", required_role="admin")
    if actor_role == "admin" and (new_role == "owner" or target_role == "owner"):
        raise PermissionDeniedError("Only owners can grant or modify the owner role", required_role="owner")


async def get_membership(session: AsyncSession, user_id: str, organization_id: int) -> Optional[UserOrganization]:
    result = await session.execute(
        select(UserOrganization).where(
            UserOrganization.user_id == user_id,
            UserOrganization.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


def _enforce(membership: Optional[UserOrganization], min_role: str) -> str:
    if membership is None:
        raise PermissionDeniedError("Access denied")
    if not has_role(membership.role, min_role):
        raise PermissionDeniedError(
            f"This action requires {min_role} role or higher", required_role=min_role
        )
    return membership.role


@dataclass
class OrgAccess:
    user: User
    organization_id: int
    role: str


@dataclass
class ProjectAccess:
    user: User
    project: Project
    role: str

    @property
    def organization_id(self) -> int:
        return self.project.organization_id


async def check_project_access(
    session: AsyncSession, user: User, project_id: int, min_role: str = "viewer"
) -> ProjectAccess:
    """
    Resolve ``project_id`` and the user's role in its organization.

    Raises:
        NotFoundError: Unknown project
        PermissionDeniedError: No membership or insufficient role
    """
    project = await session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)

    membership = await get_membership(session, user.id, project.organization_id)
    role = _enforce(membership, min_role)
    return ProjectAccess(user=user, project=project, role=role)


def require_org_role(min_role: str):
    """Dependency for ``/organizations/{org_id}`` routes."""

    async def dependency(
        org_id: int,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> OrgAccess:
        membership = await get_membership(db, user.id, org_id)
        try:
            role = _enforce(membership, min_role)
        except PermissionDeniedError:
            logger.warning(
                "Organization access denied",
                user_id=user.id,
                organization_id=org_id,
                required_role=min_role,
            )
            raise
        bind_actor(user.id, org_id)
        return OrgAccess(user=user, organization_id=org_id, role=role)

    return dependency


def require_project_role(min_role: str):
    """Dependency for ``/projects/{project_id}`` routes."""

    async def dependency(
        project_id: int,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> ProjectAccess:
        try:
            access = await check_project_access(db, user, project_id, min_role)
        except PermissionDeniedError:
            logger.warning(
                "Project access denied",
                user_id=user.id,
                project_id=project_id,
                required_role=min_role,
            )
            raise
        bind_actor(user.id, access.project.organization_id)
        return access

    return dependency
