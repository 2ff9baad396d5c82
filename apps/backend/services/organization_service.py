"""
Organization Service
====================
Tenants, memberships and slugs.
"""

import re
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth.rbac import can_manage_user, check_role_change, get_membership
from exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from logging_config import get_logger
from models import Organization, User, UserOrganization

logger = get_logger(__name__)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:200] or "organization"


async def unique_slug(session: AsyncSession, name: str) -> str:
    """``slugify(name)``, suffixed ``-2``, ``-3``... until unused."""
    base = slugify(name)
    taken = set((await session.execute(
        select(Organization.slug).where(
            (Organization.slug == base) | Organization.slug.like(f"{base}-%")
        )
    )).scalars().all())

    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


async def create_organization(
    session: AsyncSession,
    owner: User,
    name: str,
    **fields,
) -> Organization:
    """Create an organization with ``owner`` as its first owner."""
    org = Organization(name=name, slug=await unique_slug(session, name), **fields)
    session.add(org)
    await session.flush()

    session.add(UserOrganization(user_id=owner.id, organization_id=org.id, role="owner"))
    await session.flush()

    logger.info("Organization created", organization_id=org.id, slug=org.slug, owner=owner.id)
    return org


async def list_user_organizations(session: AsyncSession, user_id: str) -> List[Tuple[Organization, str]]:
    result = await session.execute(
        select(Organization, UserOrganization.role)
        .join(UserOrganization, UserOrganization.organization_id == Organization.id)
        .where(UserOrganization.user_id == user_id)
        .order_by(Organization.name)
    )
    return [(org, role) for org, role in result.all()]


async def get_organization(session: AsyncSession, org_id: int) -> Organization:
    org = await session.get(Organization, org_id)
    if org is None:
        raise NotFoundError("Organization", org_id)
    return org


async def list_members(session: AsyncSession, org_id: int) -> List[Tuple[User, UserOrganization]]:
    result = await session.execute(
        select(User, UserOrganization)
        .join(UserOrganization, UserOrganization.user_id == User.id)
        .where(UserOrganization.organization_id == org_id)
        .order_by(UserOrganization.created_at, User.email)
    )
    return [(user, membership) for user, membership in result.all()]


async def add_member(
    session: AsyncSession,
    org_id: int,
    actor_role: str,
    email: str,
    role: str,
) -> Tuple[User, UserOrganization]:
    """
    Add an existing user to an organization.

    Raises:
        NotFoundError: No user with that email
        PermissionDeniedError: An admin tried to add an owner
        ConflictError: Already a member
    """
    if role == "owner" and actor_role != "owner":
        raise PermissionDeniedError("Only owners can grant or modify the owner role", required_role="owner")

    user = (await session.execute(select(User).where(User.email == email.lower()))).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User", email)

    if await get_membership(session, user.id, org_id) is not None:
        raise ConflictError("User is already a member of this organization")

    membership = UserOrganization(user_id=user.id, organization_id=org_id, role=role)
    session.add(membership)
    await session.flush()
    return user, membership


async def _require_membership(session: AsyncSession, org_id: int, user_id: str) -> UserOrganization:
    membership = await get_membership(session, user_id, org_id)
    if membership is None:
        raise NotFoundError("Member", user_id)
    return membership


async def _owner_count(session: AsyncSession, org_id: int) -> int:
    return (await session.execute(
        select(func.count(UserOrganization.id)).where(
            UserOrganization.organization_id == org_id,
            UserOrganization.role == "owner",
        )
    )).scalar_one()


async def change_member_role(
    session: AsyncSession,
    org_id: int,
    actor_id: str,
    actor_role: str,
    target_user_id: str,
    new_role: str,
) -> UserOrganization:
    target = await _require_membership(session, org_id, target_user_id)
    check_role_change(actor_id, actor_role, target_user_id, target.role, new_role)

    if target.role == "owner" and new_role != "owner" and await _owner_count(session, org_id) <= 1:
        raise ValidationError("An organization must keep at least one owner")

    old_role = target.role
    target.role = new_role
    await session.flush()
    logger.info(
        "Member role changed",
        organization_id=org_id,
        user_id=target_user_id,
        old_role=old_role,
        new_role=new_role,
        actor=actor_id,
    )
    return target


async def remove_member(
    session: AsyncSession,
    org_id: int,
    actor_id: str,
    actor_role: str,
    target_user_id: Optional[str],
) -> None:
    target = await _require_membership(session, org_id, target_user_id)

    if target_user_id != actor_id and not can_manage_user(actor_role, target.role):
        raise PermissionDeniedError("You cannot remove this member")
    if target.role == "owner" and await _owner_count(session, org_id) <= 1:
        raise ValidationError("The last owner cannot be removed")

    await session.delete(target)
    await session.flush()
