"""
Tenancy Models
==============
Users, organizations, memberships and the activity audit trail.
"""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base, TimestampMixin, utcnow

ROLES = ("owner", "admin", "member", "viewer")


class User(TimestampMixin, Base):
    """An account. Identified by a string UUID."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid4()))
    email = Column(String(320), nullable=False, unique=True, index=True, doc="Stored lower-case")
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    password_hash = Column(String(255), nullable=True, doc="bcrypt hash; never serialized")
    phone = Column(String(32), nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    is_system_admin = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime, nullable=True)

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class Organization(TimestampMixin, Base):
    """A tenant. Every project belongs to exactly one organization."""
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    currency = Column(String(3), nullable=False, default="USD")
    contact_email = Column(String(320), nullable=True)
    contact_phone = Column(String(32), nullable=True)
    address = Column(Text, nullable=True)
    top_level_entity_label = Column(String(50), nullable=False, default="Organization")
    program_entity_label = Column(String(50), nullable=False, default="Program")

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug='{self.slug}')>"


class UserOrganization(Base):
    """Membership of a user in an organization, with a role."""
    __tablename__ = "user_organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role = Column(String(20), nullable=False, default="member", doc="owner, admin, member or viewer")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_user_organization"),
    )

    def __repr__(self) -> str:
        return f"<UserOrganization(user={self.user_id}, org={self.organization_id}, role={self.role})>"


class UserActivityLog(Base):
    """Audit trail of user actions."""
    __tablename__ = "user_activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_activity_org_created", "organization_id", "created_at"),
    )
