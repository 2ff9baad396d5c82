"""
Resource Models
===============
Resources, task assignments and logged time.
"""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base, TimestampMixin, utcnow

RESOURCE_TYPES = ("labor", "equipment", "material")


class Resource(TimestampMixin, Base):
    """
    A person, machine or material pool that can be assigned to tasks.

    ``pricing_tiers`` holds a list of ``{from_quantity, to_quantity, rate,
    unit_type, currency}`` dicts; when empty, ``base_rate`` applies flat.
    """
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False, default="labor")
    discipline = Column(String(50), nullable=True)
    role = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="available")
    email = Column(String(320), nullable=True)
    phone = Column(String(32), nullable=True)
    availability = Column(Integer, nullable=False, default=100, doc="Percent")
    cost_type = Column(String(20), nullable=False, default="hourly")
    base_rate = Column(Float, nullable=False, default=0.0)
    currency = Column(String(3), nullable=False, default="USD")
    unit = Column(String(20), nullable=False, default="hr")
    notes = Column(Text, nullable=True)
    pricing_tiers = Column(JSON, nullable=True)


class ResourceAssignment(TimestampMixin, Base):
    __tablename__ = "resource_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    resource_id = Column(Integer, ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True)
    allocation = Column(Integer, nullable=False, default=100, doc="Percent of the resource")
    effort_hours = Column(Float, nullable=False, default=0.0)
    cost = Column(Float, nullable=False, default=0.0, doc="Tiered cost of the allocated effort")
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("task_id", "resource_id", name="uq_assignment_task_resource"),
    )


class ResourceTimeEntry(Base):
    __tablename__ = "resource_time_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    resource_id = Column(Integer, ForeignKey("resources.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=False)
    hours = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_time_entries_resource_date", "resource_id", "date"),
    )
