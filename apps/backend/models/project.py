"""
Project Models
==============
Projects, the WBS task tree and task dependencies.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base, TimestampMixin

TASK_STATUSES = ("not-started", "in-progress", "review", "completed", "on-hold")
PRIORITIES = ("low", "medium", "high", "critical")
CONSTRAINT_TYPES = ("asap", "alap", "snet", "snlt", "fnet", "fnlt", "mso", "mfo")
DEPENDENCY_TYPES = ("FS", "SS", "FF", "SF")


class Project(TimestampMixin, Base):
    """
    A project inside an organization.

    Each project is an isolated workspace; everything below it is deleted
    with it.
    """
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Owning tenant"
    )
    name = Column(String(255), nullable=False)
    code = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    budget = Column(Float, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False, default="planning")
    baseline_cost = Column(Float, nullable=False, default=0.0)
    actual_cost = Column(Float, nullable=False, default=0.0)
    earned_value = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_project_org_code"),
    )

    def __repr__(self):
        return f"<Project(id={self.id}, code='{self.code}')>"


class Task(TimestampMixin, Base):
    """A WBS element; schedule outputs are written back by the CPM run."""
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    parent_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    wbs_code = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    assigned_to = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_to_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="not-started")
    priority = Column(String(20), nullable=False, default="medium")
    progress = Column(Integer, nullable=False, default=0)

    # EPC classification
    discipline = Column(String(50), nullable=False, default="general")
    discipline_label = Column(String(100), nullable=True)
    area_code = Column(String(50), nullable=True)
    weight_factor = Column(Float, nullable=True)
    work_mode = Column(String(30), nullable=False, default="fixed-duration")
    is_milestone = Column(Boolean, nullable=False, default=False)

    # Dates
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    constraint_type = Column(String(10), nullable=True, default="asap")
    constraint_date = Column(Date, nullable=True)
    baseline_start = Column(Date, nullable=True)
    baseline_finish = Column(Date, nullable=True)
    actual_start_date = Column(Date, nullable=True)
    actual_finish_date = Column(Date, nullable=True)

    # Effort and cost
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)
    baseline_cost = Column(Float, nullable=False, default=0.0)
    actual_cost = Column(Float, nullable=False, default=0.0)
    earned_value = Column(Float, nullable=False, default=0.0)

    # CPM outputs
    duration = Column(Integer, nullable=True)
    early_start = Column(Date, nullable=True)
    early_finish = Column(Date, nullable=True)
    late_start = Column(Date, nullable=True)
    late_finish = Column(Date, nullable=True)
    total_float = Column(Integer, nullable=True)
    free_float = Column(Integer, nullable=True)
    is_critical_path = Column(Boolean, nullable=False, default=False)

    created_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        Index("ix_tasks_project_wbs", "project_id", "wbs_code"),
        Index("ix_tasks_project_status", "project_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, wbs='{self.wbs_code}', status={self.status})>"


class TaskDependency(Base):
    """Precedence link between two tasks of the same project."""
    __tablename__ = "task_dependencies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    predecessor_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    successor_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(2), nullable=False, default="FS")
    lag_days = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("predecessor_id", "successor_id", name="uq_dependency_pair"),
    )
