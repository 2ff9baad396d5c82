"""
Tracking Models
===============
Risks, issues, stakeholders and cost items.
"""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base, TimestampMixin, utcnow

RISK_STATUSES = ("identified", "assessed", "mitigating", "closed")
IMPACT_LEVELS = ("low", "medium", "high", "critical")
ISSUE_STATUSES = ("open", "in-progress", "resolved", "closed")


class Risk(TimestampMixin, Base):
    __tablename__ = "risks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(20), nullable=False, doc="R-001 style, unique per project")
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="other")
    status = Column(String(20), nullable=False, default="identified")
    probability = Column(Integer, nullable=False, default=3, doc="1 (rare) .. 5 (almost certain)")
    impact = Column(String(20), nullable=False, default="medium")
    mitigation_plan = Column(Text, nullable=True)
    response_strategy = Column(String(50), nullable=True)
    owner = Column(String(255), nullable=True)
    assigned_to = Column(String(255), nullable=True)
    cost_impact = Column(Float, nullable=True)
    schedule_impact = Column(Integer, nullable=True, doc="Days")
    risk_exposure = Column(Float, nullable=True)
    contingency_reserve = Column(Float, nullable=True)
    target_resolution_date = Column(Date, nullable=True)
    identified_date = Column(DateTime, nullable=False, default=utcnow)
    closed_date = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "code", name="uq_risk_project_code"),
    )


class Issue(TimestampMixin, Base):
    __tablename__ = "issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="open")
    priority = Column(String(20), nullable=False, default="medium")
    category = Column(String(50), nullable=True)
    issue_type = Column(String(30), nullable=False, default="standard")
    assigned_to = Column(String(255), nullable=True)
    reported_by = Column(String(255), nullable=True)
    reported_date = Column(DateTime, nullable=False, default=utcnow)
    resolved_date = Column(DateTime, nullable=True)
    resolution = Column(Text, nullable=True)
    impact_cost = Column(Float, nullable=True)
    impact_schedule = Column(Integer, nullable=True)
    impact_quality = Column(String(50), nullable=True)
    impact_safety = Column(String(50), nullable=True)
    discipline = Column(String(50), nullable=True)
    escalation_level = Column(String(30), nullable=True)
    target_resolution_date = Column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "code", name="uq_issue_project_code"),
    )


class Stakeholder(TimestampMixin, Base):
    __tablename__ = "stakeholders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    role = Column(String(100), nullable=True)
    organization = Column(String(255), nullable=True)
    email = Column(String(320), nullable=True)
    phone = Column(String(32), nullable=True)
    influence = Column(String(20), nullable=True)
    interest = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    communication_style = Column(String(50), nullable=True)
    preferred_channel = Column(String(50), nullable=True)
    update_frequency = Column(String(50), nullable=True)
    engagement_level = Column(String(50), nullable=True)


class CostItem(TimestampMixin, Base):
    __tablename__ = "cost_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    category = Column(String(50), nullable=False, default="other")
    description = Column(Text, nullable=False)
    budgeted = Column(Float, nullable=False, default=0.0)
    actual = Column(Float, nullable=False, default=0.0)
    variance = Column(Float, nullable=False, default=0.0, doc="budgeted - actual")
    committed = Column(Float, nullable=False, default=0.0)
    forecast = Column(Float, nullable=False, default=0.0)
    reference_number = Column(String(100), nullable=True)
    status = Column(String(30), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    date = Column(Date, nullable=True)
