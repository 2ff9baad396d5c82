"""
Ganttium - API Schemas
======================
Pydantic request and response models.

Every request model derives from ``SanitizedModel``, which strips control
characters from all incoming strings before validation.
"""

import datetime as dt
import re
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from security import sanitize_payload
from services.pricing import PricingTier, PricingTierResult

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

TaskStatus = Literal["not-started", "in-progress", "review", "completed", "on-hold"]
Priority = Literal["low", "medium", "high", "critical"]
ConstraintType = Literal["asap", "alap", "snet", "snlt", "fnet", "fnlt", "mso", "mfo"]
DependencyType = Literal["FS", "SS", "FF", "SF"]
Role = Literal["owner", "admin", "member", "viewer"]
RiskStatus = Literal["identified", "assessed", "mitigating", "closed"]
Impact = Literal["low", "medium", "high", "critical"]
IssueStatus = Literal["open", "in-progress", "resolved", "closed"]
ResourceType = Literal["labor", "equipment", "material"]
DocumentStatusValue = Literal["draft", "review", "approved", "superseded", "missing"]


class SanitizedModel(BaseModel):
    """Base for request bodies."""

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        return sanitize_payload(data)


class PatchModel(SanitizedModel):
    """
    Base for partial updates.

    Fields are optional so they can be left out, but the ones listed in
    ``not_nullable`` back NOT NULL columns and may not be sent as ``null``.
    """

    not_nullable: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_nulls(self):
        nulled = sorted(
            name for name in self.model_fields_set & self.not_nullable if getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"{', '.join(nulled)} cannot be null")
        return self


class ORMModel(BaseModel):
    """Base for responses built from ORM rows."""

    model_config = ConfigDict(from_attributes=True)


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email address")
    return v


Email = Annotated[str, AfterValidator(_normalize_email)]


# =============================================================================
# Auth
# =============================================================================

class RegisterRequest(SanitizedModel):
    email: Email = Field(..., max_length=320)
    password: str = Field(..., min_length=1, max_length=256)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)


class LoginRequest(SanitizedModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=256)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


class UserResponse(ORMModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email_verified: bool = False
    is_system_admin: bool = False


class MembershipResponse(BaseModel):
    organization_id: int
    organization_name: str
    slug: str
    role: str


class MeResponse(BaseModel):
    user: UserResponse
    organizations: List[MembershipResponse]


# =============================================================================
# Organizations
# =============================================================================

class OrganizationCreate(SanitizedModel):
    name: str = Field(..., min_length=1, max_length=255)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None


class OrganizationUpdate(PatchModel):
    not_nullable = frozenset({"name", "currency", "top_level_entity_label", "program_entity_label"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    top_level_entity_label: Optional[str] = Field(default=None, max_length=50)
    program_entity_label: Optional[str] = Field(default=None, max_length=50)


class OrganizationResponse(ORMModel):
    id: int
    name: str
    slug: str
    currency: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    top_level_entity_label: str
    program_entity_label: str
    created_at: dt.datetime


class OrganizationWithRole(OrganizationResponse):
    role: str


class MemberAdd(SanitizedModel):
    email: Email
    role: Role = "member"


class MemberRoleUpdate(SanitizedModel):
    role: str


class MemberResponse(BaseModel):
    user_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    joined_at: dt.datetime


class ActivityResponse(ORMModel):
    id: int
    user_id: str
    organization_id: Optional[int] = None
    project_id: Optional[int] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: dt.datetime


# =============================================================================
# Projects
# =============================================================================

class ProjectCreate(SanitizedModel):
    organization_id: int
    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    budget: Optional[float] = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: str = Field(default="planning", max_length=20)


class ProjectUpdate(PatchModel):
    not_nullable = frozenset({"name", "code", "currency", "status", "baseline_cost", "actual_cost", "earned_value"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    budget: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    status: Optional[str] = Field(default=None, max_length=20)
    baseline_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    earned_value: Optional[float] = None


class ProjectResponse(ORMModel):
    id: int
    organization_id: int
    name: str
    code: str
    description: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    budget: Optional[float] = None
    currency: str
    status: str
    baseline_cost: float = 0.0
    actual_cost: float = 0.0
    earned_value: float = 0.0
    created_at: dt.datetime
    updated_at: dt.datetime


# =============================================================================
# Tasks & Dependencies
# =============================================================================

class _TaskFields(SanitizedModel):
    description: Optional[str] = None
    parent_id: Optional[int] = None
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = Field(default=None, max_length=255)
    priority: Optional[Priority] = None
    discipline: Optional[str] = Field(default=None, max_length=50)
    discipline_label: Optional[str] = Field(default=None, max_length=100)
    area_code: Optional[str] = Field(default=None, max_length=50)
    weight_factor: Optional[float] = None
    work_mode: Optional[str] = Field(default=None, max_length=30)
    is_milestone: Optional[bool] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    constraint_type: Optional[ConstraintType] = None
    constraint_date: Optional[dt.date] = None
    baseline_start: Optional[dt.date] = None
    baseline_finish: Optional[dt.date] = None
    actual_start_date: Optional[dt.date] = None
    actual_finish_date: Optional[dt.date] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    actual_hours: Optional[float] = Field(default=None, ge=0)
    baseline_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    earned_value: Optional[float] = None
    progress: Optional[int] = None


class TaskCreate(_TaskFields):
    name: str = Field(..., min_length=1, max_length=255)
    wbs_code: str = Field(..., min_length=1, max_length=100)
    status: TaskStatus = "not-started"


class TaskUpdate(_TaskFields, PatchModel):
    not_nullable = frozenset({
        "name", "wbs_code", "status", "priority", "discipline", "work_mode", "is_milestone",
        "baseline_cost", "actual_cost", "earned_value",
    })

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    wbs_code: Optional[str] = Field(default=None, min_length=1, max_length=100)
    status: Optional[TaskStatus] = None


class TaskResponse(ORMModel):
    id: int
    project_id: int
    parent_id: Optional[int] = None
    wbs_code: str
    name: str
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    status: str
    priority: str
    progress: int
    discipline: str
    discipline_label: Optional[str] = None
    area_code: Optional[str] = None
    weight_factor: Optional[float] = None
    work_mode: str
    is_milestone: bool
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    constraint_type: Optional[str] = None
    constraint_date: Optional[dt.date] = None
    baseline_start: Optional[dt.date] = None
    baseline_finish: Optional[dt.date] = None
    actual_start_date: Optional[dt.date] = None
    actual_finish_date: Optional[dt.date] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    baseline_cost: float = 0.0
    actual_cost: float = 0.0
    earned_value: float = 0.0
    duration: Optional[int] = None
    early_start: Optional[dt.date] = None
    early_finish: Optional[dt.date] = None
    late_start: Optional[dt.date] = None
    late_finish: Optional[dt.date] = None
    total_float: Optional[int] = None
    free_float: Optional[int] = None
    is_critical_path: bool = False
    created_by: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime


class DependencyCreate(SanitizedModel):
    predecessor_id: int
    successor_id: int
    type: DependencyType = "FS"
    lag_days: int = Field(default=0, ge=-365, le=365)


class DependencyResponse(ORMModel):
    id: int
    project_id: int
    predecessor_id: int
    successor_id: int
    type: str
    lag_days: int


class GanttTask(TaskResponse):
    predecessors: List[DependencyResponse] = Field(default_factory=list)
    successors: List[DependencyResponse] = Field(default_factory=list)


class KanbanColumn(BaseModel):
    status: str
    tasks: List[TaskResponse]


class ScheduleRequest(SanitizedModel):
    start_date: Optional[dt.date] = None


class ScheduleResponse(BaseModel):
    success: bool
    message: str
    tasks_updated: int = 0
    critical_path_length: int = 0
    project_end_date: Optional[dt.date] = None
    critical_tasks: List[int] = Field(default_factory=list)


# =============================================================================
# Risks, Issues, Stakeholders, Cost Items
# =============================================================================

class _RiskFields(SanitizedModel):
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=50)
    probability: Optional[int] = Field(default=None, ge=1, le=5)
    impact: Optional[Impact] = None
    mitigation_plan: Optional[str] = None
    response_strategy: Optional[str] = Field(default=None, max_length=50)
    owner: Optional[str] = Field(default=None, max_length=255)
    assigned_to: Optional[str] = Field(default=None, max_length=255)
    cost_impact: Optional[float] = None
    schedule_impact: Optional[int] = None
    risk_exposure: Optional[float] = None
    contingency_reserve: Optional[float] = None
    target_resolution_date: Optional[dt.date] = None


class RiskCreate(_RiskFields):
    title: str = Field(..., min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=20)
    status: RiskStatus = "identified"


class RiskUpdate(_RiskFields, PatchModel):
    not_nullable = frozenset({"title", "code", "category", "status", "probability", "impact"})

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=20)
    status: Optional[RiskStatus] = None


class RiskResponse(ORMModel):
    id: int
    project_id: int
    code: str
    title: str
    description: Optional[str] = None
    category: str
    status: str
    probability: int
    impact: str
    mitigation_plan: Optional[str] = None
    response_strategy: Optional[str] = None
    owner: Optional[str] = None
    assigned_to: Optional[str] = None
    cost_impact: Optional[float] = None
    schedule_impact: Optional[int] = None
    risk_exposure: Optional[float] = None
    contingency_reserve: Optional[float] = None
    target_resolution_date: Optional[dt.date] = None
    identified_date: dt.datetime
    closed_date: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime


class RiskMatrixResponse(BaseModel):
    """``cells[probability][impact]`` counts of open risks."""
    probabilities: List[int]
    impacts: List[str]
    cells: Dict[int, Dict[str, int]]
    total_open: int


class _IssueFields(SanitizedModel):
    description: Optional[str] = None
    priority: Optional[Priority] = None
    category: Optional[str] = Field(default=None, max_length=50)
    issue_type: Optional[str] = Field(default=None, max_length=30)
    assigned_to: Optional[str] = Field(default=None, max_length=255)
    reported_by: Optional[str] = Field(default=None, max_length=255)
    resolution: Optional[str] = None
    impact_cost: Optional[float] = None
    impact_schedule: Optional[int] = None
    impact_quality: Optional[str] = Field(default=None, max_length=50)
    impact_safety: Optional[str] = Field(default=None, max_length=50)
    discipline: Optional[str] = Field(default=None, max_length=50)
    escalation_level: Optional[str] = Field(default=None, max_length=30)
    target_resolution_date: Optional[dt.date] = None


class IssueCreate(_IssueFields):
    title: str = Field(..., min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=20)
    status: IssueStatus = "open"


class IssueUpdate(_IssueFields, PatchModel):
    not_nullable = frozenset({"title", "code", "status", "priority", "issue_type"})

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=20)
    status: Optional[IssueStatus] = None


class IssueResponse(ORMModel):
    id: int
    project_id: int
    code: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    category: Optional[str] = None
    issue_type: str
    assigned_to: Optional[str] = None
    reported_by: Optional[str] = None
    reported_date: dt.datetime
    resolved_date: Optional[dt.datetime] = None
    resolution: Optional[str] = None
    impact_cost: Optional[float] = None
    impact_schedule: Optional[int] = None
    impact_quality: Optional[str] = None
    impact_safety: Optional[str] = None
    discipline: Optional[str] = None
    escalation_level: Optional[str] = None
    target_resolution_date: Optional[dt.date] = None
    created_at: dt.datetime
    updated_at: dt.datetime


class _StakeholderFields(SanitizedModel):
    role: Optional[str] = Field(default=None, max_length=100)
    organization: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=32)
    influence: Optional[str] = Field(default=None, max_length=20)
    interest: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = None
    communication_style: Optional[str] = Field(default=None, max_length=50)
    preferred_channel: Optional[str] = Field(default=None, max_length=50)
    update_frequency: Optional[str] = Field(default=None, max_length=50)
    engagement_level: Optional[str] = Field(default=None, max_length=50)


class StakeholderCreate(_StakeholderFields):
    name: str = Field(..., min_length=1, max_length=255)


class StakeholderUpdate(_StakeholderFields, PatchModel):
    not_nullable = frozenset({"name"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class StakeholderResponse(ORMModel):
    id: int
    project_id: int
    name: str
    role: Optional[str] = None
    organization: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    influence: Optional[str] = None
    interest: Optional[str] = None
    notes: Optional[str] = None
    communication_style: Optional[str] = None
    preferred_channel: Optional[str] = None
    update_frequency: Optional[str] = None
    engagement_level: Optional[str] = None
    created_at: dt.datetime


class _CostItemFields(SanitizedModel):
    task_id: Optional[int] = None
    category: Optional[str] = Field(default=None, max_length=50)
    budgeted: Optional[float] = None
    actual: Optional[float] = None
    committed: Optional[float] = None
    forecast: Optional[float] = None
    reference_number: Optional[str] = Field(default=None, max_length=100)
    status: Optional[str] = Field(default=None, max_length=30)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    date: Optional[dt.date] = None


class CostItemCreate(_CostItemFields):
    description: str = Field(..., min_length=1)


class CostItemUpdate(_CostItemFields, PatchModel):
    not_nullable = frozenset({"description", "category", "budgeted", "actual", "committed", "forecast", "currency"})

    description: Optional[str] = Field(default=None, min_length=1)


class CostItemResponse(ORMModel):
    id: int
    project_id: int
    task_id: Optional[int] = None
    category: str
    description: str
    budgeted: float
    actual: float
    variance: float
    committed: float
    forecast: float
    reference_number: Optional[str] = None
    status: Optional[str] = None
    currency: str
    date: Optional[dt.date] = None
    created_at: dt.datetime


# =============================================================================
# Resources, Assignments, Time Entries
# =============================================================================

class _ResourceFields(SanitizedModel):
    type: Optional[ResourceType] = None
    discipline: Optional[str] = Field(default=None, max_length=50)
    role: Optional[str] = Field(default=None, max_length=100)
    status: Optional[str] = Field(default=None, max_length=20)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=32)
    availability: Optional[int] = Field(default=None, ge=0, le=100)
    cost_type: Optional[str] = Field(default=None, max_length=20)
    base_rate: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    unit: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = None
    pricing_tiers: Optional[List[PricingTier]] = None


class ResourceCreate(_ResourceFields):
    name: str = Field(..., min_length=1, max_length=255)


class ResourceUpdate(_ResourceFields, PatchModel):
    not_nullable = frozenset({"name", "type", "status", "availability", "cost_type", "base_rate", "currency", "unit"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class ResourceResponse(ORMModel):
    id: int
    project_id: int
    name: str
    type: str
    discipline: Optional[str] = None
    role: Optional[str] = None
    status: str
    email: Optional[str] = None
    phone: Optional[str] = None
    availability: int
    cost_type: str
    base_rate: float
    currency: str
    unit: str
    notes: Optional[str] = None
    pricing_tiers: Optional[List[Dict[str, Any]]] = None
    created_at: dt.datetime


class AssignmentCreate(SanitizedModel):
    resource_id: int
    allocation: int = Field(default=100, ge=1, le=100)
    effort_hours: float = Field(default=0.0, ge=0)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class AssignmentUpdate(PatchModel):
    not_nullable = frozenset({"allocation", "effort_hours"})

    allocation: Optional[int] = Field(default=None, ge=1, le=100)
    effort_hours: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class AssignmentResponse(ORMModel):
    id: int
    task_id: int
    resource_id: int
    allocation: int
    effort_hours: float
    cost: float
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class TimeEntryCreate(SanitizedModel):
    resource_id: int
    task_id: Optional[int] = None
    date: dt.date
    hours: float = Field(..., gt=0, le=24)
    description: Optional[str] = None


class TimeEntryResponse(ORMModel):
    id: int
    project_id: int
    resource_id: int
    task_id: Optional[int] = None
    date: dt.date
    hours: float
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: dt.datetime


class UtilizationResponse(BaseModel):
    resource_id: int
    assigned_hours: float
    logged_hours: float
    utilization_percent: float
    cost_to_date: float
    currency: str


# =============================================================================
# Pricing & Exchange Rates
# =============================================================================

class PricingCalculateRequest(SanitizedModel):
    quantity: float
    tiers: List[PricingTier] = Field(default_factory=list)
    default_rate: float = Field(default=0.0, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)


class PricingCalculateResponse(PricingTierResult):
    effective_rate: float
    valid: bool
    errors: List[str] = Field(default_factory=list)


class ExchangeRateResponse(ORMModel):
    base_currency: str
    target_currency: str
    rate: float
    date: dt.date
    source: str


class ConversionResponse(BaseModel):
    amount: float
    from_currency: str
    to_currency: str
    converted: float
    rate: float


class ExchangeRateSyncResponse(ORMModel):
    id: int
    status: str
    sync_date: dt.datetime
    rates_date: Optional[dt.date] = None
    rates_updated: int
    error: Optional[str] = None


class SyncResultResponse(BaseModel):
    success: bool
    rates_updated: int
    rates_date: Optional[dt.date] = None
    error: Optional[str] = None


# =============================================================================
# Import / Export, Documents
# =============================================================================

class ImportResponse(BaseModel):
    success: bool
    created: Dict[str, int]


class DocumentCreate(SanitizedModel):
    name: str = Field(..., min_length=1, max_length=512)
    document_number: Optional[str] = Field(default=None, max_length=100)
    title: Optional[str] = Field(default=None, max_length=512)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=50)
    discipline: Optional[str] = Field(default=None, max_length=50)
    document_type: Optional[str] = Field(default=None, max_length=50)
    revision: str = Field(default="0", max_length=20)
    status: DocumentStatusValue = "draft"


class DocumentUpdate(PatchModel):
    not_nullable = frozenset({"name", "revision", "status"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=512)
    document_number: Optional[str] = Field(default=None, max_length=100)
    title: Optional[str] = Field(default=None, max_length=512)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=50)
    discipline: Optional[str] = Field(default=None, max_length=50)
    document_type: Optional[str] = Field(default=None, max_length=50)
    revision: Optional[str] = Field(default=None, max_length=20)
    status: Optional[DocumentStatusValue] = None


class DocumentResponse(ORMModel):
    id: int
    project_id: int
    document_number: Optional[str] = None
    name: str
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    discipline: Optional[str] = None
    document_type: Optional[str] = None
    revision: str
    status: str
    file_type: Optional[str] = None
    size_bytes: Optional[int] = None
    uploaded_by: Optional[str] = None
    has_file: bool = False
    created_at: dt.datetime
    updated_at: dt.datetime

    @model_validator(mode="before")
    @classmethod
    def _from_row(cls, data: Any) -> Any:
        # ORM rows: expose the enum value and hide the storage path
        if hasattr(data, "__table__"):
            values = {c.name: getattr(data, c.name) for c in data.__table__.columns}
            status = values.get("status")
            values["status"] = getattr(status, "value", status)
            values["has_file"] = bool(values.pop("file_path", None))
            return values
        return data


# =============================================================================
# Chat
# =============================================================================

class ConversationCreate(SanitizedModel):
    name: Optional[str] = Field(default=None, max_length=255)
    type: Literal["channel", "dm"] = "channel"
    task_id: Optional[int] = None
    participant_ids: List[str] = Field(default_factory=list)


class ConversationResponse(ORMModel):
    id: int
    project_id: int
    task_id: Optional[int] = None
    type: str
    name: Optional[str] = None
    created_by: Optional[str] = None
    created_at: dt.datetime


class ParticipantAdd(SanitizedModel):
    user_id: str


class ParticipantResponse(ORMModel):
    id: int
    conversation_id: int
    user_id: str
    joined_at: dt.datetime
    last_read_at: Optional[dt.datetime] = None


class MessageCreate(SanitizedModel):
    message: str = Field(..., min_length=1, max_length=10000)
    attachments: Optional[List[Dict[str, Any]]] = None


class MessageUpdate(SanitizedModel):
    message: str = Field(..., min_length=1, max_length=10000)


class ReactionCreate(SanitizedModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class ReactionResponse(ORMModel):
    id: int
    message_id: int
    user_id: str
    emoji: str


class MessageResponse(ORMModel):
    id: int
    conversation_id: int
    user_id: Optional[str] = None
    message: str
    attachments: Optional[List[Dict[str, Any]]] = None
    created_at: dt.datetime
    updated_at: dt.datetime
    reactions: List[ReactionResponse] = Field(default_factory=list)


class UnreadCount(BaseModel):
    conversation_id: int
    unread: int


# =============================================================================
# Notifications
# =============================================================================

class NotificationResponse(ORMModel):
    id: int
    user_id: str
    project_id: Optional[int] = None
    title: str
    message: Optional[str] = None
    type: str
    read: bool
    created_at: dt.datetime


class SmsNotifyRequest(SanitizedModel):
    message: str = Field(..., min_length=1, max_length=1600)
    stakeholder_ids: Optional[List[int]] = None


class SmsDelivery(BaseModel):
    stakeholder_id: int
    to: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class SmsNotifyResponse(BaseModel):
    sent: int
    failed: int
    skipped: int
    deliveries: List[SmsDelivery]


# =============================================================================
# Dashboard & Portfolio
# =============================================================================

class EvmMetrics(BaseModel):
    planned_value: float
    earned_value: float
    actual_cost: float
    cpi: Optional[float] = None
    spi: Optional[float] = None
    cost_variance: float
    schedule_variance: float


class CostTotals(BaseModel):
    budgeted: float = 0.0
    actual: float = 0.0
    committed: float = 0.0
    forecast: float = 0.0
    variance: float = 0.0


class DashboardResponse(BaseModel):
    project_id: int
    tasks_by_status: Dict[str, int]
    total_tasks: int
    average_progress: float
    overdue_tasks: List[TaskResponse]
    upcoming_milestones: List[TaskResponse]
    open_risks_by_impact: Dict[str, int]
    top_risks: List[RiskResponse]
    open_issues_by_priority: Dict[str, int]
    costs: CostTotals
    evm: EvmMetrics


class PortfolioProject(BaseModel):
    project_id: int
    name: str
    code: str
    status: str
    progress: float
    open_risks: int
    open_issues: int
    cpi: Optional[float] = None
    spi: Optional[float] = None


# =============================================================================
# System
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    version: str
    services: Dict[str, str]
