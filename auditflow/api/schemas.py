"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from auditflow.models.enums import (
    ActionStatus,
    AuditStatus,
    Cadence,
    InstanceStatus,
    ResultValue,
    Urgency
)
from auditflow.services.analytics import LocationPerformance, MonthlyStats


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Location schemas
class LocationCreate(BaseModel):
    organization_id: str
    name: str = Field(..., min_length=1, max_length=200)
    city: Optional[str] = None
    manager_id: Optional[str] = None


class LocationResponse(ORMModel):
    id: int
    organization_id: str
    name: str
    city: Optional[str]
    manager_id: Optional[str]


# Template schemas
class ItemCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    weight: float = Field(1.0, gt=0)
    requires_photo: bool = False
    requires_comment_on_fail: bool = False
    creates_action_on_fail: bool = True
    action_urgency: Urgency = Urgency.MEDIUM
    action_deadline_days: Optional[int] = Field(None, ge=0, le=365)


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    weight: float = Field(1.0, gt=0)
    items: List[ItemCreate] = []


class TemplateCreate(BaseModel):
    organization_id: str
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    pass_threshold: Optional[float] = Field(None, ge=0, le=100)
    requires_photo: bool = False
    categories: List[CategoryCreate] = []


class ItemResponse(ORMModel):
    id: int
    title: str
    description: Optional[str]
    weight: float
    deleted: bool
    requires_photo: bool
    requires_comment_on_fail: bool
    creates_action_on_fail: bool
    action_urgency: Urgency
    action_deadline_days: int


class CategoryResponse(ORMModel):
    id: int
    name: str
    weight: float
    deleted: bool
    items: List[ItemResponse]


class TemplateResponse(ORMModel):
    id: int
    organization_id: str
    name: str
    description: Optional[str]
    pass_threshold: float
    requires_photo: bool
    is_active: bool
    categories: List[CategoryResponse]


class TemplateActive(BaseModel):
    is_active: bool
    user_id: Optional[str] = None


# Audit schemas
class AuditCreate(BaseModel):
    location_id: int
    template_id: int
    inspector_id: str
    audit_date: Optional[date] = None


class ResultSubmit(BaseModel):
    template_item_id: int
    result: ResultValue
    comment: Optional[str] = Field(None, max_length=2000)
    photo_urls: List[str] = []


class ResultsSubmit(BaseModel):
    results: List[ResultSubmit]


class AuditResultResponse(ORMModel):
    id: int
    template_item_id: int
    result: ResultValue
    comment: Optional[str]
    photo_urls: List[str]


class AuditResponse(ORMModel):
    id: int
    organization_id: str
    location_id: int
    template_id: int
    inspector_id: str
    audit_date: date
    status: AuditStatus
    total_score: Optional[float]
    max_score: Optional[float]
    pass_percentage: Optional[int]
    passed: Optional[bool]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    results: List[AuditResultResponse] = []


class ScoreResponse(BaseModel):
    total_score: float
    max_score: float
    pass_percentage: int
    passed: bool
    failed_item_ids: List[int]
    missing_item_ids: List[int]


# Action schemas
class ActionCreate(BaseModel):
    organization_id: str
    location_id: int
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    deadline: Optional[date] = None
    audit_id: Optional[int] = None
    assigned_to_id: Optional[str] = None
    created_by_id: Optional[str] = None


class ActionResponse(ORMModel):
    id: int
    organization_id: str
    location_id: int
    audit_id: Optional[int]
    template_item_id: Optional[int]
    title: str
    description: Optional[str]
    status: ActionStatus
    urgency: Urgency
    deadline: Optional[date]
    assigned_to_id: Optional[str]
    requires_photo: bool
    requires_comment: bool
    response_text: Optional[str]
    response_photos: List[str]
    responded_at: Optional[datetime]
    verified_by_id: Optional[str]
    verified_at: Optional[datetime]
    verification_notes: Optional[str]
    created_at: datetime


class CompletionResponse(BaseModel):
    audit: AuditResponse
    actions: List[ActionResponse]


class ActionRespond(BaseModel):
    response_text: Optional[str] = Field(None, max_length=2000)
    response_photos: List[str] = []
    user_id: Optional[str] = None


class ActionVerify(BaseModel):
    approved: bool
    user_id: str
    notes: Optional[str] = Field(None, max_length=1000)


# Scheduled audit schemas
class ScheduledAuditCreate(BaseModel):
    organization_id: str
    location_id: int
    template_id: int
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    cadence: Cadence = Cadence.MONTHLY
    start_date: date
    end_date: Optional[date] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    # Capped at 28 so every month has the day; the engine itself clamps
    day_of_month: Optional[int] = Field(None, ge=1, le=28)
    time_window_days: int = Field(3, ge=1)
    reminder_days_before: int = Field(1, ge=0)
    notify_inspector: bool = True
    notify_manager: bool = False
    default_inspector_id: Optional[str] = None
    created_by_id: Optional[str] = None


class ScheduledAuditResponse(ORMModel):
    id: int
    organization_id: str
    location_id: int
    template_id: int
    name: str
    description: Optional[str]
    cadence: Cadence
    start_date: date
    end_date: Optional[date]
    day_of_week: Optional[int]
    day_of_month: Optional[int]
    time_window_days: int
    reminder_days_before: int
    notify_inspector: bool
    notify_manager: bool
    default_inspector_id: Optional[str]
    is_active: bool
    last_generated_date: Optional[date]
    next_scheduled_date: Optional[date]


class ScheduledAuditUpdate(BaseModel):
    """Partial update; only the fields sent are changed."""
    location_id: Optional[int] = None
    template_id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    cadence: Optional[Cadence] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    day_of_month: Optional[int] = Field(None, ge=1, le=28)
    time_window_days: Optional[int] = Field(None, ge=1)
    reminder_days_before: Optional[int] = Field(None, ge=0)
    notify_inspector: Optional[bool] = None
    notify_manager: Optional[bool] = None
    default_inspector_id: Optional[str] = None
    user_id: Optional[str] = None


class ScheduledAuditActive(BaseModel):
    is_active: bool


class InstanceResponse(ORMModel):
    id: int
    scheduled_audit_id: int
    audit_id: Optional[int]
    due_date: date
    status: InstanceStatus
    completed_at: Optional[datetime]


class ReconcileRequest(BaseModel):
    as_of: Optional[date] = None
    organization_id: Optional[str] = None


class InstanceStart(BaseModel):
    inspector_id: Optional[str] = None


# Analytics
class AnalyticsOverview(BaseModel):
    total_audits: int
    pass_rate: int
    avg_score: Optional[float]
    score_trend: float
    open_actions: int
    overdue_actions: int
    monthly: List[MonthlyStats]
    locations: List[LocationPerformance]


# Activity
class ActivityResponse(ORMModel):
    id: int
    event_type: str
    entity_type: str
    entity_id: str
    user_id: Optional[str]
    created_at: datetime
    payload_json: Optional[Dict]


# Error response
class ErrorResponse(BaseModel):
    """Body returned for validation and invariant errors."""
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    field: Optional[str] = None
