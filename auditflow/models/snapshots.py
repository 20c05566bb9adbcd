"""
Data contracts between the pure core and its callers.

These are in-memory snapshots: the scoring, action, recurrence and
reconciliation code takes them as arguments and never touches the database.
All of them can be built straight from ORM rows (from_attributes).
"""
from datetime import date
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


class _Snapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)


# Template graph
class ItemNode(_Snapshot):
    id: int
    title: str
    weight: float = Field(1.0, gt=0)
    deleted: bool = False
    creates_action_on_fail: bool = True
    action_urgency: Urgency = Urgency.MEDIUM
    action_deadline_days: int = Field(7, ge=0)
    requires_photo: bool = False
    requires_comment_on_fail: bool = False


class CategoryNode(_Snapshot):
    id: int
    name: str = ""
    weight: float = Field(1.0, gt=0)
    deleted: bool = False
    items: List[ItemNode] = []


class TemplateGraph(_Snapshot):
    id: int
    pass_threshold: float = Field(70.0, ge=0, le=100)
    requires_photo: bool = False
    categories: List[CategoryNode] = []


# Result set
class ResultEntry(_Snapshot):
    result: ResultValue
    comment: Optional[str] = None
    photo_urls: List[str] = []


ResultSet = Dict[int, ResultEntry]


# Score summary
class ScoreSummary(_Snapshot):
    total_score: float
    max_score: float
    pass_percentage: int
    passed: bool


# Action drafts
class AuditContext(_Snapshot):
    """What the action factory needs to know about the audit being completed."""
    id: int
    organization_id: str
    location_id: int
    audit_date: date
    completed_at: date
    assignee_id: Optional[str] = None
    created_by_id: Optional[str] = None


class ActionDraft(_Snapshot):
    template_item_id: Optional[int] = None
    audit_id: Optional[int] = None
    organization_id: str
    location_id: int
    title: str
    description: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    deadline: Optional[date] = None
    status: ActionStatus = ActionStatus.PENDING
    assigned_to_id: Optional[str] = None
    created_by_id: Optional[str] = None
    requires_photo: bool = False
    requires_comment: bool = False
    photo_urls: List[str] = []


# Schedules
class ScheduleRule(_Snapshot):
    """
    A recurrence rule. Cadence-specific fields are checked by
    recurrence.validate_rule so a bad rule can be reported on its own.
    """
    id: Optional[int] = None
    cadence: Cadence
    start_date: date
    end_date: Optional[date] = None
    day_of_week: Optional[int] = None  # 0=Sunday .. 6=Saturday
    day_of_month: Optional[int] = None
    time_window_days: int = 3
    reminder_days_before: int = 1
    is_active: bool = True


class InstanceSnapshot(_Snapshot):
    id: int
    scheduled_audit_id: int
    due_date: date
    status: InstanceStatus = InstanceStatus.PENDING
    audit_id: Optional[int] = None
    audit_status: Optional[AuditStatus] = None


class InstanceDraft(_Snapshot):
    scheduled_audit_id: int
    due_date: date
    status: InstanceStatus = InstanceStatus.PENDING


class RuleError(_Snapshot):
    scheduled_audit_id: Optional[int] = None
    field: Optional[str] = None
    message: str


class ReconciliationPlan(_Snapshot):
    to_create: List[InstanceDraft] = []
    to_mark_missed: List[int] = []
    to_mark_completed: List[int] = []
    errors: List[RuleError] = []

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_mark_missed or self.to_mark_completed)


# Aggregation inputs
class AuditSummary(_Snapshot):
    """Completed audit as seen by the reporting layer."""
    id: int
    location_id: int
    inspector_id: Optional[str] = None
    audit_date: date
    pass_percentage: int
    passed: bool


class ActionSummary(_Snapshot):
    id: int
    location_id: int
    status: ActionStatus
    urgency: Urgency = Urgency.MEDIUM
    deadline: Optional[date] = None


class ResultRow(_Snapshot):
    """Flattened (audit, item) result used by category / item statistics."""
    template_item_id: int
    item_title: str = ""
    category_id: int
    category_name: str = ""
    result: ResultValue

