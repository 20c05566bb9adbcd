"""Enums for AuditFlow - these define the valid values for results, states and cadences."""
from enum import Enum


class ResultValue(str, Enum):
    """Outcome recorded for a single checklist item."""
    PASS = "pass"
    FAIL = "fail"
    NA = "na"


class AuditStatus(str, Enum):
    """Audit lifecycle. Completed and cancelled are terminal."""
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActionStatus(str, Enum):
    """Corrective action lifecycle. Verified and rejected are terminal."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Cadence(str, Enum):
    """Recurrence frequency of a scheduled audit."""
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class InstanceStatus(str, Enum):
    """Status of one materialized occurrence of a scheduled audit."""
    PENDING = "pending"
    STARTED = "started"
    COMPLETED = "completed"
    MISSED = "missed"
    SKIPPED = "skipped"


TERMINAL_AUDIT_STATUSES = (AuditStatus.COMPLETED, AuditStatus.CANCELLED)
TERMINAL_ACTION_STATUSES = (ActionStatus.VERIFIED, ActionStatus.REJECTED)
OPEN_ACTION_STATUSES = (ActionStatus.PENDING, ActionStatus.IN_PROGRESS)
