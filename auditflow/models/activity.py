"""
Activity log model.

Append-only trail of what happened to audits, actions and schedules. Feeds the
activity feed; never edited or deleted.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON
from sqlalchemy.orm import Session
from auditflow.database import Base


class ActivityEvent(Base):
    """
    Immutable activity event.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    """
    __tablename__ = "activity_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_type = Column(String, nullable=False, index=True)  # e.g., "audit_completed"
    entity_type = Column(String, nullable=False)  # e.g., "Audit", "Action"
    entity_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)  # Nullable for system events
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    payload_json = Column(JSON, nullable=True)  # Minimal contextual data


class ActivityEventType:
    """Enumeration of activity event types."""
    # Audit lifecycle
    AUDIT_STARTED = "audit_started"
    AUDIT_COMPLETED = "audit_completed"
    AUDIT_CANCELLED = "audit_cancelled"

    # Action lifecycle
    ACTION_CREATED = "action_created"
    ACTION_RESPONDED = "action_responded"
    ACTION_VERIFIED = "action_verified"
    ACTION_REJECTED = "action_rejected"

    # Schedules
    INSTANCE_CREATED = "instance_created"
    INSTANCE_STARTED = "instance_started"
    INSTANCE_MISSED = "instance_missed"
    INSTANCE_SKIPPED = "instance_skipped"
    INSTANCE_COMPLETED = "instance_completed"
    SCHEDULE_UPDATED = "schedule_updated"
    SCHEDULE_DELETED = "schedule_deleted"
    SCHEDULE_RULE_INVALID = "schedule_rule_invalid"

    # Templates
    TEMPLATE_ACTIVATED = "template_activated"
    TEMPLATE_DEACTIVATED = "template_deactivated"


def record_event(
    db: Session,
    event_type: str,
    entity_type: str,
    entity_id,
    user_id: str = None,
    payload: dict = None
) -> ActivityEvent:
    """Append an event to the session. The caller owns the commit."""
    event = ActivityEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        user_id=user_id,
        payload_json=payload
    )
    db.add(event)
    return event
