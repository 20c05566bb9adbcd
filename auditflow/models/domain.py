"""Domain models - templates, audits, actions and audit schedules."""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from auditflow.database import Base
from auditflow.models.enums import (
    ActionStatus,
    AuditStatus,
    Cadence,
    InstanceStatus,
    ResultValue,
    Urgency
)


class Location(Base):
    """A site that gets audited. Owned by one organization."""
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    city = Column(String, nullable=True)
    manager_id = Column(String, nullable=True)  # Receives generated actions

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    audits = relationship("Audit", back_populates="location")


class Template(Base):
    """
    Checklist template an audit is performed against.

    Invariants:
    - pass_threshold is a percentage (0-100) applied to the weighted score
    """
    __tablename__ = "audit_templates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    pass_threshold = Column(Float, nullable=False, default=70.0)
    requires_photo = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    categories = relationship(
        "Category",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="Category.sort_order"
    )


class Category(Base):
    """
    Group of checklist items with a shared weight.

    Categories referenced by historical audits are soft-deleted (deleted=True)
    and drop out of scoring.
    """
    __tablename__ = "audit_template_categories"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    template_id = Column(Integer, ForeignKey("audit_templates.id"), nullable=False)
    name = Column(String, nullable=False)
    weight = Column(Float, nullable=False, default=1.0)
    sort_order = Column(Integer, nullable=False, default=0)
    deleted = Column(Boolean, nullable=False, default=False)

    template = relationship("Template", back_populates="categories")
    items = relationship(
        "ChecklistItem",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="ChecklistItem.sort_order"
    )


class ChecklistItem(Base):
    """
    A single check. Contributes category.weight * item.weight to the max score.
    """
    __tablename__ = "audit_template_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    category_id = Column(Integer, ForeignKey("audit_template_categories.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    weight = Column(Float, nullable=False, default=1.0)
    sort_order = Column(Integer, nullable=False, default=0)
    deleted = Column(Boolean, nullable=False, default=False)

    requires_photo = Column(Boolean, nullable=False, default=False)
    requires_comment_on_fail = Column(Boolean, nullable=False, default=False)
    creates_action_on_fail = Column(Boolean, nullable=False, default=True)
    action_urgency = Column(SQLEnum(Urgency), nullable=False, default=Urgency.MEDIUM)
    action_deadline_days = Column(Integer, nullable=False, default=7)

    category = relationship("Category", back_populates="items")


class Audit(Base):
    """
    Aggregate root for one inspection: draft/in_progress -> completed | cancelled.

    Invariants:
    - Score fields are written once, on completion
    - A completed or cancelled audit accepts no further results
    """
    __tablename__ = "audits"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    template_id = Column(Integer, ForeignKey("audit_templates.id"), nullable=False)
    inspector_id = Column(String, nullable=False)
    audit_date = Column(Date, nullable=False)
    status = Column(SQLEnum(AuditStatus), nullable=False, default=AuditStatus.IN_PROGRESS)

    # Computed on completion
    total_score = Column(Float, nullable=True)
    max_score = Column(Float, nullable=True)
    pass_percentage = Column(Integer, nullable=True)
    passed = Column(Boolean, nullable=True)

    comments = Column(String, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    location = relationship("Location", back_populates="audits")
    template = relationship("Template")
    results = relationship("AuditResult", back_populates="audit", cascade="all, delete-orphan")
    actions = relationship("Action", back_populates="audit")


class AuditResult(Base):
    """One result per (audit, checklist item)."""
    __tablename__ = "audit_results"
    __table_args__ = (
        UniqueConstraint("audit_id", "template_item_id", name="uq_audit_result_item"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    audit_id = Column(Integer, ForeignKey("audits.id"), nullable=False)
    # No FK: historical results may point at items removed from the template
    template_item_id = Column(Integer, nullable=False, index=True)
    result = Column(SQLEnum(ResultValue), nullable=False, default=ResultValue.NA)
    comment = Column(String, nullable=True)
    photo_urls = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    audit = relationship("Audit", back_populates="results")


class Action(Base):
    """
    Corrective action: pending/in_progress -> completed -> verified | rejected.

    Invariants:
    - At most one action per failed audit result (unique audit_result_id)
    - Verified and rejected are terminal
    """
    __tablename__ = "actions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    audit_id = Column(Integer, ForeignKey("audits.id"), nullable=True)
    audit_result_id = Column(Integer, ForeignKey("audit_results.id"), nullable=True, unique=True)
    template_item_id = Column(Integer, nullable=True)

    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    status = Column(SQLEnum(ActionStatus), nullable=False, default=ActionStatus.PENDING)
    urgency = Column(SQLEnum(Urgency), nullable=False, default=Urgency.MEDIUM)
    deadline = Column(Date, nullable=True)
    assigned_to_id = Column(String, nullable=True)
    created_by_id = Column(String, nullable=True)

    # Evidence the response must carry, copied from the checklist item
    requires_photo = Column(Boolean, nullable=False, default=False)
    requires_comment = Column(Boolean, nullable=False, default=False)
    photo_urls = Column(JSON, nullable=False, default=list)

    response_text = Column(String, nullable=True)
    response_photos = Column(JSON, nullable=False, default=list)
    responded_at = Column(DateTime, nullable=True)

    verified_by_id = Column(String, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verification_notes = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    audit = relationship("Audit", back_populates="actions")


class ScheduledAudit(Base):
    """
    Recurrence rule that produces scheduled audit instances.

    Invariants:
    - day_of_week (0=Sunday) is required for weekly/biweekly cadences
    - day_of_month is required for monthly cadence
    """
    __tablename__ = "scheduled_audits"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    template_id = Column(Integer, ForeignKey("audit_templates.id"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)

    cadence = Column(SQLEnum(Cadence), nullable=False, default=Cadence.MONTHLY)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    day_of_week = Column(Integer, nullable=True)
    day_of_month = Column(Integer, nullable=True)
    time_window_days = Column(Integer, nullable=False, default=3)
    reminder_days_before = Column(Integer, nullable=False, default=1)
    notify_inspector = Column(Boolean, nullable=False, default=True)
    notify_manager = Column(Boolean, nullable=False, default=False)
    default_inspector_id = Column(String, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    last_generated_date = Column(Date, nullable=True)
    next_scheduled_date = Column(Date, nullable=True)
    created_by_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    location = relationship("Location")
    template = relationship("Template")
    instances = relationship(
        "ScheduledAuditInstance",
        back_populates="scheduled_audit",
        cascade="all, delete-orphan"
    )


class ScheduledAuditInstance(Base):
    """
    One materialized occurrence of a ScheduledAudit.

    Invariants:
    - At most one instance per (scheduled_audit_id, due_date)
    """
    __tablename__ = "scheduled_audit_instances"
    __table_args__ = (
        UniqueConstraint("scheduled_audit_id", "due_date", name="uq_instance_rule_date"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    scheduled_audit_id = Column(Integer, ForeignKey("scheduled_audits.id"), nullable=False)
    audit_id = Column(Integer, ForeignKey("audits.id"), nullable=True)
    due_date = Column(Date, nullable=False, index=True)
    status = Column(SQLEnum(InstanceStatus), nullable=False, default=InstanceStatus.PENDING)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    scheduled_audit = relationship("ScheduledAudit", back_populates="instances")
    audit = relationship("Audit")

    @property
    def audit_status(self):
        """Status of the linked audit, None when no audit was started."""
        return self.audit.status if self.audit is not None else None
