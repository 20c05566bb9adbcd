"""
Scheduled audit service.

Owns the database side of scheduling: creating rules, applying
reconciliation plans, and starting or skipping instances. Due dates and
plans themselves come from the pure recurrence/reconciler modules.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auditflow.errors import InvariantViolation, ValidationError
from auditflow.models.activity import ActivityEventType, record_event
from auditflow.models.domain import Audit, ScheduledAudit, ScheduledAuditInstance
from auditflow.models.enums import InstanceStatus
from auditflow.models.snapshots import InstanceSnapshot, ReconciliationPlan, ScheduleRule
from auditflow.services.reconciler import reconcile
from auditflow.services.recurrence import (
    OccurrenceSeries,
    next_occurrence,
    occurrences_between,
    reminder_date,
    validate_rule
)
from auditflow.services.workflow import AuditWorkflow

logger = logging.getLogger(__name__)


# New rules stick to days every month has; the engine still clamps 29-31
MAX_DAY_OF_MONTH = 28

UPDATABLE_FIELDS = frozenset({
    "location_id", "template_id", "name", "description", "cadence",
    "start_date", "end_date", "day_of_week", "day_of_month",
    "time_window_days", "reminder_days_before", "notify_inspector",
    "notify_manager", "default_inspector_id",
})


def rule_snapshot(schedule: ScheduledAudit) -> ScheduleRule:
    return ScheduleRule.model_validate(schedule)


def check_schedule_rule(rule: ScheduleRule) -> None:
    """validate_rule plus the stricter day-of-month range for stored rules."""
    validate_rule(rule)
    if rule.day_of_month is not None and rule.day_of_month > MAX_DAY_OF_MONTH:
        raise ValidationError(
            f"day_of_month must be 1-{MAX_DAY_OF_MONTH}, got {rule.day_of_month}",
            entity_type="ScheduledAudit",
            entity_id=rule.id,
            field="day_of_month"
        )


class ScheduleService:
    """Applies schedule rules to the instance table."""

    def __init__(
        self,
        db: Session,
        lookback_days: Optional[int] = None,
        lookahead_days: Optional[int] = None
    ):
        self.db = db
        self.lookback_days = lookback_days
        self.lookahead_days = lookahead_days

    def create_schedule(self, **fields) -> ScheduledAudit:
        """
        Create a schedule rule.

        Raises ValidationError if the cadence-specific fields don't fit.
        """
        schedule = ScheduledAudit(**fields)
        # Column defaults only kick in on flush; fill them for validation
        if schedule.time_window_days is None:
            schedule.time_window_days = 3
        if schedule.reminder_days_before is None:
            schedule.reminder_days_before = 1
        if schedule.is_active is None:
            schedule.is_active = True

        rule = rule_snapshot(schedule)
        check_schedule_rule(rule)
        schedule.next_scheduled_date = next_occurrence(rule, rule.start_date)

        self.db.add(schedule)
        self.db.commit()
        self.db.refresh(schedule)
        logger.info(
            "Scheduled audit %s created (%s from %s)",
            schedule.id, schedule.cadence.value, schedule.start_date.isoformat()
        )
        return schedule

    def update_schedule(
        self,
        schedule: ScheduledAudit,
        as_of: Optional[date] = None,
        user_id: Optional[str] = None,
        **fields
    ) -> ScheduledAudit:
        """
        Change a schedule rule.

        Pending instances due on or after as_of that the new rule no longer
        produces are removed. Earlier and already started instances are kept.
        """
        unknown = sorted(set(fields) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Cannot update {', '.join(unknown)}",
                entity_type="ScheduledAudit", entity_id=schedule.id, field=unknown[0]
            )
        as_of = as_of or date.today()

        for name, value in fields.items():
            setattr(schedule, name, value)
        rule = rule_snapshot(schedule)
        try:
            check_schedule_rule(rule)
        except ValidationError:
            self.db.rollback()
            raise

        stale = [
            instance for instance in schedule.instances
            if instance.status == InstanceStatus.PENDING and instance.due_date >= as_of
        ]
        if stale:
            latest = max(instance.due_date for instance in stale)
            keep = set(OccurrenceSeries(rule, as_of, latest))
            for instance in stale:
                if instance.due_date not in keep:
                    schedule.instances.remove(instance)

        schedule.next_scheduled_date = next_occurrence(rule, as_of) if schedule.is_active else None
        record_event(
            self.db, ActivityEventType.SCHEDULE_UPDATED, "ScheduledAudit", schedule.id,
            user_id=user_id, payload={"fields": sorted(fields)}
        )
        self.db.commit()
        self.db.refresh(schedule)
        logger.info("Scheduled audit %s updated: %s", schedule.id, ", ".join(sorted(fields)))
        return schedule

    def delete_schedule(self, schedule: ScheduledAudit, user_id: Optional[str] = None) -> None:
        """Delete a rule and its instances. Audits started from them are kept."""
        schedule_id = schedule.id
        self.db.delete(schedule)
        record_event(
            self.db, ActivityEventType.SCHEDULE_DELETED, "ScheduledAudit", schedule_id,
            user_id=user_id
        )
        self.db.commit()
        logger.info("Scheduled audit %s deleted", schedule_id)

    def preview(self, schedule: ScheduledAudit, range_start: date, range_end: date) -> List[date]:
        """Due dates a rule would produce in a range, without persisting anything."""
        return list(occurrences_between(rule_snapshot(schedule), range_start, range_end))

    def set_active(self, schedule: ScheduledAudit, is_active: bool) -> None:
        schedule.is_active = is_active
        self.db.commit()

    def _schedules(self, organization_id: Optional[str] = None) -> List[ScheduledAudit]:
        query = self.db.query(ScheduledAudit)
        if organization_id is not None:
            query = query.filter(ScheduledAudit.organization_id == organization_id)
        return query.order_by(ScheduledAudit.id).all()

    def plan(self, as_of: date, organization_id: Optional[str] = None) -> ReconciliationPlan:
        """Compute, but do not apply, the reconciliation plan."""
        return self._plan(self._schedules(organization_id), as_of)

    def _plan(self, schedules: List[ScheduledAudit], as_of: date) -> ReconciliationPlan:
        rules = [rule_snapshot(s) for s in schedules]
        instances = [
            InstanceSnapshot.model_validate(instance)
            for s in schedules
            for instance in s.instances
        ]
        return reconcile(
            rules, instances, as_of,
            lookback_days=self.lookback_days,
            lookahead_days=self.lookahead_days
        )

    def run_reconciliation(
        self,
        as_of: Optional[date] = None,
        organization_id: Optional[str] = None
    ) -> ReconciliationPlan:
        """
        Materialize missing instances and update missed/completed ones.

        At-most-once creation per (rule, due date) is backed by a unique
        constraint: a concurrent run that got there first makes this run
        roll back with InvariantViolation, and the next run is a no-op.
        """
        as_of = as_of or date.today()
        schedules = self._schedules(organization_id)
        plan = self._plan(schedules, as_of)
        now = datetime.utcnow()

        created_by_rule = {}
        missed_by_rule = {}
        for draft in plan.to_create:
            instance = ScheduledAuditInstance(
                scheduled_audit_id=draft.scheduled_audit_id,
                due_date=draft.due_date,
                status=draft.status
            )
            self.db.add(instance)
            created_by_rule.setdefault(draft.scheduled_audit_id, []).append(draft.due_date)
            if draft.status == InstanceStatus.MISSED:
                missed_by_rule.setdefault(draft.scheduled_audit_id, []).append(draft.due_date)

        for instance_id in plan.to_mark_missed:
            instance = self.db.get(ScheduledAuditInstance, instance_id)
            instance.status = InstanceStatus.MISSED
            record_event(
                self.db, ActivityEventType.INSTANCE_MISSED, "ScheduledAuditInstance", instance_id,
                payload={"due_date": instance.due_date.isoformat()}
            )

        for instance_id in plan.to_mark_completed:
            instance = self.db.get(ScheduledAuditInstance, instance_id)
            instance.status = InstanceStatus.COMPLETED
            instance.completed_at = instance.completed_at or now

        for error in plan.errors:
            record_event(
                self.db, ActivityEventType.SCHEDULE_RULE_INVALID, "ScheduledAudit",
                error.scheduled_audit_id,
                payload={"field": error.field, "message": error.message}
            )

        invalid = {error.scheduled_audit_id for error in plan.errors}
        for schedule in schedules:
            if schedule.id in created_by_rule:
                latest = max(created_by_rule[schedule.id])
                if schedule.last_generated_date is None or latest > schedule.last_generated_date:
                    schedule.last_generated_date = latest
            if schedule.is_active and schedule.id not in invalid:
                schedule.next_scheduled_date = next_occurrence(rule_snapshot(schedule), as_of)

        try:
            self.db.flush()
            for schedule_id, due_dates in created_by_rule.items():
                record_event(
                    self.db, ActivityEventType.INSTANCE_CREATED, "ScheduledAudit", schedule_id,
                    payload={
                        "due_dates": [d.isoformat() for d in sorted(due_dates)],
                        "missed": [d.isoformat() for d in sorted(missed_by_rule.get(schedule_id, []))],
                    }
                )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("Reconciliation as of %s lost a race: %s", as_of.isoformat(), exc)
            raise InvariantViolation(
                "Schedule instances were created concurrently; re-run reconciliation",
                entity_type="ScheduledAuditInstance"
            ) from exc

        return plan

    def start_instance(
        self,
        instance: ScheduledAuditInstance,
        inspector_id: Optional[str] = None
    ) -> Audit:
        """Create the audit for a pending instance and link it."""
        if instance.status != InstanceStatus.PENDING:
            raise InvariantViolation(
                f"Instance {instance.id} is {instance.status.value}, only pending instances can be started",
                entity_type="ScheduledAuditInstance",
                entity_id=instance.id
            )
        schedule = instance.scheduled_audit
        inspector_id = schedule.default_inspector_id or inspector_id
        if not inspector_id:
            raise ValidationError(
                "No inspector given and the schedule has no default inspector",
                entity_type="ScheduledAuditInstance",
                entity_id=instance.id,
                field="inspector_id"
            )

        audit = AuditWorkflow(self.db).start_audit(
            schedule.location,
            schedule.template,
            inspector_id,
            audit_date=instance.due_date
        )
        instance.audit_id = audit.id
        instance.status = InstanceStatus.STARTED
        record_event(
            self.db, ActivityEventType.INSTANCE_STARTED, "ScheduledAuditInstance", instance.id,
            user_id=inspector_id, payload={"audit_id": audit.id}
        )
        self.db.commit()
        return audit

    def skip_instance(self, instance: ScheduledAuditInstance, user_id: Optional[str] = None) -> None:
        if instance.status != InstanceStatus.PENDING:
            raise InvariantViolation(
                f"Instance {instance.id} is {instance.status.value}, only pending instances can be skipped",
                entity_type="ScheduledAuditInstance",
                entity_id=instance.id
            )
        instance.status = InstanceStatus.SKIPPED
        record_event(
            self.db, ActivityEventType.INSTANCE_SKIPPED, "ScheduledAuditInstance", instance.id,
            user_id=user_id
        )
        self.db.commit()

    def due_reminders(self, as_of: date) -> List[ScheduledAuditInstance]:
        """Pending instances of active schedules whose reminder day is as_of."""
        instances = self.db.query(ScheduledAuditInstance).join(ScheduledAudit).filter(
            ScheduledAudit.is_active.is_(True),
            ScheduledAuditInstance.status == InstanceStatus.PENDING,
            ScheduledAuditInstance.due_date >= as_of
        ).order_by(ScheduledAuditInstance.due_date, ScheduledAuditInstance.id).all()
        return [
            instance for instance in instances
            if reminder_date(rule_snapshot(instance.scheduled_audit), instance.due_date) == as_of
        ]
