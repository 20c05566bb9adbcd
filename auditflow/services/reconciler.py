"""
Schedule instance reconciliation.

Compares the due dates each rule should have around "as of" against the
instances already materialized, and plans what to create and what to mark
missed. Pure: applying the plan is up to the caller.
"""
import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional

from auditflow.config import settings
from auditflow.errors import ValidationError
from auditflow.models.enums import AuditStatus, InstanceStatus
from auditflow.models.snapshots import (
    InstanceDraft,
    InstanceSnapshot,
    ReconciliationPlan,
    RuleError,
    ScheduleRule
)
from auditflow.services.recurrence import occurrences_between

logger = logging.getLogger(__name__)


def is_missed(instance: InstanceSnapshot, time_window_days: int, as_of: date) -> bool:
    """
    A pending instance is missed once its window has fully elapsed without a
    completed audit.
    """
    if instance.status != InstanceStatus.PENDING:
        return False
    if instance.audit_status == AuditStatus.COMPLETED:
        return False
    return instance.due_date + timedelta(days=time_window_days) < as_of


def is_done(instance: InstanceSnapshot) -> bool:
    """Linked audit is completed but the instance has not caught up yet."""
    return (
        instance.status in (InstanceStatus.PENDING, InstanceStatus.STARTED)
        and instance.audit_status == AuditStatus.COMPLETED
    )


def reconcile(
    rules: Iterable[ScheduleRule],
    existing_instances: Iterable[InstanceSnapshot],
    as_of: date,
    lookback_days: Optional[int] = None,
    lookahead_days: Optional[int] = None
) -> ReconciliationPlan:
    """
    Plan instance creation and status updates for a batch of rules.

    Occurrences in [as_of - lookback, as_of + lookahead] without an instance
    (whatever its status) are created as pending, or as missed when their
    window has already elapsed. A malformed or unsaved rule lands in
    plan.errors and the other rules are still reconciled.
    """
    if lookback_days is None:
        lookback_days = settings.reconcile_lookback_days
    if lookahead_days is None:
        lookahead_days = settings.reconcile_lookahead_days
    range_start = as_of - timedelta(days=lookback_days)
    range_end = as_of + timedelta(days=lookahead_days)

    by_rule = {}
    for instance in existing_instances:
        by_rule.setdefault(instance.scheduled_audit_id, []).append(instance)

    to_create: List[InstanceDraft] = []
    to_mark_missed: List[int] = []
    to_mark_completed: List[int] = []
    errors: List[RuleError] = []

    for rule in rules:
        instances = by_rule.get(rule.id, [])

        # Status upkeep applies to existing instances even for paused rules
        for instance in sorted(instances, key=lambda i: (i.due_date, i.id)):
            if is_done(instance):
                to_mark_completed.append(instance.id)
            elif is_missed(instance, rule.time_window_days, as_of):
                to_mark_missed.append(instance.id)

        if not rule.is_active:
            continue

        if rule.id is None:
            logger.warning("Skipping unsaved %s schedule rule: no id", rule.cadence.value)
            errors.append(RuleError(
                scheduled_audit_id=None,
                field="id",
                message="Schedule rule has no id and cannot own instances"
            ))
            continue

        try:
            occurrences = list(occurrences_between(rule, range_start, range_end))
        except ValidationError as exc:
            logger.warning("Skipping scheduled audit %s: %s", rule.id, exc.message)
            errors.append(RuleError(
                scheduled_audit_id=rule.id,
                field=getattr(exc, "field", None),
                message=exc.message
            ))
            continue

        known_dates = {instance.due_date for instance in instances}
        for due_date in occurrences:
            if due_date in known_dates:
                continue
            known_dates.add(due_date)
            # Window already elapsed: create it missed so the next run has nothing to do
            if due_date + timedelta(days=rule.time_window_days) < as_of:
                status = InstanceStatus.MISSED
            else:
                status = InstanceStatus.PENDING
            to_create.append(InstanceDraft(scheduled_audit_id=rule.id, due_date=due_date, status=status))

    plan = ReconciliationPlan(
        to_create=to_create,
        to_mark_missed=to_mark_missed,
        to_mark_completed=to_mark_completed,
        errors=errors
    )
    logger.info(
        "Reconciled schedules as of %s: %d to create, %d missed, %d completed, %d invalid",
        as_of.isoformat(), len(to_create), len(to_mark_missed),
        len(to_mark_completed), len(errors)
    )
    return plan
