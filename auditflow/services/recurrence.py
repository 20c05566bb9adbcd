"""
Recurrence engine for scheduled audits.

Turns a rule {cadence, start date, day-of-week/month, end date} into the
concrete due dates falling inside a date range.

Invariants:
- Occurrences come out in ascending order, no date twice
- Nothing before start_date, nothing after end_date (both inclusive)
- Month-based cadences clamp to the last day of short months and never roll
  over into the following month
"""
import calendar
import logging
from datetime import date, timedelta
from typing import Iterator, Optional

from auditflow.errors import ValidationError
from auditflow.models.enums import Cadence
from auditflow.models.snapshots import ScheduleRule

logger = logging.getLogger(__name__)

WEEK_STEPS = {
    Cadence.WEEKLY: 7,
    Cadence.BIWEEKLY: 14,
}

MONTH_STEPS = {
    Cadence.MONTHLY: 1,
    Cadence.QUARTERLY: 3,
    Cadence.YEARLY: 12,
}


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamped_date(year: int, month: int, day: int) -> date:
    """The given day, or the last day of the month if the month is shorter."""
    return date(year, month, min(day, days_in_month(year, month)))


def add_months(year: int, month: int, months: int):
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def weekday_number(value: date) -> int:
    """Day of week with 0=Sunday .. 6=Saturday."""
    return (value.weekday() + 1) % 7


def validate_rule(rule: ScheduleRule) -> None:
    """
    Check the cadence-specific fields of a rule.

    Raises ValidationError for the first problem found.
    """
    def invalid(field: str, message: str):
        return ValidationError(message, entity_type="ScheduledAudit", entity_id=rule.id, field=field)

    if rule.cadence in WEEK_STEPS:
        if rule.day_of_week is None:
            raise invalid("day_of_week", f"day_of_week is required for {rule.cadence.value} schedules")
        if not 0 <= rule.day_of_week <= 6:
            raise invalid("day_of_week", f"day_of_week must be 0-6, got {rule.day_of_week}")

    if rule.cadence == Cadence.MONTHLY and rule.day_of_month is None:
        raise invalid("day_of_month", "day_of_month is required for monthly schedules")
    if rule.cadence in (Cadence.MONTHLY, Cadence.QUARTERLY) and rule.day_of_month is not None:
        if not 1 <= rule.day_of_month <= 31:
            raise invalid("day_of_month", f"day_of_month must be 1-31, got {rule.day_of_month}")

    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise invalid("end_date", "end_date is before start_date")
    if rule.time_window_days < 1:
        raise invalid("time_window_days", "time_window_days must be at least 1")
    if rule.reminder_days_before < 0:
        raise invalid("reminder_days_before", "reminder_days_before cannot be negative")


class OccurrenceSeries:
    """
    Due dates of one rule inside [range_start, range_end].

    Lazy and restartable: every iteration recomputes from scratch, so the
    same series can be walked any number of times with identical results.
    """

    def __init__(self, rule: ScheduleRule, range_start: date, range_end: date):
        self.rule = rule
        self.range_start = range_start
        self.range_end = range_end

    def __iter__(self) -> Iterator[date]:
        rule = self.rule
        lower = max(self.range_start, rule.start_date)
        upper = self.range_end
        if rule.end_date is not None:
            upper = min(upper, rule.end_date)
        if lower > upper:
            return iter(())

        if rule.cadence == Cadence.ONCE:
            return iter((rule.start_date,) if lower <= rule.start_date <= upper else ())
        if rule.cadence == Cadence.DAILY:
            return self._daily(lower, upper)
        if rule.cadence in WEEK_STEPS:
            return self._weekly(lower, upper, WEEK_STEPS[rule.cadence])
        return self._monthly(lower, upper, MONTH_STEPS[rule.cadence])

    def __repr__(self):
        return "OccurrenceSeries(rule=%s, cadence=%s, %s..%s)" % (
            self.rule.id, self.rule.cadence.value,
            self.range_start.isoformat(), self.range_end.isoformat()
        )

    def _daily(self, lower: date, upper: date) -> Iterator[date]:
        current = lower
        while current <= upper:
            yield current
            if current == upper:
                return
            current += timedelta(days=1)

    def _weekly(self, lower: date, upper: date, step_days: int) -> Iterator[date]:
        start = self.rule.start_date
        offset = (self.rule.day_of_week - weekday_number(start)) % 7
        if (upper - start).days < offset:
            return
        anchor = start + timedelta(days=offset)

        # Jump straight to the first step on or after lower
        skip = 0
        if lower > anchor:
            skip = -(-(lower - anchor).days // step_days)
        if (upper - anchor).days < skip * step_days:
            return
        current = anchor + timedelta(days=skip * step_days)
        while current <= upper:
            yield current
            # Stepping past upper could overflow date.max
            if (upper - current).days < step_days:
                return
            current += timedelta(days=step_days)

    def _monthly(self, lower: date, upper: date, step_months: int) -> Iterator[date]:
        start = self.rule.start_date
        day = start.day
        if self.rule.cadence != Cadence.YEARLY and self.rule.day_of_month is not None:
            day = self.rule.day_of_month

        months_ahead = (lower.year - start.year) * 12 + (lower.month - start.month)
        step = max(0, months_ahead // step_months)
        while True:
            year, month = add_months(start.year, start.month, step * step_months)
            if year > date.max.year:
                return
            current = clamped_date(year, month, day)
            if current > upper:
                return
            if current >= lower:
                yield current
            step += 1


def occurrences_between(
    rule: ScheduleRule,
    range_start: date,
    range_end: date
) -> OccurrenceSeries:
    """
    Due dates of a rule inside [range_start, range_end], ascending.

    Raises ValidationError if the rule is malformed.
    """
    validate_rule(rule)
    return OccurrenceSeries(rule, range_start, range_end)


def next_occurrence(rule: ScheduleRule, on_or_after: date) -> Optional[date]:
    """First due date on or after the given date, None when the rule has run out."""
    validate_rule(rule)
    upper = rule.end_date or date.max
    return next(iter(OccurrenceSeries(rule, on_or_after, upper)), None)


def reminder_date(rule: ScheduleRule, due_date: date) -> date:
    """Day on which the reminder for an occurrence should go out."""
    return due_date - timedelta(days=rule.reminder_days_before)


def window_end(rule: ScheduleRule, due_date: date) -> date:
    """Last day an audit may still be completed for an occurrence."""
    return due_date + timedelta(days=rule.time_window_days)
