"""
Aggregations over completed audits, actions and results.

Simple, deterministic roll-ups with no predictions. Percentages are integers
rounded half up, averages are rounded to one decimal.
"""
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from auditflow.models.enums import ActionStatus, OPEN_ACTION_STATUSES, ResultValue, Urgency
from auditflow.models.snapshots import ActionSummary, AuditSummary, ResultRow
from auditflow.services.scoring import round_half_up


class MonthlyStats(BaseModel):
    month: str  # YYYY-MM
    total_audits: int
    passed_audits: int
    failed_audits: int
    avg_score: Optional[float]
    pass_rate: int


class LocationPerformance(BaseModel):
    location_id: int
    total_audits: int
    passed_audits: int
    failed_audits: int
    pass_rate: int
    avg_score: Optional[float]
    recent_avg_score: Optional[float]
    total_actions: int
    open_actions: int
    verified_actions: int
    overdue_actions: int
    first_audit_date: Optional[date]
    last_audit_date: Optional[date]


class CategoryPerformance(BaseModel):
    category_id: int
    category_name: str
    total_checks: int
    passed_checks: int
    failed_checks: int
    na_checks: int
    pass_rate: int


class FailedItemStats(BaseModel):
    template_item_id: int
    item_title: str
    category_name: str
    total_checks: int
    fail_count: int
    fail_rate: int


class InspectorPerformance(BaseModel):
    inspector_id: str
    total_audits: int
    passed_audits: int
    pass_rate: int
    avg_score: Optional[float]
    audits_this_month: int
    locations_audited: int
    last_audit_date: Optional[date]


class ActionStatusCount(BaseModel):
    status: ActionStatus
    urgency: Urgency
    count: int
    overdue_count: int


class LocationComparison(BaseModel):
    location_id: int
    current_score: int
    previous_score: int
    trend: str  # up, down or stable
    trend_value: int


def rate(part: int, whole: int) -> int:
    return round_half_up(part / whole * 100) if whole else 0


def average_score(audits: Iterable[AuditSummary]) -> Optional[float]:
    scores = [a.pass_percentage for a in audits]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 1)


def pass_rate(audits: Sequence[AuditSummary]) -> int:
    """Share of audits that passed, as a whole percentage."""
    return rate(sum(1 for a in audits if a.passed), len(audits))


def score_trend(audits: Sequence[AuditSummary]) -> float:
    """
    Average score of the newer half minus the older half (by audit date).

    Positive means improving. Fewer than two audits is no trend.
    """
    ordered = sorted(audits, key=lambda a: (a.audit_date, a.id))
    if len(ordered) < 2:
        return 0.0
    middle = len(ordered) // 2
    older = average_score(ordered[:middle])
    newer = average_score(ordered[middle:])
    return round(newer - older, 1)


def monthly_stats(audits: Iterable[AuditSummary]) -> List[MonthlyStats]:
    """Per calendar month, oldest first."""
    buckets: Dict[str, List[AuditSummary]] = defaultdict(list)
    for audit in audits:
        buckets[audit.audit_date.strftime("%Y-%m")].append(audit)

    stats = []
    for month in sorted(buckets):
        group = buckets[month]
        passed = sum(1 for a in group if a.passed)
        stats.append(MonthlyStats(
            month=month,
            total_audits=len(group),
            passed_audits=passed,
            failed_audits=len(group) - passed,
            avg_score=average_score(group),
            pass_rate=rate(passed, len(group))
        ))
    return stats


def is_overdue(action: ActionSummary, as_of: date) -> bool:
    return (
        action.status in OPEN_ACTION_STATUSES
        and action.deadline is not None
        and action.deadline < as_of
    )


def location_performance(
    audits: Iterable[AuditSummary],
    actions: Iterable[ActionSummary],
    as_of: date,
    recent_count: int = 3
) -> List[LocationPerformance]:
    """Per-location roll-up, busiest location first."""
    audits_by_location: Dict[int, List[AuditSummary]] = defaultdict(list)
    actions_by_location: Dict[int, List[ActionSummary]] = defaultdict(list)
    for audit in audits:
        audits_by_location[audit.location_id].append(audit)
    for action in actions:
        actions_by_location[action.location_id].append(action)

    rows = []
    for location_id in set(audits_by_location) | set(actions_by_location):
        group = sorted(audits_by_location.get(location_id, []), key=lambda a: (a.audit_date, a.id))
        location_actions = actions_by_location.get(location_id, [])
        passed = sum(1 for a in group if a.passed)
        rows.append(LocationPerformance(
            location_id=location_id,
            total_audits=len(group),
            passed_audits=passed,
            failed_audits=len(group) - passed,
            pass_rate=rate(passed, len(group)),
            avg_score=average_score(group),
            recent_avg_score=average_score(group[-recent_count:]),
            total_actions=len(location_actions),
            open_actions=sum(1 for a in location_actions if a.status in OPEN_ACTION_STATUSES),
            verified_actions=sum(1 for a in location_actions if a.status == ActionStatus.VERIFIED),
            overdue_actions=sum(1 for a in location_actions if is_overdue(a, as_of)),
            first_audit_date=group[0].audit_date if group else None,
            last_audit_date=group[-1].audit_date if group else None
        ))
    rows.sort(key=lambda r: (-r.total_audits, r.location_id))
    return rows


def category_performance(rows: Iterable[ResultRow]) -> List[CategoryPerformance]:
    """Pass rate per category; n/a checks are counted but excluded from the rate."""
    counts: Dict[int, Dict[ResultValue, int]] = defaultdict(lambda: defaultdict(int))
    names: Dict[int, str] = {}
    for row in rows:
        counts[row.category_id][row.result] += 1
        names[row.category_id] = row.category_name

    stats = []
    for category_id in sorted(counts):
        c = counts[category_id]
        passed, failed, na = c[ResultValue.PASS], c[ResultValue.FAIL], c[ResultValue.NA]
        stats.append(CategoryPerformance(
            category_id=category_id,
            category_name=names[category_id],
            total_checks=passed + failed + na,
            passed_checks=passed,
            failed_checks=failed,
            na_checks=na,
            pass_rate=rate(passed, passed + failed)
        ))
    return stats


def most_failed_items(rows: Iterable[ResultRow], limit: int = 10) -> List[FailedItemStats]:
    """Items with the most failures, then highest fail rate."""
    totals: Dict[int, int] = defaultdict(int)
    fails: Dict[int, int] = defaultdict(int)
    labels: Dict[int, ResultRow] = {}
    for row in rows:
        if row.result == ResultValue.NA:
            continue
        totals[row.template_item_id] += 1
        labels[row.template_item_id] = row
        if row.result == ResultValue.FAIL:
            fails[row.template_item_id] += 1

    stats = [
        FailedItemStats(
            template_item_id=item_id,
            item_title=labels[item_id].item_title,
            category_name=labels[item_id].category_name,
            total_checks=totals[item_id],
            fail_count=fails[item_id],
            fail_rate=rate(fails[item_id], totals[item_id])
        )
        for item_id in totals
        if fails[item_id]
    ]
    stats.sort(key=lambda s: (-s.fail_count, -s.fail_rate, s.template_item_id))
    return stats[:limit]


def inspector_performance(audits: Iterable[AuditSummary], as_of: date) -> List[InspectorPerformance]:
    """Per-inspector roll-up, most audits first. Audits without an inspector are left out."""
    by_inspector: Dict[str, List[AuditSummary]] = defaultdict(list)
    for audit in audits:
        if audit.inspector_id:
            by_inspector[audit.inspector_id].append(audit)

    rows = []
    for inspector_id, group in by_inspector.items():
        passed = sum(1 for a in group if a.passed)
        rows.append(InspectorPerformance(
            inspector_id=inspector_id,
            total_audits=len(group),
            passed_audits=passed,
            pass_rate=rate(passed, len(group)),
            avg_score=average_score(group),
            audits_this_month=sum(
                1 for a in group
                if (a.audit_date.year, a.audit_date.month) == (as_of.year, as_of.month)
            ),
            locations_audited=len({a.location_id for a in group}),
            last_audit_date=max(a.audit_date for a in group)
        ))
    rows.sort(key=lambda r: (-r.total_audits, r.inspector_id))
    return rows


def action_status_distribution(actions: Iterable[ActionSummary], as_of: date) -> List[ActionStatusCount]:
    """Action counts per (status, urgency), in enum order."""
    counts: Dict[tuple, List[ActionSummary]] = defaultdict(list)
    for action in actions:
        counts[(action.status, action.urgency)].append(action)

    status_order = list(ActionStatus)
    urgency_order = list(Urgency)
    keys = sorted(counts, key=lambda k: (status_order.index(k[0]), urgency_order.index(k[1])))
    return [
        ActionStatusCount(
            status=status,
            urgency=urgency,
            count=len(counts[(status, urgency)]),
            overdue_count=sum(1 for a in counts[(status, urgency)] if is_overdue(a, as_of))
        )
        for status, urgency in keys
    ]


def location_comparison(
    performance: Iterable[LocationPerformance],
    threshold: float = 2.0
) -> List[LocationComparison]:
    """
    Recent average against the all-time average for each location.

    Locations with fewer than two audits have nothing to compare and are
    left out. A difference within the threshold either way is "stable".
    """
    rows = []
    for location in performance:
        if location.total_audits < 2:
            continue
        current = location.recent_avg_score or location.avg_score or 0
        previous = location.avg_score or 0
        diff = current - previous
        if diff > threshold:
            trend = "up"
        elif diff < -threshold:
            trend = "down"
        else:
            trend = "stable"
        rows.append(LocationComparison(
            location_id=location.location_id,
            current_score=round_half_up(current),
            previous_score=round_half_up(previous),
            trend=trend,
            trend_value=round_half_up(diff)
        ))
    rows.sort(key=lambda r: (-r.current_score, r.location_id))
    return rows
