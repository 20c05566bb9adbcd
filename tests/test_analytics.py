"""Tests for reporting roll-ups."""
from datetime import date
from auditflow.models.enums import ActionStatus, ResultValue, Urgency
from auditflow.models.snapshots import ActionSummary, AuditSummary, ResultRow
from auditflow.services.analytics import (
    action_status_distribution,
    average_score,
    category_performance,
    inspector_performance,
    is_overdue,
    location_comparison,
    location_performance,
    monthly_stats,
    most_failed_items,
    pass_rate,
    score_trend
)


def audit(audit_id, day, score, location_id=1, threshold=70, inspector_id=None):
    return AuditSummary(
        id=audit_id,
        location_id=location_id,
        inspector_id=inspector_id,
        audit_date=day,
        pass_percentage=score,
        passed=score >= threshold
    )


def action(action_id, status, deadline=None, location_id=1, urgency=Urgency.MEDIUM):
    return ActionSummary(
        id=action_id, location_id=location_id, status=status, deadline=deadline, urgency=urgency
    )


def row(item_id, result, category_id=1, title=None, category="Safety"):
    return ResultRow(
        template_item_id=item_id,
        item_title=title or f"Item {item_id}",
        category_id=category_id,
        category_name=category,
        result=result
    )


class TestAudits:
    def test_average_and_pass_rate(self):
        audits = [audit(1, date(2024, 1, 5), 80), audit(2, date(2024, 1, 9), 65), audit(3, date(2024, 2, 1), 90)]

        assert average_score(audits) == 78.3
        assert pass_rate(audits) == 67

    def test_empty(self):
        assert average_score([]) is None
        assert pass_rate([]) == 0
        assert score_trend([]) == 0.0

    def test_trend_newer_minus_older(self):
        audits = [
            audit(3, date(2024, 3, 1), 90),
            audit(1, date(2024, 1, 1), 60),
            audit(4, date(2024, 4, 1), 80),
            audit(2, date(2024, 2, 1), 70),
        ]

        assert score_trend(audits) == 20.0

    def test_monthly_stats(self):
        audits = [audit(1, date(2024, 2, 3), 50), audit(2, date(2024, 1, 5), 80), audit(3, date(2024, 1, 20), 90)]

        stats = monthly_stats(audits)

        assert [s.month for s in stats] == ["2024-01", "2024-02"]
        assert stats[0].total_audits == 2
        assert stats[0].avg_score == 85.0
        assert stats[0].pass_rate == 100
        assert stats[1].failed_audits == 1
        assert stats[1].pass_rate == 0


class TestActions:
    def test_overdue_only_for_open_actions(self):
        as_of = date(2024, 1, 10)

        assert is_overdue(action(1, ActionStatus.PENDING, date(2024, 1, 9)), as_of) is True
        assert is_overdue(action(2, ActionStatus.IN_PROGRESS, date(2024, 1, 10)), as_of) is False
        assert is_overdue(action(3, ActionStatus.COMPLETED, date(2024, 1, 1)), as_of) is False
        assert is_overdue(action(4, ActionStatus.PENDING), as_of) is False

    def test_status_distribution(self):
        """Counts per (status, urgency); only open actions can be overdue."""
        as_of = date(2024, 1, 10)
        actions = [
            action(1, ActionStatus.PENDING, date(2024, 1, 9), urgency=Urgency.HIGH),
            action(2, ActionStatus.VERIFIED, date(2024, 1, 1)),
            action(3, ActionStatus.PENDING, date(2024, 1, 20), urgency=Urgency.HIGH),
            action(4, ActionStatus.PENDING, urgency=Urgency.LOW),
        ]

        rows = action_status_distribution(actions, as_of)

        assert [(r.status, r.urgency, r.count, r.overdue_count) for r in rows] == [
            (ActionStatus.PENDING, Urgency.LOW, 1, 0),
            (ActionStatus.PENDING, Urgency.HIGH, 2, 1),
            (ActionStatus.VERIFIED, Urgency.MEDIUM, 1, 0),
        ]

    def test_status_distribution_empty(self):
        assert action_status_distribution([], date(2024, 1, 10)) == []


class TestLocationPerformance:
    def test_roll_up_per_location(self):
        audits = [
            audit(1, date(2024, 1, 1), 50, location_id=1),
            audit(2, date(2024, 2, 1), 80, location_id=1),
            audit(3, date(2024, 3, 1), 90, location_id=1),
            audit(4, date(2024, 4, 1), 100, location_id=1),
            audit(5, date(2024, 1, 15), 75, location_id=2),
        ]
        actions = [
            action(1, ActionStatus.PENDING, date(2024, 1, 8), location_id=1),
            action(2, ActionStatus.VERIFIED, date(2024, 1, 8), location_id=1),
            action(3, ActionStatus.IN_PROGRESS, date(2024, 12, 1), location_id=2),
        ]

        rows = location_performance(audits, actions, as_of=date(2024, 6, 1))

        assert [r.location_id for r in rows] == [1, 2]
        first = rows[0]
        assert first.total_audits == 4
        assert first.passed_audits == 3
        assert first.pass_rate == 75
        assert first.avg_score == 80.0
        assert first.recent_avg_score == 90.0
        assert first.total_actions == 2
        assert first.open_actions == 1
        assert first.verified_actions == 1
        assert first.overdue_actions == 1
        assert first.first_audit_date == date(2024, 1, 1)
        assert first.last_audit_date == date(2024, 4, 1)
        assert rows[1].overdue_actions == 0

    def test_location_with_only_actions(self):
        rows = location_performance([], [action(1, ActionStatus.PENDING, location_id=9)], as_of=date(2024, 1, 1))

        assert rows[0].location_id == 9
        assert rows[0].total_audits == 0
        assert rows[0].avg_score is None
        assert rows[0].last_audit_date is None


class TestInspectorPerformance:
    def test_roll_up_per_inspector(self):
        audits = [
            audit(1, date(2024, 1, 5), 80, location_id=1, inspector_id="inspector_a"),
            audit(2, date(2024, 2, 1), 60, location_id=2, inspector_id="inspector_a"),
            audit(3, date(2024, 2, 10), 90, location_id=1, inspector_id="inspector_a"),
            audit(4, date(2024, 1, 20), 75, location_id=2, inspector_id="inspector_b"),
            audit(5, date(2024, 2, 12), 40, location_id=2),
        ]

        rows = inspector_performance(audits, as_of=date(2024, 2, 15))

        assert [r.inspector_id for r in rows] == ["inspector_a", "inspector_b"]
        first = rows[0]
        assert first.total_audits == 3
        assert first.passed_audits == 2
        assert first.pass_rate == 67
        assert first.avg_score == 76.7
        assert first.audits_this_month == 2
        assert first.locations_audited == 2
        assert first.last_audit_date == date(2024, 2, 10)
        assert rows[1].audits_this_month == 0

    def test_no_inspectors(self):
        assert inspector_performance([audit(1, date(2024, 1, 1), 80)], as_of=date(2024, 1, 1)) == []


class TestLocationComparison:
    def test_recent_against_overall(self):
        """
        Location 1 improves, 3 declines, 4 holds steady; location 2 has a
        single audit and nothing to compare.
        """
        audits = [
            audit(1, date(2024, 1, 1), 50, location_id=1),
            audit(2, date(2024, 2, 1), 80, location_id=1),
            audit(3, date(2024, 3, 1), 90, location_id=1),
            audit(4, date(2024, 4, 1), 100, location_id=1),
            audit(5, date(2024, 1, 15), 75, location_id=2),
            audit(6, date(2024, 1, 1), 90, location_id=3),
            audit(7, date(2024, 2, 1), 50, location_id=3),
            audit(8, date(2024, 3, 1), 40, location_id=3),
            audit(9, date(2024, 4, 1), 30, location_id=3),
            audit(10, date(2024, 1, 1), 70, location_id=4),
            audit(11, date(2024, 2, 1), 72, location_id=4),
        ]
        performance = location_performance(audits, [], as_of=date(2024, 6, 1))

        rows = location_comparison(performance)

        assert [(r.location_id, r.current_score, r.previous_score, r.trend, r.trend_value) for r in rows] == [
            (1, 90, 80, "up", 10),
            (4, 71, 71, "stable", 0),
            (3, 40, 53, "down", -12),
        ]


class TestResults:
    def test_category_pass_rate_ignores_na(self):
        rows = [
            row(1, ResultValue.PASS),
            row(1, ResultValue.FAIL),
            row(2, ResultValue.NA),
            row(3, ResultValue.PASS, category_id=2, category="Hygiene"),
        ]

        stats = category_performance(rows)

        assert [s.category_id for s in stats] == [1, 2]
        assert stats[0].total_checks == 3
        assert stats[0].na_checks == 1
        assert stats[0].pass_rate == 50
        assert stats[1].pass_rate == 100

    def test_most_failed_items(self):
        rows = [
            row(1, ResultValue.FAIL, title="Fire exit"),
            row(1, ResultValue.FAIL, title="Fire exit"),
            row(1, ResultValue.PASS, title="Fire exit"),
            row(2, ResultValue.FAIL, title="Floors"),
            row(2, ResultValue.NA, title="Floors"),
            row(3, ResultValue.PASS, title="Lights"),
            row(4, ResultValue.FAIL, title="Signage"),
            row(4, ResultValue.PASS, title="Signage"),
        ]

        stats = most_failed_items(rows)

        assert [s.template_item_id for s in stats] == [1, 2, 4]
        assert stats[0].fail_count == 2
        assert stats[0].fail_rate == 67
        assert stats[1].total_checks == 1
        assert stats[1].fail_rate == 100

    def test_most_failed_items_limit(self):
        rows = [row(item_id, ResultValue.FAIL) for item_id in range(1, 6)]

        assert len(most_failed_items(rows, limit=2)) == 2
