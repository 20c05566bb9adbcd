"""End-to-end tests through the HTTP API."""
import pytest
from datetime import date, timedelta
from fastapi.testclient import TestClient
from auditflow.database import get_db
from auditflow.main import app


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def location(client):
    response = client.post("/api/locations", json={
        "organization_id": "org_1",
        "name": "Store Utrecht",
        "manager_id": "manager_1"
    })
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def template(client):
    response = client.post("/api/templates", json={
        "organization_id": "org_1",
        "name": "Store hygiene",
        "categories": [
            {"name": "Hygiene", "weight": 1, "items": [
                {"title": "Floors clean", "creates_action_on_fail": False}
            ]},
            {"name": "Safety", "weight": 2, "items": [
                {"title": "Fire exit unobstructed", "action_urgency": "high", "action_deadline_days": 7}
            ]},
        ]
    })
    assert response.status_code == 201
    return response.json()


def template_item_ids(template):
    return [category["items"][0]["id"] for category in template["categories"]]


def start_audit(client, location, template):
    response = client.post("/api/audits", json={
        "location_id": location["id"],
        "template_id": template["id"],
        "inspector_id": "inspector_1",
        "audit_date": "2024-01-01"
    })
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


class TestTemplates:
    def test_default_threshold_and_order(self, template):
        assert template["pass_threshold"] == 70
        assert [c["name"] for c in template["categories"]] == ["Hygiene", "Safety"]
        assert template["categories"][0]["items"][0]["action_deadline_days"] == 7

    def test_invalid_weight_rejected(self, client):
        response = client.post("/api/templates", json={
            "organization_id": "org_1",
            "name": "Broken",
            "categories": [{"name": "Zero", "weight": 0}]
        })

        assert response.status_code == 422

    def test_item_with_results_is_soft_deleted(self, client, location, template):
        floors, _ = template_item_ids(template)
        audit = start_audit(client, location, template)
        client.put(f"/api/audits/{audit['id']}/results", json={
            "results": [{"template_item_id": floors, "result": "pass"}]
        })

        response = client.delete(f"/api/templates/{template['id']}/items/{floors}")

        assert response.status_code == 204
        kept = client.get(f"/api/templates/{template['id']}").json()
        assert kept["categories"][0]["items"][0]["deleted"] is True

    def test_unused_item_is_removed(self, client, template):
        floors, _ = template_item_ids(template)

        client.delete(f"/api/templates/{template['id']}/items/{floors}")

        kept = client.get(f"/api/templates/{template['id']}").json()
        assert kept["categories"][0]["items"] == []

    def test_deactivated_template_cannot_start_audits(self, client, location, template):
        response = client.put(f"/api/templates/{template['id']}/active", json={
            "is_active": False, "user_id": "manager_1"
        })
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        refused = client.post("/api/audits", json={
            "location_id": location["id"],
            "template_id": template["id"],
            "inspector_id": "inspector_1"
        })
        assert refused.status_code == 422

        client.put(f"/api/templates/{template['id']}/active", json={"is_active": True})
        start_audit(client, location, template)

        events = client.get("/api/activity", params={"entity_type": "Template"}).json()
        assert [e["event_type"] for e in events] == ["template_activated", "template_deactivated"]

    def test_toggle_missing_template(self, client):
        assert client.put("/api/templates/999/active", json={"is_active": False}).status_code == 404


class TestAuditFlow:
    def test_complete_audit_creates_action(self, client, location, template):
        floors, fire_exit = template_item_ids(template)
        audit = start_audit(client, location, template)

        response = client.put(f"/api/audits/{audit['id']}/results", json={"results": [
            {"template_item_id": floors, "result": "pass"},
            {"template_item_id": fire_exit, "result": "fail", "comment": "Blocked"},
        ]})
        assert response.status_code == 200
        assert len(response.json()["results"]) == 2

        score = client.get(f"/api/audits/{audit['id']}/score").json()
        assert score["pass_percentage"] == 33
        assert score["failed_item_ids"] == [fire_exit]

        response = client.post(f"/api/audits/{audit['id']}/complete")

        assert response.status_code == 200
        body = response.json()
        assert body["audit"]["status"] == "completed"
        assert body["audit"]["passed"] is False
        assert len(body["actions"]) == 1
        action = body["actions"][0]
        assert action["urgency"] == "high"
        assert action["assigned_to_id"] == "manager_1"
        assert action["description"] == "Blocked"
        expected = date.fromisoformat(body["audit"]["completed_at"][:10]) + timedelta(days=7)
        assert action["deadline"] == expected.isoformat()

    def test_completed_audit_refuses_changes(self, client, location, template):
        floors, _ = template_item_ids(template)
        audit = start_audit(client, location, template)
        client.post(f"/api/audits/{audit['id']}/complete")

        again = client.post(f"/api/audits/{audit['id']}/complete")
        results = client.put(f"/api/audits/{audit['id']}/results", json={
            "results": [{"template_item_id": floors, "result": "fail"}]
        })

        assert again.status_code == 409
        assert again.json()["detail"]["entity_type"] == "Audit"
        assert results.status_code == 409

    def test_missing_audit(self, client):
        assert client.get("/api/audits/999").status_code == 404

    def test_list_by_status(self, client, location, template):
        first = start_audit(client, location, template)
        start_audit(client, location, template)
        client.post(f"/api/audits/{first['id']}/cancel")

        cancelled = client.get("/api/audits", params={"status": "cancelled"}).json()

        assert [a["id"] for a in cancelled] == [first["id"]]


class TestActions:
    def test_action_lifecycle(self, client, location):
        deadline = (date.today() + timedelta(days=3)).isoformat()
        created = client.post("/api/actions", json={
            "organization_id": "org_1",
            "location_id": location["id"],
            "title": "Replace broken lamp",
            "deadline": deadline
        })
        assert created.status_code == 201
        action_id = created.json()["id"]

        assert client.put(f"/api/actions/{action_id}/start").json()["status"] == "in_progress"
        responded = client.put(f"/api/actions/{action_id}/respond", json={"response_text": "Lamp replaced"})
        assert responded.json()["status"] == "completed"

        verified = client.put(f"/api/actions/{action_id}/verify", json={"approved": True, "user_id": "auditor_2"})
        assert verified.json()["status"] == "verified"

        again = client.put(f"/api/actions/{action_id}/verify", json={"approved": False, "user_id": "auditor_2"})
        assert again.status_code == 409

    def test_past_deadline_refused(self, client, location):
        response = client.post("/api/actions", json={
            "organization_id": "org_1",
            "location_id": location["id"],
            "title": "Too late",
            "deadline": "2000-01-01"
        })

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "deadline"


class TestSchedules:
    @pytest.fixture
    def schedule(self, client, location, template):
        response = client.post("/api/scheduled-audits", json={
            "organization_id": "org_1",
            "location_id": location["id"],
            "template_id": template["id"],
            "name": "Weekly walk",
            "cadence": "weekly",
            "start_date": "2024-01-01",
            "day_of_week": 1,
            "default_inspector_id": "inspector_1"
        })
        assert response.status_code == 201
        return response.json()

    def test_occurrences(self, client, schedule):
        response = client.get(
            f"/api/scheduled-audits/{schedule['id']}/occurrences",
            params={"start": "2024-01-01", "end": "2024-01-31"}
        )

        assert response.json() == ["2024-01-01", "2024-01-08", "2024-01-15", "2024-01-22", "2024-01-29"]

    def test_weekly_without_day_refused(self, client, location, template):
        response = client.post("/api/scheduled-audits", json={
            "organization_id": "org_1",
            "location_id": location["id"],
            "template_id": template["id"],
            "name": "No day",
            "cadence": "weekly",
            "start_date": "2024-01-01"
        })

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "day_of_week"

    def test_reconcile_and_start(self, client, schedule):
        plan = client.post("/api/scheduled-audits/reconcile", json={"as_of": "2024-01-10"}).json()
        assert plan["to_create"]

        again = client.post("/api/scheduled-audits/reconcile", json={"as_of": "2024-01-10"}).json()
        assert again["to_create"] == []

        instances = client.get(f"/api/scheduled-audits/{schedule['id']}/instances").json()
        pending = next(i for i in instances if i["due_date"] == "2024-01-15")

        audit = client.put(f"/api/scheduled-instances/{pending['id']}/start", json={})
        assert audit.status_code == 200
        assert audit.json()["audit_date"] == "2024-01-15"

        second = client.put(f"/api/scheduled-instances/{pending['id']}/start", json={})
        assert second.status_code == 409

    def test_update(self, client, schedule):
        client.post("/api/scheduled-audits/reconcile", json={"as_of": "2024-01-10"})

        response = client.put(
            f"/api/scheduled-audits/{schedule['id']}",
            params={"as_of": "2024-01-10"},
            json={"day_of_week": 3, "user_id": "manager_1"}
        )

        assert response.status_code == 200
        assert response.json()["day_of_week"] == 3
        assert response.json()["next_scheduled_date"] == "2024-01-10"
        instances = client.get(f"/api/scheduled-audits/{schedule['id']}/instances").json()
        assert sorted(i["due_date"] for i in instances) == ["2024-01-01", "2024-01-08"]

    def test_update_day_of_month_past_28_refused(self, client, schedule):
        response = client.put(f"/api/scheduled-audits/{schedule['id']}", json={
            "cadence": "monthly", "day_of_month": 31
        })

        assert response.status_code == 422

    def test_update_making_rule_invalid_refused(self, client, schedule):
        response = client.put(f"/api/scheduled-audits/{schedule['id']}", json={"cadence": "monthly"})

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "day_of_month"

    def test_delete(self, client, schedule):
        client.post("/api/scheduled-audits/reconcile", json={"as_of": "2024-01-10"})

        response = client.delete(f"/api/scheduled-audits/{schedule['id']}")

        assert response.status_code == 204
        assert client.get(f"/api/scheduled-audits/{schedule['id']}/instances").status_code == 404
        assert client.get("/api/scheduled-audits").json() == []

    def test_pause(self, client, schedule):
        response = client.put(f"/api/scheduled-audits/{schedule['id']}/active", json={"is_active": False})

        assert response.json()["is_active"] is False


class TestAnalytics:
    def test_overview(self, client, location, template):
        floors, fire_exit = template_item_ids(template)
        audit = start_audit(client, location, template)
        client.put(f"/api/audits/{audit['id']}/results", json={"results": [
            {"template_item_id": floors, "result": "pass"},
            {"template_item_id": fire_exit, "result": "fail"},
        ]})
        client.post(f"/api/audits/{audit['id']}/complete")

        overview = client.get("/api/analytics/overview", params={"organization_id": "org_1"}).json()
        failed = client.get("/api/analytics/failed-items", params={"organization_id": "org_1"}).json()

        assert overview["total_audits"] == 1
        assert overview["pass_rate"] == 0
        assert overview["avg_score"] == 33.0
        assert overview["open_actions"] == 1
        assert overview["monthly"][0]["month"] == "2024-01"
        assert [item["template_item_id"] for item in failed] == [fire_exit]

    def test_activity_feed(self, client, location, template):
        start_audit(client, location, template)

        events = client.get("/api/activity", params={"entity_type": "Audit"}).json()

        assert events[0]["event_type"] == "audit_started"

    def test_inspectors_actions_and_comparison(self, client, location, template):
        floors, fire_exit = template_item_ids(template)
        for score_results in (["pass", "fail"], ["pass", "pass"]):
            audit = start_audit(client, location, template)
            client.put(f"/api/audits/{audit['id']}/results", json={"results": [
                {"template_item_id": floors, "result": score_results[0]},
                {"template_item_id": fire_exit, "result": score_results[1]},
            ]})
            client.post(f"/api/audits/{audit['id']}/complete")
        params = {"organization_id": "org_1", "as_of": "2024-01-20"}

        inspectors = client.get("/api/analytics/inspectors", params=params).json()
        statuses = client.get("/api/analytics/action-status", params=params).json()
        comparison = client.get("/api/analytics/location-comparison", params=params).json()

        assert inspectors[0]["inspector_id"] == "inspector_1"
        assert inspectors[0]["total_audits"] == 2
        assert inspectors[0]["audits_this_month"] == 2
        assert statuses == [{"status": "pending", "urgency": "high", "count": 1, "overdue_count": 0}]
        assert comparison[0]["location_id"] == location["id"]
        assert comparison[0]["trend"] == "stable"
