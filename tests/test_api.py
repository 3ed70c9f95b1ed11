from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from oee_monitor.auth.jwt_handler import create_user_token
from oee_monitor.auth.permissions import ROLE_PERMISSIONS, Permission, UserRole
from oee_monitor.main import app

INTERVAL = {
    "machine_id": "M1",
    "start_time": "2025-03-10T09:00:00Z",
    "end_time": "2025-03-10T16:00:00Z",
    "good_production": 400,
    "film_waste": 20,
    "organic_waste": 10,
    "planned_time": 480,
    "downtime_minutes": 60,
    "target_rate_per_minute": 65,
}


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def auth(role="admin", user_id="user-1"):
    return {"Authorization": f"Bearer {create_user_token(user_id, role)}"}


def create(client, **overrides):
    response = client.post("/api/v1/production/intervals", json={**INTERVAL, **overrides}, headers=auth())
    assert response.status_code == 201
    return response.json()


def test_health_and_root(client):
    health = client.get("/health")

    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["components"]["database"]["backend"] == "memory"
    assert client.get("/").json()["health"] == "/health"


def test_metrics_endpoint(client):
    create(client)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "oee_monitor_calculations_total" in response.text


def test_requests_need_a_token(client):
    response = client.get("/api/v1/production/intervals")

    assert response.status_code in (401, 403)


def test_invalid_token_is_rejected(client):
    response = client.get("/api/v1/production/intervals", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["error"] == "AUTHENTICATION_ERROR"


def test_expired_token_is_rejected(client):
    token = create_user_token("user-1", "admin", expires_delta=timedelta(minutes=-5))

    response = client.get("/api/v1/production/intervals", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_unknown_role_is_rejected(client):
    response = client.get("/api/v1/production/intervals", headers=auth(role="janitor"))

    assert response.status_code == 401


def test_create_interval(client):
    body = create(client)

    interval = body["interval"]
    assert body["action"] == "created"
    assert interval["shift"] == "Morning"
    assert interval["availability"] == pytest.approx(87.5)
    assert interval["operator_id"] == "user-1"
    assert body["history_entry"]["production_interval_id"] == interval["id"]
    assert [alert["kind"] for alert in body["alerts"]] == ["low_oee", "downtime", "production"]
    assert all(alert["severity"] == "critical" for alert in body["alerts"])


def test_viewer_cannot_write(client):
    response = client.post("/api/v1/production/intervals", json=INTERVAL, headers=auth(role="viewer"))

    assert response.status_code == 403


def test_negative_counters_are_rejected(client):
    response = client.post(
        "/api/v1/production/intervals",
        json={**INTERVAL, "good_production": -1, "film_waste": -2},
        headers=auth()
    )

    assert response.status_code == 422
    assert response.json()["error"] == "VALIDATION_ERROR"
    assert set(response.json()["details"]["fields"]) == {"good_production", "film_waste"}


def test_malformed_body_is_a_validation_error(client):
    response = client.post(
        "/api/v1/production/intervals",
        json={**INTERVAL, "start_time": "yesterday"},
        headers=auth()
    )

    assert response.status_code == 422
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_get_update_and_delete_interval(client):
    interval_id = create(client)["interval"]["id"]

    fetched = client.get(f"/api/v1/production/intervals/{interval_id}", headers=auth(role="viewer"))
    assert fetched.status_code == 200
    assert fetched.json()["id"] == interval_id

    updated = client.put(
        f"/api/v1/production/intervals/{interval_id}",
        json={"good_production": 800},
        headers=auth(role="operator")
    )
    assert updated.status_code == 200
    assert updated.json()["action"] == "updated"
    assert updated.json()["interval"]["good_production"] == 800

    forbidden = client.delete(f"/api/v1/production/intervals/{interval_id}", headers=auth(role="operator"))
    assert forbidden.status_code == 403

    deleted = client.delete(f"/api/v1/production/intervals/{interval_id}", headers=auth(role="supervisor"))
    assert deleted.status_code == 200
    assert deleted.json()["history_entries_removed"] == 2

    missing = client.get(f"/api/v1/production/intervals/{interval_id}", headers=auth())
    assert missing.status_code == 404
    assert missing.json()["error"] == "NOT_FOUND"


def test_upsert_interval(client):
    first = client.post("/api/v1/production/intervals/upsert", json=INTERVAL, headers=auth())
    second = client.post(
        "/api/v1/production/intervals/upsert",
        json={**INTERVAL, "good_production": 500},
        headers=auth()
    )

    assert first.json()["action"] == "created"
    assert second.status_code == 200
    assert second.json()["action"] == "updated"
    assert second.json()["interval"]["id"] == first.json()["interval"]["id"]


def test_list_intervals_with_filters(client):
    create(client)
    create(client, machine_id="M2")

    response = client.get(
        "/api/v1/production/intervals",
        params={"machine_id": "M2", "shift": "Morning"},
        headers=auth(role="viewer")
    )

    assert response.status_code == 200
    assert [interval["machine_id"] for interval in response.json()] == ["M2"]


def test_compute_does_not_persist(client):
    response = client.post("/api/v1/oee/compute", json=INTERVAL, headers=auth(role="operator"))

    assert response.status_code == 200
    body = response.json()
    assert body["metrics"]["availability"] == pytest.approx(87.5)
    assert body["target_production"] == pytest.approx(26520)
    assert body["shift"] == "Morning"
    listed = client.get("/api/v1/production/intervals", headers=auth())
    assert listed.json() == []


def test_history_endpoints(client):
    create(client)
    create(client, start_time="2025-03-12T09:00:00Z", end_time="2025-03-12T16:00:00Z")

    history = client.get("/api/v1/oee/history", params={"machine_id": "M1"}, headers=auth(role="viewer"))
    summary = client.get(
        "/api/v1/oee/history/summary",
        params={"machine_id": "M1", "period": "week"},
        headers=auth(role="viewer")
    )
    statistics = client.get("/api/v1/oee/history/statistics", headers=auth(role="viewer"))

    assert history.json()["total"] == 2
    assert [row["period"] for row in summary.json()] == ["2025-03-09"]
    assert statistics.json()["entries_count"] == 2


def test_operator_cannot_read_analytics(client):
    response = client.get("/api/v1/oee/history/summary", headers=auth(role="operator"))

    assert response.status_code == 403


def test_shift_lookup(client):
    single = client.get("/api/v1/oee/shift", params={"timestamp": "2025-03-10T01:30:00Z"}, headers=auth())
    interval = client.get(
        "/api/v1/oee/shift",
        params={"timestamp": "2025-03-10T15:00:00Z", "end_time": "2025-03-10T19:00:00Z"},
        headers=auth()
    )
    shifts = client.get("/api/v1/oee/shifts", headers=auth(role="viewer"))

    assert single.json() == {"shift": "Night", "code": "C", "start": "22:08", "end": "05:40"}
    assert interval.json()["shift"] == "Afternoon"
    assert [row["shift"] for row in shifts.json()] == ["Morning", "Afternoon", "Night"]


def test_thresholds_require_system_config(client):
    current = client.get("/api/v1/alerts/thresholds", headers=auth(role="viewer"))
    assert current.status_code == 200
    assert current.json()["oee_min"] == 65.0

    changed = {**current.json(), "oee_min": 1.0, "oee_critical": 0.5}
    assert client.put("/api/v1/alerts/thresholds", json=changed, headers=auth(role="supervisor")).status_code == 403

    response = client.put("/api/v1/alerts/thresholds", json=changed, headers=auth())
    assert response.status_code == 200
    assert client.get("/api/v1/alerts/thresholds", headers=auth()).json()["oee_min"] == 1.0

    body = create(client)
    assert "low_oee" not in [alert["kind"] for alert in body["alerts"]]


def test_evaluate_machine(client):
    create(client)

    response = client.post(
        "/api/v1/alerts/evaluate/M1",
        params={"start_date": "2025-03-10T00:00:00Z", "end_date": "2025-03-11T00:00:00Z", "dispatch": "false"},
        headers=auth(role="supervisor")
    )
    empty = client.post("/api/v1/alerts/evaluate/M9", headers=auth(role="supervisor"))
    forbidden = client.post("/api/v1/alerts/evaluate/M1", headers=auth(role="operator"))

    assert response.status_code == 200
    assert [alert["kind"] for alert in response.json()] == ["low_oee", "downtime", "production"]
    assert empty.json() == []
    assert forbidden.status_code == 403


def test_inconsistent_thresholds_are_rejected(client):
    current = client.get("/api/v1/alerts/thresholds", headers=auth()).json()

    response = client.put("/api/v1/alerts/thresholds", json={**current, "oee_min": 40.0}, headers=auth())

    assert response.status_code == 422
    assert response.json()["error"] == "VALIDATION_ERROR"
    assert client.get("/api/v1/alerts/thresholds", headers=auth()).json()["oee_min"] == 65.0


def test_shift_list_requires_oee_read(client, monkeypatch):
    monkeypatch.setitem(ROLE_PERMISSIONS, UserRole.VIEWER, {Permission.PRODUCTION_READ})

    response = client.get("/api/v1/oee/shifts", headers=auth(role="viewer"))

    assert response.status_code == 403
