import pytest
from fastapi.testclient import TestClient

import main
from services.automation_config import AutomationConfig, InferenceSettings, SchedulerSettings

from doubles import InMemoryStore, ScriptedProvider


@pytest.fixture()
def store():
    store = InMemoryStore()
    store.add_staff("P-1", "public_works", name="Ana")
    store.add_staff("P-2", "public_works", name="Ben")
    store.add_complaint("C-1", "Pothole", "deep pothole on the road surface")
    return store


@pytest.fixture()
def client(store):
    config = AutomationConfig(
        inference=InferenceSettings(enabled=False),
        scheduler=SchedulerSettings(autostart=False),
    )
    main.services.update(main.build_services(config, store, provider=ScriptedProvider()))
    # No context manager: the lifespan would try to reach MongoDB
    yield TestClient(main.app)
    main.services.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["services"]["database"] == "connected"
    assert response.json()["services"]["scheduler"] == "stopped"


def test_detailed_health_reports_budget(client):
    body = client.get("/health/detailed").json()

    assert body["status"] == "healthy"
    assert body["services"]["ai_classification"]["enabled"] is False
    assert body["services"]["ai_classification"]["budget"]["daily_cost"] == 0.0
    assert body["services"]["ai_classification"]["provider"] is None


def test_process_pending_assigns_backlog(client, store):
    response = client.post("/api/automation/process-pending", params={"max_items": 5})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["result"]["succeeded"] == 1
    assert store.complaints["C-1"]["assigned_staff_id"] in ("P-1", "P-2")


def test_process_pending_validates_limit(client):
    response = client.post("/api/automation/process-pending", params={"max_items": 0})

    assert response.status_code == 422


def test_manual_assignment_and_audit_trail(client, store):
    client.post("/api/complaints/C-1/assign", json={"staff_id": "P-1", "operator_id": "op-1"})
    response = client.post(
        "/api/complaints/C-1/assign",
        json={"staff_id": "P-2", "operator_id": "op-1", "reason": "closer to site"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["action"] == "reassign"
    assert response.json()["data"]["previous_staff_id"] == "P-1"

    trail = client.get("/api/complaints/C-1/audit").json()["data"]
    assert [entry["action"] for entry in trail] == ["manual_assign", "reassign"]
    assert trail[1]["actor"] == "op-1"
    assert trail[1]["reason"] == "closer to site"


def test_assignment_errors_map_to_status_codes(client, store):
    store.add_staff("P-3", "public_works", max_workload=1)
    store.assign_directly("P-3", 1)

    missing = client.post("/api/complaints/nope/assign", json={"staff_id": "P-1", "operator_id": "op"})
    full = client.post("/api/complaints/C-1/assign", json={"staff_id": "P-3", "operator_id": "op"})

    assert missing.status_code == 404
    assert missing.json()["success"] is False
    assert full.status_code == 409


def test_audit_for_unknown_complaint(client):
    assert client.get("/api/complaints/unknown/audit").status_code == 404


def test_workload_and_stats(client, store):
    store.assign_directly("P-1", 8)

    workload = client.get("/api/automation/workload", params={"department": "public_works"}).json()["data"]
    stats = client.get("/api/automation/stats").json()["data"]

    levels = {entry["staff_id"]: entry["workload_level"] for entry in workload}
    assert levels == {"P-1": "heavy", "P-2": "available"}
    assert stats == {"total_automated": 0, "total_errors": 0, "success_rate": 0.0}


def test_rebalance_endpoint(client, store):
    store.assign_directly("P-1", 8)

    data = client.post("/api/automation/rebalance").json()["data"]

    assert data["status"] == "completed"
    assert data["result"]["reassigned_count"] == 2


def test_scheduler_trigger_unknown_job(client):
    response = client.post("/api/scheduler/trigger/defragment")

    assert response.status_code == 404
    assert "defragment" in response.json()["message"]
