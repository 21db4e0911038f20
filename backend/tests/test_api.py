from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.db import SQLiteDocumentStore
from app.main import app, get_system
from rescue_ops.notifications import LoggingNotifier
from rescue_ops.system import DisasterResponseSystem


@pytest.fixture
def client(tmp_path: Path):
    system = DisasterResponseSystem(store=SQLiteDocumentStore(tmp_path / "test.db"), notifier=LoggingNotifier())
    app.dependency_overrides[get_system] = lambda: system
    yield TestClient(app)
    app.dependency_overrides.clear()


def _report(client: TestClient, **overrides) -> str:
    body = {
        "userId": "caller-1",
        "latitude": 14.6010,
        "longitude": 120.9860,
        "type": "fire",
        "description": "Kitchen fire spreading",
        "peopleAffected": 6,
        "injuryLevel": "severe",
    }
    body.update(overrides)
    resp = client.post("/requests", json=body)
    assert resp.status_code == 200
    return resp.json()["requestId"]


def _register(client: TestClient, responder_id: str, lat: float = 14.5995, lng: float = 120.9842) -> None:
    resp = client.post("/responders", json={"userId": responder_id, "name": responder_id.title(), "deviceToken": "tok"})
    assert resp.status_code == 200
    resp = client.post(f"/responders/{responder_id}/location", json={"latitude": lat, "longitude": lng})
    assert resp.status_code == 200


def test_health(client: TestClient):
    assert client.get("/health").json() == {"status": "ok"}


def test_report_and_list_requests(client: TestClient):
    request_id = _report(client)

    details = client.get(f"/requests/{request_id}").json()
    assert details["status"] == "open"
    assert details["peopleAffected"] == 6
    assert details["nearbyHospitals"] == []
    assert details["nearbyPoliceStations"] == []

    assert client.get("/requests/open").json()["count"] == 1
    nearby = client.get("/requests/nearby", params={"lat": 14.5995, "lng": 120.9842}).json()
    assert [r["id"] for r in nearby["requests"]] == [request_id]

    assert client.get("/requests/unknown").status_code == 404


def test_invalid_report_is_rejected(client: TestClient):
    resp = client.post("/requests", json={"userId": "u", "latitude": 95, "longitude": 0})
    assert resp.status_code == 422


def test_assignment_lifecycle_over_http(client: TestClient):
    request_id = _report(client)
    _register(client, "ana")

    matched = client.post("/ai/match", json={"requestId": request_id, "volunteerId": "ana"})
    assert matched.status_code == 200
    assignment_id = matched.json()["assignmentId"]
    assert matched.json()["eta"]["provenance"] == "estimated"

    again = client.post("/ai/match", json={"requestId": request_id, "volunteerId": "ana"})
    assert again.status_code == 409

    early = client.post(f"/responders/ana/complete/{assignment_id}", json={})
    assert early.status_code == 409

    accepted = client.post(f"/responders/ana/accept/{assignment_id}")
    assert accepted.status_code == 200
    assert accepted.json()["assignment"]["status"] == "in_progress"

    board = client.get("/ai/dashboard").json()
    assert board["totalRequests"] == 0
    assert board["assignmentsInProgress"][0]["assignmentId"] == assignment_id

    done = client.post(f"/responders/ana/complete/{assignment_id}", json={"notes": "safe", "victimSafetyStatus": "safe"})
    assert done.status_code == 200
    assert client.get(f"/requests/{request_id}").json()["status"] == "completed"

    history = client.get("/responders/ana/assignments").json()
    assert history["total"] == 1
    assert history["completedAssignments"][0]["id"] == assignment_id


def test_responder_availability_and_nearby(client: TestClient):
    _register(client, "ana")
    _register(client, "ben", lat=14.60, lng=120.99)

    resp = client.put("/responders/ben/availability", json={"available": False})
    assert resp.json() == {"success": True, "available": False}

    nearby = client.get("/responders/nearby", params={"lat": 14.5995, "lng": 120.9842}).json()
    assert [v["id"] for v in nearby["volunteers"]] == ["ana"]

    assert client.put("/responders/ghost/availability", json={"available": True}).status_code == 404


def test_aggregate_without_enrichment_uses_fallback(client: TestClient):
    _report(client)
    _report(client, type="flooding", injuryLevel="none", peopleAffected=2)

    body = client.post("/ai/aggregate").json()
    assert body["totalRequests"] == 2
    assert body["provenance"] == "estimated"
    assert body["summary"] == "Using fallback prioritization"
    assert sorted(c["priority"] for c in body["aggregated"]) == ["CRITICAL", "MEDIUM"]


def test_analyze_and_strategy(client: TestClient):
    first = _report(client)
    second = _report(client, latitude=14.6020, longitude=120.9870)

    analysis = client.post(f"/ai/analyze/{first}").json()
    assert analysis["nearbyRequestsCount"] == 1
    assert "error" in analysis["analysis"]

    strategy = client.post("/ai/strategy", json={"requestIds": [first, second]}).json()
    assert strategy["cluster"]["requestCount"] == 2
    assert strategy["cluster"]["totalPeople"] == 12

    assert client.post("/ai/strategy", json={"requestIds": []}).status_code == 422


def test_route_and_eta(client: TestClient):
    far = _report(client, latitude=0.0, longitude=0.02)
    near = _report(client, latitude=0.0, longitude=0.01)

    route = client.post(
        "/ai/route-optimize",
        json={"origin": {"lat": 0, "lng": 0}, "destinationIds": [far, near], "roundTrip": True},
    ).json()
    assert route["sequence"] == {near: 1, far: 2}
    assert route["route"][0] == route["route"][-1] == {"lat": 0.0, "lng": 0.0}
    assert route["provenance"] == "estimated"

    missing = client.post("/ai/route-optimize", json={"origin": {"lat": 0, "lng": 0}, "destinationIds": ["nope"]})
    assert missing.status_code == 404

    eta = client.post("/ai/eta", json={"origin": {"lat": 0, "lng": 0}, "destination": {"lat": 0, "lng": 0.01}}).json()
    assert eta["provenance"] == "estimated"
    assert eta["durationMinutes"] == 14
