import itertools

import pytest
from fastapi.testclient import TestClient

from conftest import FIXED_NOW_MS, FakeRoutingClient
from route_planner.api import deps
from route_planner.data.locations_repository import StaticLocationProvider
from route_planner.data.students_repository import InMemoryStudentDirectory
from route_planner.main import create_app
from route_planner.persistence.routes import InMemoryRouteStore
from route_planner.services.routing.errors import RateLimitExceededError
from route_planner.services.routing.optimizer import RouteOptimizer

CALCULATE = {"driver_id": "D1", "date": "2026-10-19", "trip_type": "MORNING"}


class ThrottledClient(FakeRoutingClient):
    def optimize(self, jobs, vehicles, options=None):
        raise RateLimitExceededError("Rate limit exceeded. Please try again later.")


@pytest.fixture
def store() -> InMemoryRouteStore:
    return InMemoryRouteStore()


@pytest.fixture
def make_client(store, students):
    def build(routing=None, roster=None) -> TestClient:
        routing = routing or FakeRoutingClient()
        ids = (f"route-{n}" for n in itertools.count(1))
        optimizer = RouteOptimizer(
            routing,
            store,
            InMemoryStudentDirectory({"D1": students if roster is None else roster}),
            StaticLocationProvider(),
            service_seconds=60,
            enforce_precedence=True,
            clock=lambda: FIXED_NOW_MS,
            id_factory=lambda: next(ids),
        )
        app = create_app()
        app.dependency_overrides[deps.get_route_optimizer] = lambda: optimizer
        app.dependency_overrides[deps.get_route_store] = lambda: store
        app.dependency_overrides[deps.get_ors_client] = lambda: routing
        return TestClient(app)

    return build


def test_health_endpoints(make_client):
    client = make_client()

    assert client.get("/api/health").json() == {"status": "ok"}
    assert client.get("/api/health/routing").json() == {"service": "ors", "healthy": True}
    assert client.get("/").json()["status"] == "running"


def test_calculate_then_drive_the_route(make_client):
    client = make_client()

    response = client.post("/api/routes/calculate", json=CALCULATE)
    assert response.status_code == 200
    route = response.json()
    assert route["id"] == "route-1"
    assert route["status"] == "PENDING"
    assert len(route["waypoints"]) == 4
    assert len(route["segments"]) == 3
    assert route["student_ids"] == ["S1", "S2"]

    assert client.post("/api/routes/route-1/start").json()["status"] == "ACTIVE"
    for index in range(4):
        advanced = client.post("/api/routes/route-1/advance", json={"current_index": index})
        assert advanced.status_code == 200
    body = advanced.json()
    assert body["is_fully_traversed"] is True
    assert all(wp["status"] == "COMPLETED" for wp in body["waypoints"])

    completed = client.post("/api/routes/route-1/complete").json()
    assert completed["status"] == "COMPLETED"
    assert completed["actual_end_time"] is not None


def test_calculate_is_idempotent(make_client):
    client = make_client()

    first = client.post("/api/routes/calculate", json=CALCULATE).json()
    second = client.post("/api/routes/calculate", json=CALCULATE).json()
    forced = client.post("/api/routes/calculate", json={**CALCULATE, "force_recalculate": True}).json()

    assert second["id"] == first["id"]
    assert forced["id"] != first["id"]


def test_calculate_without_students_is_bad_request(make_client):
    client = make_client(roster=[])

    response = client.post("/api/routes/calculate", json=CALCULATE)

    assert response.status_code == 400
    assert response.json()["detail"] == {
        "type": "INVALID_INPUT",
        "message": "No approved students found for this driver",
    }


def test_calculate_maps_throttling_to_429(make_client):
    client = make_client(routing=ThrottledClient())

    response = client.post("/api/routes/calculate", json=CALCULATE)

    assert response.status_code == 429
    assert response.json()["detail"]["type"] == "RATE_LIMIT_EXCEEDED"


def test_calculate_validates_request_body(make_client):
    client = make_client()

    response = client.post("/api/routes/calculate", json={**CALCULATE, "trip_type": "EVENING"})

    assert response.status_code == 422


def test_list_get_and_delete_routes(make_client):
    client = make_client()
    client.post("/api/routes/calculate", json=CALCULATE)
    client.post("/api/routes/calculate", json={**CALCULATE, "trip_type": "AFTERNOON"})

    listing = client.get("/api/routes", params={"driver_id": "D1", "date": "2026-10-19"}).json()
    assert listing["count"] == 2
    morning = client.get("/api/routes", params={"trip_type": "MORNING"}).json()
    assert [r["trip_type"] for r in morning["routes"]] == ["MORNING"]
    assert client.get("/api/routes", params={"status": "ACTIVE"}).json()["count"] == 0

    assert client.get("/api/routes/route-1").status_code == 200
    assert client.delete("/api/routes/route-1").json()["success"] is True
    assert client.get("/api/routes/route-1").status_code == 404
    assert client.delete("/api/routes/route-1").status_code == 404


def test_lifecycle_errors_map_to_status_codes(make_client):
    client = make_client()
    client.post("/api/routes/calculate", json=CALCULATE)

    assert client.post("/api/routes/missing/start").status_code == 404
    assert client.post("/api/routes/route-1/complete").status_code == 409

    out_of_range = client.post("/api/routes/route-1/advance", json={"current_index": 9})
    assert out_of_range.status_code == 400
    assert out_of_range.json()["detail"]["type"] == "INVALID_INPUT"

    client.post("/api/routes/route-1/cancel")
    assert client.post("/api/routes/route-1/advance", json={"current_index": 0}).status_code == 409


def test_waypoint_start_and_skip(make_client):
    client = make_client()
    client.post("/api/routes/calculate", json=CALCULATE)
    client.post("/api/routes/route-1/start")

    started = client.post("/api/routes/route-1/waypoints/0/start").json()
    skipped = client.post("/api/routes/route-1/waypoints/1/skip").json()

    assert started["waypoints"][0]["status"] == "IN_PROGRESS"
    assert skipped["waypoints"][1]["status"] == "SKIPPED"
    assert client.post("/api/routes/route-1/waypoints/1/start").status_code == 409
