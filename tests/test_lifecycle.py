import pytest

from conftest import FIXED_NOW_MS
from route_planner.models.domain import RouteStatus, WaypointStatus
from route_planner.persistence.routes import ConcurrentUpdateError
from route_planner.services.routing.errors import InvalidInputError, InvalidTransitionError, RouteNotFoundError
from route_planner.services.routing.lifecycle import RouteLifecycle

NOW = FIXED_NOW_MS + 3_600_000


@pytest.fixture
def lifecycle(route_store, sample_route) -> RouteLifecycle:
    route_store.save(sample_route)
    return RouteLifecycle(route_store, clock=lambda: NOW)


def test_start_route_stamps_actual_start(lifecycle, route_store):
    route = lifecycle.start_route("route-1")

    assert route.status is RouteStatus.ACTIVE
    assert route.actual_start_time == NOW
    assert route_store.get("route-1").updated_at == NOW


def test_full_trip_progress(lifecycle, route_store):
    lifecycle.start_route("route-1")

    for index in range(4):
        route = lifecycle.advance_to_next_waypoint("route-1", index)
        assert route.current_waypoint_index == index + 1
        assert route.waypoints[index].status is WaypointStatus.COMPLETED
        assert route.waypoints[index].actual_arrival_time == NOW

    assert route.is_fully_traversed
    completed = lifecycle.complete_route("route-1")
    assert completed.status is RouteStatus.COMPLETED
    assert completed.actual_end_time == NOW
    assert route_store.get("route-1").version == 6


def test_advance_rejects_out_of_range_index(lifecycle, route_store):
    with pytest.raises(InvalidInputError):
        lifecycle.advance_to_next_waypoint("route-1", 4)
    with pytest.raises(InvalidInputError):
        lifecycle.advance_to_next_waypoint("route-1", -1)

    stored = route_store.get("route-1")
    assert stored.version == 0
    assert stored.current_waypoint_index == 0


def test_advance_twice_on_same_stop_is_rejected(lifecycle, route_store):
    lifecycle.advance_to_next_waypoint("route-1", 0)

    with pytest.raises(InvalidTransitionError):
        lifecycle.advance_to_next_waypoint("route-1", 0)
    assert route_store.get("route-1").current_waypoint_index == 1


def test_unknown_route_raises_not_found(lifecycle):
    with pytest.raises(RouteNotFoundError):
        lifecycle.start_route("missing")


@pytest.mark.parametrize("terminal", ["complete", "cancel"])
def test_terminal_routes_cannot_change(lifecycle, route_store, terminal):
    lifecycle.start_route("route-1")
    getattr(lifecycle, f"{terminal}_route")("route-1")

    with pytest.raises(InvalidTransitionError):
        lifecycle.start_route("route-1")
    with pytest.raises(InvalidTransitionError):
        lifecycle.cancel_route("route-1")
    with pytest.raises(InvalidTransitionError):
        lifecycle.advance_to_next_waypoint("route-1", 0)
    with pytest.raises(InvalidTransitionError):
        lifecycle.skip_waypoint("route-1", 1)


def test_pending_route_cannot_complete(lifecycle):
    with pytest.raises(InvalidTransitionError):
        lifecycle.complete_route("route-1")


def test_pending_route_can_be_cancelled(lifecycle):
    assert lifecycle.cancel_route("route-1").status is RouteStatus.CANCELLED


def test_skipped_waypoint_stays_skipped_on_advance(lifecycle):
    lifecycle.start_route("route-1")
    lifecycle.skip_waypoint("route-1", 0)

    route = lifecycle.advance_to_next_waypoint("route-1", 0)

    assert route.waypoints[0].status is WaypointStatus.SKIPPED
    assert route.waypoints[0].actual_arrival_time is None
    assert route.current_waypoint_index == 1


def test_in_progress_waypoint_completes_on_advance(lifecycle):
    lifecycle.start_route("route-1")
    in_progress = lifecycle.mark_waypoint_in_progress("route-1", 0)
    assert in_progress.waypoints[0].status is WaypointStatus.IN_PROGRESS

    route = lifecycle.advance_to_next_waypoint("route-1", 0)

    assert route.waypoints[0].status is WaypointStatus.COMPLETED


def test_completed_waypoint_cannot_be_skipped(lifecycle):
    lifecycle.advance_to_next_waypoint("route-1", 0)

    with pytest.raises(InvalidTransitionError):
        lifecycle.skip_waypoint("route-1", 0)


def test_advance_retries_on_concurrent_update(lifecycle, route_store, monkeypatch):
    original = route_store._conditional_write
    attempts = []

    def flaky(route, expected_version):
        attempts.append(expected_version)
        if len(attempts) == 1:
            raise ConcurrentUpdateError("lost the race")
        original(route, expected_version)

    monkeypatch.setattr(route_store, "_conditional_write", flaky)

    route = lifecycle.advance_to_next_waypoint("route-1", 0)

    assert attempts == [0, 0]
    assert route.current_waypoint_index == 1
    assert route_store.get("route-1").version == 1


def test_advancing_an_earlier_skipped_stop_keeps_progress(lifecycle):
    lifecycle.start_route("route-1")
    lifecycle.skip_waypoint("route-1", 0)
    lifecycle.advance_to_next_waypoint("route-1", 1)
    lifecycle.advance_to_next_waypoint("route-1", 2)

    route = lifecycle.advance_to_next_waypoint("route-1", 0)

    assert route.current_waypoint_index == 3
    assert route.waypoints[0].status is WaypointStatus.SKIPPED
