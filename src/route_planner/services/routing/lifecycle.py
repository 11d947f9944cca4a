"""Route and waypoint progress state machine."""

from __future__ import annotations

import logging
from typing import Callable

from ...models.domain import OptimizedRoute, RouteStatus, WaypointStatus, now_ms
from ...persistence.routes import RoutePersistence
from .errors import InvalidInputError, InvalidTransitionError

logger = logging.getLogger(__name__)

ROUTE_TRANSITIONS: dict[RouteStatus, frozenset[RouteStatus]] = {
    RouteStatus.PENDING: frozenset({RouteStatus.ACTIVE, RouteStatus.CANCELLED}),
    RouteStatus.ACTIVE: frozenset({RouteStatus.COMPLETED, RouteStatus.CANCELLED}),
    RouteStatus.COMPLETED: frozenset(),
    RouteStatus.CANCELLED: frozenset(),
}

WAYPOINT_TRANSITIONS: dict[WaypointStatus, frozenset[WaypointStatus]] = {
    WaypointStatus.PENDING: frozenset(
        {WaypointStatus.IN_PROGRESS, WaypointStatus.COMPLETED, WaypointStatus.SKIPPED}
    ),
    WaypointStatus.IN_PROGRESS: frozenset({WaypointStatus.COMPLETED}),
    WaypointStatus.COMPLETED: frozenset(),
    WaypointStatus.SKIPPED: frozenset(),
}


def _check_route_transition(route: OptimizedRoute, target: RouteStatus) -> None:
    if target not in ROUTE_TRANSITIONS[route.status]:
        raise InvalidTransitionError(
            f"Route {route.id} cannot move from {route.status.value} to {target.value}"
        )


def _check_route_open(route: OptimizedRoute) -> None:
    if route.status.is_terminal:
        raise InvalidTransitionError(f"Route {route.id} is {route.status.value} and can no longer change")


def _check_index(route: OptimizedRoute, index: int) -> None:
    if not 0 <= index < len(route.waypoints):
        raise InvalidInputError(
            f"Invalid waypoint index {index}; route {route.id} has {len(route.waypoints)} waypoints"
        )


def _set_waypoint_status(route: OptimizedRoute, index: int, target: WaypointStatus) -> None:
    waypoint = route.waypoints[index]
    if target not in WAYPOINT_TRANSITIONS[waypoint.status]:
        raise InvalidTransitionError(
            f"Waypoint {waypoint.id} cannot move from {waypoint.status.value} to {target.value}"
        )
    waypoint.status = target


class RouteLifecycle:
    """Applies status changes to stored routes.

    Each operation validates against the current stored state and writes the
    result in one versioned update; a rejected operation leaves the route
    untouched.
    """

    def __init__(self, persistence: RoutePersistence, clock: Callable[[], int] = now_ms) -> None:
        self.persistence = persistence
        self._clock = clock

    def _transition(
        self,
        route_id: str,
        target: RouteStatus,
        stamp: Callable[[OptimizedRoute, int], None] | None = None,
    ) -> OptimizedRoute:
        def change(route: OptimizedRoute) -> None:
            _check_route_transition(route, target)
            route.status = target
            if stamp is not None:
                stamp(route, self._clock())

        updated = self.persistence.mutate(route_id, change, clock=self._clock)
        logger.info(f"Route {route_id} status updated to {target.value}")
        return updated

    def start_route(self, route_id: str) -> OptimizedRoute:
        def stamp(route: OptimizedRoute, now: int) -> None:
            route.actual_start_time = now

        return self._transition(route_id, RouteStatus.ACTIVE, stamp)

    def complete_route(self, route_id: str) -> OptimizedRoute:
        def stamp(route: OptimizedRoute, now: int) -> None:
            route.actual_end_time = now

        return self._transition(route_id, RouteStatus.COMPLETED, stamp)

    def cancel_route(self, route_id: str) -> OptimizedRoute:
        return self._transition(route_id, RouteStatus.CANCELLED)

    def advance_to_next_waypoint(self, route_id: str, current_index: int) -> OptimizedRoute:
        """Mark the waypoint at ``current_index`` done and point the route at the next one.

        When the returned route's index equals its waypoint count the trip has
        been fully traversed. A skipped waypoint stays skipped, and acknowledging
        an earlier skipped stop never moves the index backwards.
        """

        def change(route: OptimizedRoute) -> None:
            _check_index(route, current_index)
            _check_route_open(route)
            waypoint = route.waypoints[current_index]
            if waypoint.status is not WaypointStatus.SKIPPED:
                _set_waypoint_status(route, current_index, WaypointStatus.COMPLETED)
                waypoint.actual_arrival_time = self._clock()
            route.current_waypoint_index = max(route.current_waypoint_index, current_index + 1)

        updated = self.persistence.mutate(route_id, change, clock=self._clock)
        logger.info(f"Route {route_id} progress updated to waypoint {updated.current_waypoint_index}")
        return updated

    def mark_waypoint_in_progress(self, route_id: str, index: int) -> OptimizedRoute:
        def change(route: OptimizedRoute) -> None:
            _check_index(route, index)
            _check_route_open(route)
            _set_waypoint_status(route, index, WaypointStatus.IN_PROGRESS)

        updated = self.persistence.mutate(route_id, change, clock=self._clock)
        logger.info(f"Waypoint {index} in route {route_id} updated to {WaypointStatus.IN_PROGRESS.value}")
        return updated

    def skip_waypoint(self, route_id: str, index: int) -> OptimizedRoute:
        def change(route: OptimizedRoute) -> None:
            _check_index(route, index)
            _check_route_open(route)
            _set_waypoint_status(route, index, WaypointStatus.SKIPPED)

        updated = self.persistence.mutate(route_id, change, clock=self._clock)
        logger.info(f"Waypoint {index} in route {route_id} updated to {WaypointStatus.SKIPPED.value}")
        return updated
