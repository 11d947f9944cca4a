"""Route calculation: students -> solved stop order -> road geometry -> stored route."""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Callable, Iterator, Optional, Sequence

from ...config import settings
from ...data.locations_repository import LocationProvider
from ...data.students_repository import StudentDirectory
from ...models.domain import (
    Location,
    OptimizedRoute,
    RouteSegment,
    RouteStatus,
    TripType,
    VrpJob,
    VrpVehicle,
    Waypoint,
    now_ms,
)
from ...persistence.routes import RoutePersistence
from .errors import InvalidInputError, NoRouteFoundError, RouteOptimizationError, UnknownRouteError
from .ors_client import ORSClient
from .waypoints import build_waypoints, filter_routable_students, leg_order

VEHICLE_ID = 1

logger = logging.getLogger(__name__)

RouteKey = tuple[str, date, TripType]


class KeyedLocks:
    """One lock per key, created on demand and dropped when nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[RouteKey, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: RouteKey) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                lock, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)


def enforce_pair_precedence(waypoints: Sequence[Waypoint], trip_type: TripType) -> tuple[list[Waypoint], bool]:
    """Move any drop-off visited before its student's pickup to just after that pickup.

    Relative order is otherwise preserved and ``sequence_order`` is rewritten.
    Returns the new order and whether anything moved.
    """
    pickup_type, _ = leg_order(trip_type)
    pickups = {wp.student_id for wp in waypoints if wp.student_id and wp.type is pickup_type}
    picked_up: set[str] = set()
    deferred: dict[str, Waypoint] = {}
    ordered: list[Waypoint] = []
    moved = False

    for waypoint in waypoints:
        student_id = waypoint.student_id
        if student_id is None:
            ordered.append(waypoint)
        elif waypoint.type is pickup_type:
            ordered.append(waypoint)
            picked_up.add(student_id)
            if student_id in deferred:
                ordered.append(deferred.pop(student_id))
        elif student_id in pickups and student_id not in picked_up:
            deferred[student_id] = waypoint
            moved = True
        else:
            ordered.append(waypoint)

    for index, waypoint in enumerate(ordered):
        waypoint.sequence_order = index
    return ordered, moved


class RouteOptimizer:
    """Builds and stores the optimized route for a driver's trip leg.

    A stored, non-cancelled route for the same (driver, date, trip type) is
    returned as-is unless recalculation is forced. Calculations for the same
    key are serialized within the process.
    """

    def __init__(
        self,
        client: ORSClient,
        persistence: RoutePersistence,
        students: StudentDirectory,
        locations: LocationProvider | None = None,
        *,
        service_seconds: int | None = None,
        enforce_precedence: bool | None = None,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.client = client
        self.persistence = persistence
        self.students = students
        self.locations = locations
        self.service_seconds = service_seconds if service_seconds is not None else settings.job_service_seconds
        self.enforce_precedence = (
            enforce_precedence if enforce_precedence is not None else settings.enforce_pair_precedence
        )
        self._clock = clock
        self._id_factory = id_factory
        self._locks = KeyedLocks()

    def calculate_optimal_route(
        self,
        driver_id: str,
        route_date: date,
        trip_type: TripType,
        start_location: Optional[Location] = None,
        force_recalculate: bool = False,
    ) -> OptimizedRoute:
        logger.info(f"Calculating optimal route for driver {driver_id}, {trip_type.value} trip on {route_date}")
        with self._locks.hold((driver_id, route_date, trip_type)):
            try:
                return self._calculate(driver_id, route_date, trip_type, start_location, force_recalculate)
            except RouteOptimizationError as error:
                logger.error(f"Error calculating optimal route: {error.kind.value}: {error.message}")
                raise
            except Exception as e:
                logger.exception(f"Error calculating optimal route: {e}")
                raise UnknownRouteError(f"Failed to calculate optimal route: {e}", e) from e

    def _calculate(
        self,
        driver_id: str,
        route_date: date,
        trip_type: TripType,
        start_location: Optional[Location],
        force_recalculate: bool,
    ) -> OptimizedRoute:
        if not force_recalculate:
            existing = self.persistence.find(driver_id, route_date, trip_type)
            if existing is not None and existing.status is not RouteStatus.CANCELLED:
                logger.info(f"Found existing route {existing.id}, returning cached version")
                return existing

        start = self._resolve_start(driver_id, start_location)

        students = self.students.get_approved_students(driver_id)
        if not students:
            raise InvalidInputError("No approved students found for this driver")

        valid_students = filter_routable_students(students)
        if not valid_students:
            raise InvalidInputError("No students with valid location data")
        if len(valid_students) < len(students):
            logger.warning(
                f"Skipping {len(students) - len(valid_students)} student(s) without a usable id or valid home/school coordinates"
            )

        logger.info(f"Optimizing route for {len(valid_students)} students")
        waypoints = build_waypoints(valid_students, trip_type)

        ordered = self._solve_order(waypoints, start)
        repaired = False
        if self.enforce_precedence:
            ordered, repaired = enforce_pair_precedence(ordered, trip_type)
            if repaired:
                logger.warning("Solver visited a drop-off before its pickup; stop order was repaired")

        geometry, segments = self._route_geometry(ordered)
        if repaired:
            self._reestimate_arrivals(ordered, segments)

        total_distance = sum(segment.distance for segment in segments)
        total_duration = sum(segment.duration for segment in segments)

        now = self._clock()
        estimated_start_time = ordered[0].estimated_arrival_time or now
        estimated_end_time = estimated_start_time + int(total_duration * 1000)

        route = OptimizedRoute(
            id=self._id_factory(),
            driver_id=driver_id,
            date=route_date,
            trip_type=trip_type,
            waypoints=ordered,
            segments=segments,
            total_distance=total_distance,
            total_duration=total_duration,
            current_waypoint_index=0,
            status=RouteStatus.PENDING,
            created_at=now,
            updated_at=now,
            estimated_start_time=estimated_start_time,
            estimated_end_time=estimated_end_time,
            geometry=geometry,
        )
        self.persistence.save(route)

        logger.info(f"Route optimization complete: {total_distance:.0f}m, {total_duration:.0f}s")
        return route

    def _resolve_start(self, driver_id: str, start_location: Optional[Location]) -> Optional[Location]:
        if start_location is not None:
            return start_location
        if self.locations is None:
            return None
        logger.info("No start location provided, attempting to get current location...")
        try:
            current = self.locations.get_current_position(driver_id)
        except Exception as e:
            logger.warning(f"Current location lookup failed: {e}")
            current = None
        if current is None:
            logger.warning("Could not get current location, will use first waypoint as start")
            return None
        logger.info(f"Using current location as start: {current.latitude}, {current.longitude}")
        return current

    def _solve_order(self, waypoints: list[Waypoint], start: Optional[Location]) -> list[Waypoint]:
        jobs = [
            VrpJob(id=index, location=waypoint.location.to_coordinate(), service=self.service_seconds)
            for index, waypoint in enumerate(waypoints)
        ]
        vehicle = VrpVehicle(
            id=VEHICLE_ID,
            profile=self.client.profile,
            start=start.to_coordinate() if start is not None else jobs[0].location,
        )
        # Geometry comes from the directions call instead.
        result = self.client.optimize(jobs, [vehicle], options={"g": False})

        now = self._clock()
        ordered: list[Waypoint] = []
        seen: set[int] = set()
        for step in result.routes[0].steps:
            if step.type != "job" or step.job is None:
                continue
            if not 0 <= step.job < len(waypoints) or step.job in seen:
                logger.warning(f"Ignoring unexpected job id {step.job} in solver output")
                continue
            seen.add(step.job)
            ordered.append(
                replace(
                    waypoints[step.job],
                    sequence_order=len(ordered),
                    estimated_arrival_time=now + int(step.duration * 1000),
                )
            )

        if not ordered:
            raise NoRouteFoundError("No optimized route found")
        return ordered

    def _route_geometry(self, waypoints: list[Waypoint]) -> tuple[list[list[float]], list[RouteSegment]]:
        coordinates = [waypoint.location.to_coordinate() for waypoint in waypoints]
        directions = self.client.get_directions(coordinates, include_instructions=True)

        if len(directions.legs) < len(waypoints) - 1:
            raise NoRouteFoundError(
                f"No route geometry found: expected {len(waypoints) - 1} legs, got {len(directions.legs)}"
            )

        segments = [
            RouteSegment(
                from_waypoint=waypoints[index],
                to_waypoint=waypoints[index + 1],
                distance=leg.distance,
                duration=leg.duration,
                geometry=leg.geometry,
                instructions=leg.instructions,
            )
            for index, leg in enumerate(directions.legs[: len(waypoints) - 1])
        ]
        return directions.geometry, segments

    def _reestimate_arrivals(self, waypoints: list[Waypoint], segments: list[RouteSegment]) -> None:
        arrival = waypoints[0].estimated_arrival_time or self._clock()
        for waypoint, segment in zip(waypoints[1:], segments):
            arrival += int((segment.duration + self.service_seconds) * 1000)
            waypoint.estimated_arrival_time = arrival
