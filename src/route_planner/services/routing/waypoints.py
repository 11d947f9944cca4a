"""Turn a driver's students into the unordered stops of one trip leg."""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Optional

from ...models.domain import Location, Student, TripType, Waypoint, WaypointStatus, WaypointType

logger = logging.getLogger(__name__)


def _coerce_coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def is_valid_location(location: Optional[Location]) -> bool:
    if location is None:
        return False
    lat = _coerce_coordinate(location.latitude)
    lon = _coerce_coordinate(location.longitude)
    if lat is None or lon is None:
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def filter_students_with_valid_locations(students: Iterable[Student]) -> list[Student]:
    return [
        student
        for student in students
        if is_valid_location(student.home_location) and is_valid_location(student.school_location)
    ]


def filter_routable_students(students: Iterable[Student]) -> list[Student]:
    """Students that can be turned into waypoints.

    Waypoint ids are derived from the student id, so students without an id
    are dropped and only the first student per id is kept.
    """
    routable: list[Student] = []
    seen: set[str] = set()
    for student in filter_students_with_valid_locations(students):
        student_id = (student.student_id or "").strip()
        if not student_id:
            logger.warning(f"Skipping student '{student.name}' without an id")
            continue
        if student_id in seen:
            logger.warning(f"Skipping duplicate student id '{student_id}'")
            continue
        seen.add(student_id)
        routable.append(student)
    return routable


def _normalized(location: Location) -> Location:
    return Location(
        latitude=float(location.latitude),
        longitude=float(location.longitude),
        address=location.address,
    )


def _waypoint(student: Student, waypoint_type: WaypointType) -> Waypoint:
    if waypoint_type is WaypointType.HOME:
        suffix, location = "home", student.home_location
    else:
        suffix, location = "school", student.school_location
    return Waypoint(
        id=f"{student.student_id}-{suffix}",
        type=waypoint_type,
        location=_normalized(location),
        student_id=student.student_id,
        student_name=student.name,
        status=WaypointStatus.PENDING,
        sequence_order=0,  # assigned after optimization
    )


def leg_order(trip_type: TripType) -> tuple[WaypointType, WaypointType]:
    """Stop types in visiting order for a trip leg: pickup first, drop-off second."""
    if trip_type is TripType.MORNING:
        return WaypointType.HOME, WaypointType.SCHOOL
    return WaypointType.SCHOOL, WaypointType.HOME


def build_waypoints(students: Iterable[Student], trip_type: TripType) -> list[Waypoint]:
    """Two waypoints per student, pickup then drop-off for the given leg.

    Callers are expected to pass students that already have valid home and
    school locations.
    """
    first, second = leg_order(trip_type)
    waypoints: list[Waypoint] = []
    for student in students:
        waypoints.append(_waypoint(student, first))
        waypoints.append(_waypoint(student, second))
    return waypoints
