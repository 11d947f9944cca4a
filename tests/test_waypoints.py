import math

import pytest

from route_planner.models.domain import Location, Student, TripType, WaypointStatus, WaypointType
from route_planner.services.routing.waypoints import (
    build_waypoints,
    filter_routable_students,
    filter_students_with_valid_locations,
    is_valid_location,
    leg_order,
)


def _student(student_id, home, school):
    return Student(student_id=student_id, name=f"Student {student_id}", home_location=home, school_location=school)


@pytest.mark.parametrize(
    "location, expected",
    [
        (Location(latitude=24.7, longitude=46.7), True),
        (Location(latitude="24.7", longitude="46.7"), True),
        (Location(latitude=90, longitude=-180), True),
        (Location(latitude=91, longitude=46.7), False),
        (Location(latitude=24.7, longitude=181), False),
        (Location(latitude=math.nan, longitude=46.7), False),
        (Location(latitude="north", longitude=46.7), False),
        (Location(latitude=None, longitude=46.7), False),
        (Location(latitude=True, longitude=46.7), False),
        (None, False),
    ],
)
def test_is_valid_location(location, expected):
    assert is_valid_location(location) is expected


def test_students_missing_either_location_are_dropped(students):
    broken = [
        _student("S3", None, Location(latitude=24.7, longitude=46.7)),
        _student("S4", Location(latitude=24.7, longitude=46.7), Location(latitude=24.7, longitude=200)),
    ]

    valid = filter_students_with_valid_locations(students + broken)

    assert [s.student_id for s in valid] == ["S1", "S2"]


def test_leg_order():
    assert leg_order(TripType.MORNING) == (WaypointType.HOME, WaypointType.SCHOOL)
    assert leg_order(TripType.AFTERNOON) == (WaypointType.SCHOOL, WaypointType.HOME)


def test_morning_waypoints_pick_up_at_home(students):
    waypoints = build_waypoints(students, TripType.MORNING)

    assert [wp.id for wp in waypoints] == ["S1-home", "S1-school", "S2-home", "S2-school"]
    assert [wp.type for wp in waypoints] == [
        WaypointType.HOME,
        WaypointType.SCHOOL,
        WaypointType.HOME,
        WaypointType.SCHOOL,
    ]
    assert all(wp.status is WaypointStatus.PENDING for wp in waypoints)
    assert waypoints[0].student_name == "Amal"
    assert waypoints[0].location.latitude == students[0].home_location.latitude


def test_afternoon_waypoints_pick_up_at_school(students):
    waypoints = build_waypoints(students[:1], TripType.AFTERNOON)

    assert [wp.id for wp in waypoints] == ["S1-school", "S1-home"]
    assert waypoints[0].location.latitude == 24.7742


def test_string_coordinates_are_normalized_to_floats():
    student = _student(
        "S9",
        Location(latitude="24.5", longitude="46.5", address="Home"),
        Location(latitude=24.6, longitude=46.6),
    )

    home = build_waypoints([student], TripType.MORNING)[0]

    assert home.location.latitude == 24.5 and isinstance(home.location.latitude, float)
    assert home.location.address == "Home"


def test_routable_students_need_a_unique_id(students):
    nameless = _student("", Location(latitude=24.6, longitude=46.6), Location(latitude=24.7, longitude=46.7))
    blank = _student("  ", Location(latitude=24.6, longitude=46.6), Location(latitude=24.7, longitude=46.7))
    twin = _student("S1", Location(latitude=24.6, longitude=46.6), Location(latitude=24.7, longitude=46.7))

    routable = filter_routable_students([nameless, students[0], blank, twin, students[1]])

    assert routable == [students[0], students[1]]


def test_routable_students_still_need_valid_locations(students):
    broken = _student("S3", None, Location(latitude=24.7, longitude=46.7))

    assert filter_routable_students([broken] + students) == students
