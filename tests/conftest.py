from datetime import date

import pytest

from route_planner.models.domain import (
    DirectionsLeg,
    DirectionsResult,
    Location,
    OptimizationResult,
    OptimizedRoute,
    RouteStatus,
    Student,
    TripType,
    VrpRoute,
    VrpStep,
    Waypoint,
    WaypointType,
)
from route_planner.persistence.routes import InMemoryRouteStore

FIXED_NOW_MS = 1_700_000_000_000
STEP_SECONDS = 120


class FakeClock:
    """Monotonic clock in seconds whose sleep() just moves time forward."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRoutingClient:
    """Stands in for ORSClient; visits jobs in ``order`` (default: as given)."""

    profile = "driving-car"

    def __init__(self, order: list[int] | None = None) -> None:
        self.order = order
        self.optimize_calls: list[tuple] = []
        self.directions_calls: list[list] = []

    def optimize(self, jobs, vehicles, options=None):
        self.optimize_calls.append((list(jobs), list(vehicles), options))
        order = self.order if self.order is not None else [job.id for job in jobs]
        steps = [VrpStep(type="start", location=vehicles[0].start, arrival=0, duration=0, distance=0)]
        for position, job_id in enumerate(order, start=1):
            steps.append(
                VrpStep(
                    type="job",
                    location=jobs[job_id].location,
                    arrival=position * STEP_SECONDS,
                    duration=position * STEP_SECONDS,
                    distance=position * 1000,
                    job=job_id,
                )
            )
        steps.append(VrpStep(type="end", location=None, arrival=0, duration=len(order) * STEP_SECONDS, distance=0))
        route = VrpRoute(vehicle=1, cost=0, duration=len(order) * STEP_SECONDS, distance=0, steps=steps)
        return OptimizationResult(code=0, routes=[route])

    def get_directions(self, coordinates, profile=None, include_instructions=True):
        self.directions_calls.append([list(c) for c in coordinates])
        legs = [
            DirectionsLeg(
                distance=1000.0 * (index + 1),
                duration=100.0 * (index + 1),
                instructions=[f"Drive to stop {index + 1}"],
                geometry=[list(coordinates[index]), list(coordinates[index + 1])],
            )
            for index in range(len(coordinates) - 1)
        ]
        return DirectionsResult(
            distance=sum(leg.distance for leg in legs),
            duration=sum(leg.duration for leg in legs),
            geometry=[list(c) for c in coordinates],
            legs=legs,
        )

    def check_connection(self) -> bool:
        return True


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def routing_client() -> FakeRoutingClient:
    return FakeRoutingClient()


@pytest.fixture
def route_store() -> InMemoryRouteStore:
    return InMemoryRouteStore()


@pytest.fixture
def students() -> list[Student]:
    return [
        Student(
            student_id="S1",
            name="Amal",
            home_location=Location(latitude=24.7136, longitude=46.6753),
            school_location=Location(latitude=24.7742, longitude=46.7386),
            status="approved",
        ),
        Student(
            student_id="S2",
            name="Badr",
            home_location=Location(latitude=24.6900, longitude=46.7000),
            school_location=Location(latitude=24.7742, longitude=46.7386),
            status="approved",
        ),
    ]


@pytest.fixture
def sample_route() -> OptimizedRoute:
    waypoints = [
        Waypoint(
            id=f"S{n}-{kind.lower()}",
            type=WaypointType(kind),
            location=Location(latitude=24.7 + index / 100, longitude=46.7 + index / 100),
            student_id=f"S{n}",
            student_name=f"Student {n}",
            sequence_order=index,
            estimated_arrival_time=FIXED_NOW_MS + index * 60_000,
        )
        for index, (n, kind) in enumerate([(1, "HOME"), (2, "HOME"), (1, "SCHOOL"), (2, "SCHOOL")])
    ]
    return OptimizedRoute(
        id="route-1",
        driver_id="D1",
        date=date(2026, 10, 19),
        trip_type=TripType.MORNING,
        waypoints=waypoints,
        segments=[],
        total_distance=3000.0,
        total_duration=600.0,
        current_waypoint_index=0,
        status=RouteStatus.PENDING,
        created_at=FIXED_NOW_MS,
        updated_at=FIXED_NOW_MS,
        estimated_start_time=FIXED_NOW_MS,
        estimated_end_time=FIXED_NOW_MS + 600_000,
        geometry=[[46.7, 24.7], [46.73, 24.73]],
    )
