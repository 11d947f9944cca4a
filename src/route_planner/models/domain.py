"""Domain models for students, waypoints and optimized routes."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class TripType(str, Enum):
    MORNING = "MORNING"  # home -> school
    AFTERNOON = "AFTERNOON"  # school -> home


class WaypointType(str, Enum):
    HOME = "HOME"
    SCHOOL = "SCHOOL"
    DEPOT = "DEPOT"


class WaypointStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class RouteStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (RouteStatus.COMPLETED, RouteStatus.CANCELLED)


@dataclass(slots=True)
class Location:
    """Geographic point. Remote calls use [longitude, latitude] ordering."""

    latitude: float
    longitude: float
    address: Optional[str] = None

    def to_coordinate(self) -> list[float]:
        return [self.longitude, self.latitude]

    @classmethod
    def from_coordinate(cls, coordinate: list[float]) -> "Location":
        return cls(latitude=coordinate[1], longitude=coordinate[0])


@dataclass(slots=True)
class Student:
    """A student assigned to a driver. Locations come from user input and may be invalid."""

    student_id: str
    name: str
    home_location: Optional[Location]
    school_location: Optional[Location]
    status: Optional[str] = None


@dataclass(slots=True)
class Waypoint:
    id: str
    type: WaypointType
    location: Location
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    estimated_arrival_time: Optional[int] = None
    actual_arrival_time: Optional[int] = None
    status: WaypointStatus = WaypointStatus.PENDING
    sequence_order: int = 0
    notes: Optional[str] = None


@dataclass(slots=True)
class RouteSegment:
    from_waypoint: Waypoint
    to_waypoint: Waypoint
    distance: float  # meters
    duration: float  # seconds
    geometry: Optional[List[List[float]]] = None
    instructions: Optional[List[str]] = None


@dataclass(slots=True)
class OptimizedRoute:
    """Aggregate root for one driver's trip leg on one day."""

    id: str
    driver_id: str
    date: date
    trip_type: TripType
    waypoints: List[Waypoint]
    segments: List[RouteSegment]
    total_distance: float
    total_duration: float
    current_waypoint_index: int
    status: RouteStatus
    created_at: int
    updated_at: int
    estimated_start_time: Optional[int] = None
    estimated_end_time: Optional[int] = None
    actual_start_time: Optional[int] = None
    actual_end_time: Optional[int] = None
    geometry: Optional[List[List[float]]] = None
    version: int = 0

    @property
    def student_ids(self) -> list[str]:
        seen: list[str] = []
        for waypoint in self.waypoints:
            if waypoint.student_id and waypoint.student_id not in seen:
                seen.append(waypoint.student_id)
        return seen

    @property
    def is_fully_traversed(self) -> bool:
        return self.current_waypoint_index >= len(self.waypoints)


@dataclass(slots=True)
class RouteQuery:
    driver_id: Optional[str] = None
    date: Optional[date] = None
    trip_type: Optional[TripType] = None
    status: Optional[RouteStatus] = None


@dataclass(slots=True)
class DistanceMatrix:
    distances: List[List[Optional[float]]]  # meters, distances[i][j] from i to j
    durations: List[List[Optional[float]]]  # seconds
    sources: int
    destinations: int


@dataclass(slots=True)
class VrpJob:
    id: int
    location: List[float]
    service: Optional[int] = None

    def to_payload(self) -> dict:
        payload: dict = {"id": self.id, "location": list(self.location)}
        if self.service is not None:
            payload["service"] = self.service
        return payload


@dataclass(slots=True)
class VrpVehicle:
    id: int
    profile: str
    start: Optional[List[float]] = None
    end: Optional[List[float]] = None

    def to_payload(self) -> dict:
        payload: dict = {"id": self.id, "profile": self.profile}
        if self.start is not None:
            payload["start"] = list(self.start)
        if self.end is not None:
            payload["end"] = list(self.end)
        return payload


@dataclass(slots=True)
class VrpStep:
    type: str  # "start", "job" or "end"
    location: Optional[List[float]]
    arrival: float
    duration: float  # cumulative seconds since route start
    distance: float  # cumulative meters
    job: Optional[int] = None

    @classmethod
    def from_payload(cls, data: dict) -> "VrpStep":
        return cls(
            type=data.get("type", ""),
            location=data.get("location"),
            arrival=float(data.get("arrival") or 0),
            duration=float(data.get("duration") or 0),
            distance=float(data.get("distance") or 0),
            job=data.get("job", data.get("id") if data.get("type") == "job" else None),
        )


@dataclass(slots=True)
class VrpRoute:
    vehicle: int
    cost: float
    duration: float
    distance: float
    steps: List[VrpStep]
    geometry: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict) -> "VrpRoute":
        return cls(
            vehicle=int(data.get("vehicle", 0)),
            cost=float(data.get("cost") or 0),
            duration=float(data.get("duration") or 0),
            distance=float(data.get("distance") or 0),
            steps=[VrpStep.from_payload(step) for step in data.get("steps") or []],
            geometry=data.get("geometry"),
        )


@dataclass(slots=True)
class OptimizationResult:
    code: int
    routes: List[VrpRoute]
    unassigned: List[dict] = field(default_factory=list)


@dataclass(slots=True)
class DirectionsLeg:
    distance: float
    duration: float
    instructions: List[str] = field(default_factory=list)
    geometry: Optional[List[List[float]]] = None


@dataclass(slots=True)
class DirectionsResult:
    distance: float
    duration: float
    geometry: List[List[float]]
    legs: List[DirectionsLeg]
