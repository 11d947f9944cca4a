"""Route request/response schemas."""

from __future__ import annotations

import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import Location, OptimizedRoute, RouteStatus, TripType, Waypoint, WaypointStatus, WaypointType


class LocationModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None

    def to_domain(self) -> Location:
        return Location(latitude=self.latitude, longitude=self.longitude, address=self.address)


class CalculateRouteRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    date: datetime.date
    trip_type: TripType
    start_location: Optional[LocationModel] = Field(
        default=None,
        description="Where the van starts. Defaults to the driver's last known position, then the first stop.",
    )
    force_recalculate: bool = Field(
        default=False,
        description="Recalculate even when a non-cancelled route already exists for this driver, date and trip.",
    )


class AdvanceRequest(BaseModel):
    current_index: int = Field(..., description="Index of the waypoint the driver has just reached.")


class WaypointModel(BaseModel):
    id: str
    type: WaypointType
    location: LocationModel
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    estimated_arrival_time: Optional[int] = None
    actual_arrival_time: Optional[int] = None
    status: WaypointStatus
    sequence_order: int
    notes: Optional[str] = None

    @classmethod
    def from_domain(cls, waypoint: Waypoint) -> "WaypointModel":
        return cls(
            id=waypoint.id,
            type=waypoint.type,
            location=LocationModel(
                latitude=waypoint.location.latitude,
                longitude=waypoint.location.longitude,
                address=waypoint.location.address,
            ),
            student_id=waypoint.student_id,
            student_name=waypoint.student_name,
            estimated_arrival_time=waypoint.estimated_arrival_time,
            actual_arrival_time=waypoint.actual_arrival_time,
            status=waypoint.status,
            sequence_order=waypoint.sequence_order,
            notes=waypoint.notes,
        )


class RouteSegmentModel(BaseModel):
    from_waypoint_id: str
    to_waypoint_id: str
    distance: float
    duration: float
    geometry: Optional[List[List[float]]] = None
    instructions: Optional[List[str]] = None


class RouteModel(BaseModel):
    id: str
    driver_id: str
    date: datetime.date
    trip_type: TripType
    status: RouteStatus
    waypoints: List[WaypointModel]
    segments: List[RouteSegmentModel]
    total_distance: float
    total_duration: float
    current_waypoint_index: int
    is_fully_traversed: bool
    estimated_start_time: Optional[int] = None
    estimated_end_time: Optional[int] = None
    actual_start_time: Optional[int] = None
    actual_end_time: Optional[int] = None
    created_at: int
    updated_at: int
    geometry: Optional[List[List[float]]] = None
    student_ids: List[str]
    version: int

    @classmethod
    def from_domain(cls, route: OptimizedRoute) -> "RouteModel":
        return cls(
            id=route.id,
            driver_id=route.driver_id,
            date=route.date,
            trip_type=route.trip_type,
            status=route.status,
            waypoints=[WaypointModel.from_domain(waypoint) for waypoint in route.waypoints],
            segments=[
                RouteSegmentModel(
                    from_waypoint_id=segment.from_waypoint.id,
                    to_waypoint_id=segment.to_waypoint.id,
                    distance=segment.distance,
                    duration=segment.duration,
                    geometry=segment.geometry,
                    instructions=segment.instructions,
                )
                for segment in route.segments
            ],
            total_distance=route.total_distance,
            total_duration=route.total_duration,
            current_waypoint_index=route.current_waypoint_index,
            is_fully_traversed=route.is_fully_traversed,
            estimated_start_time=route.estimated_start_time,
            estimated_end_time=route.estimated_end_time,
            actual_start_time=route.actual_start_time,
            actual_end_time=route.actual_end_time,
            created_at=route.created_at,
            updated_at=route.updated_at,
            geometry=route.geometry,
            student_ids=route.student_ids,
            version=route.version,
        )


class RouteListResponse(BaseModel):
    routes: List[RouteModel]
    count: int


class DeleteRouteResponse(BaseModel):
    success: bool
    message: str
