"""Persistence for optimized routes.

Routes are stored one record per route. Nested arrays (full geometry and
segment metadata) are serialized to JSON strings so document stores with
nested-array limits can hold them; ``studentIds`` is derived for querying.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Callable, Optional

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import (
    Location,
    OptimizedRoute,
    RouteQuery,
    RouteSegment,
    RouteStatus,
    TripType,
    Waypoint,
    WaypointStatus,
    WaypointType,
    now_ms,
)
from ..services.routing.errors import InvalidInputError, RouteNotFoundError

DEFAULT_QUERY_LIMIT = 50
MAX_MUTATION_ATTEMPTS = 5

logger = logging.getLogger(__name__)

RouteListener = Callable[[Optional[OptimizedRoute]], None]


class PersistenceError(RuntimeError):
    """Raised when the backing store rejects or fails an operation."""


class ConcurrentUpdateError(PersistenceError):
    """Raised when a conditional write loses to a concurrent writer."""


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def waypoint_to_record(waypoint: Waypoint) -> dict[str, Any]:
    return _drop_none(
        {
            "id": waypoint.id,
            "type": waypoint.type.value,
            "location": _drop_none(
                {
                    "latitude": waypoint.location.latitude,
                    "longitude": waypoint.location.longitude,
                    "address": waypoint.location.address,
                }
            ),
            "studentId": waypoint.student_id,
            "studentName": waypoint.student_name,
            "estimatedArrivalTime": waypoint.estimated_arrival_time,
            "actualArrivalTime": waypoint.actual_arrival_time,
            "status": waypoint.status.value,
            "sequenceOrder": waypoint.sequence_order,
            "notes": waypoint.notes,
        }
    )


def record_to_waypoint(record: dict[str, Any]) -> Waypoint:
    location = record.get("location") or {}
    return Waypoint(
        id=record["id"],
        type=WaypointType(record["type"]),
        location=Location(
            latitude=float(location["latitude"]),
            longitude=float(location["longitude"]),
            address=location.get("address"),
        ),
        student_id=record.get("studentId"),
        student_name=record.get("studentName"),
        estimated_arrival_time=record.get("estimatedArrivalTime"),
        actual_arrival_time=record.get("actualArrivalTime"),
        status=WaypointStatus(record.get("status", WaypointStatus.PENDING.value)),
        sequence_order=int(record.get("sequenceOrder", 0)),
        notes=record.get("notes"),
    )


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def route_to_record(route: OptimizedRoute) -> dict[str, Any]:
    segments = [
        _drop_none(
            {
                "fromWaypointId": segment.from_waypoint.id,
                "toWaypointId": segment.to_waypoint.id,
                "distance": segment.distance,
                "duration": segment.duration,
                "geometry": segment.geometry,
                "instructions": segment.instructions,
            }
        )
        for segment in route.segments
    ]
    return _drop_none(
        {
            "id": route.id,
            "driverId": route.driver_id,
            "date": route.date.isoformat(),
            "tripType": route.trip_type.value,
            "waypoints": [waypoint_to_record(waypoint) for waypoint in route.waypoints],
            "segments": json.dumps(segments),
            "totalDistance": route.total_distance,
            "totalDuration": route.total_duration,
            "estimatedStartTime": route.estimated_start_time,
            "estimatedEndTime": route.estimated_end_time,
            "actualStartTime": route.actual_start_time,
            "actualEndTime": route.actual_end_time,
            "currentWaypointIndex": route.current_waypoint_index,
            "status": route.status.value,
            "createdAt": route.created_at,
            "updatedAt": route.updated_at,
            "geometry": json.dumps(route.geometry) if route.geometry is not None else None,
            "studentIds": route.student_ids,
            "version": route.version,
        }
    )


def record_to_route(record: dict[str, Any]) -> OptimizedRoute:
    waypoints = [record_to_waypoint(item) for item in record.get("waypoints") or []]
    by_id = {waypoint.id: waypoint for waypoint in waypoints}

    segments: list[RouteSegment] = []
    for item in _load_json(record.get("segments")) or []:
        source = by_id.get(item.get("fromWaypointId"))
        target = by_id.get(item.get("toWaypointId"))
        if source is None or target is None:
            logger.warning(f"Dropping segment with unknown waypoint in route {record.get('id')}")
            continue
        segments.append(
            RouteSegment(
                from_waypoint=source,
                to_waypoint=target,
                distance=float(item.get("distance") or 0),
                duration=float(item.get("duration") or 0),
                geometry=item.get("geometry"),
                instructions=item.get("instructions"),
            )
        )

    raw_date = record["date"]
    return OptimizedRoute(
        id=record["id"],
        driver_id=record["driverId"],
        date=raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date)),
        trip_type=TripType(record["tripType"]),
        waypoints=waypoints,
        segments=segments,
        total_distance=float(record.get("totalDistance") or 0),
        total_duration=float(record.get("totalDuration") or 0),
        current_waypoint_index=int(record.get("currentWaypointIndex") or 0),
        status=RouteStatus(record["status"]),
        created_at=int(record["createdAt"]),
        updated_at=int(record["updatedAt"]),
        estimated_start_time=record.get("estimatedStartTime"),
        estimated_end_time=record.get("estimatedEndTime"),
        actual_start_time=record.get("actualStartTime"),
        actual_end_time=record.get("actualEndTime"),
        geometry=_load_json(record.get("geometry")),
        version=int(record.get("version") or 0),
    )


class RoutePersistence(ABC):
    """Narrow storage contract for route aggregates.

    Concrete stores implement the primitive reads and writes; status,
    progress and waypoint updates are expressed here as versioned
    read-modify-write cycles so a single route update is never split across
    two writes.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[RouteListener]] = {}
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def find(self, driver_id: str, route_date: date, trip_type: TripType) -> Optional[OptimizedRoute]:
        """Most recently created route for the key, if any."""

    @abstractmethod
    def get(self, route_id: str) -> Optional[OptimizedRoute]: ...

    @abstractmethod
    def _write(self, route: OptimizedRoute) -> None: ...

    @abstractmethod
    def _conditional_write(self, route: OptimizedRoute, expected_version: int) -> None:
        """Replace the stored route only if its version still equals ``expected_version``."""

    @abstractmethod
    def query(self, route_query: RouteQuery, limit: int = DEFAULT_QUERY_LIMIT) -> list[OptimizedRoute]:
        """Routes matching every set filter, newest first."""

    @abstractmethod
    def _remove(self, route_id: str) -> bool: ...

    @abstractmethod
    def delete_before(self, before: date, driver_id: Optional[str] = None) -> int:
        """Delete routes dated strictly before ``before``; returns the count removed."""

    def save(self, route: OptimizedRoute) -> str:
        """Insert or replace the route by id."""
        self._write(route)
        logger.info(f"Route {route.id} saved successfully")
        self._notify(route.id, route)
        return route.id

    def delete(self, route_id: str) -> bool:
        removed = self._remove(route_id)
        if removed:
            logger.info(f"Route {route_id} deleted successfully")
            self._notify(route_id, None)
        return removed

    def mutate(
        self,
        route_id: str,
        change: Callable[[OptimizedRoute], None],
        clock: Callable[[], int] = now_ms,
    ) -> OptimizedRoute:
        """Apply ``change`` to the stored route as one versioned write.

        ``change`` edits the route in place and may raise to abort without
        writing. Lost races are retried against a fresh read.
        """
        for attempt in range(1, MAX_MUTATION_ATTEMPTS + 1):
            route = self.get(route_id)
            if route is None:
                raise RouteNotFoundError(route_id)
            expected_version = route.version
            change(route)
            route.version = expected_version + 1
            route.updated_at = clock()
            try:
                self._conditional_write(route, expected_version)
            except ConcurrentUpdateError:
                logger.warning(
                    f"Concurrent update on route {route_id} (attempt {attempt}/{MAX_MUTATION_ATTEMPTS}), retrying"
                )
                continue
            self._notify(route_id, route)
            return route
        raise ConcurrentUpdateError(f"Route {route_id} kept changing; gave up after {MAX_MUTATION_ATTEMPTS} attempts")

    def update_status(
        self,
        route_id: str,
        status: RouteStatus,
        *,
        actual_start_time: Optional[int] = None,
        actual_end_time: Optional[int] = None,
    ) -> OptimizedRoute:
        def change(route: OptimizedRoute) -> None:
            route.status = status
            if actual_start_time is not None:
                route.actual_start_time = actual_start_time
            if actual_end_time is not None:
                route.actual_end_time = actual_end_time

        updated = self.mutate(route_id, change)
        logger.info(f"Route {route_id} status updated to {status.value}")
        return updated

    def update_progress(self, route_id: str, current_waypoint_index: int) -> OptimizedRoute:
        def change(route: OptimizedRoute) -> None:
            if not 0 <= current_waypoint_index <= len(route.waypoints):
                raise InvalidInputError(f"Invalid waypoint index {current_waypoint_index}")
            route.current_waypoint_index = current_waypoint_index

        updated = self.mutate(route_id, change)
        logger.info(f"Route {route_id} progress updated to waypoint {current_waypoint_index}")
        return updated

    def update_waypoint_status(
        self,
        route_id: str,
        waypoint_index: int,
        status: WaypointStatus,
        arrival_time: Optional[int] = None,
    ) -> OptimizedRoute:
        def change(route: OptimizedRoute) -> None:
            if not 0 <= waypoint_index < len(route.waypoints):
                raise InvalidInputError(f"Invalid waypoint index {waypoint_index}")
            waypoint = route.waypoints[waypoint_index]
            waypoint.status = status
            if arrival_time is not None:
                waypoint.actual_arrival_time = arrival_time

        updated = self.mutate(route_id, change)
        logger.info(f"Waypoint {waypoint_index} in route {route_id} updated to {status.value}")
        return updated

    def subscribe(self, route_id: str, callback: RouteListener) -> Callable[[], None]:
        """Call ``callback`` after every write to the route made through this store.

        The callback receives ``None`` when the route is deleted. Returns an
        unsubscribe function.
        """
        with self._listeners_lock:
            self._listeners.setdefault(route_id, []).append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                callbacks = self._listeners.get(route_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._listeners.pop(route_id, None)

        return unsubscribe

    def _notify(self, route_id: str, route: Optional[OptimizedRoute]) -> None:
        with self._listeners_lock:
            callbacks = list(self._listeners.get(route_id, []))
        for callback in callbacks:
            try:
                callback(route)
            except Exception:
                logger.exception(f"Error in route subscription callback for {route_id}")


def _matches(record: dict[str, Any], route_query: RouteQuery) -> bool:
    if route_query.driver_id and record["driverId"] != route_query.driver_id:
        return False
    if route_query.date and record["date"] != route_query.date.isoformat():
        return False
    if route_query.trip_type and record["tripType"] != route_query.trip_type.value:
        return False
    if route_query.status and record["status"] != route_query.status.value:
        return False
    return True


class InMemoryRouteStore(RoutePersistence):
    """Process-local store holding serialized records, used without Supabase and in tests."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _load(self, record: dict[str, Any]) -> OptimizedRoute:
        # Round-trip through JSON so callers never share state with the store.
        return record_to_route(json.loads(json.dumps(record)))

    def find(self, driver_id: str, route_date: date, trip_type: TripType) -> Optional[OptimizedRoute]:
        matches = self.query(RouteQuery(driver_id=driver_id, date=route_date, trip_type=trip_type), limit=1)
        return matches[0] if matches else None

    def get(self, route_id: str) -> Optional[OptimizedRoute]:
        with self._lock:
            record = self._records.get(route_id)
            return self._load(record) if record is not None else None

    def _write(self, route: OptimizedRoute) -> None:
        record = route_to_record(route)
        with self._lock:
            self._records[route.id] = record

    def _conditional_write(self, route: OptimizedRoute, expected_version: int) -> None:
        record = route_to_record(route)
        with self._lock:
            current = self._records.get(route.id)
            if current is None:
                raise RouteNotFoundError(route.id)
            if int(current.get("version") or 0) != expected_version:
                raise ConcurrentUpdateError(f"Route {route.id} was modified concurrently")
            self._records[route.id] = record

    def query(self, route_query: RouteQuery, limit: int = DEFAULT_QUERY_LIMIT) -> list[OptimizedRoute]:
        with self._lock:
            matches = [record for record in self._records.values() if _matches(record, route_query)]
            matches.sort(key=lambda record: record["createdAt"], reverse=True)
            return [self._load(record) for record in matches[:limit]]

    def _remove(self, route_id: str) -> bool:
        with self._lock:
            return self._records.pop(route_id, None) is not None

    def delete_before(self, before: date, driver_id: Optional[str] = None) -> int:
        cutoff = before.isoformat()
        with self._lock:
            doomed = [
                route_id
                for route_id, record in self._records.items()
                if record["date"] < cutoff and (driver_id is None or record["driverId"] == driver_id)
            ]
            for route_id in doomed:
                del self._records[route_id]
        for route_id in doomed:
            self._notify(route_id, None)
        logger.info(f"Deleted {len(doomed)} old routes before {cutoff}")
        return len(doomed)


class SupabaseRouteStore(RoutePersistence):
    """Routes table in Supabase, one row per route keyed by ``id``."""

    def __init__(self, client: Any = None, table: str | None = None) -> None:
        super().__init__()
        self.client = client or get_supabase_client()
        if self.client is None:
            raise PersistenceError("Supabase is not configured. Set ROUTES_SUPABASE_URL and ROUTES_SUPABASE_KEY.")
        self.table = table or settings.routes_table

    def _table(self):
        return self.client.table(self.table)

    def find(self, driver_id: str, route_date: date, trip_type: TripType) -> Optional[OptimizedRoute]:
        try:
            response = (
                self._table()
                .select("*")
                .eq("driverId", driver_id)
                .eq("date", route_date.isoformat())
                .eq("tripType", trip_type.value)
                .order("createdAt", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error finding route: {e}")
            raise PersistenceError(f"Failed to find route: {e}") from e
        rows = response.data or []
        return record_to_route(rows[0]) if rows else None

    def get(self, route_id: str) -> Optional[OptimizedRoute]:
        try:
            response = self._table().select("*").eq("id", route_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Error getting route: {e}")
            raise PersistenceError(f"Failed to get route: {e}") from e
        rows = response.data or []
        return record_to_route(rows[0]) if rows else None

    def _write(self, route: OptimizedRoute) -> None:
        try:
            self._table().upsert(route_to_record(route)).execute()
        except Exception as e:
            logger.error(f"Error saving route: {e}")
            raise PersistenceError(f"Failed to save route: {e}") from e

    def _conditional_write(self, route: OptimizedRoute, expected_version: int) -> None:
        try:
            response = (
                self._table()
                .update(route_to_record(route))
                .eq("id", route.id)
                .eq("version", expected_version)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error updating route: {e}")
            raise PersistenceError(f"Failed to update route: {e}") from e
        if response.data:
            return
        if self.get(route.id) is None:
            raise RouteNotFoundError(route.id)
        raise ConcurrentUpdateError(f"Route {route.id} was modified concurrently")

    def query(self, route_query: RouteQuery, limit: int = DEFAULT_QUERY_LIMIT) -> list[OptimizedRoute]:
        request = self._table().select("*")
        if route_query.driver_id:
            request = request.eq("driverId", route_query.driver_id)
        if route_query.date:
            request = request.eq("date", route_query.date.isoformat())
        if route_query.trip_type:
            request = request.eq("tripType", route_query.trip_type.value)
        if route_query.status:
            request = request.eq("status", route_query.status.value)
        try:
            response = request.order("createdAt", desc=True).limit(limit).execute()
        except Exception as e:
            logger.error(f"Error querying routes: {e}")
            raise PersistenceError(f"Failed to query routes: {e}") from e
        return [record_to_route(row) for row in response.data or []]

    def _remove(self, route_id: str) -> bool:
        try:
            response = self._table().delete().eq("id", route_id).execute()
        except Exception as e:
            logger.error(f"Error deleting route: {e}")
            raise PersistenceError(f"Failed to delete route: {e}") from e
        return bool(response.data)

    def delete_before(self, before: date, driver_id: Optional[str] = None) -> int:
        request = self._table().delete().lt("date", before.isoformat())
        if driver_id:
            request = request.eq("driverId", driver_id)
        try:
            response = request.execute()
        except Exception as e:
            logger.error(f"Error deleting old routes: {e}")
            raise PersistenceError(f"Failed to delete old routes: {e}") from e
        rows = response.data or []
        for row in rows:
            self._notify(row.get("id"), None)
        logger.info(f"Deleted {len(rows)} old routes before {before.isoformat()}")
        return len(rows)
