"""Route calculation and progress endpoints."""

from __future__ import annotations

import logging
from datetime import date
from typing import NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, status

from ...models.domain import RouteQuery, RouteStatus, TripType
from ...persistence.routes import ConcurrentUpdateError, PersistenceError
from ...schemas.routes import (
    AdvanceRequest,
    CalculateRouteRequest,
    DeleteRouteResponse,
    RouteListResponse,
    RouteModel,
)
from ...services.routing.errors import (
    InvalidTransitionError,
    RouteErrorType,
    RouteNotFoundError,
    RouteOptimizationError,
)
from ..deps import LifecycleDep, OptimizerDep, StoreDep

router = APIRouter(prefix="/routes", tags=["routes"])

ERROR_STATUS_CODES: dict[RouteErrorType, int] = {
    RouteErrorType.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    RouteErrorType.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    RouteErrorType.AUTHENTICATION_ERROR: status.HTTP_502_BAD_GATEWAY,
    RouteErrorType.NETWORK_ERROR: status.HTTP_502_BAD_GATEWAY,
    RouteErrorType.API_ERROR: status.HTTP_502_BAD_GATEWAY,
    RouteErrorType.NO_ROUTE_FOUND: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RouteErrorType.UNKNOWN_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, RouteOptimizationError):
        raise HTTPException(
            status_code=ERROR_STATUS_CODES[exc.kind],
            detail={"type": exc.kind.value, "message": exc.message},
        ) from exc
    if isinstance(exc, RouteNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (InvalidTransitionError, ConcurrentUpdateError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    logging.exception(f"Unexpected route error: {exc}")
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Route operation failed: {exc}",
    ) from exc


@router.post("/calculate", response_model=RouteModel, status_code=status.HTTP_200_OK)
def calculate(payload: CalculateRouteRequest, optimizer: OptimizerDep) -> RouteModel:
    try:
        route = optimizer.calculate_optimal_route(
            payload.driver_id,
            payload.date,
            payload.trip_type,
            start_location=payload.start_location.to_domain() if payload.start_location else None,
            force_recalculate=payload.force_recalculate,
        )
    except Exception as exc:
        _raise_http(exc)
    return RouteModel.from_domain(route)


@router.get("", response_model=RouteListResponse, status_code=status.HTTP_200_OK)
def list_routes(
    store: StoreDep,
    driver_id: Optional[str] = None,
    route_date: Optional[date] = Query(default=None, alias="date"),
    trip_type: Optional[TripType] = None,
    route_status: Optional[RouteStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
) -> RouteListResponse:
    try:
        routes = store.query(
            RouteQuery(driver_id=driver_id, date=route_date, trip_type=trip_type, status=route_status),
            limit=limit,
        )
    except PersistenceError as exc:
        _raise_http(exc)
    return RouteListResponse(routes=[RouteModel.from_domain(route) for route in routes], count=len(routes))


@router.get("/{route_id}", response_model=RouteModel, status_code=status.HTTP_200_OK)
def get_route(route_id: str, store: StoreDep) -> RouteModel:
    try:
        route = store.get(route_id)
    except PersistenceError as exc:
        _raise_http(exc)
    if route is None:
        _raise_http(RouteNotFoundError(route_id))
    return RouteModel.from_domain(route)


@router.delete("/{route_id}", response_model=DeleteRouteResponse, status_code=status.HTTP_200_OK)
def delete_route(route_id: str, store: StoreDep) -> DeleteRouteResponse:
    try:
        removed = store.delete(route_id)
    except PersistenceError as exc:
        _raise_http(exc)
    if not removed:
        _raise_http(RouteNotFoundError(route_id))
    return DeleteRouteResponse(success=True, message=f"Route {route_id} deleted")


@router.post("/{route_id}/start", response_model=RouteModel, status_code=status.HTTP_200_OK)
def start_route(route_id: str, lifecycle: LifecycleDep) -> RouteModel:
    try:
        return RouteModel.from_domain(lifecycle.start_route(route_id))
    except Exception as exc:
        _raise_http(exc)


@router.post("/{route_id}/complete", response_model=RouteModel, status_code=status.HTTP_200_OK)
def complete_route(route_id: str, lifecycle: LifecycleDep) -> RouteModel:
    try:
        return RouteModel.from_domain(lifecycle.complete_route(route_id))
    except Exception as exc:
        _raise_http(exc)


@router.post("/{route_id}/cancel", response_model=RouteModel, status_code=status.HTTP_200_OK)
def cancel_route(route_id: str, lifecycle: LifecycleDep) -> RouteModel:
    try:
        return RouteModel.from_domain(lifecycle.cancel_route(route_id))
    except Exception as exc:
        _raise_http(exc)


@router.post("/{route_id}/advance", response_model=RouteModel, status_code=status.HTTP_200_OK)
def advance(route_id: str, payload: AdvanceRequest, lifecycle: LifecycleDep) -> RouteModel:
    try:
        return RouteModel.from_domain(lifecycle.advance_to_next_waypoint(route_id, payload.current_index))
    except Exception as exc:
        _raise_http(exc)


@router.post("/{route_id}/waypoints/{index}/start", response_model=RouteModel, status_code=status.HTTP_200_OK)
def start_waypoint(route_id: str, index: int, lifecycle: LifecycleDep) -> RouteModel:
    try:
        return RouteModel.from_domain(lifecycle.mark_waypoint_in_progress(route_id, index))
    except Exception as exc:
        _raise_http(exc)


@router.post("/{route_id}/waypoints/{index}/skip", response_model=RouteModel, status_code=status.HTTP_200_OK)
def skip_waypoint(route_id: str, index: int, lifecycle: LifecycleDep) -> RouteModel:
    try:
        return RouteModel.from_domain(lifecycle.skip_waypoint(route_id, index))
    except Exception as exc:
        _raise_http(exc)
