"""HTTP client for the OpenRouteService matrix, optimization and directions APIs."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Sequence

import httpx

from ...config import settings
from ...models.domain import (
    DirectionsLeg,
    DirectionsResult,
    DistanceMatrix,
    OptimizationResult,
    VrpJob,
    VrpRoute,
    VrpVehicle,
)
from .errors import (
    ApiError,
    AuthenticationError,
    InvalidInputError,
    NoRouteFoundError,
    RateLimitExceededError,
    RouteOptimizationError,
    RoutingNetworkError,
    UnknownRouteError,
)
from .polyline import decode_polyline
from .rate_limiter import RateLimiter
from .retry import RetryPolicy, call_with_retry

MATRIX_ENDPOINT = "/v2/matrix"
OPTIMIZATION_ENDPOINT = "/optimization"
DIRECTIONS_ENDPOINT = "/v2/directions"

# Heidelberg, two nearby points
HEALTH_CHECK_LOCATIONS = [[8.681495, 49.41461], [8.687872, 49.420318]]

logger = logging.getLogger(__name__)


def _provider_message(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message") or str(error)
    if error:
        return str(error)
    return None


def classify_error(error: Exception) -> RouteOptimizationError:
    """Map a transport exception onto the routing error taxonomy."""
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        if status_code in (401, 403):
            return AuthenticationError(
                "Invalid or missing API key. Please check your ORS API configuration.", error
            )
        if status_code == 429:
            return RateLimitExceededError("Rate limit exceeded. Please try again later.", error)
        provider_message = _provider_message(error.response)
        if provider_message:
            return ApiError(f"ORS API Error: {provider_message}", error)
        if status_code >= 500:
            return ApiError("ORS server error. Please try again later.", error)
        return ApiError(f"HTTP {status_code}: {error}", error)
    if isinstance(error, httpx.TransportError):
        return RoutingNetworkError(
            "Network error: Unable to reach ORS API. Please check your internet connection.", error
        )
    return UnknownRouteError(str(error) or "Unknown error occurred", error)


def _is_coordinate(value: Any) -> bool:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return False
    return all(isinstance(item, (int, float)) and not isinstance(item, bool) for item in value)


class ORSClient:
    """Thin transport over ORS with authentication, rate limiting and retries.

    The rate limiter should be shared between every client using the same API
    key; when none is given a private one is created.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.ors_api_key
        self.base_url = (base_url or settings.ors_base_url).rstrip("/")
        self.profile = profile or settings.ors_profile
        self.timeout = timeout if timeout is not None else settings.ors_timeout_seconds
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = http_client or httpx.Client(timeout=httpx.Timeout(self.timeout, connect=10.0))
        self._sleep = sleep

    def close(self) -> None:
        self._client.close()

    def _endpoint_url(self, endpoint: str, profile: str | None = None) -> str:
        if endpoint in (MATRIX_ENDPOINT, DIRECTIONS_ENDPOINT):
            return f"{self.base_url}{endpoint}/{profile or self.profile}"
        return f"{self.base_url}{endpoint}"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": self.api_key or "",
        }

    def _post(self, url: str, payload: dict, description: str) -> dict:
        if not self.api_key:
            raise AuthenticationError(
                "ORS API key is not configured. Please set ROUTES_ORS_API_KEY in the environment."
            )

        def attempt() -> dict:
            logger.debug(f"[ORS Request] POST {url}")
            response = self._client.post(url, json=payload, headers=self._headers())
            response.raise_for_status()
            try:
                data = response.json()
            except ValueError as exc:
                raise ApiError(f"Invalid response from ORS: body is not JSON ({description})", exc) from exc
            if not isinstance(data, dict):
                raise ApiError(f"Invalid response from ORS: expected a JSON object ({description})")
            return data

        return call_with_retry(
            attempt,
            policy=self.retry_policy,
            rate_limiter=self.rate_limiter,
            classify=classify_error,
            sleep=self._sleep,
            description=description,
        )

    def compute_matrix(self, locations: Sequence[Sequence[float]], profile: str | None = None) -> DistanceMatrix:
        """Distance (m) and duration (s) tables between ``[lon, lat]`` locations."""
        if not locations or len(locations) < 2:
            raise InvalidInputError("At least 2 locations are required for distance matrix calculation")
        for location in locations:
            if not _is_coordinate(location):
                raise InvalidInputError("Invalid location format. Expected [longitude, latitude]")

        payload = {
            "locations": [list(location) for location in locations],
            "metrics": ["distance", "duration"],
        }
        data = self._post(self._endpoint_url(MATRIX_ENDPOINT, profile), payload, "ORS matrix request")

        if not data.get("distances") or not data.get("durations"):
            raise ApiError("Invalid response from ORS Matrix API: missing distances or durations")

        try:
            return DistanceMatrix(
                distances=data["distances"],
                durations=data["durations"],
                sources=len(data.get("sources") or data["durations"]),
                destinations=len(data.get("destinations") or data["durations"][0]),
            )
        except (TypeError, KeyError, IndexError) as exc:
            raise ApiError(f"Invalid response from ORS Matrix API: {exc}", exc) from exc

    def optimize(
        self,
        jobs: Sequence[VrpJob],
        vehicles: Sequence[VrpVehicle],
        options: dict | None = None,
    ) -> OptimizationResult:
        """Solve the vehicle routing problem for the given jobs and vehicles."""
        if not vehicles:
            raise InvalidInputError("At least one vehicle is required for route optimization")
        if not jobs:
            raise InvalidInputError("At least one job is required for route optimization")

        payload: dict = {
            "jobs": [job.to_payload() for job in jobs],
            "vehicles": [vehicle.to_payload() for vehicle in vehicles],
        }
        if options:
            payload["options"] = options

        data = self._post(self._endpoint_url(OPTIMIZATION_ENDPOINT), payload, "ORS optimization request")

        code = data.get("code", 0)
        if code != 0:
            raise NoRouteFoundError(f"Route optimization failed with code {code}")

        try:
            routes = [VrpRoute.from_payload(route) for route in data.get("routes") or []]
        except (TypeError, ValueError, AttributeError) as exc:
            raise ApiError(f"Invalid response from ORS Optimization API: {exc}", exc) from exc
        if not routes:
            raise NoRouteFoundError("No optimized route found")

        unassigned = list(data.get("unassigned") or [])
        if unassigned:
            logger.warning(f"Warning: {len(unassigned)} job(s) could not be assigned to any vehicle")

        return OptimizationResult(code=code, routes=routes, unassigned=unassigned)

    def get_directions(
        self,
        coordinates: Sequence[Sequence[float]],
        profile: str | None = None,
        include_instructions: bool = True,
    ) -> DirectionsResult:
        """Road geometry and per-leg metrics through ``[lon, lat]`` coordinates in order."""
        if not coordinates or len(coordinates) < 2:
            raise InvalidInputError("At least 2 waypoints are required for directions")

        payload = {
            "coordinates": [list(coordinate) for coordinate in coordinates],
            "instructions": include_instructions,
            "geometry": True,
        }
        data = self._post(self._endpoint_url(DIRECTIONS_ENDPOINT, profile), payload, "ORS directions request")

        routes = data.get("routes") or []
        if not routes:
            raise NoRouteFoundError("No route found between the specified waypoints")
        try:
            return _parse_directions_route(routes[0])
        except (TypeError, ValueError, KeyError, IndexError, AttributeError) as exc:
            raise ApiError(f"Invalid response from ORS Directions API: {exc}", exc) from exc

    def check_connection(self) -> bool:
        """Probe the matrix endpoint with two nearby points."""
        try:
            self.compute_matrix(HEALTH_CHECK_LOCATIONS)
            return True
        except RouteOptimizationError as error:
            logger.warning(f"ORS connectivity check failed: {error.kind.value}: {error.message}")
            return False


def _decode_geometry(geometry: Any) -> list[list[float]]:
    if isinstance(geometry, str):
        return decode_polyline(geometry)
    if isinstance(geometry, dict) and "coordinates" in geometry:
        return [list(point[:2]) for point in geometry["coordinates"]]
    return []


def _parse_directions_route(route: dict) -> DirectionsResult:
    geometry = _decode_geometry(route.get("geometry"))
    legs: list[DirectionsLeg] = []
    for segment in route.get("segments") or []:
        steps = segment.get("steps") or []
        instructions = [step["instruction"] for step in steps if step.get("instruction")]
        leg_geometry = None
        way_points = [index for step in steps for index in (step.get("way_points") or [])]
        if geometry and way_points:
            leg_geometry = geometry[min(way_points) : max(way_points) + 1]
        legs.append(
            DirectionsLeg(
                distance=float(segment.get("distance") or 0),
                duration=float(segment.get("duration") or 0),
                instructions=instructions,
                geometry=leg_geometry,
            )
        )

    summary = route.get("summary") or {}
    return DirectionsResult(
        distance=float(summary.get("distance") or sum(leg.distance for leg in legs)),
        duration=float(summary.get("duration") or sum(leg.duration for leg in legs)),
        geometry=geometry,
        legs=legs,
    )
