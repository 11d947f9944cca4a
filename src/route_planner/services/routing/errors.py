"""Error taxonomy for route optimization and the routing transport."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class RouteErrorType(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    API_ERROR = "API_ERROR"
    NO_ROUTE_FOUND = "NO_ROUTE_FOUND"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_ERROR_TYPES = frozenset({RouteErrorType.NETWORK_ERROR, RouteErrorType.RATE_LIMIT_EXCEEDED})


class RouteOptimizationError(Exception):
    """Base error carrying a kind discriminant and the underlying cause, if any."""

    kind: RouteErrorType = RouteErrorType.UNKNOWN_ERROR

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_ERROR_TYPES

    @staticmethod
    def for_kind(
        kind: RouteErrorType, message: str, cause: Optional[BaseException] = None
    ) -> "RouteOptimizationError":
        return _ERRORS_BY_KIND[kind](message, cause)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class InvalidInputError(RouteOptimizationError):
    kind = RouteErrorType.INVALID_INPUT


class RoutingNetworkError(RouteOptimizationError):
    kind = RouteErrorType.NETWORK_ERROR


class RateLimitExceededError(RouteOptimizationError):
    kind = RouteErrorType.RATE_LIMIT_EXCEEDED


class AuthenticationError(RouteOptimizationError):
    kind = RouteErrorType.AUTHENTICATION_ERROR


class ApiError(RouteOptimizationError):
    kind = RouteErrorType.API_ERROR


class NoRouteFoundError(RouteOptimizationError):
    kind = RouteErrorType.NO_ROUTE_FOUND


class UnknownRouteError(RouteOptimizationError):
    kind = RouteErrorType.UNKNOWN_ERROR


_ERRORS_BY_KIND: dict[RouteErrorType, type[RouteOptimizationError]] = {
    cls.kind: cls
    for cls in (
        InvalidInputError,
        RoutingNetworkError,
        RateLimitExceededError,
        AuthenticationError,
        ApiError,
        NoRouteFoundError,
        UnknownRouteError,
    )
}


class RouteNotFoundError(LookupError):
    """Raised when a route id does not resolve to a stored route."""

    def __init__(self, route_id: str) -> None:
        super().__init__(f"Route {route_id} not found")
        self.route_id = route_id


class InvalidTransitionError(ValueError):
    """Raised when a lifecycle operation would leave a terminal or later state."""
