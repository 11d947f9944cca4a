"""Shared service instances for the API layer."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from ..config import settings
from ..data.locations_repository import LocationProvider, StaticLocationProvider, SupabaseLocationProvider
from ..data.students_repository import InMemoryStudentDirectory, StudentDirectory, SupabaseStudentDirectory
from ..db.supabase import get_supabase_client
from ..persistence.routes import InMemoryRouteStore, RoutePersistence, SupabaseRouteStore
from ..services.routing.lifecycle import RouteLifecycle
from ..services.routing.optimizer import RouteOptimizer
from ..services.routing.ors_client import ORSClient
from ..services.routing.rate_limiter import RateLimiter


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    return RateLimiter()


@lru_cache()
def get_ors_client() -> ORSClient:
    return ORSClient(rate_limiter=get_rate_limiter())


@lru_cache()
def get_route_store() -> RoutePersistence:
    client = get_supabase_client()
    if client is None:
        logging.info("Supabase not configured - routes are kept in memory only")
        return InMemoryRouteStore()
    return SupabaseRouteStore(client=client, table=settings.routes_table)


@lru_cache()
def get_student_directory() -> StudentDirectory:
    client = get_supabase_client()
    if client is None:
        return InMemoryStudentDirectory()
    return SupabaseStudentDirectory(client=client)


@lru_cache()
def get_location_provider() -> LocationProvider:
    client = get_supabase_client()
    if client is None:
        return StaticLocationProvider()
    return SupabaseLocationProvider(client=client)


def get_route_optimizer(
    client: Annotated[ORSClient, Depends(get_ors_client)],
    store: Annotated[RoutePersistence, Depends(get_route_store)],
    students: Annotated[StudentDirectory, Depends(get_student_directory)],
    locations: Annotated[LocationProvider, Depends(get_location_provider)],
) -> RouteOptimizer:
    return _cached_optimizer(client, store, students, locations)


@lru_cache()
def _cached_optimizer(
    client: ORSClient,
    store: RoutePersistence,
    students: StudentDirectory,
    locations: LocationProvider,
) -> RouteOptimizer:
    # One optimizer per collaborator set so its per-key locks are shared across requests.
    return RouteOptimizer(client=client, persistence=store, students=students, locations=locations)


def get_route_lifecycle(store: Annotated[RoutePersistence, Depends(get_route_store)]) -> RouteLifecycle:
    return RouteLifecycle(store)


OptimizerDep = Annotated[RouteOptimizer, Depends(get_route_optimizer)]
LifecycleDep = Annotated[RouteLifecycle, Depends(get_route_lifecycle)]
StoreDep = Annotated[RoutePersistence, Depends(get_route_store)]
ClientDep = Annotated[ORSClient, Depends(get_ors_client)]
