"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ..deps import ClientDep

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/routing", status_code=status.HTTP_200_OK)
def health_routing(client: ClientDep) -> dict:
    """Check that the routing provider is reachable and accepts our API key."""
    try:
        return {"service": "ors", "healthy": client.check_connection()}
    except Exception as e:
        return {"service": "ors", "healthy": False, "error": str(e)}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check database connection and route storage status."""
    from ...config import settings
    from ...db.supabase import get_supabase_client

    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "message": "Supabase not configured. Set ROUTES_SUPABASE_URL and ROUTES_SUPABASE_KEY environment variables.",
        }

    try:
        supabase.table(settings.routes_table).select("id", count="exact").limit(1).execute()
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
    return {
        "configured": True,
        "connected": True,
        "message": f"Database connected. Table '{settings.routes_table}' is reachable.",
    }
