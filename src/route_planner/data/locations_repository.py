"""Best-effort lookup of a driver's last reported position."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import Location

logger = logging.getLogger(__name__)


class LocationProvider(ABC):
    @abstractmethod
    def get_current_position(self, driver_id: str) -> Optional[Location]:
        """Latest known position, or None when unavailable."""


class StaticLocationProvider(LocationProvider):
    def __init__(self, positions: dict[str, Location] | None = None) -> None:
        self.positions = dict(positions or {})

    def get_current_position(self, driver_id: str) -> Optional[Location]:
        return self.positions.get(driver_id)


class SupabaseLocationProvider(LocationProvider):
    """Reads the heartbeat row the driver app writes (``lat``/``lng`` per driver)."""

    def __init__(self, client: Any = None, table: str | None = None) -> None:
        self.client = client or get_supabase_client()
        self.table = table or settings.driver_locations_table

    def get_current_position(self, driver_id: str) -> Optional[Location]:
        if self.client is None:
            return None
        try:
            response = self.client.table(self.table).select("*").eq("driverId", driver_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Error getting current location: {e}")
            return None
        rows = response.data or []
        if not rows:
            return None
        row = rows[0]
        lat, lng = row.get("lat"), row.get("lng")
        if lat is None or lng is None:
            return None
        return Location(latitude=float(lat), longitude=float(lng))
