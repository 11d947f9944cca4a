"""Access to the students a driver has approved."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import Location, Student

APPROVED_STATUS = "approved"

logger = logging.getLogger(__name__)


class StudentDirectory(ABC):
    @abstractmethod
    def get_approved_students(self, driver_id: str) -> list[Student]:
        """Students assigned to the driver whose request has been approved."""


def _parse_location(value: Any) -> Optional[Location]:
    # Coordinates are kept as entered; validity is checked when waypoints are built.
    if not isinstance(value, dict):
        return None
    latitude = value.get("latitude", value.get("lat"))
    longitude = value.get("longitude", value.get("lng", value.get("lon")))
    if latitude is None or longitude is None:
        return None
    return Location(latitude=latitude, longitude=longitude, address=value.get("address"))


def student_from_record(record: dict[str, Any]) -> Student:
    return Student(
        student_id=str(record.get("id") or record.get("studentId") or "").strip(),
        name=(record.get("name") or "").strip(),
        home_location=_parse_location(record.get("homeLocation")),
        school_location=_parse_location(record.get("schoolLocation")),
        status=record.get("status"),
    )


class InMemoryStudentDirectory(StudentDirectory):
    def __init__(self, students_by_driver: dict[str, Iterable[Student]] | None = None) -> None:
        self._students = {driver: list(items) for driver, items in (students_by_driver or {}).items()}

    def set_students(self, driver_id: str, students: Iterable[Student]) -> None:
        self._students[driver_id] = list(students)

    def get_approved_students(self, driver_id: str) -> list[Student]:
        return [
            student
            for student in self._students.get(driver_id, [])
            if (student.status or APPROVED_STATUS).lower() == APPROVED_STATUS
        ]


class SupabaseStudentDirectory(StudentDirectory):
    """Reads the ``students`` table, filtered by ``driverId`` and approval status."""

    def __init__(self, client: Any = None, table: str | None = None) -> None:
        self.client = client or get_supabase_client()
        self.table = table or settings.students_table

    def get_approved_students(self, driver_id: str) -> list[Student]:
        if self.client is None:
            raise RuntimeError("Supabase is not configured; cannot load students.")
        response = (
            self.client.table(self.table)
            .select("*")
            .eq("driverId", driver_id)
            .eq("status", APPROVED_STATUS)
            .execute()
        )
        students = [student_from_record(row) for row in response.data or []]
        logger.info(f"Retrieved {len(students)} approved students for driver '{driver_id}'")
        return students
