"""
monitor/services/store.py

Record store contract consumed by the engine.
The production implementation lives in db/store.py; tests use an in-memory fake.
"""

from datetime import date
from typing import Optional, Protocol

from monitor.schemas import (
    CalendarEventEntry,
    MedicationScheduleEntry,
    NotificationRecord,
    Patient,
    VitalReading,
)


class Store(Protocol):
    """Async query/write contract for patients, schedules and notifications."""

    async def active_patients(self) -> list[Patient]: ...

    async def recent_vitals(self, patient_id: str) -> list[VitalReading]: ...

    async def active_medication_schedules(
        self, patient_id: str
    ) -> list[MedicationScheduleEntry]: ...

    async def calendar_events_in_range(
        self, start: date, end: date
    ) -> list[CalendarEventEntry]: ...

    async def find_notification_by_dedup_key(
        self, key: str
    ) -> Optional[NotificationRecord]: ...

    async def create_notification(
        self, record: NotificationRecord
    ) -> NotificationRecord:
        """
        Persist the record unless one with the same dedup key exists.

        Returns the stored record, which is the pre-existing one when a
        concurrent writer created it first.
        """
        ...

    async def mark_delivered(self, record_id: str) -> None: ...
