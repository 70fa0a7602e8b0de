"""
tests/fixtures.py

Shared test data, builders and an in-memory Store fake.
All tests must use these fixtures instead of hardcoding test values.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Optional

from monitor.schemas import (
    CalendarEventEntry,
    MedicationScheduleEntry,
    NotificationRecord,
    Patient,
    PushResult,
    VitalReading,
)

TEST_DAY = date(2024, 6, 15)


def at(hour: int, minute: int, day: date = TEST_DAY) -> datetime:
    """UTC timestamp on the test day."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def build_patient(
    patient_id: str = "patient_001",
    timezone_name: Optional[str] = None,
    push_token: Optional[str] = None,
) -> Patient:
    """Build a Patient with sensible defaults for testing."""
    return Patient(
        patient_id=patient_id,
        name="Test Patient",
        push_token=push_token,
        timezone=timezone_name,
    )


def build_medication(
    patient_id: str = "patient_001",
    medication_id: str = "med_001",
    name: str = "Lisinopril",
    times: Optional[list[str]] = None,
    advance_minutes: Optional[int] = None,
    active: bool = True,
) -> MedicationScheduleEntry:
    """Build a MedicationScheduleEntry with sensible defaults for testing."""
    return MedicationScheduleEntry(
        medication_id=medication_id,
        patient_id=patient_id,
        name=name,
        dosage_value="10",
        dosage_unit="mg",
        times=times if times is not None else ["09:00"],
        advance_minutes=advance_minutes,
        active=active,
    )


def build_event(
    patient_id: str = "patient_001",
    event_id: str = "event_001",
    day: date = TEST_DAY,
    time: str = "10:30",
    title: str = "Cardiology follow-up",
    event_type: str = "appointment",
) -> CalendarEventEntry:
    """Build a CalendarEventEntry with sensible defaults for testing."""
    return CalendarEventEntry(
        event_id=event_id,
        patient_id=patient_id,
        date=day,
        time=time,
        title=title,
        event_type=event_type,
    )


def build_reading(
    metric: str = "heart_rate",
    value: float = 72.0,
    patient_id: str = "patient_001",
    recorded_at: Optional[datetime] = None,
) -> VitalReading:
    """Build a VitalReading with sensible defaults for testing."""
    return VitalReading(
        patient_id=patient_id,
        metric=metric,
        value=value,
        recorded_at=recorded_at or at(8, 30),
    )


class InMemoryStore:
    """Store fake with create-if-absent semantics on the dedup key."""

    def __init__(
        self,
        patients: Optional[list[Patient]] = None,
        vitals: Optional[dict[str, list[VitalReading]]] = None,
        medications: Optional[dict[str, list[MedicationScheduleEntry]]] = None,
        events: Optional[list[CalendarEventEntry]] = None,
    ) -> None:
        self.patients = patients or []
        self.vitals = vitals or {}
        self.medications = medications or {}
        self.events = events or []
        self.notifications: dict[str, NotificationRecord] = {}
        self.create_calls = 0
        self._lock = asyncio.Lock()

    async def active_patients(self) -> list[Patient]:
        return list(self.patients)

    async def recent_vitals(self, patient_id: str) -> list[VitalReading]:
        return list(self.vitals.get(patient_id, []))

    async def active_medication_schedules(
        self, patient_id: str
    ) -> list[MedicationScheduleEntry]:
        return [m for m in self.medications.get(patient_id, []) if m.active]

    async def calendar_events_in_range(
        self, start: date, end: date
    ) -> list[CalendarEventEntry]:
        return [e for e in self.events if start <= e.date <= end]

    async def find_notification_by_dedup_key(
        self, key: str
    ) -> Optional[NotificationRecord]:
        return self.notifications.get(key)

    async def create_notification(
        self, record: NotificationRecord
    ) -> NotificationRecord:
        async with self._lock:
            self.create_calls += 1
            existing = self.notifications.get(record.dedup_key)
            if existing is not None:
                return existing
            self.notifications[record.dedup_key] = record
            return record

    async def mark_delivered(self, record_id: str) -> None:
        for key, record in self.notifications.items():
            if record.id == record_id:
                self.notifications[key] = record.model_copy(update={"delivered": True})


class RecordingPushGateway:
    """Push gateway fake that records every send."""

    def __init__(self, success: bool = True) -> None:
        self.success = success
        self.sent: list[dict] = []

    async def send_to_destination(self, destination, title, body, data) -> PushResult:
        self.sent.append(
            {"destination": destination, "title": title, "body": body, "data": data}
        )
        if self.success:
            return PushResult(success=True, message_id="msg_1")
        return PushResult(success=False, error="unavailable")


class StaticProvider:
    """Text provider returning a fixed answer."""

    def __init__(self, answer: str, name: str = "static", timeout: float = 1.0, max_chars: int = 220) -> None:
        self.name = name
        self.timeout = timeout
        self.max_chars = max_chars
        self.answer = answer
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


class FailingProvider:
    """Text provider that raises on every call."""

    def __init__(self, name: str = "failing", timeout: float = 1.0) -> None:
        self.name = name
        self.timeout = timeout
        self.max_chars = 220
        self.calls = 0

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        raise RuntimeError("provider unavailable")


class HangingProvider:
    """Text provider that never answers within its timeout."""

    def __init__(self, name: str = "hanging", timeout: float = 0.05) -> None:
        self.name = name
        self.timeout = timeout
        self.max_chars = 220

    async def generate(self, prompt: str) -> str:
        await asyncio.sleep(30)
        return "too late"
