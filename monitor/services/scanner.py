"""
monitor/services/scanner.py

Due-item scanning for medication doses and calendar events.
- due_medications / due_events: pure per-patient window checks
- DueItemScanner: store-backed scan across all active patients

An item is due iff 0 <= scheduled - now <= window (both bounds inclusive),
where scheduled is today's date in the patient's timezone combined with the
item's HH:MM. Passed items are never due; there is no rollover to tomorrow.
"""

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

import structlog

from monitor.schemas import (
    CalendarEventEntry,
    DueEvent,
    DueMedication,
    MedicationScheduleEntry,
    Patient,
)
from monitor.services.store import Store

logger = structlog.get_logger(__name__)


def parse_time_of_day(value: str) -> time:
    """Parse 'HH:MM' into a time; raises ValueError on malformed input."""
    hours, sep, minutes = value.strip().partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit():
        raise ValueError(f"invalid time of day: {value!r}")
    return time(int(hours), int(minutes))


def scheduled_at(now_local: datetime, value: str) -> datetime:
    """Combine the local calendar date of now with an HH:MM time of day."""
    return datetime.combine(
        now_local.date(), parse_time_of_day(value), tzinfo=now_local.tzinfo
    )


def is_due(scheduled: datetime, now: datetime, window_minutes: int) -> bool:
    """
    Inclusive window check: 0 <= scheduled - now <= window.

    Both sides are converted to UTC first; subtracting two datetimes that
    share a tzinfo compares wall clocks and ignores DST offset changes.
    """
    diff = scheduled.astimezone(timezone.utc) - now.astimezone(timezone.utc)
    return timedelta(0) <= diff <= timedelta(minutes=window_minutes)


def local_now(now: datetime, zone: ZoneInfo) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=ZoneInfo("UTC"))
    return now.astimezone(zone)


def due_medications(
    patient: Patient,
    schedules: Iterable[MedicationScheduleEntry],
    now: datetime,
    default_window: int,
) -> list[DueMedication]:
    """Return every dose of the patient's active schedules due at now."""
    now_local = local_now(now, patient.zone)
    due: list[DueMedication] = []

    for entry in schedules:
        if not entry.active:
            continue
        window = (
            entry.advance_minutes
            if entry.advance_minutes is not None
            else default_window
        )
        for slot in entry.times:
            try:
                dose_time = scheduled_at(now_local, slot)
            except ValueError as exc:
                logger.warning(
                    "medication_time_invalid",
                    patient_id=patient.patient_id,
                    medication_id=entry.medication_id,
                    time=slot,
                    error=str(exc),
                )
                continue
            if is_due(dose_time, now_local, window):
                due.append(
                    DueMedication(
                        patient=patient,
                        medication=entry,
                        scheduled_time=dose_time.strftime("%H:%M"),
                        dose_time=dose_time,
                    )
                )

    return due


def due_events(
    patient: Patient,
    events: Iterable[CalendarEventEntry],
    now: datetime,
    default_window: int,
) -> list[DueEvent]:
    """Return the patient's events dated today (local) that are due at now."""
    now_local = local_now(now, patient.zone)
    today = now_local.date()
    due: list[DueEvent] = []

    for event in events:
        if event.patient_id != patient.patient_id or event.date != today:
            continue
        window = (
            event.advance_minutes
            if event.advance_minutes is not None
            else default_window
        )
        try:
            event_time = scheduled_at(now_local, event.time)
        except ValueError as exc:
            logger.warning(
                "event_time_invalid",
                patient_id=patient.patient_id,
                event_id=event.event_id,
                time=event.time,
                error=str(exc),
            )
            continue
        if is_due(event_time, now_local, window):
            due.append(DueEvent(patient=patient, event=event, event_time=event_time))

    return due


def event_query_range(now: datetime) -> tuple[date, date]:
    """
    Date range covering 'today' in every timezone.

    Local dates differ from the UTC date by at most one day either way.
    """
    utc_day = local_now(now, ZoneInfo("UTC")).date()
    return utc_day - timedelta(days=1), utc_day + timedelta(days=1)


class DueItemScanner:
    """Store-backed scan for due doses and events, bounded per store call."""

    def __init__(self, store: Store, default_window: int, concurrency: int = 10) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self._store = store
        self._default_window = default_window
        self._concurrency = concurrency

    @property
    def default_window(self) -> int:
        return self._default_window

    async def events_by_patient(self, now: datetime) -> dict[str, list[CalendarEventEntry]]:
        """Fetch calendar events around now once and group them by patient."""
        start, end = event_query_range(now)
        by_patient: dict[str, list[CalendarEventEntry]] = {}
        for event in await self._store.calendar_events_in_range(start, end):
            by_patient.setdefault(event.patient_id, []).append(event)
        return by_patient

    def scan_patient(
        self,
        patient: Patient,
        schedules: Iterable[MedicationScheduleEntry],
        events: Iterable[CalendarEventEntry],
        now: datetime,
        window_minutes: Optional[int] = None,
    ) -> tuple[list[DueMedication], list[DueEvent]]:
        """Due doses and events for one patient's already-fetched entries."""
        window = self._default_window if window_minutes is None else window_minutes
        return (
            due_medications(patient, schedules, now, window),
            due_events(patient, events, now, window),
        )

    async def find_due_medications(
        self,
        now: datetime,
        window_minutes: Optional[int] = None,
    ) -> list[DueMedication]:
        patients = await self._store.active_patients()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def fetch(patient: Patient) -> list[MedicationScheduleEntry]:
            async with semaphore:
                return await self._store.active_medication_schedules(patient.patient_id)

        schedules = await asyncio.gather(*(fetch(p) for p in patients))
        due: list[DueMedication] = []
        for patient, entries in zip(patients, schedules):
            meds, _ = self.scan_patient(patient, entries, [], now, window_minutes)
            due.extend(meds)
        logger.info("medication_scan_complete", due_count=len(due))
        return due

    async def find_due_events(
        self,
        now: datetime,
        window_minutes: Optional[int] = None,
    ) -> list[DueEvent]:
        patients = await self._store.active_patients()
        by_patient = await self.events_by_patient(now)

        due: list[DueEvent] = []
        for patient in patients:
            _, events = self.scan_patient(
                patient, [], by_patient.get(patient.patient_id, []), now, window_minutes
            )
            due.extend(events)
        logger.info("event_scan_complete", due_count=len(due))
        return due
