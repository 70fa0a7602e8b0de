"""
db/store.py

SQLAlchemy implementation of the engine's Store contract.
Uses SQLAlchemy 2.0 async sessions; naive database timestamps are UTC.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from db.models import (
    AsyncSessionLocal,
    CalendarEvent,
    Medication,
    Notification,
    User,
)
from db.models import VitalReading as VitalReadingRow
from monitor.schemas import (
    CalendarEventEntry,
    MedicationScheduleEntry,
    NotificationRecord,
    Patient,
    VitalReading,
    utcnow,
)

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_record(row: Notification) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        patient_id=row.user_id,
        kind=row.kind,
        title=row.title,
        body=row.body,
        source_ref=row.source_ref,
        due_at=_as_utc(row.due_at),
        dedup_key=row.dedup_key,
        data=row.data or {},
        created_at=_as_utc(row.created_at),
        delivered=row.is_delivered,
        read=row.is_read,
    )


class SqlAlchemyStore:
    """MySQL-backed store with create-if-absent notification writes."""

    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        vitals_lookback_minutes: int = 60,
    ) -> None:
        self._session_factory = session_factory
        self._lookback = timedelta(minutes=vitals_lookback_minutes)

    async def active_patients(self) -> list[Patient]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User).where(User.role == "patient", User.is_active.is_(True))
            )
            return [
                Patient(
                    patient_id=user.user_id,
                    name=user.name,
                    push_token=user.fcm_token,
                    push_topic=user.push_topic,
                    timezone=user.timezone,
                )
                for user in result.scalars()
            ]

    async def recent_vitals(self, patient_id: str) -> list[VitalReading]:
        cutoff = (utcnow() - self._lookback).replace(tzinfo=None)
        async with self._session_factory() as session:
            result = await session.execute(
                select(VitalReadingRow)
                .where(
                    VitalReadingRow.user_id == patient_id,
                    VitalReadingRow.recorded_at >= cutoff,
                )
                .order_by(VitalReadingRow.recorded_at)
            )
            return [
                VitalReading(
                    patient_id=row.user_id,
                    metric=row.metric,
                    value=row.value,
                    recorded_at=_as_utc(row.recorded_at),
                )
                for row in result.scalars()
            ]

    async def active_medication_schedules(
        self, patient_id: str
    ) -> list[MedicationScheduleEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Medication).where(
                    Medication.user_id == patient_id,
                    Medication.is_active.is_(True),
                    Medication.reminders_enabled.is_(True),
                )
            )
            return [
                MedicationScheduleEntry(
                    medication_id=row.medication_id,
                    patient_id=row.user_id,
                    name=row.name,
                    dosage_value=row.dosage_value,
                    dosage_unit=row.dosage_unit,
                    times=[str(t) for t in (row.schedule_times or [])],
                    advance_minutes=row.advance_minutes,
                    active=row.is_active,
                )
                for row in result.scalars()
            ]

    async def calendar_events_in_range(
        self, start: date, end: date
    ) -> list[CalendarEventEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CalendarEvent).where(
                    CalendarEvent.event_date >= start,
                    CalendarEvent.event_date <= end,
                    CalendarEvent.event_time.is_not(None),
                )
            )
            return [
                CalendarEventEntry(
                    event_id=row.event_id,
                    patient_id=row.user_id,
                    date=row.event_date,
                    time=row.event_time,
                    title=row.title or "",
                    event_type=row.event_type or "event",
                    advance_minutes=row.advance_minutes,
                )
                for row in result.scalars()
            ]

    async def find_notification_by_dedup_key(
        self, key: str
    ) -> Optional[NotificationRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Notification).where(Notification.dedup_key == key)
            )
            row = result.scalar_one_or_none()
            return _to_record(row) if row is not None else None

    async def create_notification(
        self, record: NotificationRecord
    ) -> NotificationRecord:
        row = Notification(
            id=record.id,
            user_id=record.patient_id,
            kind=record.kind,
            title=record.title,
            body=record.body,
            source_ref=record.source_ref,
            due_at=_as_utc(record.due_at),
            dedup_key=record.dedup_key,
            data=record.data,
            is_delivered=record.delivered,
            is_read=record.read,
            created_at=_as_utc(record.created_at),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except IntegrityError:
            # The unique dedup_key constraint rejected a concurrent duplicate
            existing = await self.find_notification_by_dedup_key(record.dedup_key)
            if existing is None:
                raise
            logger.info(
                "notification_duplicate_rejected",
                dedup_key=record.dedup_key,
                existing_id=existing.id,
            )
            return existing
        return record

    async def mark_delivered(self, record_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Notification)
                .where(Notification.id == record_id)
                .values(is_delivered=True)
            )
            await session.commit()
