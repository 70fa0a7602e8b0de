"""
monitor/services/recorder.py

Notification recording and best-effort delivery.
Exactly one durable record per dedup key; a push is attempted only by the
writer that created the record.
"""

from datetime import datetime
from typing import Optional

import structlog

from monitor.schemas import (
    DeliveryOutcome,
    NotificationKind,
    NotificationRecord,
    Patient,
    dedup_key,
)
from monitor.services.push import PushGateway
from monitor.services.store import Store

logger = structlog.get_logger(__name__)


class NotificationRecorder:
    """Persists notifications and pushes them to the patient's device."""

    def __init__(self, store: Store, push_gateway: PushGateway) -> None:
        self._store = store
        self._push = push_gateway

    async def record_and_deliver(
        self,
        patient: Patient,
        kind: NotificationKind,
        source_ref: str,
        due_at: datetime,
        title: str,
        body: str,
        data: Optional[dict[str, str]] = None,
    ) -> DeliveryOutcome:
        """
        Record a notification once per due occurrence, then try to push it.

        Store errors propagate to the caller; push failures never do.
        """
        key = dedup_key(patient, kind, source_ref, due_at)

        existing = await self._store.find_notification_by_dedup_key(key)
        if existing is not None:
            logger.debug("notification_exists", dedup_key=key, record_id=existing.id)
            return DeliveryOutcome(
                record=existing, delivered=existing.delivered, created=False
            )

        record = NotificationRecord(
            patient_id=patient.patient_id,
            kind=kind,
            title=title,
            body=body,
            source_ref=source_ref,
            due_at=due_at,
            dedup_key=key,
            data={
                "kind": kind,
                "patientId": patient.patient_id,
                "sourceRef": source_ref,
                "dueAt": due_at.isoformat(),
                **(data or {}),
            },
        )
        stored = await self._store.create_notification(record)
        if stored.id != record.id:
            # A concurrent writer created this occurrence first
            logger.info("notification_race_lost", dedup_key=key, record_id=stored.id)
            return DeliveryOutcome(
                record=stored, delivered=stored.delivered, created=False
            )

        logger.info(
            "notification_created",
            patient_id=patient.patient_id,
            kind=kind,
            source_ref=source_ref,
            record_id=stored.id,
        )

        delivered, persisted = await self._deliver(patient, stored)
        if persisted:
            stored = stored.model_copy(update={"delivered": True})
        return DeliveryOutcome(record=stored, delivered=delivered, created=True)

    async def _deliver(
        self, patient: Patient, record: NotificationRecord
    ) -> tuple[bool, bool]:
        """Push the record; returns (pushed, delivered flag persisted)."""
        try:
            result = await self._push.send_to_destination(
                patient.destination,
                record.title,
                record.body,
                {**record.data, "notificationId": record.id},
            )
        except Exception as exc:
            logger.error(
                "push_failed",
                patient_id=patient.patient_id,
                record_id=record.id,
                error=str(exc),
            )
            return False, False

        if not result.success:
            logger.warning(
                "push_failed",
                patient_id=patient.patient_id,
                record_id=record.id,
                error=result.error,
            )
            return False, False

        try:
            await self._store.mark_delivered(record.id)
        except Exception as exc:
            logger.error(
                "mark_delivered_failed",
                record_id=record.id,
                error=str(exc),
            )
            return True, False
        return True, True
