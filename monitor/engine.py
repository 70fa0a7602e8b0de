"""
monitor/engine.py

Periodic health-monitoring and reminder engine.
Owns the timer, fans work out per patient with bounded concurrency, and
coalesces timer fires that arrive while a tick is still running.

Lifecycle: Stopped -> start() -> Running -> stop() -> Stopped.
All state lives on the instance; independent engines never interfere.
"""

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from monitor.exceptions import EngineStartupError
from monitor.schemas import (
    CalendarEventEntry,
    ComposePayload,
    NotificationKind,
    Patient,
    dedup_key,
    utcnow,
)
from monitor.services.analyzer import HealthTrendAnalyzer
from monitor.services.composer import NotificationComposer, compose_title
from monitor.services.recorder import NotificationRecorder
from monitor.services.scanner import DueItemScanner
from monitor.services.store import Store

logger = structlog.get_logger(__name__)


@dataclass
class EngineStats:
    """Lifecycle counters, readable while the engine runs."""

    timer_fires: int = 0
    ticks_started: int = 0
    ticks_completed: int = 0
    ticks_skipped: int = 0
    notifications_created: int = 0


class HealthMonitorEngine:
    """Scan, compose and record notifications on a fixed cadence."""

    def __init__(
        self,
        store: Store,
        analyzer: HealthTrendAnalyzer,
        composer: NotificationComposer,
        recorder: NotificationRecorder,
        scanner: DueItemScanner,
        *,
        interval_ms: int = 60000,
        concurrency: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")

        self._store = store
        self._analyzer = analyzer
        self._composer = composer
        self._recorder = recorder
        self._interval_ms = interval_ms
        self._scanner = scanner
        self._concurrency = concurrency
        self._clock = clock

        self._running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self.stats = EngineStats()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start the engine: probe the store, run one tick, arm the timer.

        Raises EngineStartupError if the store cannot list patients.
        """
        if self._running:
            return

        try:
            patients = await self._store.active_patients()
        except Exception as exc:
            logger.error("engine_start_failed", error=str(exc))
            raise EngineStartupError(f"store unavailable: {exc}") from exc

        self._running = True
        if self._tick_task is not None and not self._tick_task.done():
            # A tick left running by a non-waiting stop() is still in flight
            self.stats.ticks_skipped += 1
            logger.warning(
                "tick_skipped",
                reason="previous tick still running",
                skipped_total=self.stats.ticks_skipped,
            )
        else:
            self._tick_task = asyncio.create_task(self._guarded_tick(patients))
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(
            "engine_started",
            interval_ms=self._interval_ms,
            advance_minutes=self._scanner.default_window,
            concurrency=self._concurrency,
        )

    async def stop(self, wait: bool = False) -> None:
        """
        Disarm the timer so no new tick starts.

        An in-flight tick runs to completion; with wait=True it is awaited.
        """
        if self._running:
            self._running = False
            if self._timer_task is not None:
                self._timer_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._timer_task
                self._timer_task = None
            logger.info("engine_stopped", **vars(self.stats))

        if wait and self._tick_task is not None:
            await self._tick_task

    async def _timer_loop(self) -> None:
        interval = self._interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            self.stats.timer_fires += 1
            if self._tick_task is not None and not self._tick_task.done():
                self.stats.ticks_skipped += 1
                logger.warning(
                    "tick_skipped",
                    reason="previous tick still running",
                    skipped_total=self.stats.ticks_skipped,
                )
                continue
            self._tick_task = asyncio.create_task(self._guarded_tick())

    async def _guarded_tick(self, patients: Optional[list[Patient]] = None) -> None:
        try:
            await self.run_tick(patients=patients)
        except Exception as exc:
            logger.error("tick_failed", error=str(exc))

    async def run_tick(
        self,
        now: Optional[datetime] = None,
        patients: Optional[list[Patient]] = None,
    ) -> None:
        """Run one scan-compose-record cycle across all active patients."""
        self.stats.ticks_started += 1
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        if patients is None:
            patients = await self._store.active_patients()
        logger.info("tick_started", now=now.isoformat(), patient_count=len(patients))

        events_by_patient: dict[str, list[CalendarEventEntry]] = {}
        try:
            events_by_patient = await self._scanner.events_by_patient(now)
        except Exception as exc:
            logger.error("calendar_query_failed", error=str(exc))

        semaphore = asyncio.Semaphore(self._concurrency)

        async def worker(patient: Patient) -> None:
            async with semaphore:
                await self._process_patient(
                    patient, now, events_by_patient.get(patient.patient_id, [])
                )

        await asyncio.gather(*(worker(p) for p in patients))

        self.stats.ticks_completed += 1
        logger.info("tick_complete", patient_count=len(patients))

    async def _process_patient(
        self,
        patient: Patient,
        now: datetime,
        events: list[CalendarEventEntry],
    ) -> None:
        try:
            vitals, schedules = await asyncio.gather(
                self._store.recent_vitals(patient.patient_id),
                self._store.active_medication_schedules(patient.patient_id),
            )
        except Exception as exc:
            logger.error(
                "patient_processing_failed",
                patient_id=patient.patient_id,
                error=str(exc),
            )
            return

        analysis = self._analyzer.analyze(vitals)
        if analysis.recommendations:
            logger.info(
                "recommendations_generated",
                patient_id=patient.patient_id,
                actions=[r.action for r in analysis.recommendations],
            )

        candidates: list[tuple[NotificationKind, ComposePayload, str, datetime, dict]] = []
        for alert in analysis.alerts:
            recorded_at = alert.reading.recorded_at
            if recorded_at.tzinfo is None:
                recorded_at = recorded_at.replace(tzinfo=timezone.utc)
            candidates.append(
                (
                    "alert",
                    alert,
                    alert.rule_id,
                    recorded_at.astimezone(patient.zone),
                    {"severity": alert.severity, "action": alert.action},
                )
            )
        doses, due_items = self._scanner.scan_patient(patient, schedules, events, now)
        for dose in doses:
            candidates.append(
                (
                    "medication",
                    dose,
                    dose.source_ref,
                    dose.dose_time,
                    {"medicationId": dose.medication.medication_id},
                )
            )
        for item in due_items:
            candidates.append(
                (
                    "event",
                    item,
                    item.source_ref,
                    item.event_time,
                    {"eventId": item.event.event_id, "eventType": item.event.event_type},
                )
            )

        for kind, payload, source_ref, due_at, data in candidates:
            try:
                await self._notify(patient, kind, payload, source_ref, due_at, data)
            except Exception as exc:
                logger.error(
                    "candidate_processing_failed",
                    patient_id=patient.patient_id,
                    kind=kind,
                    source_ref=source_ref,
                    error=str(exc),
                )

    async def _notify(
        self,
        patient: Patient,
        kind: NotificationKind,
        payload: ComposePayload,
        source_ref: str,
        due_at: datetime,
        data: dict,
    ) -> None:
        # Skip composing for occurrences recorded by an earlier tick
        key = dedup_key(patient, kind, source_ref, due_at)
        if await self._store.find_notification_by_dedup_key(key) is not None:
            return

        body = await self._composer.compose(kind, payload, due_at)
        outcome = await self._recorder.record_and_deliver(
            patient,
            kind,
            source_ref,
            due_at,
            compose_title(kind, payload),
            body,
            data=data,
        )
        if outcome.created:
            self.stats.notifications_created += 1
