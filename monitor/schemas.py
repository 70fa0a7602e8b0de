"""
monitor/schemas.py

Pydantic data models for the monitoring engine.
- Store records: Patient, VitalReading, MedicationScheduleEntry,
  CalendarEventEntry, NotificationRecord
- Rule data: AlertRule
- Pipeline values: DueMedication, DueEvent, AlertCandidate, Recommendation,
  AnalysisResult, PushResult, DeliveryOutcome
"""

import uuid
from datetime import date, datetime, timezone
from typing import Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import BaseModel, Field, model_validator

logger = structlog.get_logger(__name__)

NotificationKind = Literal["alert", "medication", "event"]
Severity = Literal["low", "medium", "high", "urgent"]
Comparator = Literal[">", "<", ">=", "<=", "range", "outside"]

_UTC = ZoneInfo("UTC")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class PushDestination(BaseModel):
    """FCM destination: a device token or a topic name."""

    token: Optional[str] = None
    topic: Optional[str] = None


class Patient(BaseModel):
    """Patient profile as seen by the engine."""

    patient_id: str
    name: Optional[str] = None
    push_token: Optional[str] = None
    push_topic: Optional[str] = None
    timezone: Optional[str] = None

    @property
    def zone(self) -> ZoneInfo:
        """Patient timezone; UTC when missing or unknown."""
        if not self.timezone:
            return _UTC
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "patient_timezone_invalid",
                patient_id=self.patient_id,
                timezone=self.timezone,
                fallback="UTC",
            )
            return _UTC

    @property
    def destination(self) -> PushDestination:
        if self.push_token:
            return PushDestination(token=self.push_token)
        return PushDestination(topic=self.push_topic or f"user_{self.patient_id}")


class VitalReading(BaseModel):
    """A single vital-sign measurement."""

    patient_id: str
    metric: str  # e.g. "heart_rate", "blood_pressure_systolic"
    value: float
    recorded_at: datetime


class AlertRule(BaseModel):
    """Threshold rule evaluated against each vital reading."""

    rule_id: str
    metric: str
    comparator: Comparator
    threshold: Optional[float] = None
    low: Optional[float] = None
    high: Optional[float] = None
    severity: Severity
    message_template: str
    action: str
    recommendation: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_bounds(self) -> "AlertRule":
        if self.comparator in ("range", "outside"):
            if self.low is None or self.high is None:
                raise ValueError(f"rule {self.rule_id}: {self.comparator} needs low and high")
            if self.low > self.high:
                raise ValueError(f"rule {self.rule_id}: low > high")
        elif self.threshold is None:
            raise ValueError(f"rule {self.rule_id}: {self.comparator} needs threshold")
        return self


class MedicationScheduleEntry(BaseModel):
    """Daily dosing schedule of one medication."""

    medication_id: str
    patient_id: str
    name: str
    dosage_value: Optional[str] = None
    dosage_unit: Optional[str] = None
    times: list[str] = []  # "HH:MM"
    advance_minutes: Optional[int] = None
    active: bool = True


class CalendarEventEntry(BaseModel):
    """A dated calendar item such as an appointment."""

    event_id: str
    patient_id: str
    date: date
    time: str  # "HH:MM"
    title: str = ""
    event_type: str = "event"
    advance_minutes: Optional[int] = None


class NotificationRecord(BaseModel):
    """Durable notification shown in the in-app notification center."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    patient_id: str
    kind: NotificationKind
    title: str
    body: str
    source_ref: str
    due_at: datetime
    dedup_key: str
    data: dict[str, str] = {}
    created_at: datetime = Field(default_factory=utcnow)
    delivered: bool = False
    read: bool = False


class DueMedication(BaseModel):
    """A medication dose falling inside the advance window."""

    patient: Patient
    medication: MedicationScheduleEntry
    scheduled_time: str  # the "HH:MM" that matched
    dose_time: datetime  # patient-local, tz-aware

    @property
    def source_ref(self) -> str:
        return f"{self.medication.medication_id}@{self.scheduled_time}"


class DueEvent(BaseModel):
    """A calendar event falling inside the advance window."""

    patient: Patient
    event: CalendarEventEntry
    event_time: datetime  # patient-local, tz-aware

    @property
    def source_ref(self) -> str:
        return self.event.event_id


class AlertCandidate(BaseModel):
    """A rule that fired for a reading."""

    rule_id: str
    metric: str
    severity: Severity
    message: str
    action: str
    reading: VitalReading


class Recommendation(BaseModel):
    """Advice attached to an alert action tag."""

    action: str
    message: str


class AnalysisResult(BaseModel):
    """Output of the trend analyzer for a batch of readings."""

    alerts: list[AlertCandidate] = []
    recommendations: list[Recommendation] = []


ComposePayload = Union[DueMedication, DueEvent, AlertCandidate]


class PushResult(BaseModel):
    """Outcome of a single push attempt."""

    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class DeliveryOutcome(BaseModel):
    """Result of record_and_deliver."""

    record: NotificationRecord
    delivered: bool
    created: bool


def dedup_key(
    patient: Patient,
    kind: NotificationKind,
    source_ref: str,
    due_at: datetime,
) -> str:
    """
    Build the dedup key for a due occurrence.

    The due timestamp is reduced to its calendar day in the patient's timezone.
    """
    if due_at.tzinfo is None:
        due_at = due_at.replace(tzinfo=timezone.utc)
    due_day = due_at.astimezone(patient.zone).date()
    return f"{patient.patient_id}|{kind}|{source_ref}|{due_day.isoformat()}"
