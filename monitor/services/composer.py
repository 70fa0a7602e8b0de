"""
monitor/services/composer.py

Notification text composition.
Walks the provider chain in order, each call bounded by the provider's own
timeout, and falls back to a deterministic template. compose() never raises.
"""

import asyncio
from datetime import datetime
from typing import Sequence

import structlog

from monitor.constants import (
    ALERT_TITLES,
    BODY_MAX_LENGTH,
    DEFAULT_ALERT_TITLE,
    ELLIPSIS,
    EVENT_TITLE,
    MEDICATION_TITLE,
)
from monitor.schemas import (
    AlertCandidate,
    ComposePayload,
    DueEvent,
    DueMedication,
    NotificationKind,
)
from monitor.services.providers import TextGenProvider

logger = structlog.get_logger(__name__)

# Prompt sent to every provider in the chain
COMPOSER_PROMPT = """Write a short, friendly, safety-conscious notification message for a patient.
Context: {context}
Keep it under {max_length} characters."""


def truncate(text: str, max_length: int) -> str:
    """Collapse whitespace and cut to max_length, marking the cut."""
    text = " ".join(text.split())
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)].rstrip() + ELLIPSIS


def _dosage(payload: DueMedication) -> str:
    med = payload.medication
    if not med.dosage_value:
        return ""
    return f" ({med.dosage_value}{med.dosage_unit or ''})"


def render_template(
    kind: NotificationKind,
    payload: ComposePayload,
    due_at: datetime,
) -> str:
    """Deterministic fallback text for a candidate."""
    clock = due_at.strftime("%H:%M")
    if kind == "medication" and isinstance(payload, DueMedication):
        name = payload.medication.name or "your medication"
        return f"Reminder to take {name}{_dosage(payload)}. Due at {clock}."
    if kind == "event" and isinstance(payload, DueEvent):
        event = payload.event
        return (
            f"Upcoming {event.event_type or 'event'}: "
            f"{event.title or 'Scheduled item'} at {clock}."
        )
    if isinstance(payload, AlertCandidate):
        return payload.message
    return f"You have a health notification for {clock}."


def compose_title(kind: NotificationKind, payload: ComposePayload) -> str:
    if kind == "medication":
        return MEDICATION_TITLE
    if kind == "event":
        return EVENT_TITLE
    if isinstance(payload, AlertCandidate):
        return ALERT_TITLES.get(payload.metric, DEFAULT_ALERT_TITLE)
    return DEFAULT_ALERT_TITLE


def _context(
    payload: ComposePayload,
    due_at: datetime,
    template: str,
) -> str:
    if isinstance(payload, AlertCandidate):
        return (
            f"Health alert ({payload.severity} severity) recorded at "
            f"{due_at.strftime('%H:%M')}: {payload.message} "
            f"Suggested action: {payload.action.replace('_', ' ')}."
        )
    return template


class NotificationComposer:
    """Turns due items and alerts into notification text."""

    def __init__(
        self,
        providers: Sequence[TextGenProvider] = (),
        body_max_length: int = BODY_MAX_LENGTH,
    ) -> None:
        self._providers = list(providers)
        self._body_max_length = body_max_length

    @property
    def timeout_budget(self) -> float:
        """Upper bound on compose() latency spent in providers."""
        return sum(p.timeout for p in self._providers)

    async def compose(
        self,
        kind: NotificationKind,
        payload: ComposePayload,
        due_at: datetime,
    ) -> str:
        """
        Compose the body text for a candidate.

        Flow:
        1. Render the deterministic template
        2. Try each provider in order within its timeout
        3. Return the first usable answer, else the template
        """
        template = truncate(
            render_template(kind, payload, due_at), self._body_max_length
        )
        prompt = COMPOSER_PROMPT.format(
            context=_context(payload, due_at, template),
            max_length=self._body_max_length,
        )

        for provider in self._providers:
            try:
                raw = await asyncio.wait_for(
                    provider.generate(prompt), timeout=provider.timeout
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "provider_timeout",
                    provider=provider.name,
                    timeout=provider.timeout,
                    kind=kind,
                )
                continue
            except Exception as exc:
                logger.warning(
                    "provider_failed",
                    provider=provider.name,
                    kind=kind,
                    error=str(exc),
                )
                continue

            text = truncate(
                str(raw or "").strip().strip('"'),
                min(provider.max_chars, self._body_max_length),
            )
            if not text:
                logger.warning("provider_empty_response", provider=provider.name, kind=kind)
                continue

            logger.info("notification_composed", provider=provider.name, kind=kind)
            return text

        logger.info(
            "notification_composed",
            provider="template",
            kind=kind,
            providers_tried=len(self._providers),
        )
        return template
