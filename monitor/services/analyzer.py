"""
monitor/services/analyzer.py

Health trend analysis: per-reading evaluation against an alert rule table.
Each reading is judged independently; every matching rule emits an alert.

Uses constants from monitor/constants.py for the built-in rule table.
"""

import json
from pathlib import Path
from typing import Iterable

import structlog
from pydantic import TypeAdapter, ValidationError

from monitor.constants import (
    BP_DIASTOLIC_HIGH,
    BP_SYSTOLIC_HIGH,
    HEART_RATE_HIGH,
    HEART_RATE_LOW,
    SPO2_LOW,
    TEMPERATURE_FEVER,
)
from monitor.exceptions import AlertRuleError
from monitor.schemas import (
    AlertCandidate,
    AlertRule,
    AnalysisResult,
    Recommendation,
    VitalReading,
)

logger = structlog.get_logger(__name__)

DEFAULT_ALERT_RULES: tuple[AlertRule, ...] = (
    AlertRule(
        rule_id="high_blood_pressure_systolic",
        metric="blood_pressure_systolic",
        comparator=">",
        threshold=BP_SYSTOLIC_HIGH,
        severity="high",
        message_template=(
            "Your blood pressure is elevated ({value:.0f} mmHg systolic). "
            "Please consult your doctor."
        ),
        action="schedule_appointment",
        recommendation="Book a check-up with your doctor to review your blood pressure.",
    ),
    AlertRule(
        rule_id="high_blood_pressure_diastolic",
        metric="blood_pressure_diastolic",
        comparator=">",
        threshold=BP_DIASTOLIC_HIGH,
        severity="high",
        message_template=(
            "Your blood pressure is elevated ({value:.0f} mmHg diastolic). "
            "Please consult your doctor."
        ),
        action="schedule_appointment",
        recommendation="Book a check-up with your doctor to review your blood pressure.",
    ),
    AlertRule(
        rule_id="high_heart_rate",
        metric="heart_rate",
        comparator=">",
        threshold=HEART_RATE_HIGH,
        severity="medium",
        message_template=(
            "Your heart rate is elevated ({value:.0f} bpm). "
            "Consider relaxation techniques."
        ),
        action="relaxation_exercise",
        recommendation="Try a few minutes of slow, deep breathing.",
    ),
    AlertRule(
        rule_id="low_heart_rate",
        metric="heart_rate",
        comparator="<",
        threshold=HEART_RATE_LOW,
        severity="medium",
        message_template="Your heart rate is low ({value:.0f} bpm).",
        action="contact_care_team",
    ),
    AlertRule(
        rule_id="fever",
        metric="temperature",
        comparator=">=",
        threshold=TEMPERATURE_FEVER,
        severity="medium",
        message_template="Your temperature is {value:.1f}°F, which may indicate a fever.",
        action="monitor_temperature",
        recommendation="Rest, drink fluids and re-check your temperature in an hour.",
    ),
    AlertRule(
        rule_id="low_spo2",
        metric="spo2",
        comparator="<",
        threshold=SPO2_LOW,
        severity="urgent",
        message_template="Your oxygen level is low ({value:.0f}%).",
        action="contact_care_team",
    ),
)

_rule_list_adapter = TypeAdapter(list[AlertRule])


def load_alert_rules(path: str | Path) -> tuple[AlertRule, ...]:
    """Load and validate a JSON array of alert rules."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        rules = _rule_list_adapter.validate_python(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        raise AlertRuleError(f"cannot load alert rules from {path}: {exc}") from exc

    logger.info("alert_rules_loaded", path=str(path), rule_count=len(rules))
    return tuple(rules)


def rule_matches(rule: AlertRule, value: float) -> bool:
    """Evaluate a rule's comparator against a reading value."""
    if rule.comparator == ">":
        return value > rule.threshold
    if rule.comparator == "<":
        return value < rule.threshold
    if rule.comparator == ">=":
        return value >= rule.threshold
    if rule.comparator == "<=":
        return value <= rule.threshold
    if rule.comparator == "range":
        return rule.low <= value <= rule.high
    # "outside"
    return value < rule.low or value > rule.high


class HealthTrendAnalyzer:
    """Stateless evaluator over an immutable rule table."""

    def __init__(self, rules: Iterable[AlertRule] = DEFAULT_ALERT_RULES) -> None:
        self._rules_by_metric: dict[str, list[AlertRule]] = {}
        for rule in rules:
            self._rules_by_metric.setdefault(rule.metric, []).append(rule)

    def analyze(self, readings: Iterable[VitalReading]) -> AnalysisResult:
        """
        Evaluate each reading against every rule for its metric.

        Returns all fired alerts plus one recommendation per distinct
        action tag among fired rules that carry recommendation text.
        """
        alerts: list[AlertCandidate] = []
        recommendations: dict[str, Recommendation] = {}

        for reading in readings:
            for rule in self._rules_by_metric.get(reading.metric, []):
                if not rule_matches(rule, reading.value):
                    continue
                try:
                    message = rule.message_template.format(
                        value=reading.value,
                        metric=reading.metric,
                        threshold=rule.threshold,
                        low=rule.low,
                        high=rule.high,
                    )
                except (KeyError, IndexError, TypeError, ValueError) as exc:
                    logger.warning(
                        "alert_template_invalid",
                        rule_id=rule.rule_id,
                        error=str(exc),
                    )
                    continue

                alerts.append(
                    AlertCandidate(
                        rule_id=rule.rule_id,
                        metric=reading.metric,
                        severity=rule.severity,
                        message=message,
                        action=rule.action,
                        reading=reading,
                    )
                )
                if rule.recommendation and rule.action not in recommendations:
                    recommendations[rule.action] = Recommendation(
                        action=rule.action, message=rule.recommendation
                    )

        return AnalysisResult(
            alerts=alerts, recommendations=list(recommendations.values())
        )
