"""
tests/test_analyzer.py

Unit tests for monitor/services/analyzer.py.
Covers comparator semantics, multi-rule firing and rule file loading.
"""

import json

import pytest

from monitor.exceptions import AlertRuleError
from monitor.schemas import AlertRule
from monitor.services.analyzer import (
    DEFAULT_ALERT_RULES,
    HealthTrendAnalyzer,
    load_alert_rules,
    rule_matches,
)
from tests.fixtures import build_reading


def _rule(rule_id: str, comparator: str, **kwargs) -> AlertRule:
    return AlertRule(
        rule_id=rule_id,
        metric=kwargs.pop("metric", "heart_rate"),
        comparator=comparator,
        severity=kwargs.pop("severity", "medium"),
        message_template=kwargs.pop("message_template", "HR {value:.0f}"),
        action=kwargs.pop("action", "rest"),
        **kwargs,
    )


def test_default_rules_flag_high_blood_pressure() -> None:
    """Systolic above 140 fires the high blood pressure rule."""
    analyzer = HealthTrendAnalyzer()

    result = analyzer.analyze([build_reading("blood_pressure_systolic", 152)])

    assert len(result.alerts) == 1
    alert = result.alerts[0]
    assert alert.rule_id == "high_blood_pressure_systolic"
    assert alert.severity == "high"
    assert alert.action == "schedule_appointment"
    assert "152" in alert.message


def test_normal_readings_produce_no_alerts() -> None:
    analyzer = HealthTrendAnalyzer()

    result = analyzer.analyze(
        [
            build_reading("heart_rate", 72),
            build_reading("blood_pressure_systolic", 120),
            build_reading("blood_pressure_diastolic", 80),
        ]
    )

    assert result.alerts == []
    assert result.recommendations == []


def test_every_matching_rule_fires() -> None:
    """Alert count equals the number of matching rules, not capped at one."""
    rules = [
        _rule("above_100", ">", threshold=100),
        _rule("above_120", ">", threshold=120, severity="high"),
        _rule("in_band", "range", low=110, high=140),
        _rule("below_50", "<", threshold=50),
    ]
    analyzer = HealthTrendAnalyzer(rules)

    result = analyzer.analyze([build_reading("heart_rate", 130)])

    assert sorted(a.rule_id for a in result.alerts) == ["above_100", "above_120", "in_band"]


def test_each_reading_is_judged_independently() -> None:
    analyzer = HealthTrendAnalyzer([_rule("above_100", ">", threshold=100)])

    result = analyzer.analyze(
        [build_reading("heart_rate", v) for v in (90, 101, 130, 100)]
    )

    assert [a.reading.value for a in result.alerts] == [101, 130]


def test_rules_only_apply_to_their_metric() -> None:
    analyzer = HealthTrendAnalyzer([_rule("above_100", ">", threshold=100)])

    result = analyzer.analyze([build_reading("temperature", 101.5)])

    assert result.alerts == []


@pytest.mark.parametrize(
    "comparator, bounds, value, expected",
    [
        (">", {"threshold": 100}, 100, False),
        (">=", {"threshold": 100}, 100, True),
        ("<", {"threshold": 50}, 50, False),
        ("<=", {"threshold": 50}, 50, True),
        ("range", {"low": 10, "high": 20}, 20, True),
        ("range", {"low": 10, "high": 20}, 21, False),
        ("outside", {"low": 10, "high": 20}, 9.5, True),
        ("outside", {"low": 10, "high": 20}, 15, False),
    ],
)
def test_comparators(comparator: str, bounds: dict, value: float, expected: bool) -> None:
    assert rule_matches(_rule("r", comparator, **bounds), value) is expected


def test_range_rule_requires_bounds() -> None:
    with pytest.raises(ValueError):
        _rule("bad", "range", low=10)


def test_recommendations_deduplicated_by_action() -> None:
    """Both blood pressure rules share one recommendation."""
    analyzer = HealthTrendAnalyzer()

    result = analyzer.analyze(
        [
            build_reading("blood_pressure_systolic", 150),
            build_reading("blood_pressure_diastolic", 95),
        ]
    )

    assert len(result.alerts) == 2
    assert [r.action for r in result.recommendations] == ["schedule_appointment"]


def test_unrenderable_template_is_skipped() -> None:
    """A template referencing an unknown placeholder does not abort analysis."""
    analyzer = HealthTrendAnalyzer(
        [
            _rule("broken", ">", threshold=100, message_template="HR {pulse}"),
            _rule("ok", ">", threshold=100),
        ]
    )

    result = analyzer.analyze([build_reading("heart_rate", 130)])

    assert [a.rule_id for a in result.alerts] == ["ok"]


def test_load_alert_rules_from_file(tmp_path) -> None:
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps(
            [
                {
                    "rule_id": "glucose_low",
                    "metric": "glucose",
                    "comparator": "<",
                    "threshold": 3.9,
                    "severity": "urgent",
                    "message_template": "Glucose {value} mmol/L",
                    "action": "eat_carbs",
                }
            ]
        ),
        encoding="utf-8",
    )

    rules = load_alert_rules(path)

    assert len(rules) == 1
    assert rules[0].severity == "urgent"


def test_load_alert_rules_rejects_invalid_file(tmp_path) -> None:
    path = tmp_path / "rules.json"
    path.write_text('[{"rule_id": "x", "metric": "hr"}]', encoding="utf-8")

    with pytest.raises(AlertRuleError):
        load_alert_rules(path)

    with pytest.raises(AlertRuleError):
        load_alert_rules(tmp_path / "missing.json")


def test_default_rule_table_is_valid() -> None:
    assert len({r.rule_id for r in DEFAULT_ALERT_RULES}) == len(DEFAULT_ALERT_RULES)
