"""
monitor/constants.py

Default alert thresholds and notification text constants.
Threshold values are rule data, not clinical guidance; deployments override
them with a rule file (settings.alert_rules_path).
"""

# ── Blood pressure (mmHg) ────────────────────────────────────
BP_SYSTOLIC_HIGH: float = 140.0
BP_DIASTOLIC_HIGH: float = 90.0

# ── Heart rate (bpm) ─────────────────────────────────────────
HEART_RATE_HIGH: float = 100.0
HEART_RATE_LOW: float = 50.0

# ── Temperature (°F) ─────────────────────────────────────────
TEMPERATURE_FEVER: float = 100.4

# ── Oxygen saturation (%) ────────────────────────────────────
SPO2_LOW: float = 92.0

# ── Notification text ────────────────────────────────────────
BODY_MAX_LENGTH: int = 220
ELLIPSIS: str = "…"

MEDICATION_TITLE: str = "Medication reminder"
EVENT_TITLE: str = "Upcoming event"
DEFAULT_ALERT_TITLE: str = "Health Alert"

ALERT_TITLES: dict[str, str] = {
    "blood_pressure_systolic": "High Blood Pressure Alert",
    "blood_pressure_diastolic": "High Blood Pressure Alert",
    "heart_rate": "Heart Rate Alert",
    "temperature": "Temperature Alert",
    "spo2": "Oxygen Level Alert",
}

# ── Provider request shape ───────────────────────────────────
PROVIDER_TEMPERATURE: float = 0.5
PROVIDER_MAX_TOKENS: int = 60
