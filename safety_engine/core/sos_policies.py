"""SOS event policy constants."""

from __future__ import annotations

from safety_engine.core.enums import EscalationTarget, TriggerMode

# Base confidence per trigger mode (0-100)
MODE_CONFIDENCE: dict[TriggerMode, int] = {
    TriggerMode.BUTTON: 100,
    TriggerMode.SHAKE: 95,
    TriggerMode.PANIC_WORD: 90,
    TriggerMode.VOLUME: 85,
    TriggerMode.SILENT: 80,
    TriggerMode.ANOMALY_AUTO: 85,
}

# Bonus when the user typed a description
DESCRIPTION_BONUS = 5

# Penalty per prior false alarm
FALSE_ALARM_PENALTY = 10

# Max triggered events per user in the trailing window
RATE_LIMIT_MAX_EVENTS = 3
RATE_LIMIT_WINDOW_MINUTES = 60

# Every event is dispatched at the same priority
EVENT_PRIORITY = "critical"

# Escalation ladder: level -> target class
ESCALATION_TARGETS: tuple[EscalationTarget, ...] = (
    EscalationTarget.FAMILY,
    EscalationTarget.POLICE,
    EscalationTarget.EMERGENCY_SERVICES,
    EscalationTarget.EMBASSY,
)
MAX_ESCALATION_LEVEL = len(ESCALATION_TARGETS) - 1

# Nominal minutes after trigger at which each level fires
DEFAULT_ESCALATION_DELAYS_MINUTES: tuple[int, ...] = (0, 2, 5, 10)

# Storage reference used for evidence that has no uploaded file
SENSOR_STORAGE_REF = "sensor-data"
