"""Domain enumerations shared by models, schemas and services."""

from __future__ import annotations

import enum


class TriggerMode(str, enum.Enum):
    BUTTON = "button"
    SHAKE = "shake"
    PANIC_WORD = "panic_word"
    VOLUME = "volume"
    SILENT = "silent"
    ANOMALY_AUTO = "anomaly_auto"


class SosStatus(str, enum.Enum):
    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"
    RESPONDING = "responding"
    VERIFIED = "verified"
    RESOLVED = "resolved"
    FALSE_ALARM = "false_alarm"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SosStatus.RESOLVED, SosStatus.FALSE_ALARM})
ACTIVE_STATUSES = frozenset(set(SosStatus) - TERMINAL_STATUSES)


class EscalationTarget(str, enum.Enum):
    FAMILY = "family"
    POLICE = "police"
    EMERGENCY_SERVICES = "emergency_services"
    EMBASSY = "embassy"


class EscalationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class EvidenceKind(str, enum.Enum):
    PHOTO = "photo"
    AUDIO = "audio"
    SCREEN = "screen"
    LOCATION = "location"
    SENSOR = "sensor"

    @property
    def is_file_backed(self) -> bool:
        return self in (EvidenceKind.PHOTO, EvidenceKind.AUDIO, EvidenceKind.SCREEN)


class ZoneKind(str, enum.Enum):
    SAFE = "safe"
    RISK = "risk"


class AnomalyType(str, enum.Enum):
    INACTIVITY = "inactivity"
    ROUTE_DEVIATION = "route_deviation"
    SPEED_ANOMALY = "speed_anomaly"
    GPS_LOSS = "gps_loss"
    UNUSUAL_HOURS = "unusual_hours"
    BATTERY_DRAIN = "battery_drain"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TravelMode(str, enum.Enum):
    WALKING = "walking"
    DRIVING = "driving"
    TRANSIT = "transit"
