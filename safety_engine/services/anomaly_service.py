"""Anomaly detection: independent rules turning a state snapshot into signals.

Each detector is pure and total. "Nothing found" is a signal with
``detected=False``; detectors never raise.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from safety_engine.core.enums import AnomalyType, Severity, TravelMode
from safety_engine.services.geofence_service import GeoPoint, haversine_m

# Detectors allowed to request an automatic SOS, and only at critical severity
AUTO_SOS_TYPES = frozenset(
    {
        AnomalyType.INACTIVITY,
        AnomalyType.ROUTE_DEVIATION,
        AnomalyType.SPEED_ANOMALY,
        AnomalyType.GPS_LOSS,
    }
)


@dataclass(frozen=True)
class SpeedLimits:
    max_kmh: float
    critical_kmh: float


SPEED_LIMITS: dict[TravelMode, SpeedLimits] = {
    TravelMode.WALKING: SpeedLimits(max_kmh=8, critical_kmh=15),
    TravelMode.DRIVING: SpeedLimits(max_kmh=120, critical_kmh=150),
    TravelMode.TRANSIT: SpeedLimits(max_kmh=100, critical_kmh=130),
}


# ---------- Per-type details (tagged by AnomalySignal.type) ----------


@dataclass(frozen=True)
class InactivityDetails:
    minutes_inactive: int


@dataclass(frozen=True)
class RouteDeviationDetails:
    deviation_meters: int


@dataclass(frozen=True)
class SpeedDetails:
    speed_kmh: float
    mode: TravelMode


@dataclass(frozen=True)
class GpsLossDetails:
    minutes_since_fix: int


@dataclass(frozen=True)
class UnusualHoursDetails:
    hour: int


@dataclass(frozen=True)
class BatteryDetails:
    battery_level: float


AnomalyDetails = (
    InactivityDetails
    | RouteDeviationDetails
    | SpeedDetails
    | GpsLossDetails
    | UnusualHoursDetails
    | BatteryDetails
)


@dataclass(frozen=True)
class AnomalySignal:
    detected: bool
    severity: Severity
    description: str
    should_trigger_sos: bool = False
    type: AnomalyType | None = None
    details: AnomalyDetails | None = None


def _clear(description: str) -> AnomalySignal:
    return AnomalySignal(detected=False, severity=Severity.LOW, description=description)


def _signal(anomaly_type: AnomalyType, severity: Severity, description: str, details: AnomalyDetails) -> AnomalySignal:
    return AnomalySignal(
        detected=True,
        type=anomaly_type,
        severity=severity,
        description=description,
        should_trigger_sos=anomaly_type in AUTO_SOS_TYPES and severity == Severity.CRITICAL,
        details=details,
    )


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _minutes_since(earlier: datetime, now: datetime) -> float:
    return (_as_utc(now) - _as_utc(earlier)).total_seconds() / 60


def _tier(value: float, high_at: float, critical_at: float) -> Severity:
    """medium below ``high_at``, high below ``critical_at``, critical at or above."""
    if value >= critical_at:
        return Severity.CRITICAL
    if value >= high_at:
        return Severity.HIGH
    return Severity.MEDIUM


# ---------- Detectors ----------


def detect_inactivity(last_activity_at: datetime, now: datetime, threshold_minutes: float = 30) -> AnomalySignal:
    minutes = _minutes_since(last_activity_at, now)
    if minutes < threshold_minutes:
        return _clear("Activity normal")
    severity = _tier(minutes, high_at=45, critical_at=60)
    return _signal(
        AnomalyType.INACTIVITY,
        severity,
        f"No activity for {math.floor(minutes)} minutes",
        InactivityDetails(minutes_inactive=math.floor(minutes)),
    )


def detect_route_deviation(
    current_location: GeoPoint,
    planned_route: Sequence[GeoPoint],
    threshold_meters: float = 2000,
) -> AnomalySignal:
    """Distance to the nearest planned-route point."""
    if not planned_route:
        return _clear("No route to compare")
    nearest = min(haversine_m(current_location, p) for p in planned_route)
    if nearest < threshold_meters:
        return _clear("On route")
    severity = _tier(nearest, high_at=3000, critical_at=5000)
    return _signal(
        AnomalyType.ROUTE_DEVIATION,
        severity,
        f"{nearest / 1000:.1f}km off planned route",
        RouteDeviationDetails(deviation_meters=math.floor(nearest)),
    )


def detect_speed_anomaly(speed_kmh: float, travel_mode: TravelMode = TravelMode.WALKING) -> AnomalySignal:
    limits = SPEED_LIMITS[travel_mode]
    if not speed_kmh > limits.max_kmh:
        return _clear("Speed normal")
    if speed_kmh > limits.critical_kmh:
        severity = Severity.CRITICAL
    elif speed_kmh > limits.max_kmh * 1.2:
        severity = Severity.HIGH
    else:
        severity = Severity.MEDIUM
    return _signal(
        AnomalyType.SPEED_ANOMALY,
        severity,
        f"Unusual speed: {speed_kmh:.0f}km/h for {travel_mode.value}",
        SpeedDetails(speed_kmh=speed_kmh, mode=travel_mode),
    )


def detect_gps_loss(last_fix_at: datetime, now: datetime, threshold_minutes: float = 5) -> AnomalySignal:
    minutes = _minutes_since(last_fix_at, now)
    if minutes < threshold_minutes:
        return _clear("GPS signal normal")
    severity = _tier(minutes, high_at=10, critical_at=15)
    return _signal(
        AnomalyType.GPS_LOSS,
        severity,
        f"GPS signal lost for {math.floor(minutes)} minutes",
        GpsLossDetails(minutes_since_fix=math.floor(minutes)),
    )


def detect_unusual_hours(local_time: datetime) -> AnomalySignal:
    """Activity between 02:00 and 05:00 local time. Informational only."""
    hour = local_time.hour
    if 2 <= hour < 5:
        return _signal(
            AnomalyType.UNUSUAL_HOURS,
            Severity.MEDIUM,
            f"Activity at unusual hour: {hour}:00",
            UnusualHoursDetails(hour=hour),
        )
    return _clear("Normal hours")


def detect_battery_drain(battery_level: float) -> AnomalySignal:
    """Low battery. Never requests an SOS."""
    if battery_level > 20:
        return _clear("Battery level normal")
    if battery_level <= 5:
        severity = Severity.CRITICAL
    elif battery_level <= 10:
        severity = Severity.HIGH
    else:
        severity = Severity.MEDIUM
    return _signal(
        AnomalyType.BATTERY_DRAIN,
        severity,
        f"Low battery: {battery_level:g}%",
        BatteryDetails(battery_level=battery_level),
    )


# ---------- Aggregation ----------


@dataclass
class MonitoringSnapshot:
    """Latest known state for one user. Unset fields skip their detector."""

    now: datetime | None = None
    last_activity_at: datetime | None = None
    current_location: GeoPoint | None = None
    planned_route: Sequence[GeoPoint] | None = None
    speed_kmh: float | None = None
    travel_mode: TravelMode = TravelMode.WALKING
    last_gps_fix_at: datetime | None = None
    battery_level: float | None = None
    local_time: datetime | None = None


def detect_all_anomalies(snapshot: MonitoringSnapshot) -> list[AnomalySignal]:
    """Run every detector whose inputs are present; return detected signals only."""
    now = snapshot.now or datetime.now(timezone.utc)
    signals: list[AnomalySignal] = []

    if snapshot.last_activity_at is not None:
        signals.append(detect_inactivity(snapshot.last_activity_at, now))
    if snapshot.current_location is not None and snapshot.planned_route is not None:
        signals.append(detect_route_deviation(snapshot.current_location, snapshot.planned_route))
    if snapshot.speed_kmh is not None:
        signals.append(detect_speed_anomaly(snapshot.speed_kmh, snapshot.travel_mode))
    if snapshot.last_gps_fix_at is not None:
        signals.append(detect_gps_loss(snapshot.last_gps_fix_at, now))
    if snapshot.battery_level is not None:
        signals.append(detect_battery_drain(snapshot.battery_level))
    if snapshot.local_time is not None:
        signals.append(detect_unusual_hours(snapshot.local_time))

    return [s for s in signals if s.detected]


def should_trigger_auto_sos(signals: Sequence[AnomalySignal]) -> bool:
    return any(s.should_trigger_sos for s in signals)
