"""Anomaly detection schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from safety_engine.core.enums import TravelMode
from safety_engine.schemas.geofence import PointIn
from safety_engine.schemas.sos import SosEventResponse


class AnomalyDetectRequest(BaseModel):
    """Latest state for the caller. Omitted fields skip their detector."""

    last_activity_at: datetime | None = None
    current_location: PointIn | None = None
    planned_route: list[PointIn] | None = None
    speed_kmh: float | None = Field(default=None, ge=0)
    travel_mode: TravelMode = TravelMode.WALKING
    last_gps_fix_at: datetime | None = None
    battery_level: float | None = Field(default=None, ge=0, le=100)
    local_time: datetime | None = Field(default=None, description="Device wall-clock time")
    auto_trigger: bool = Field(default=False, description="Raise an SOS when a critical anomaly allows it")


class AnomalySignalResponse(BaseModel):
    type: str
    severity: str
    description: str
    should_trigger_sos: bool
    metadata: dict[str, Any]


class AnomalyDetectResponse(BaseModel):
    anomalies: list[AnomalySignalResponse]
    should_trigger_sos: bool
    sos_event: SosEventResponse | None = None
    suppressed_reason: str | None = None
