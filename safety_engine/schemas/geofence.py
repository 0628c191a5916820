"""Geofence schemas."""

from typing import Any

from pydantic import BaseModel, Field


class PointIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ZoneIn(BaseModel):
    """Raw zone as sent by a caller; shape validity is checked by the engine."""

    id: str
    name: str | None = None
    kind: str
    center: PointIn | None = None
    radius_meters: float | None = None
    points: list[PointIn] | None = None


class ZoneCheckRequest(BaseModel):
    point: PointIn
    zones: list[ZoneIn] | None = Field(default=None, description="Omit to use the zone registry")


class ZoneTransitionRequest(BaseModel):
    prev_point: PointIn
    new_point: PointIn
    zones: list[ZoneIn] | None = None


class ProximityRequest(BaseModel):
    point: PointIn
    zones: list[ZoneIn] | None = None
    buffer_meters: float | None = Field(default=None, ge=0)


class ZoneOut(BaseModel):
    id: str
    name: str
    kind: str
    shape: dict[str, Any]


class ZoneCheckResponse(BaseModel):
    in_zone: bool
    matched_zones: list[ZoneOut]
    in_safe_zone: bool
    in_risk_zone: bool


class ZoneChangeResponse(BaseModel):
    entered: list[ZoneOut]
    exited: list[ZoneOut]


class ProximityResponse(BaseModel):
    warning: bool
    zone: ZoneOut | None = None
    distance_meters: float | None = None
