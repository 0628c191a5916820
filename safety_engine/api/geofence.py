"""Geofence API: zone checks, transitions and proximity warnings."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from safety_engine.core.deps import get_engine
from safety_engine.engine import SafetyEngine
from safety_engine.schemas.geofence import (
    PointIn,
    ProximityRequest,
    ProximityResponse,
    ZoneChangeResponse,
    ZoneCheckRequest,
    ZoneCheckResponse,
    ZoneIn,
    ZoneOut,
    ZoneTransitionRequest,
)
from safety_engine.services.geofence_service import CircleShape, GeoPoint, Zone, parse_zone

router = APIRouter(prefix="/geofence", tags=["geofence"])


def _point(p: PointIn) -> GeoPoint:
    return GeoPoint(p.lat, p.lng)


def _zones(raw: list[ZoneIn] | None) -> list[Zone] | None:
    """Request zones, or None to fall back to the registry."""
    if raw is None:
        return None
    return [parse_zone(z.model_dump(exclude_none=True)) for z in raw]


def _zone_out(zone: Zone) -> ZoneOut:
    if isinstance(zone.shape, CircleShape):
        shape = {
            "type": "circle",
            "center": {"lat": zone.shape.center.lat, "lng": zone.shape.center.lng},
            "radius_meters": zone.shape.radius_meters,
        }
    else:
        shape = {"type": "polygon", "points": [{"lat": p.lat, "lng": p.lng} for p in zone.shape.points]}
    return ZoneOut(id=zone.id, name=zone.name, kind=zone.kind.value, shape=shape)


@router.post("/check", response_model=ZoneCheckResponse)
def check_zone(data: ZoneCheckRequest, engine: SafetyEngine = Depends(get_engine)):
    """Which zones contain the point. Overlapping zones all match."""
    result = engine.check_zone(_point(data.point), _zones(data.zones))
    return ZoneCheckResponse(
        in_zone=result.in_zone,
        matched_zones=[_zone_out(z) for z in result.matched_zones],
        in_safe_zone=result.in_safe_zone,
        in_risk_zone=result.in_risk_zone,
    )


@router.post("/transition", response_model=ZoneChangeResponse)
def zone_transition(data: ZoneTransitionRequest, engine: SafetyEngine = Depends(get_engine)):
    change = engine.detect_zone_change(_point(data.prev_point), _point(data.new_point), _zones(data.zones))
    return ZoneChangeResponse(
        entered=[_zone_out(z) for z in change.entered],
        exited=[_zone_out(z) for z in change.exited],
    )


@router.post("/proximity", response_model=ProximityResponse)
def proximity(data: ProximityRequest, engine: SafetyEngine = Depends(get_engine)):
    """Nearest risk zone just outside the point, within the buffer."""
    warning = engine.proximity_warning(_point(data.point), _zones(data.zones), data.buffer_meters)
    return ProximityResponse(
        warning=warning.warning,
        zone=_zone_out(warning.zone) if warning.zone is not None else None,
        distance_meters=warning.distance_meters,
    )
