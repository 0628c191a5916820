"""Geofence evaluation: containment, zone transitions and proximity warnings.

Everything here is pure and total. Malformed input yields "not inside" rather
than an exception; only ``parse_zone`` validates raw zone data and raises.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from safety_engine.core.enums import ZoneKind
from safety_engine.core.errors import ZoneDataInvalid

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True)
class CircleShape:
    center: GeoPoint
    radius_meters: float


@dataclass(frozen=True)
class PolygonShape:
    points: tuple[GeoPoint, ...]


@dataclass(frozen=True)
class Zone:
    """Named geofence classified as safe or risk."""

    id: str
    name: str
    kind: ZoneKind
    shape: CircleShape | PolygonShape


@dataclass
class ZoneCheckResult:
    in_zone: bool
    matched_zones: list[Zone] = field(default_factory=list)
    in_safe_zone: bool = False
    in_risk_zone: bool = False


@dataclass
class ZoneChange:
    entered: list[Zone] = field(default_factory=list)
    exited: list[Zone] = field(default_factory=list)


@dataclass
class ProximityWarning:
    warning: bool
    zone: Zone | None = None
    distance_meters: float | None = None  # distance to the zone boundary


NO_WARNING = ProximityWarning(warning=False)


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in meters."""
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(dlng / 2) ** 2
    )
    h = min(1.0, max(0.0, h))  # float drift near antipodes
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_point_in_circle(point: GeoPoint, center: GeoPoint, radius_meters: float) -> bool:
    """Boundary inclusive."""
    return haversine_m(point, center) <= radius_meters


def is_point_in_polygon(point: GeoPoint, polygon: Sequence[GeoPoint]) -> bool:
    """Ray casting over an ordered vertex list (lng as x, lat as y)."""
    if len(polygon) < 3:
        return False
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i].lng, polygon[i].lat
        xj, yj = polygon[j].lng, polygon[j].lat
        if (yi > point.lat) != (yj > point.lat):
            x_cross = (xj - xi) * (point.lat - yi) / (yj - yi) + xi
            if point.lng < x_cross:
                inside = not inside
        j = i
    return inside


def zone_contains(zone: Zone, point: GeoPoint) -> bool:
    shape = zone.shape
    if isinstance(shape, CircleShape):
        return is_point_in_circle(point, shape.center, shape.radius_meters)
    if isinstance(shape, PolygonShape):
        return is_point_in_polygon(point, shape.points)
    return False


def check_zone(point: GeoPoint, zones: Iterable[Zone]) -> ZoneCheckResult:
    """Evaluate every zone independently; overlapping zones all match."""
    matched = [z for z in zones if zone_contains(z, point)]
    return ZoneCheckResult(
        in_zone=bool(matched),
        matched_zones=matched,
        in_safe_zone=any(z.kind == ZoneKind.SAFE for z in matched),
        in_risk_zone=any(z.kind == ZoneKind.RISK for z in matched),
    )


def detect_zone_change(prev_point: GeoPoint, new_point: GeoPoint, zones: Iterable[Zone]) -> ZoneChange:
    """Zones entered and exited between two consecutive samples."""
    zones = list(zones)
    before = check_zone(prev_point, zones).matched_zones
    after = check_zone(new_point, zones).matched_zones
    before_ids = {z.id for z in before}
    after_ids = {z.id for z in after}
    return ZoneChange(
        entered=[z for z in after if z.id not in before_ids],
        exited=[z for z in before if z.id not in after_ids],
    )


def get_proximity_warning(
    point: GeoPoint,
    risk_zones: Iterable[Zone],
    buffer_meters: float = 500.0,
) -> ProximityWarning:
    """
    Nearest risk zone whose boundary lies within ``buffer_meters`` while the
    point is still outside it. Only circle zones are considered.
    """
    best: ProximityWarning = NO_WARNING
    for zone in risk_zones:
        if zone.kind != ZoneKind.RISK or not isinstance(zone.shape, CircleShape):
            continue
        distance = haversine_m(point, zone.shape.center)
        radius = zone.shape.radius_meters
        if radius < distance <= radius + buffer_meters:
            gap = distance - radius
            if best.distance_meters is None or gap < best.distance_meters:
                best = ProximityWarning(warning=True, zone=zone, distance_meters=gap)
    return best


# ---------- Parsing raw zone data ----------


def _point(raw: Any) -> GeoPoint:
    if isinstance(raw, GeoPoint):
        return raw
    if isinstance(raw, Mapping):
        lat, lng = raw.get("lat"), raw.get("lng")
    elif isinstance(raw, Sequence) and not isinstance(raw, str) and len(raw) == 2:
        lat, lng = raw
    else:
        raise ZoneDataInvalid(f"Invalid point: {raw!r}")
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ZoneDataInvalid(f"Invalid point: {raw!r}") from None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ZoneDataInvalid(f"Point out of range: {raw!r}")
    return GeoPoint(lat, lng)


def parse_zone(raw: Mapping[str, Any]) -> Zone:
    """Build a Zone from a raw mapping; raises ZoneDataInvalid on bad shape data.

    Accepted keys: id, name, kind, and either ``center`` + ``radius_meters``
    (circle) or ``points`` (polygon, at least 3 vertices).
    """
    zone_id = raw.get("id")
    if not zone_id:
        raise ZoneDataInvalid("Zone is missing an id")
    try:
        kind = ZoneKind(raw.get("kind"))
    except ValueError:
        raise ZoneDataInvalid(f"Zone {zone_id}: unknown kind {raw.get('kind')!r}") from None

    shape: CircleShape | PolygonShape
    if raw.get("center") is not None:
        radius = raw.get("radius_meters")
        if not isinstance(radius, (int, float)) or isinstance(radius, bool) or radius < 0:
            raise ZoneDataInvalid(f"Zone {zone_id}: radius must be a non-negative number")
        shape = CircleShape(center=_point(raw["center"]), radius_meters=float(radius))
    elif raw.get("points") is not None:
        points = tuple(_point(p) for p in raw["points"])
        if len(points) < 3:
            raise ZoneDataInvalid(f"Zone {zone_id}: polygon needs at least 3 points")
        shape = PolygonShape(points=points)
    else:
        raise ZoneDataInvalid(f"Zone {zone_id}: no circle or polygon shape")

    return Zone(id=str(zone_id), name=str(raw.get("name") or zone_id), kind=kind, shape=shape)


def zones_from_records(records: Iterable[Any]) -> list[Zone]:
    """Convert registry rows to zones, skipping rows with invalid shape data."""
    zones: list[Zone] = []
    for rec in records:
        raw: dict[str, Any] = {"id": rec.id, "name": rec.name, "kind": rec.kind}
        if rec.shape == "circle":
            raw["center"] = (rec.center_lat, rec.center_lng)
            raw["radius_meters"] = rec.radius_meters
        else:
            raw["points"] = rec.points
        try:
            zones.append(parse_zone(raw))
        except ZoneDataInvalid as e:
            logger.warning("Skipping invalid zone %s: %s", rec.id, e.message)
    return zones
