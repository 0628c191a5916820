"""Geofence zone rows. Written by the zone registry, read by the engine."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, Float, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from safety_engine.db.base import Base


class ZoneRecord(Base):
    __tablename__ = "zones"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)  # safe | risk
    shape: Mapped[str] = mapped_column(String(10), nullable=False)  # circle | polygon
    center_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    center_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    radius_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    points: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)  # [[lat, lng], ...]
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
