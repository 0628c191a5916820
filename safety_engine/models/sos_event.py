"""SOS event model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from safety_engine.core.enums import ACTIVE_STATUSES, SosStatus
from safety_engine.db.base import Base

_ACTIVE_SQL = "status IN ({})".format(", ".join(sorted(f"'{s.value}'" for s in ACTIVE_STATUSES)))


def _new_id() -> str:
    return str(uuid.uuid4())


class SosEvent(Base):
    """One emergency trigger tracked from creation to terminal status."""

    __tablename__ = "sos_events"
    __table_args__ = (
        # At most one non-terminal event per user
        Index(
            "uq_sos_events_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ),
        Index("ix_sos_events_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SosStatus.TRIGGERED.value)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="critical")
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_escalated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acknowledged_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    responding_officer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def status_enum(self) -> SosStatus:
        return SosStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum.is_terminal
