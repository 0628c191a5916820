"""Escalation ladder row - one per level reached by an SOS event."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from safety_engine.core.enums import EscalationStatus
from safety_engine.db.base import Base


class SosEscalation(Base):
    """Notification target class reached at one ladder level."""

    __tablename__ = "sos_escalations"
    __table_args__ = (UniqueConstraint("sos_event_id", "level", name="uq_sos_escalations_event_level"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sos_event_id: Mapped[str] = mapped_column(ForeignKey("sos_events.id", ondelete="CASCADE"), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    target_class: Mapped[str] = mapped_column(String(32), nullable=False)  # family | police | emergency_services | embassy
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=EscalationStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
