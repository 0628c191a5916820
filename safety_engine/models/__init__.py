"""SQLAlchemy models."""

from __future__ import annotations

from safety_engine.models.sos_escalation import SosEscalation
from safety_engine.models.sos_event import SosEvent
from safety_engine.models.sos_evidence import SosEvidence
from safety_engine.models.zone import ZoneRecord

__all__ = [
    "SosEscalation",
    "SosEvent",
    "SosEvidence",
    "ZoneRecord",
]
