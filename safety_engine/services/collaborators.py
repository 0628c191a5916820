"""Interfaces to the collaborators the engine is handed at construction."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from safety_engine.models.sos_escalation import SosEscalation
from safety_engine.models.sos_event import SosEvent

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = "user"


class IdentityProvider(Protocol):
    def current_identity(self) -> Identity | None: ...


@dataclass(frozen=True)
class StaticIdentity:
    """Fixed caller, for automation jobs and tests. ``None`` means anonymous."""

    identity: Identity | None

    def current_identity(self) -> Identity | None:
        return self.identity


class NotificationDispatcher(Protocol):
    """Contacts the target class of an escalation row. Raises DispatchError on failure."""

    def dispatch(self, event: SosEvent, record: SosEscalation) -> None: ...


class LoggingDispatcher:
    """Dispatcher that only records what would have been sent."""

    def dispatch(self, event: SosEvent, record: SosEscalation) -> None:
        logger.info(
            "Escalation level %s -> %s for SOS %s (user=%s, lat=%.5f, lng=%.5f)",
            record.level,
            record.target_class,
            event.id,
            event.user_id,
            event.latitude,
            event.longitude,
        )


class StatusPublisher(Protocol):
    """Fans status changes out to live subscribers."""

    def publish(self, topic: str, owner_id: str | None, payload: dict[str, Any]) -> None: ...


class NullPublisher:
    def publish(self, topic: str, owner_id: str | None, payload: dict[str, Any]) -> None:
        logger.debug("publish %s (no subscribers configured)", topic)


def event_payload(event: SosEvent) -> dict[str, Any]:
    """Compact status payload pushed to live dashboards."""
    return {
        "sos_id": event.id,
        "user_id": event.user_id,
        "status": event.status,
        "escalation_level": event.escalation_level,
        "confidence_score": event.confidence_score,
        "trigger_mode": event.trigger_mode,
        "latitude": event.latitude,
        "longitude": event.longitude,
    }
