"""Escalation ladder: family -> police -> emergency services -> embassy."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from safety_engine.core.config import Settings
from safety_engine.core.enums import EscalationStatus
from safety_engine.core.errors import (
    DispatchError,
    InvalidTransition,
    MaxEscalationReached,
    SosEventNotFound,
    StorageError,
)
from safety_engine.core.sos_policies import (
    DEFAULT_ESCALATION_DELAYS_MINUTES,
    ESCALATION_TARGETS,
    MAX_ESCALATION_LEVEL,
)
from safety_engine.db.store import SosStore, as_utc
from safety_engine.models.sos_escalation import SosEscalation
from safety_engine.models.sos_event import SosEvent
from safety_engine.services.collaborators import Clock, NotificationDispatcher, StatusPublisher, event_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationPolicy:
    """When the ladder advances on its own.

    ``delays_minutes[n]`` is the nominal offset from trigger at which level n
    fires. A sweep advances an unacknowledged event once the time since its
    last escalation covers the gap to the next level.
    """

    delays_minutes: tuple[int, ...] = field(default=DEFAULT_ESCALATION_DELAYS_MINUTES)
    auto_advance: bool = False
    sweep_interval_seconds: int = 30

    def __post_init__(self) -> None:
        if len(self.delays_minutes) != len(ESCALATION_TARGETS):
            raise ValueError(f"Need {len(ESCALATION_TARGETS)} escalation delays, got {len(self.delays_minutes)}")
        if any(b < a for a, b in zip(self.delays_minutes, self.delays_minutes[1:])):
            raise ValueError("Escalation delays must be non-decreasing")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EscalationPolicy":
        return cls(
            delays_minutes=tuple(settings.escalation_delays_minutes),
            auto_advance=settings.escalation_auto_advance,
            sweep_interval_seconds=settings.escalation_sweep_seconds,
        )

    def gap_to_next(self, level: int) -> timedelta:
        return timedelta(minutes=self.delays_minutes[level + 1] - self.delays_minutes[level])

    def is_due(self, event: SosEvent, now: datetime) -> bool:
        if event.escalation_level >= MAX_ESCALATION_LEVEL:
            return False
        return now - as_utc(event.last_escalated_at) >= self.gap_to_next(event.escalation_level)

    def steps(self) -> list[tuple[int, str, int]]:
        """(level, target class, nominal minutes after trigger) in ladder order."""
        return [
            (level, target.value, self.delays_minutes[level])
            for level, target in enumerate(ESCALATION_TARGETS)
        ]


class EscalationScheduler:
    """Advances the ladder manually or by a periodic sweep.

    Every advance is a conditional write on the event's current level, so
    manual calls and sweeps on the same event serialize and a level is never
    recorded twice.
    """

    def __init__(
        self,
        store: SosStore,
        dispatcher: NotificationDispatcher,
        publisher: StatusPublisher,
        clock: Clock,
        policy: EscalationPolicy | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.publisher = publisher
        self.clock = clock
        self.policy = policy or EscalationPolicy()

    @staticmethod
    def initial_record(now: datetime) -> SosEscalation:
        return _record(0, now)

    def escalate(self, sos_id: str) -> SosEscalation:
        """Move the event one level up the ladder."""
        event = self.store.get_event(sos_id)
        if event is None:
            raise SosEventNotFound("SOS not found")
        _check_can_escalate(event)

        record = self._advance(event)
        if record is None:
            _check_can_escalate(event)
            raise InvalidTransition(f"SOS escalation changed concurrently (now level {event.escalation_level})")
        return record

    def sweep(self) -> list[SosEscalation]:
        """Advance every unacknowledged event whose next level is due. Idempotent."""
        now = self.clock()
        created: list[SosEscalation] = []
        for event in self.store.list_escalation_candidates():
            if not self.policy.is_due(event, now):
                continue
            try:
                record = self._advance(event)
            except StorageError as e:
                logger.error("Sweep could not advance SOS %s: %s", event.id, e.message)
                continue
            if record is not None:
                created.append(record)
        if created:
            logger.info("Escalation sweep advanced %s event(s)", len(created))
        return created

    def list_records(self, sos_id: str) -> list[SosEscalation]:
        if self.store.get_event(sos_id) is None:
            raise SosEventNotFound("SOS not found")
        return self.store.list_escalations(sos_id)

    def dispatch(self, event: SosEvent, record: SosEscalation) -> None:
        """Hand a ladder row to the notification service and record the outcome."""
        try:
            self.dispatcher.dispatch(event, record)
        except DispatchError as e:
            logger.error("Dispatch to %s failed for SOS %s: %s", record.target_class, event.id, e)
            self.store.set_escalation_status(record, EscalationStatus.FAILED, self.clock(), reason=str(e))
            return
        self.store.set_escalation_status(record, EscalationStatus.SENT, self.clock())

    def _advance(self, event: SosEvent) -> SosEscalation | None:
        now = self.clock()
        from_level = event.escalation_level
        if event.is_terminal or from_level >= MAX_ESCALATION_LEVEL:
            return None
        record = _record(from_level + 1, now)
        if not self.store.advance_escalation(event, from_level, record, now):
            logger.debug("SOS %s already moved past level %s", event.id, from_level)
            return None
        logger.info("SOS %s escalated to level %s (%s)", event.id, record.level, record.target_class)
        self.dispatch(event, record)
        self.publisher.publish("sos.escalated", event.user_id, event_payload(event))
        return record


def _record(level: int, now: datetime) -> SosEscalation:
    return SosEscalation(
        level=level,
        target_class=ESCALATION_TARGETS[level].value,
        status=EscalationStatus.PENDING.value,
        created_at=now,
    )


def _check_can_escalate(event: SosEvent) -> None:
    if event.is_terminal:
        raise InvalidTransition(f"Cannot escalate a {event.status} SOS")
    if event.escalation_level >= MAX_ESCALATION_LEVEL:
        raise MaxEscalationReached("Max escalation reached")
