"""SOS lifecycle: trigger, confidence scoring, rate limiting and status transitions."""

from __future__ import annotations

import logging
from datetime import timedelta

from safety_engine.core.enums import SosStatus, TriggerMode
from safety_engine.core.errors import InvalidTransition, NotAuthenticated, RateLimitExceeded, SosEventNotFound
from safety_engine.core.sos_policies import (
    DESCRIPTION_BONUS,
    EVENT_PRIORITY,
    FALSE_ALARM_PENALTY,
    MODE_CONFIDENCE,
    RATE_LIMIT_MAX_EVENTS,
    RATE_LIMIT_WINDOW_MINUTES,
)
from safety_engine.db.store import SosStore
from safety_engine.models.sos_event import SosEvent
from safety_engine.services.collaborators import Clock, IdentityProvider, StatusPublisher, event_payload
from safety_engine.services.escalation_service import EscalationScheduler
from safety_engine.services.geofence_service import GeoPoint

logger = logging.getLogger(__name__)

# Forward moves reachable through update_status; terminal moves go through resolve()
_FORWARD: dict[SosStatus, frozenset[SosStatus]] = {
    SosStatus.TRIGGERED: frozenset({SosStatus.ACKNOWLEDGED, SosStatus.RESPONDING}),
    SosStatus.ACKNOWLEDGED: frozenset({SosStatus.RESPONDING}),
    SosStatus.RESPONDING: frozenset({SosStatus.VERIFIED}),
    SosStatus.VERIFIED: frozenset(),
}


def calculate_confidence_score(mode: TriggerMode, has_description: bool, false_alarm_count: int) -> int:
    """Heuristic 0-100 likelihood that a trigger is genuine."""
    score = MODE_CONFIDENCE[mode]
    if has_description:
        score += DESCRIPTION_BONUS
    score -= FALSE_ALARM_PENALTY * max(0, false_alarm_count)
    return max(0, min(100, score))


class SosLifecycleManager:
    """Owns SOS events from trigger to terminal status."""

    def __init__(
        self,
        store: SosStore,
        identity: IdentityProvider,
        scheduler: EscalationScheduler,
        publisher: StatusPublisher,
        clock: Clock,
    ) -> None:
        self.store = store
        self.identity = identity
        self.scheduler = scheduler
        self.publisher = publisher
        self.clock = clock

    def trigger_sos(
        self,
        mode: TriggerMode,
        location: GeoPoint,
        description: str | None = None,
        address: str | None = None,
    ) -> SosEvent:
        """Create a new SOS event for the current caller.

        - Rejects anonymous callers (NotAuthenticated).
        - Rejects a 4th trigger in the trailing hour (RateLimitExceeded).
        - Rejects while another event is active (ConflictingActiveEvent).
        The level-0 escalation row is written in the same transaction.
        """
        caller = self.identity.current_identity()
        if caller is None:
            raise NotAuthenticated("Not authenticated")

        mode = TriggerMode(mode)
        description = (description or "").strip() or None
        score = calculate_confidence_score(
            mode,
            # auto triggers carry generated text, not a user description
            has_description=description is not None and mode != TriggerMode.ANOMALY_AUTO,
            false_alarm_count=self.store.count_false_alarms(caller.user_id),
        )

        now = self.clock()
        event = SosEvent(
            user_id=caller.user_id,
            trigger_mode=mode.value,
            status=SosStatus.TRIGGERED.value,
            priority=EVENT_PRIORITY,
            confidence_score=score,
            escalation_level=0,
            latitude=location.lat,
            longitude=location.lng,
            address=address,
            description=description,
            created_at=now,
            last_escalated_at=now,
        )
        first_record = self.scheduler.initial_record(now)
        try:
            event = self.store.create_event(
                event,
                first_record,
                now=now,
                window=timedelta(minutes=RATE_LIMIT_WINDOW_MINUTES),
                max_in_window=RATE_LIMIT_MAX_EVENTS,
            )
        except RateLimitExceeded:
            logger.warning("SOS rate limit hit for user=%s", caller.user_id)
            raise

        logger.info("SOS %s triggered by user=%s mode=%s confidence=%s", event.id, event.user_id, mode.value, score)
        self.scheduler.dispatch(event, first_record)
        self.publisher.publish("sos.triggered", event.user_id, event_payload(event))
        return event

    # ---------- Queries ----------

    def get_event(self, sos_id: str) -> SosEvent:
        event = self.store.get_event(sos_id)
        if event is None:
            raise SosEventNotFound("SOS not found")
        return event

    def list_active(self, limit: int = 100) -> list[SosEvent]:
        return self.store.list_active_events(limit)

    def history(self, limit: int = 10) -> list[SosEvent]:
        """Current caller's events, newest first."""
        caller = self.identity.current_identity()
        if caller is None:
            raise NotAuthenticated("Not authenticated")
        return self.store.list_user_events(caller.user_id, limit)

    # ---------- Transitions ----------

    def update_status(self, sos_id: str, status: SosStatus, officer_id: str | None = None) -> SosEvent:
        status = SosStatus(status)
        if status.is_terminal:
            return self.resolve(sos_id, false_alarm=status == SosStatus.FALSE_ALARM)

        event = self.get_event(sos_id)
        current = event.status_enum
        if current.is_terminal:
            raise InvalidTransition(f"SOS is already {current.value}")
        if status not in _FORWARD[current]:
            raise InvalidTransition(f"Cannot move SOS from {current.value} to {status.value}")

        now = self.clock()
        values: dict[str, object] = {"status": status.value}
        if status == SosStatus.ACKNOWLEDGED:
            values.update(acknowledged_by=officer_id, acknowledged_at=now)
        elif status == SosStatus.RESPONDING:
            values.update(responding_officer_id=officer_id, response_at=now)

        self._apply(event, current, values)
        if status == SosStatus.ACKNOWLEDGED and officer_id is not None:
            self.store.acknowledge_escalations(event.id, officer_id, now)
        return event

    def acknowledge(self, sos_id: str, officer_id: str) -> SosEvent:
        return self.update_status(sos_id, SosStatus.ACKNOWLEDGED, officer_id)

    def respond(self, sos_id: str, officer_id: str) -> SosEvent:
        return self.update_status(sos_id, SosStatus.RESPONDING, officer_id)

    def resolve(self, sos_id: str, false_alarm: bool = False, notes: str | None = None) -> SosEvent:
        """Close the event. Terminal statuses are absorbing."""
        event = self.get_event(sos_id)
        current = event.status_enum
        if current.is_terminal:
            raise InvalidTransition(f"SOS is already {current.value}")

        target = SosStatus.FALSE_ALARM if false_alarm else SosStatus.RESOLVED
        self._apply(
            event,
            current,
            {"status": target.value, "resolved_at": self.clock(), "resolution_notes": notes},
        )
        return event

    def mark_safe(self, sos_id: str) -> SosEvent:
        """User reports they are safe; closes the ladder at whatever level it reached."""
        return self.resolve(sos_id, false_alarm=False, notes="Marked safe by user")

    def _apply(self, event: SosEvent, current: SosStatus, values: dict[str, object]) -> None:
        if not self.store.transition(event, current.value, values):
            # Someone else moved the event first; report against its new state
            raise InvalidTransition(f"SOS changed concurrently (now {event.status})")
        logger.info("SOS %s: %s -> %s", event.id, current.value, event.status)
        self.publisher.publish("sos.status", event.user_id, event_payload(event))
