"""Engine instance wiring the geofence, anomaly, lifecycle, escalation and evidence components."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from safety_engine.core.enums import EvidenceKind, SosStatus, TriggerMode, ZoneKind
from safety_engine.core.errors import ConflictingActiveEvent, RateLimitExceeded
from safety_engine.db.store import SosStore
from safety_engine.models.sos_escalation import SosEscalation
from safety_engine.models.sos_event import SosEvent
from safety_engine.models.sos_evidence import SosEvidence
from safety_engine.services import anomaly_service, geofence_service
from safety_engine.services.anomaly_service import AnomalySignal, MonitoringSnapshot
from safety_engine.services.collaborators import (
    Clock,
    IdentityProvider,
    LoggingDispatcher,
    NotificationDispatcher,
    NullPublisher,
    StatusPublisher,
    utc_now,
)
from safety_engine.services.escalation_service import EscalationPolicy, EscalationScheduler
from safety_engine.services.evidence_service import EvidenceCollector, EvidenceStorage, EvidenceSummary, LocalEvidenceStorage
from safety_engine.services.geofence_service import GeoPoint, ProximityWarning, Zone, ZoneChange, ZoneCheckResult
from safety_engine.services.sos_service import SosLifecycleManager

logger = logging.getLogger(__name__)


@dataclass
class AnomalyEvaluation:
    signals: list[AnomalySignal]
    should_trigger_sos: bool
    sos_event: SosEvent | None = None
    suppressed_reason: str | None = None  # error code when an auto SOS was not created


class SafetyEngine:
    """All engine operations, bound to one set of injected collaborators."""

    def __init__(
        self,
        store: SosStore,
        identity: IdentityProvider,
        clock: Clock = utc_now,
        dispatcher: NotificationDispatcher | None = None,
        publisher: StatusPublisher | None = None,
        evidence_storage: EvidenceStorage | None = None,
        policy: EscalationPolicy | None = None,
        proximity_buffer_meters: float = 500.0,
    ) -> None:
        self.store = store
        self.identity = identity
        self.clock = clock
        self.proximity_buffer_meters = proximity_buffer_meters
        publisher = publisher or NullPublisher()
        self.scheduler = EscalationScheduler(
            store, dispatcher or LoggingDispatcher(), publisher, clock, policy or EscalationPolicy()
        )
        self.lifecycle = SosLifecycleManager(store, identity, self.scheduler, publisher, clock)
        self.evidence = EvidenceCollector(store, evidence_storage or LocalEvidenceStorage("./evidence"), publisher, clock)

    # ---------- SOS lifecycle ----------

    def trigger_sos(
        self,
        mode: TriggerMode,
        location: GeoPoint,
        description: str | None = None,
        address: str | None = None,
    ) -> SosEvent:
        return self.lifecycle.trigger_sos(mode, location, description, address)

    def update_status(self, sos_id: str, status: SosStatus, officer_id: str | None = None) -> SosEvent:
        return self.lifecycle.update_status(sos_id, status, officer_id)

    def acknowledge(self, sos_id: str, officer_id: str) -> SosEvent:
        return self.lifecycle.acknowledge(sos_id, officer_id)

    def respond(self, sos_id: str, officer_id: str) -> SosEvent:
        return self.lifecycle.respond(sos_id, officer_id)

    def resolve(self, sos_id: str, false_alarm: bool = False, notes: str | None = None) -> SosEvent:
        return self.lifecycle.resolve(sos_id, false_alarm, notes)

    def mark_safe(self, sos_id: str) -> SosEvent:
        return self.lifecycle.mark_safe(sos_id)

    def get_event(self, sos_id: str) -> SosEvent:
        return self.lifecycle.get_event(sos_id)

    def list_active(self, limit: int = 100) -> list[SosEvent]:
        return self.lifecycle.list_active(limit)

    def history(self, limit: int = 10) -> list[SosEvent]:
        return self.lifecycle.history(limit)

    # ---------- Escalation ----------

    def escalate(self, sos_id: str) -> SosEscalation:
        return self.scheduler.escalate(sos_id)

    def sweep_escalations(self) -> list[SosEscalation]:
        return self.scheduler.sweep()

    def list_escalations(self, sos_id: str) -> list[SosEscalation]:
        return self.scheduler.list_records(sos_id)

    # ---------- Evidence ----------

    def save_evidence(self, sos_id: str, kind: EvidenceKind, **payload: Any) -> SosEvidence:
        return self.evidence.save_evidence(sos_id, kind, **payload)

    def list_evidence(self, sos_id: str, kind: EvidenceKind | None = None) -> EvidenceSummary:
        return self.evidence.list_evidence(sos_id, kind)

    # ---------- Geofence ----------

    def load_zones(self, kind: ZoneKind | None = None) -> list[Zone]:
        records = self.store.list_zones(kind.value if kind is not None else None)
        return geofence_service.zones_from_records(records)

    def check_zone(self, point: GeoPoint, zones: list[Zone] | None = None) -> ZoneCheckResult:
        return geofence_service.check_zone(point, self.load_zones() if zones is None else zones)

    def detect_zone_change(self, prev_point: GeoPoint, new_point: GeoPoint, zones: list[Zone] | None = None) -> ZoneChange:
        return geofence_service.detect_zone_change(prev_point, new_point, self.load_zones() if zones is None else zones)

    def proximity_warning(
        self,
        point: GeoPoint,
        zones: list[Zone] | None = None,
        buffer_meters: float | None = None,
    ) -> ProximityWarning:
        risk_zones = self.load_zones(ZoneKind.RISK) if zones is None else zones
        buffer = self.proximity_buffer_meters if buffer_meters is None else buffer_meters
        return geofence_service.get_proximity_warning(point, risk_zones, buffer)

    # ---------- Anomalies ----------

    def detect_all_anomalies(self, snapshot: MonitoringSnapshot) -> list[AnomalySignal]:
        if snapshot.now is None:
            snapshot = replace(snapshot, now=self.clock())
        return anomaly_service.detect_all_anomalies(snapshot)

    def evaluate_anomalies(self, snapshot: MonitoringSnapshot, auto_trigger: bool = True) -> AnomalyEvaluation:
        """Detect anomalies and, when an eligible one is critical, raise an automatic SOS."""
        signals = self.detect_all_anomalies(snapshot)
        evaluation = AnomalyEvaluation(signals=signals, should_trigger_sos=anomaly_service.should_trigger_auto_sos(signals))
        if not (auto_trigger and evaluation.should_trigger_sos):
            return evaluation

        if snapshot.current_location is None:
            logger.warning("Auto SOS requested without a current location; not triggering")
            evaluation.suppressed_reason = "location_unknown"
            return evaluation

        cause = next(s for s in signals if s.should_trigger_sos)
        try:
            evaluation.sos_event = self.trigger_sos(
                TriggerMode.ANOMALY_AUTO,
                snapshot.current_location,
                description=f"Auto-triggered by anomaly: {cause.description}",
            )
        except (ConflictingActiveEvent, RateLimitExceeded) as e:
            logger.info("Auto SOS not created: %s", e.message)
            evaluation.suppressed_reason = e.code
        return evaluation
