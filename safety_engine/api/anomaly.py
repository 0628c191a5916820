"""Anomaly detection API."""

from __future__ import annotations

import dataclasses

from fastapi import APIRouter, Depends

from safety_engine.core.deps import get_current_identity, get_engine
from safety_engine.engine import SafetyEngine
from safety_engine.schemas.anomaly import AnomalyDetectRequest, AnomalyDetectResponse, AnomalySignalResponse
from safety_engine.schemas.sos import SosEventResponse
from safety_engine.services.anomaly_service import AnomalySignal, MonitoringSnapshot
from safety_engine.services.collaborators import Identity
from safety_engine.services.geofence_service import GeoPoint

router = APIRouter(prefix="/anomalies", tags=["anomalies"])


def _signal_out(signal: AnomalySignal) -> AnomalySignalResponse:
    return AnomalySignalResponse(
        type=signal.type.value if signal.type else "none",
        severity=signal.severity.value,
        description=signal.description,
        should_trigger_sos=signal.should_trigger_sos,
        metadata=dataclasses.asdict(signal.details) if signal.details else {},
    )


@router.post("/detect", response_model=AnomalyDetectResponse)
def detect(
    data: AnomalyDetectRequest,
    engine: SafetyEngine = Depends(get_engine),
    _: Identity = Depends(get_current_identity),
):
    """Run the detectors on the caller's latest state; optionally raise an automatic SOS."""
    snapshot = MonitoringSnapshot(
        last_activity_at=data.last_activity_at,
        current_location=GeoPoint(data.current_location.lat, data.current_location.lng)
        if data.current_location
        else None,
        planned_route=[GeoPoint(p.lat, p.lng) for p in data.planned_route] if data.planned_route is not None else None,
        speed_kmh=data.speed_kmh,
        travel_mode=data.travel_mode,
        last_gps_fix_at=data.last_gps_fix_at,
        battery_level=data.battery_level,
        local_time=data.local_time,
    )
    evaluation = engine.evaluate_anomalies(snapshot, auto_trigger=data.auto_trigger)
    return AnomalyDetectResponse(
        anomalies=[_signal_out(s) for s in evaluation.signals],
        should_trigger_sos=evaluation.should_trigger_sos,
        sos_event=SosEventResponse.model_validate(evaluation.sos_event) if evaluation.sos_event else None,
        suppressed_reason=evaluation.suppressed_reason,
    )
