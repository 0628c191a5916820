"""SOS events API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from safety_engine.core.deps import get_current_identity, get_engine, require_responder
from safety_engine.core.ws_manager import DASHBOARD_ROLES
from safety_engine.engine import SafetyEngine
from safety_engine.models.sos_event import SosEvent
from safety_engine.schemas.sos import (
    EscalationRecordResponse,
    EscalationStepResponse,
    SosEventResponse,
    SosResolveRequest,
    SosStatusUpdate,
    SosTriggerRequest,
    SweepResponse,
)
from safety_engine.services.collaborators import Identity
from safety_engine.services.geofence_service import GeoPoint

router = APIRouter(prefix="/sos", tags=["sos"])


def visible_event(engine: SafetyEngine, sos_id: str, caller: Identity) -> SosEvent:
    """Owner and responders can see an event; everyone else gets 404."""
    event = engine.get_event(sos_id)
    if event.user_id != caller.user_id and caller.role not in DASHBOARD_ROLES:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "sos_not_found", "message": "SOS not found"},
        )
    return event


@router.post("/trigger", response_model=SosEventResponse)
def trigger(
    data: SosTriggerRequest,
    engine: SafetyEngine = Depends(get_engine),
):
    """Trigger an SOS for the caller. 401 / 429 / 409 on rejection."""
    return engine.trigger_sos(
        data.mode,
        GeoPoint(data.location.latitude, data.location.longitude),
        description=data.description,
        address=data.address,
    )


@router.get("/active", response_model=list[SosEventResponse])
def list_active(
    limit: int = Query(default=100, ge=1, le=500),
    engine: SafetyEngine = Depends(get_engine),
    _: Identity = Depends(require_responder),
):
    """Active events for dashboards, newest first."""
    return engine.list_active(limit)


@router.get("/history", response_model=list[SosEventResponse])
def history(
    limit: int = Query(default=10, ge=1, le=100),
    engine: SafetyEngine = Depends(get_engine),
    _: Identity = Depends(get_current_identity),
):
    """Caller's own events, newest first."""
    return engine.history(limit)


@router.get("/ladder", response_model=list[EscalationStepResponse])
def ladder(engine: SafetyEngine = Depends(get_engine)):
    """Escalation ladder with nominal delays."""
    return [
        EscalationStepResponse(level=level, target_class=target, delay_minutes=delay)
        for level, target, delay in engine.scheduler.policy.steps()
    ]


@router.post("/escalations/sweep", response_model=SweepResponse)
def sweep(
    engine: SafetyEngine = Depends(get_engine),
    _: Identity = Depends(require_responder),
):
    """Run one time-driven escalation pass now."""
    advanced = engine.sweep_escalations()
    return SweepResponse(advanced=[EscalationRecordResponse.model_validate(r) for r in advanced])


@router.get("/{sos_id}", response_model=SosEventResponse)
def get_event(
    sos_id: str,
    engine: SafetyEngine = Depends(get_engine),
    caller: Identity = Depends(get_current_identity),
):
    return visible_event(engine, sos_id, caller)


@router.put("/{sos_id}/status", response_model=SosEventResponse)
def update_status(
    sos_id: str,
    data: SosStatusUpdate,
    engine: SafetyEngine = Depends(get_engine),
    responder: Identity = Depends(require_responder),
):
    """Move an event forward (acknowledged / responding / verified / terminal)."""
    return engine.update_status(sos_id, data.status, data.officer_id or responder.user_id)


@router.post("/{sos_id}/acknowledge", response_model=SosEventResponse)
def acknowledge(
    sos_id: str,
    engine: SafetyEngine = Depends(get_engine),
    responder: Identity = Depends(require_responder),
):
    return engine.acknowledge(sos_id, responder.user_id)


@router.post("/{sos_id}/respond", response_model=SosEventResponse)
def respond(
    sos_id: str,
    engine: SafetyEngine = Depends(get_engine),
    responder: Identity = Depends(require_responder),
):
    return engine.respond(sos_id, responder.user_id)


@router.post("/{sos_id}/resolve", response_model=SosEventResponse)
def resolve(
    sos_id: str,
    data: SosResolveRequest,
    engine: SafetyEngine = Depends(get_engine),
    caller: Identity = Depends(get_current_identity),
):
    """Close the event as resolved or false alarm. Owner or responder."""
    visible_event(engine, sos_id, caller)
    return engine.resolve(sos_id, false_alarm=data.false_alarm, notes=data.notes)


@router.post("/{sos_id}/safe", response_model=SosEventResponse)
def mark_safe(
    sos_id: str,
    engine: SafetyEngine = Depends(get_engine),
    caller: Identity = Depends(get_current_identity),
):
    """Owner reports they are safe; stops the ladder."""
    event = visible_event(engine, sos_id, caller)
    if event.user_id != caller.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Only the owner can mark themselves safe"},
        )
    return engine.mark_safe(sos_id)


@router.post("/{sos_id}/escalate", response_model=EscalationRecordResponse)
def escalate(
    sos_id: str,
    engine: SafetyEngine = Depends(get_engine),
    caller: Identity = Depends(get_current_identity),
):
    """Advance one ladder level now."""
    visible_event(engine, sos_id, caller)
    return engine.escalate(sos_id)


@router.get("/{sos_id}/escalations", response_model=list[EscalationRecordResponse])
def list_escalations(
    sos_id: str,
    engine: SafetyEngine = Depends(get_engine),
    caller: Identity = Depends(get_current_identity),
):
    visible_event(engine, sos_id, caller)
    return engine.list_escalations(sos_id)
