"""SOS event schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from safety_engine.core.enums import SosStatus, TriggerMode


class LocationIn(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class SosTriggerRequest(BaseModel):
    mode: TriggerMode = TriggerMode.BUTTON
    location: LocationIn
    description: str | None = Field(default=None, max_length=2000)
    address: str | None = Field(default=None, max_length=255)


class SosStatusUpdate(BaseModel):
    status: SosStatus
    officer_id: str | None = Field(default=None, description="Defaults to the caller")


class SosResolveRequest(BaseModel):
    false_alarm: bool = False
    notes: str | None = Field(default=None, max_length=2000)


class SosEventResponse(BaseModel):
    id: str
    user_id: str
    trigger_mode: str
    status: str
    priority: str
    confidence_score: int
    escalation_level: int
    latitude: float
    longitude: float
    address: str | None
    description: str | None
    created_at: datetime
    acknowledged_by: str | None
    acknowledged_at: datetime | None
    responding_officer_id: str | None
    response_at: datetime | None
    resolved_at: datetime | None
    resolution_notes: str | None

    model_config = {"from_attributes": True}


class EscalationRecordResponse(BaseModel):
    id: str
    sos_event_id: str
    level: int
    target_class: str
    status: str
    created_at: datetime
    sent_at: datetime | None
    acknowledged_by: str | None
    acknowledged_at: datetime | None

    model_config = {"from_attributes": True}


class EscalationStepResponse(BaseModel):
    level: int
    target_class: str
    delay_minutes: int


class SweepResponse(BaseModel):
    advanced: list[EscalationRecordResponse]
