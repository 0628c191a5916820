"""Evidence schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from safety_engine.core.enums import EvidenceKind


class EvidenceCreate(BaseModel):
    kind: EvidenceKind
    content_base64: str | None = Field(default=None, description="File content for photo/audio/screen")
    filename: str | None = Field(default=None, max_length=255)
    mime_type: str | None = Field(default=None, max_length=100)
    sensor_data: dict[str, Any] | None = None
    captured_at: datetime | None = None


class EvidenceResponse(BaseModel):
    id: str
    sos_event_id: str
    kind: str
    storage_ref: str
    mime_type: str | None
    size_bytes: int | None
    sensor_data: dict[str, Any] | None
    captured_at: datetime

    model_config = {"from_attributes": True}


class EvidenceListResponse(BaseModel):
    records: list[EvidenceResponse]
    counts: dict[str, int]
