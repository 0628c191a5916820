"""Evidence attached to SOS events."""

from __future__ import annotations

import base64
import binascii

from fastapi import APIRouter, Depends, HTTPException, Query, status

from safety_engine.api.sos import visible_event
from safety_engine.core.deps import get_current_identity, get_engine
from safety_engine.core.enums import EvidenceKind
from safety_engine.engine import SafetyEngine
from safety_engine.schemas.evidence import EvidenceCreate, EvidenceListResponse, EvidenceResponse
from safety_engine.services.collaborators import Identity

router = APIRouter(prefix="/sos", tags=["evidence"])


@router.post("/{sos_id}/evidence", response_model=EvidenceResponse, status_code=status.HTTP_201_CREATED)
def add_evidence(
    sos_id: str,
    data: EvidenceCreate,
    engine: SafetyEngine = Depends(get_engine),
    caller: Identity = Depends(get_current_identity),
):
    """Attach evidence. File kinds send base64 content; allowed after resolution too."""
    visible_event(engine, sos_id, caller)
    content = None
    if data.content_base64 is not None:
        try:
            content = base64.b64decode(data.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"code": "invalid_content", "message": "content_base64 is not valid base64"},
            ) from None
    return engine.save_evidence(
        sos_id,
        data.kind,
        content=content,
        filename=data.filename,
        mime_type=data.mime_type,
        sensor_data=data.sensor_data,
        captured_at=data.captured_at,
    )


@router.get("/{sos_id}/evidence", response_model=EvidenceListResponse)
def list_evidence(
    sos_id: str,
    kind: EvidenceKind | None = Query(default=None),
    engine: SafetyEngine = Depends(get_engine),
    caller: Identity = Depends(get_current_identity),
):
    visible_event(engine, sos_id, caller)
    summary = engine.list_evidence(sos_id, kind)
    return EvidenceListResponse(
        records=[EvidenceResponse.model_validate(r) for r in summary.records],
        counts=summary.counts,
    )
