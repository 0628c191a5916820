"""Evidence attached to SOS events: append-only, independent of status."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePath
from typing import Any, Protocol

from safety_engine.core.enums import EvidenceKind
from safety_engine.core.errors import EvidenceUploadFailed, SosEventNotFound
from safety_engine.core.sos_policies import SENSOR_STORAGE_REF
from safety_engine.db.store import SosStore
from safety_engine.models.sos_evidence import SosEvidence
from safety_engine.services.collaborators import Clock, StatusPublisher

logger = logging.getLogger(__name__)


class EvidenceStorage(Protocol):
    """Blob storage. Returns a reference to the stored object; raises OSError on failure."""

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str: ...


class LocalEvidenceStorage:
    """Stores evidence files under a root directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return key


@dataclass
class EvidenceSummary:
    records: list[SosEvidence]
    counts: dict[str, int] = field(default_factory=dict)  # per kind, over all of the event's evidence


class EvidenceCollector:
    def __init__(self, store: SosStore, storage: EvidenceStorage, publisher: StatusPublisher, clock: Clock) -> None:
        self.store = store
        self.storage = storage
        self.publisher = publisher
        self.clock = clock

    def save_evidence(
        self,
        sos_id: str,
        kind: EvidenceKind,
        content: bytes | None = None,
        filename: str | None = None,
        mime_type: str | None = None,
        sensor_data: dict[str, Any] | None = None,
        captured_at: datetime | None = None,
    ) -> SosEvidence:
        """Append one evidence record.

        Photo, audio and screen evidence must carry file content, which is
        uploaded first. Location and sensor readings without a file get the
        placeholder storage reference. Allowed before, during and after
        resolution.
        """
        kind = EvidenceKind(kind)
        event = self.store.get_event(sos_id)
        if event is None:
            raise SosEventNotFound("SOS not found")

        now = self.clock()
        if content:
            name = PurePath(filename).name if filename else f"{kind.value}.bin"
            key = f"{sos_id}/{int(now.timestamp() * 1000)}_{name}"
            try:
                storage_ref = self.storage.put(key, content, mime_type)
            except OSError as e:
                logger.error("Evidence upload failed for SOS %s: %s", sos_id, e)
                raise EvidenceUploadFailed(f"Could not store {kind.value} evidence") from e
        elif kind.is_file_backed:
            raise EvidenceUploadFailed(f"{kind.value} evidence requires a file")
        else:
            storage_ref = SENSOR_STORAGE_REF

        record = self.store.add_evidence(
            SosEvidence(
                sos_event_id=sos_id,
                kind=kind.value,
                storage_ref=storage_ref,
                mime_type=mime_type,
                size_bytes=len(content) if content else None,
                sensor_data=sensor_data,
                captured_at=captured_at or now,
            )
        )
        logger.info("Evidence %s (%s) attached to SOS %s", record.id, kind.value, sos_id)
        self.publisher.publish(
            "sos.evidence",
            event.user_id,
            {"sos_id": sos_id, "evidence_id": record.id, "kind": kind.value},
        )
        return record

    def list_evidence(self, sos_id: str, kind: EvidenceKind | None = None) -> EvidenceSummary:
        if self.store.get_event(sos_id) is None:
            raise SosEventNotFound("SOS not found")
        everything = self.store.list_evidence(sos_id)
        counts = {k.value: 0 for k in EvidenceKind}
        for rec in everything:
            counts[rec.kind] = counts.get(rec.kind, 0) + 1
        if kind is not None:
            kind = EvidenceKind(kind)
            records = [r for r in everything if r.kind == kind.value]
        else:
            records = everything
        return EvidenceSummary(records=records, counts=counts)
