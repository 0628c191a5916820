"""Storage adapter for SOS events, escalation rows, evidence and zones.

The engine only talks to ``SosStore``. ``SqlAlchemySosStore`` implements it
on one SQLAlchemy session; check-and-write operations are single
transactions backed by database constraints, so concurrent writers cannot
both win.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from safety_engine.core.enums import ACTIVE_STATUSES, EscalationStatus, SosStatus
from safety_engine.core.errors import ConflictingActiveEvent, RateLimitExceeded, StorageError
from safety_engine.models.sos_escalation import SosEscalation
from safety_engine.models.sos_event import SosEvent
from safety_engine.models.sos_evidence import SosEvidence
from safety_engine.models.zone import ZoneRecord

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class SosStore(Protocol):
    def get_event(self, sos_id: str) -> SosEvent | None: ...

    def list_active_events(self, limit: int = 100) -> list[SosEvent]: ...

    def list_user_events(self, user_id: str, limit: int = 10) -> list[SosEvent]: ...

    def list_escalation_candidates(self) -> list[SosEvent]: ...

    def count_false_alarms(self, user_id: str) -> int: ...

    def create_event(
        self,
        event: SosEvent,
        first_record: SosEscalation,
        now: datetime,
        window: timedelta,
        max_in_window: int,
    ) -> SosEvent: ...

    def transition(self, event: SosEvent, from_status: str, values: dict[str, Any]) -> bool: ...

    def advance_escalation(self, event: SosEvent, from_level: int, record: SosEscalation, now: datetime) -> bool: ...

    def acknowledge_escalations(self, sos_id: str, officer_id: str, at: datetime) -> int: ...

    def set_escalation_status(
        self, record: SosEscalation, status: EscalationStatus, at: datetime, reason: str | None = None
    ) -> None: ...

    def list_escalations(self, sos_id: str) -> list[SosEscalation]: ...

    def add_evidence(self, record: SosEvidence) -> SosEvidence: ...

    def list_evidence(self, sos_id: str) -> list[SosEvidence]: ...

    def list_zones(self, kind: str | None = None) -> list[ZoneRecord]: ...


class SqlAlchemySosStore:
    """SosStore on a SQLAlchemy session (one per request)."""

    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _guarded(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Storage failure")
            raise StorageError(f"Storage failure: {e.__class__.__name__}") from e

    # ---------- Reads ----------

    def get_event(self, sos_id: str) -> SosEvent | None:
        with self._guarded():
            return self.db.get(SosEvent, sos_id)

    def list_active_events(self, limit: int = 100) -> list[SosEvent]:
        stmt = (
            select(SosEvent)
            .where(SosEvent.status.in_(_ACTIVE))
            .order_by(SosEvent.created_at.desc(), SosEvent.id.desc())
            .limit(limit)
        )
        with self._guarded():
            return list(self.db.execute(stmt).scalars().all())

    def list_user_events(self, user_id: str, limit: int = 10) -> list[SosEvent]:
        stmt = (
            select(SosEvent)
            .where(SosEvent.user_id == user_id)
            .order_by(SosEvent.created_at.desc(), SosEvent.id.desc())
            .limit(limit)
        )
        with self._guarded():
            return list(self.db.execute(stmt).scalars().all())

    def list_escalation_candidates(self) -> list[SosEvent]:
        """Unacknowledged events that can still climb the ladder."""
        stmt = select(SosEvent).where(SosEvent.status == SosStatus.TRIGGERED.value)
        with self._guarded():
            return list(self.db.execute(stmt).scalars().all())

    def count_false_alarms(self, user_id: str) -> int:
        stmt = select(func.count(SosEvent.id)).where(
            SosEvent.user_id == user_id,
            SosEvent.status == SosStatus.FALSE_ALARM.value,
        )
        with self._guarded():
            return int(self.db.execute(stmt).scalar_one())

    def list_escalations(self, sos_id: str) -> list[SosEscalation]:
        stmt = select(SosEscalation).where(SosEscalation.sos_event_id == sos_id).order_by(SosEscalation.level)
        with self._guarded():
            return list(self.db.execute(stmt).scalars().all())

    def list_evidence(self, sos_id: str) -> list[SosEvidence]:
        stmt = (
            select(SosEvidence)
            .where(SosEvidence.sos_event_id == sos_id)
            .order_by(SosEvidence.captured_at, SosEvidence.id)
        )
        with self._guarded():
            return list(self.db.execute(stmt).scalars().all())

    def list_zones(self, kind: str | None = None) -> list[ZoneRecord]:
        stmt = select(ZoneRecord).where(ZoneRecord.is_active.is_(True))
        if kind is not None:
            stmt = stmt.where(ZoneRecord.kind == kind)
        with self._guarded():
            return list(self.db.execute(stmt).scalars().all())

    # ---------- Writes ----------

    def create_event(
        self,
        event: SosEvent,
        first_record: SosEscalation,
        now: datetime,
        window: timedelta,
        max_in_window: int,
    ) -> SosEvent:
        """Rate-limit check, single-active check and insert in one transaction."""
        with self._guarded():
            recent = list(
                self.db.execute(
                    select(SosEvent.created_at)
                    .where(SosEvent.user_id == event.user_id, SosEvent.created_at >= now - window)
                    .order_by(SosEvent.created_at)
                ).scalars()
            )
            if len(recent) >= max_in_window:
                self.db.rollback()
                retry_after = as_utc(recent[0]) + window - now
                raise RateLimitExceeded(
                    f"SOS rate limit exceeded (max {max_in_window} per {int(window.total_seconds() // 60)} minutes)",
                    retry_after_seconds=max(0, int(retry_after.total_seconds())),
                )

            active_id = self.db.execute(
                select(SosEvent.id).where(SosEvent.user_id == event.user_id, SosEvent.status.in_(_ACTIVE)).limit(1)
            ).scalar_one_or_none()
            if active_id is not None:
                self.db.rollback()
                raise ConflictingActiveEvent("An SOS event is already active", active_event_id=active_id)

            try:
                self.db.add(event)
                self.db.flush()
                first_record.sos_event_id = event.id
                self.db.add(first_record)
                self.db.commit()
            except IntegrityError:
                # Lost the race against a concurrent trigger for the same user
                self.db.rollback()
                raise ConflictingActiveEvent("An SOS event is already active") from None

            self.db.refresh(event)
            self.db.refresh(first_record)
        return event

    def transition(self, event: SosEvent, from_status: str, values: dict[str, Any]) -> bool:
        """Apply ``values`` only if the event is still in ``from_status``."""
        stmt = (
            update(SosEvent)
            .where(SosEvent.id == event.id, SosEvent.status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._guarded():
            if self.db.execute(stmt).rowcount != 1:
                self.db.rollback()
                self.db.refresh(event)
                return False
            self.db.commit()
            self.db.refresh(event)
        return True

    def advance_escalation(self, event: SosEvent, from_level: int, record: SosEscalation, now: datetime) -> bool:
        """Move the event from ``from_level`` to ``record.level`` and insert the ladder row."""
        stmt = (
            update(SosEvent)
            .where(
                SosEvent.id == event.id,
                SosEvent.escalation_level == from_level,
                SosEvent.status.in_(_ACTIVE),
            )
            .values(escalation_level=record.level, last_escalated_at=now)
            .execution_options(synchronize_session=False)
        )
        with self._guarded():
            if self.db.execute(stmt).rowcount != 1:
                self.db.rollback()
                self.db.refresh(event)
                return False
            try:
                record.sos_event_id = event.id
                self.db.add(record)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                self.db.refresh(event)
                return False
            self.db.refresh(event)
            self.db.refresh(record)
        return True

    def acknowledge_escalations(self, sos_id: str, officer_id: str, at: datetime) -> int:
        stmt = (
            update(SosEscalation)
            .where(
                SosEscalation.sos_event_id == sos_id,
                SosEscalation.status.in_([EscalationStatus.PENDING.value, EscalationStatus.SENT.value]),
            )
            .values(status=EscalationStatus.ACKNOWLEDGED.value, acknowledged_by=officer_id, acknowledged_at=at)
            .execution_options(synchronize_session=False)
        )
        with self._guarded():
            count = self.db.execute(stmt).rowcount
            self.db.commit()
        return count

    def set_escalation_status(
        self, record: SosEscalation, status: EscalationStatus, at: datetime, reason: str | None = None
    ) -> None:
        with self._guarded():
            record.status = status.value
            if status == EscalationStatus.SENT:
                record.sent_at = at
            if reason is not None:
                record.failure_reason = reason
            self.db.commit()
            self.db.refresh(record)

    def add_evidence(self, record: SosEvidence) -> SosEvidence:
        with self._guarded():
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        return record
