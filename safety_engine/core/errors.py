"""Typed errors raised by the stateful layer.

Every error carries a stable ``code`` and the HTTP status the API maps it to,
so callers can branch on the failure kind without parsing messages.
"""

from __future__ import annotations


class SafetyEngineError(Exception):
    """Base class for all engine errors."""

    code = "engine_error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.replace("_", " ").capitalize())
        self.message = str(self.args[0])


class NotAuthenticated(SafetyEngineError):
    code = "not_authenticated"
    status_code = 401


class RateLimitExceeded(SafetyEngineError):
    code = "rate_limit_exceeded"
    status_code = 429

    def __init__(self, message: str | None = None, retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ConflictingActiveEvent(SafetyEngineError):
    code = "conflicting_active_event"
    status_code = 409

    def __init__(self, message: str | None = None, active_event_id: str | None = None) -> None:
        super().__init__(message)
        self.active_event_id = active_event_id


class InvalidTransition(SafetyEngineError):
    code = "invalid_transition"
    status_code = 409


class MaxEscalationReached(SafetyEngineError):
    code = "max_escalation_reached"
    status_code = 409


class ZoneDataInvalid(SafetyEngineError):
    code = "zone_data_invalid"
    status_code = 422


class EvidenceUploadFailed(SafetyEngineError):
    code = "evidence_upload_failed"
    status_code = 502


class SosEventNotFound(SafetyEngineError):
    code = "sos_not_found"
    status_code = 404


class StorageError(SafetyEngineError):
    """Persistence or transport failure, kept apart from domain errors."""

    code = "storage_error"
    status_code = 503


class DispatchError(Exception):
    """Raised by a notification dispatcher that could not reach its target."""
