"""Escalation notifications delivered to an external webhook."""

from __future__ import annotations

import logging

import httpx

from safety_engine.core.errors import DispatchError
from safety_engine.models.sos_escalation import SosEscalation
from safety_engine.models.sos_event import SosEvent

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """POSTs each ladder row to a notification gateway.

    The gateway fans the message out to the target class (family contacts,
    police desk, emergency services, embassy). Any transport or HTTP error
    becomes a DispatchError so the row is recorded as failed.
    """

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def dispatch(self, event: SosEvent, record: SosEscalation) -> None:
        payload = {
            "sos_id": event.id,
            "user_id": event.user_id,
            "level": record.level,
            "target_class": record.target_class,
            "priority": event.priority,
            "confidence_score": event.confidence_score,
            "latitude": event.latitude,
            "longitude": event.longitude,
            "address": event.address,
            "description": event.description,
        }
        try:
            response = httpx.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise DispatchError(f"Notification gateway request failed: {exc}") from exc
        logger.debug("Gateway accepted level %s for SOS %s", record.level, event.id)
