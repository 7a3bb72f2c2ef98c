"""Domain event publishing and customer notifications over Redis Streams."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publish domain events to a Redis Stream.

    Publishing never raises: a lost event is logged and the caller carries on,
    because every caller publishes after its database commit.
    """

    def __init__(
        self,
        redis_url: str,
        stream_name: str,
        *,
        maxlen: Optional[int] = 1000,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self._stream_name = stream_name
        self._maxlen = maxlen
        self._client = client if client is not None else redis.Redis.from_url(redis_url)

    @property
    def stream_name(self) -> str:
        return self._stream_name

    def publish(
        self,
        event_type: str,
        payload: Dict[str, Any],
        *,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Append an event to the stream.

        Parameters
        ----------
        event_type:
            Canonical name, e.g. ``booking.created``.
        payload:
            Serialisable body (JSON dumped, ``str`` for UUID/Decimal/date).
        metadata:
            Optional envelope metadata such as the tenant id.

        Returns ``True`` when the event reached Redis.
        """

        event = {
            "event_type": event_type,
            "payload": json.dumps(payload, default=str),
        }
        if metadata:
            event["metadata"] = json.dumps(metadata, default=str)

        try:
            self._client.xadd(
                self._stream_name,
                event,
                maxlen=self._maxlen,
                approximate=bool(self._maxlen),
            )
        except Exception:
            logger.exception("Failed to publish event '%s' to stream '%s'", event_type, self._stream_name)
            return False
        return True


class NotificationDispatcher:
    """Hand customer-facing notifications to the email/SMS worker.

    The worker consumes ``notification.*`` events from its own stream; this
    class only shapes the payloads. Dispatch is fire-and-forget.
    """

    BOOKING_PENDING = "notification.booking_pending"
    WAITLIST_OPENING = "notification.waitlist_opening"

    def __init__(self, publisher: Optional[EventPublisher]) -> None:
        self._publisher = publisher

    def _dispatch(self, event_type: str, payload: Dict[str, Any], tenant: Dict[str, Any]) -> bool:
        if self._publisher is None:
            logger.debug("No notification publisher configured, dropping %s", event_type)
            return False
        try:
            return self._publisher.publish(
                event_type,
                {**payload, "tenant": tenant},
                metadata={"tenant_id": tenant.get("id")},
            )
        except Exception:
            logger.exception("Notification dispatch failed for %s", event_type)
            return False

    def notify_booking_pending(self, booking: Dict[str, Any], tenant: Dict[str, Any]) -> bool:
        return self._dispatch(self.BOOKING_PENDING, {"booking": booking}, tenant)

    def notify_waitlist_opening(self, entry: Dict[str, Any], tenant: Dict[str, Any]) -> bool:
        return self._dispatch(self.WAITLIST_OPENING, {"entry": entry}, tenant)
