"""Redis Streams consumer-group reader used by scheduler-driven workers."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Coroutine, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


EventHandler = Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]]


class EventConsumer:
    """
    Consume events from a Redis Stream through a consumer group.

    A message is acknowledged once its handler returns, or immediately when no
    handler is registered for its type. A handler that raises leaves the
    message pending so it is replayed on the next start.

    Example:
        consumer = EventConsumer(
            redis_url="redis://localhost:6379",
            stream_name="scheduler-events",
            group_name="reservation-service",
            consumer_name="reservation-worker-1",
        )
        consumer.register_handler("reminder.sent", handle_reminder_sent)
        await consumer.start()
    """

    def __init__(
        self,
        redis_url: str,
        stream_name: str,
        group_name: str,
        consumer_name: str,
        *,
        block_ms: int = 5000,
        count: int = 10,
    ) -> None:
        self._redis_url = redis_url
        self._stream_name = stream_name
        self._group_name = group_name
        self._consumer_name = consumer_name
        self._block_ms = block_ms
        self._count = count
        self._handlers: dict[str, EventHandler] = {}
        self._client: Optional[aioredis.Redis] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type] = handler
        logger.info("Registered handler for event type: %s", event_type)

    async def _ensure_consumer_group(self) -> None:
        try:
            await self._client.xgroup_create(
                name=self._stream_name,
                groupname=self._group_name,
                id="0",
                mkstream=True,
            )
            logger.info("Created consumer group '%s' for stream '%s'", self._group_name, self._stream_name)
        except aioredis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    @staticmethod
    def _decode(data: dict[bytes, bytes]) -> tuple[str, dict[str, Any]]:
        event_type = data.get(b"event_type", b"").decode("utf-8")
        payload = json.loads(data.get(b"payload", b"{}").decode("utf-8") or "{}")
        if not isinstance(payload, dict):
            raise ValueError(f"Payload of {event_type!r} is not a JSON object")
        return event_type, payload

    async def _process_message(self, message_id: bytes, data: dict[bytes, bytes]) -> bool:
        """Dispatch one message. Returns ``True`` when it was acknowledged."""
        try:
            event_type, payload = self._decode(data)
            handler = self._handlers.get(event_type)
            if handler:
                logger.debug("Processing %s: %s", event_type, message_id.decode())
                await handler(event_type, payload)
            else:
                logger.debug("No handler for event type: %s", event_type)

            await self._client.xack(self._stream_name, self._group_name, message_id)
            return True
        except Exception:
            logger.error("Error processing message %s", message_id, exc_info=True)
            return False

    async def _read_pending_messages(self) -> None:
        """Replay messages delivered to this consumer but never acknowledged."""
        try:
            pending = await self._client.xpending_range(
                name=self._stream_name,
                groupname=self._group_name,
                min="-",
                max="+",
                count=self._count,
                consumername=self._consumer_name,
            )
        except Exception:
            logger.error("Error reading pending messages", exc_info=True)
            return

        if pending:
            logger.info("Found %d pending messages to process", len(pending))

        for entry in pending or []:
            message_id = entry["message_id"]
            messages = await self._client.xrange(self._stream_name, min=message_id, max=message_id)
            if messages:
                _, data = messages[0]
                await self._process_message(message_id, data)

    async def start(self) -> None:
        """Consume until :meth:`stop` is called or the task is cancelled."""
        if self._running:
            logger.warning("Consumer already running")
            return

        self._running = True
        self._client = aioredis.Redis.from_url(self._redis_url)

        try:
            await self._ensure_consumer_group()
            logger.info("Consumer '%s' started on stream '%s'", self._consumer_name, self._stream_name)
            await self._read_pending_messages()

            while self._running:
                try:
                    messages = await self._client.xreadgroup(
                        groupname=self._group_name,
                        consumername=self._consumer_name,
                        streams={self._stream_name: ">"},
                        count=self._count,
                        block=self._block_ms,
                    )
                    for _stream, stream_messages in messages or []:
                        for message_id, data in stream_messages:
                            await self._process_message(message_id, data)
                except asyncio.CancelledError:
                    logger.info("Consumer task cancelled")
                    break
                except Exception:
                    logger.error("Error in consumer loop", exc_info=True)
                    await asyncio.sleep(1)
        finally:
            self._running = False
            if self._client:
                await self._client.aclose()
            logger.info("Consumer '%s' stopped", self._consumer_name)

    async def stop(self) -> None:
        self._running = False
        logger.info("Stopping consumer...")


async def cleanup_consumer(
    consumer: Optional[EventConsumer],
    task: Optional[asyncio.Task],
    log: logging.Logger,
    *,
    timeout: float = 5.0,
) -> None:
    """Stop a consumer started in a lifespan and wait for its task to finish."""
    if consumer is not None:
        try:
            await consumer.stop()
        except Exception as exc:
            log.warning("Error stopping event consumer: %s", exc)

    if task is None or task.done():
        return

    try:
        await asyncio.wait_for(task, timeout=timeout)
    except asyncio.TimeoutError:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.warning("Event consumer did not stop within %.1fs, task cancelled", timeout)
    except asyncio.CancelledError:
        pass
