"""
Run-summary events over RabbitMQ (aio-pika).

After a populate or download run finishes, its RunSummary can be announced as
CatalogPopulated / ManualsDownloaded so other services (monitoring, the chat
bot cache) learn that the catalog changed. Publishing is opt-in
(PUBLISH_EVENTS) and never fatal: the rows are already committed when we get
here.

Wire format is the shared envelope (camelCase keys), one durable queue per
eventType, routed through the default exchange.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aio_pika

from common.config import settings

logger = logging.getLogger("events")

EVENT_POPULATED = "CatalogPopulated"
EVENT_DOWNLOADED = "ManualsDownloaded"


@dataclass
class EventEnvelope:
    eventType: str
    eventId: str
    timestamp: str  # ISO-8601, UTC
    correlationId: Optional[str]
    source: str
    version: str
    payload: Dict[str, Any]

    def to_message(self) -> aio_pika.Message:
        return aio_pika.Message(
            body=json.dumps(asdict(self), ensure_ascii=False, default=str).encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=self.eventId,
            timestamp=datetime.fromisoformat(self.timestamp),
            correlation_id=self.correlationId,
            headers={"eventType": self.eventType, "version": self.version},
        )


def new_event(
    event_type: str,
    payload: Dict[str, Any],
    correlation_id: Optional[str] = None,
    *,
    version: str = "1.0",
    source: Optional[str] = None,
) -> EventEnvelope:
    """A fresh envelope; a run without a job id gets its own correlation id."""
    return EventEnvelope(
        eventType=event_type,
        eventId=str(uuid.uuid4()),
        timestamp=datetime.now(tz=timezone.utc).isoformat(),
        correlationId=correlation_id or f"job:{uuid.uuid4()}",
        source=source or settings.service_name,
        version=version,
        payload=payload,
    )


class _Broker:
    """Lazily opened robust connection plus one channel, shared by the process."""

    def __init__(self, url: str):
        self.url = url
        self._lock = asyncio.Lock()
        self._connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None

    def _alive(self) -> bool:
        return bool(
            self._connection and not self._connection.is_closed
            and self._channel and not self._channel.is_closed
        )

    async def channel(self) -> aio_pika.abc.AbstractChannel:
        async with self._lock:
            if not self._alive():
                logger.info("connecting to broker %s", self.url.split("@")[-1])
                self._connection = await aio_pika.connect_robust(self.url)
                self._channel = await self._connection.channel()
            return self._channel

    async def close(self) -> None:
        if self._connection and not self._connection.is_closed:
            await self._connection.close()
        self._connection = None
        self._channel = None


_broker = _Broker(settings.rabbitmq_url)


async def close() -> None:
    await _broker.close()


async def publish_event(event: EventEnvelope) -> None:
    channel = await _broker.channel()
    queue = await channel.declare_queue(event.eventType, durable=True)
    await channel.default_exchange.publish(event.to_message(), routing_key=queue.name)
    logger.info("published %s id=%s corr=%s", event.eventType, event.eventId, event.correlationId)


async def publish_run_summary(
    event_type: str,
    summary: Dict[str, Any],
    correlation_id: Optional[str] = None,
    *,
    enabled: Optional[bool] = None,
) -> bool:
    """
    Announce a finished run. Returns True when the event went out, False when
    publishing is off or the broker could not be reached (logged).
    """
    if not (settings.publish_events if enabled is None else enabled):
        return False
    try:
        await publish_event(new_event(event_type, summary, correlation_id))
    except Exception:
        logger.exception("could not publish %s", event_type)
        return False
    return True
