"""
Event Publisher
===============
Thin wrapper over AIOKafkaProducer.

publish() returns once the record is buffered; broker acknowledgment
is reported through the returned task, which resolves to a
PublishResult and never raises.
"""

import asyncio
import logging
from dataclasses import dataclass

from aiokafka import AIOKafkaProducer

from portfolio_events.config import Settings
from portfolio_events.events.schemas import StreamEvent


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishResult:
    topic: str
    key: str | None
    partition: int | None = None
    offset: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class EventPublisher:
    """Async Kafka producer for the contact and visitor streams."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._producer: AIOKafkaProducer | None = None
        self._started = False
        self._pending: set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._started:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        self._producer = AIOKafkaProducer(
            bootstrap_servers=self.settings.kafka_bootstrap_servers,
            client_id=f"{self.settings.consumer_group}-producer",
            acks="all",
            enable_idempotence=True,
            retry_backoff_ms=500,
            request_timeout_ms=30000,
        )
        await self._producer.start()
        self._started = True
        logger.info(
            "Event publisher started",
            extra={"topic": self.settings.contact_events_topic},
        )

    async def stop(self) -> None:
        if self._producer is None:
            return

        logger.info("Stopping event publisher")
        try:
            if self._pending:
                await asyncio.gather(*self._pending)
            await self._producer.stop()
        except Exception as e:
            logger.error("Error stopping event publisher", extra={"error": str(e)}, exc_info=True)
        finally:
            self._producer = None
            self._started = False

    @property
    def is_started(self) -> bool:
        return self._started and self._producer is not None

    async def publish(self, topic: str, key: str, event: StreamEvent) -> asyncio.Task:
        """Publish ``event`` under partition ``key``."""
        return await self.publish_raw(
            topic,
            key,
            event.to_bytes(),
            log_extra={"event_type": event.event_type, "event_id": event.event_id},
        )

    async def publish_raw(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
        log_extra: dict | None = None,
    ) -> asyncio.Task:
        extra = {"topic": topic, "key": key, **(log_extra or {})}
        headers_list = [(k, v.encode("utf-8")) for k, v in (headers or {}).items()] or None

        try:
            if not self.is_started:
                raise RuntimeError("Producer not started")
            delivery = await self._producer.send(
                topic,
                key=key.encode("utf-8") if key is not None else None,
                value=value,
                headers=headers_list,
            )
        except Exception as e:
            logger.error("Failed to enqueue event", extra={**extra, "error": str(e)}, exc_info=True)
            return self._track(self._failed(topic, key, e))

        return self._track(self._await_delivery(delivery, topic, key, extra))

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @staticmethod
    async def _failed(topic: str, key: str | None, error: Exception) -> PublishResult:
        return PublishResult(topic=topic, key=key, error=str(error))

    @staticmethod
    async def _await_delivery(delivery, topic: str, key: str | None, extra: dict) -> PublishResult:
        try:
            metadata = await delivery
        except Exception as e:
            logger.error("Failed to publish event", extra={**extra, "error": str(e)}, exc_info=True)
            return PublishResult(topic=topic, key=key, error=str(e))

        logger.info(
            "Published event",
            extra={**extra, "partition": metadata.partition, "offset": metadata.offset},
        )
        return PublishResult(
            topic=topic,
            key=key,
            partition=metadata.partition,
            offset=metadata.offset,
        )
