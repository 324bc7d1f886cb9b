"""
Stream Consumer
===============
Consumer-group runtime shared by the contact and visitor handlers.

Each fetched batch is split by partition: records of one partition are
handled serially (preserving per-key order), partitions run concurrently.
Handlers return a HandleOutcome; RETRY is retried in place with
exponential backoff, and POISON (or an exhausted RETRY) is forwarded to
the dead-letter topic. Offsets are committed once the whole batch is done.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from portfolio_events.config import Settings


logger = logging.getLogger(__name__)


class HandleOutcome(str, Enum):
    SUCCESS = "SUCCESS"    # processed, commit
    SKIPPED = "SKIPPED"    # intentionally ignored (duplicate, unknown type), commit
    RETRY = "RETRY"        # transient failure, try again
    POISON = "POISON"      # will never succeed, dead-letter


@dataclass(frozen=True)
class StreamMessage:
    topic: str
    partition: int
    offset: int
    key: str | None
    value: bytes | None
    timestamp: int | None = None


def from_consumer_record(record: ConsumerRecord) -> StreamMessage:
    key = record.key
    if isinstance(key, bytes):
        key = key.decode("utf-8", errors="replace")
    return StreamMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        key=key,
        value=record.value,
        timestamp=record.timestamp,
    )


class EventHandler(Protocol):
    async def handle(self, message: StreamMessage) -> HandleOutcome:
        ...


class StreamConsumer:
    """Runs one handler against one topic inside the configured consumer group."""

    def __init__(
        self,
        settings: Settings,
        topic: str,
        handler: EventHandler,
        publisher=None,
        group_id: str | None = None,
    ):
        self.settings = settings
        self.topic = topic
        self.handler = handler
        self.publisher = publisher
        self.group_id = group_id or settings.consumer_group
        self.dead_letter_topic = settings.dead_letter_topic(topic)
        self.max_retries = settings.consumer_max_retries
        self.retry_backoff = settings.consumer_retry_backoff_seconds
        self._consumer: AIOKafkaConsumer | None = None
        self._running = False

    async def start(self) -> None:
        if self._consumer is not None:
            logger.warning("Consumer already started, ignoring duplicate start call")
            return

        self._consumer = AIOKafkaConsumer(
            self.topic,
            bootstrap_servers=self.settings.kafka_bootstrap_servers,
            group_id=self.group_id,
            client_id=f"{self.group_id}-{self.topic}",
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )
        await self._consumer.start()
        self._running = True
        logger.info(
            "Consumer started",
            extra={"topic": self.topic, "group_id": self.group_id},
        )

    async def stop(self) -> None:
        self._running = False
        if self._consumer is None:
            return

        try:
            await self._consumer.stop()
            logger.info("Consumer stopped", extra={"topic": self.topic})
        except Exception:
            logger.error("Error stopping consumer", extra={"topic": self.topic}, exc_info=True)
        finally:
            self._consumer = None

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None

    async def run(self) -> None:
        """Fetch-process-commit loop; returns when stop() is called."""
        while self.is_running:
            try:
                batch = await self._consumer.getmany(timeout_ms=1000)
                if not batch:
                    continue
                await self.process_batch(batch)
                await self._consumer.commit()
            except asyncio.CancelledError:
                logger.info("Consumer loop cancelled", extra={"topic": self.topic})
                raise
            except Exception:
                logger.error("Error in consumer loop", extra={"topic": self.topic}, exc_info=True)
                await asyncio.sleep(1)

    async def process_batch(self, batch: dict[TopicPartition, list[ConsumerRecord]]) -> None:
        await asyncio.gather(*(
            self._process_partition(records) for records in batch.values()
        ))

    async def _process_partition(self, records: list[ConsumerRecord]) -> None:
        for record in records:
            await self.process_message(from_consumer_record(record))

    async def process_message(self, message: StreamMessage) -> HandleOutcome:
        extra = {
            "topic": message.topic,
            "partition": message.partition,
            "offset": message.offset,
            "key": message.key,
        }
        attempt = 0
        error = None

        while True:
            attempt += 1
            try:
                outcome = await self.handler.handle(message)
                error = None
            except Exception as e:
                logger.error(
                    "Handler raised, treating as retryable",
                    extra={**extra, "attempt": attempt},
                    exc_info=True,
                )
                outcome, error = HandleOutcome.RETRY, str(e)

            if outcome != HandleOutcome.RETRY or attempt > self.max_retries:
                break

            delay = self.retry_backoff * (2 ** (attempt - 1))
            logger.warning(
                "Retrying message in %.2fs", delay,
                extra={**extra, "attempt": attempt},
            )
            await asyncio.sleep(delay)

        if outcome in (HandleOutcome.RETRY, HandleOutcome.POISON):
            await self._dead_letter(message, outcome, error)

        logger.debug("Message handled", extra={**extra, "outcome": outcome.value})
        return outcome

    async def _dead_letter(self, message: StreamMessage, outcome: HandleOutcome, error: str | None) -> None:
        extra = {
            "topic": message.topic,
            "partition": message.partition,
            "offset": message.offset,
            "outcome": outcome.value,
        }
        if self.dead_letter_topic is None or self.publisher is None:
            logger.error("Dropping unprocessable message (no dead-letter topic)", extra=extra)
            return

        await self.publisher.publish_raw(
            self.dead_letter_topic,
            message.key,
            message.value or b"",
            headers={
                "x-error": error or outcome.value,
                "x-error-outcome": outcome.value,
                "x-source-partition": str(message.partition),
                "x-source-offset": str(message.offset),
            },
        )
        logger.warning(
            "Message routed to dead-letter topic",
            extra={**extra, "topic": self.dead_letter_topic},
        )
