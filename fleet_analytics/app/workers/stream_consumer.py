"""
Stream Consumer Worker.

Pulls telemetry events from Kafka and hands them to the event dispatcher.

- Batches come from getmany(); each partition in a batch is processed by
  its own task, in offset order within the partition.
- Offsets are committed manually after a whole batch has been handled,
  so delivery is at-least-once.
- Transient storage failures are retried with exponential backoff. When
  retries run out the worker stops without committing the batch.
- stop() lets the in-flight batch finish, commits it, then closes the
  transport.

Run with: python -m fleet_analytics.app.workers.stream_consumer
"""

import asyncio
import json
import logging
import signal
from typing import Any, Dict, List, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from fleet_analytics.app.core.config import settings
from fleet_analytics.app.core.exceptions import StorageUnavailableError
from fleet_analytics.app.core.observability import configure_logging
from fleet_analytics.app.db.session import AsyncSessionLocal, engine
from fleet_analytics.app.services.event_dispatcher import EventDispatcher, HandleOutcome

logger = logging.getLogger("fleet_analytics.consumer")


def build_kafka_consumer(config=settings) -> AIOKafkaConsumer:
    return AIOKafkaConsumer(
        *config.kafka_topics,
        bootstrap_servers=config.kafka_bootstrap_servers,
        group_id=config.kafka_group_id,
        client_id=config.kafka_client_id,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )


def decode_record(record: ConsumerRecord) -> Optional[Any]:
    """JSON-decode a record value. Returns None (and logs) when it cannot be decoded."""
    try:
        return json.loads(record.value)
    except (TypeError, ValueError) as e:
        logger.error(
            "Skipping undecodable record",
            extra={"topic": record.topic, "partition": record.partition, "offset": record.offset, "error": str(e)}
        )
        return None


class StreamConsumer:

    def __init__(
        self,
        dispatcher: EventDispatcher,
        consumer: AIOKafkaConsumer,
        max_retries: int = None,
        retry_backoff_seconds: float = None,
        poll_timeout_ms: int = None
    ):
        self.dispatcher = dispatcher
        self.consumer = consumer
        self.max_retries = settings.consumer_max_retries if max_retries is None else max_retries
        self.retry_backoff_seconds = (
            settings.consumer_retry_backoff_seconds if retry_backoff_seconds is None else retry_backoff_seconds
        )
        self.poll_timeout_ms = settings.consumer_poll_timeout_ms if poll_timeout_ms is None else poll_timeout_ms
        self.running = False
        self.processed = 0

    def stop(self):
        """Request a graceful drain. Safe to call from a signal handler."""
        if self.running:
            logger.info("Stopping consumer after in-flight batch")
        self.running = False

    async def run(self):
        """
        Consume until stop() is called.

        Raises:
            StorageUnavailableError: Storage stayed unavailable after all retries
        """
        await self.consumer.start()
        self.running = True
        logger.info("Consumer started", extra={"topics": list(self.consumer.subscription())})

        try:
            while self.running:
                batch = await self.consumer.getmany(timeout_ms=self.poll_timeout_ms)
                if not batch:
                    continue
                await self._process_batch(batch)
                await self.consumer.commit()
        finally:
            self.running = False
            await self.consumer.stop()
            logger.info("Consumer closed", extra={"processed": self.processed})

    async def _process_batch(self, batch: Dict[TopicPartition, List[ConsumerRecord]]):
        results = await asyncio.gather(
            *(self._process_partition(tp, records) for tp, records in batch.items()),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Batch failed, offsets not committed", extra={"error": str(result)})
                raise result

    async def _process_partition(self, tp: TopicPartition, records: List[ConsumerRecord]):
        for record in records:
            payload = decode_record(record)
            if payload is None:
                continue
            outcome = await self._handle_with_retry(record.topic, payload)
            self.processed += 1
            logger.debug(
                "Handled record",
                extra={"topic": record.topic, "partition": tp.partition, "offset": record.offset, "outcome": outcome.value}
            )

    async def _handle_with_retry(self, topic: str, payload: Any) -> HandleOutcome:
        attempt = 0
        while True:
            try:
                return await self.dispatcher.handle(topic, payload)
            except StorageUnavailableError as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Storage unavailable, retrying",
                    extra={"topic": topic, "attempt": attempt, "delay_seconds": delay, "error": e.message}
                )
                await asyncio.sleep(delay)


async def main():
    configure_logging(settings.log_level)

    worker = StreamConsumer(EventDispatcher(AsyncSessionLocal, settings), build_kafka_consumer(settings))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        await engine.dispose()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
