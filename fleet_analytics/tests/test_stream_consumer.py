"""
Stream consumer tests.

A FakeConsumer replays prepared getmany() batches so the worker can run
without a broker.
"""

import json
import pytest
from types import SimpleNamespace

from aiokafka.structs import TopicPartition

from fleet_analytics.app.core.exceptions import StorageUnavailableError
from fleet_analytics.app.services.event_dispatcher import HandleOutcome
from fleet_analytics.app.services.usage_stats import UsageStatsService
from fleet_analytics.app.workers.stream_consumer import StreamConsumer

SENSOR = TopicPartition("sensor-data", 0)
SENSOR_P1 = TopicPartition("sensor-data", 1)
MAINTENANCE = TopicPartition("maintenance-events", 0)


def record(tp, offset, payload):
    value = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return SimpleNamespace(topic=tp.topic, partition=tp.partition, offset=offset, value=value)


class FakeConsumer:
    def __init__(self, batches):
        self.batches = list(batches)
        self.worker = None
        self.started = False
        self.stopped = False
        self.commits = 0

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    def subscription(self):
        return {"sensor-data", "maintenance-events"}

    async def getmany(self, timeout_ms=0):
        if not self.batches:
            self.worker.stop()
            return {}
        return self.batches.pop(0)

    async def commit(self):
        self.commits += 1


class RecordingDispatcher:
    def __init__(self, failures=0):
        self.handled = []
        self.failures = failures
        self.on_handle = None

    async def handle(self, topic, payload):
        if self.failures:
            self.failures -= 1
            raise StorageUnavailableError("database is locked")
        self.handled.append((topic, payload["n"]))
        if self.on_handle:
            self.on_handle()
        return HandleOutcome.APPLIED


def make_worker(dispatcher, consumer, **kwargs):
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("retry_backoff_seconds", 0)
    worker = StreamConsumer(dispatcher, consumer, poll_timeout_ms=10, **kwargs)
    consumer.worker = worker
    return worker


@pytest.mark.asyncio
async def test_batches_are_handled_and_committed():
    consumer = FakeConsumer([
        {SENSOR: [record(SENSOR, 0, {"n": 1}), record(SENSOR, 1, {"n": 2})]},
        {MAINTENANCE: [record(MAINTENANCE, 0, {"n": 3})]},
    ])
    dispatcher = RecordingDispatcher()

    await make_worker(dispatcher, consumer).run()

    assert dispatcher.handled == [("sensor-data", 1), ("sensor-data", 2), ("maintenance-events", 3)]
    assert consumer.commits == 2
    assert consumer.started and consumer.stopped


@pytest.mark.asyncio
async def test_partition_order_is_preserved():
    consumer = FakeConsumer([{
        SENSOR: [record(SENSOR, i, {"n": i}) for i in range(5)],
        SENSOR_P1: [record(SENSOR_P1, i, {"n": 100 + i}) for i in range(5)],
    }])
    dispatcher = RecordingDispatcher()

    await make_worker(dispatcher, consumer).run()

    numbers = [n for _, n in dispatcher.handled]
    assert [n for n in numbers if n < 100] == [0, 1, 2, 3, 4]
    assert [n for n in numbers if n >= 100] == [100, 101, 102, 103, 104]


@pytest.mark.asyncio
async def test_stop_drains_in_flight_batch():
    consumer = FakeConsumer([
        {SENSOR: [record(SENSOR, i, {"n": i}) for i in range(3)]},
        {SENSOR: [record(SENSOR, 3, {"n": 3})]},
    ])
    dispatcher = RecordingDispatcher()
    worker = make_worker(dispatcher, consumer)
    dispatcher.on_handle = worker.stop

    await worker.run()

    # The whole first batch finishes and is committed; the second is never pulled
    assert [n for _, n in dispatcher.handled] == [0, 1, 2]
    assert consumer.commits == 1
    assert len(consumer.batches) == 1
    assert consumer.stopped


@pytest.mark.asyncio
async def test_storage_failures_are_retried():
    consumer = FakeConsumer([{SENSOR: [record(SENSOR, 0, {"n": 1})]}])
    dispatcher = RecordingDispatcher(failures=2)

    await make_worker(dispatcher, consumer).run()

    assert dispatcher.handled == [("sensor-data", 1)]
    assert consumer.commits == 1


@pytest.mark.asyncio
async def test_exhausted_retries_stop_without_commit():
    consumer = FakeConsumer([{SENSOR: [record(SENSOR, 0, {"n": 1})]}])
    dispatcher = RecordingDispatcher(failures=10)
    worker = make_worker(dispatcher, consumer, max_retries=2)

    with pytest.raises(StorageUnavailableError):
        await worker.run()

    assert consumer.commits == 0
    assert consumer.stopped
    assert worker.running is False


@pytest.mark.asyncio
async def test_undecodable_records_are_skipped():
    consumer = FakeConsumer([{SENSOR: [
        record(SENSOR, 0, b"{not json"),
        record(SENSOR, 1, {"n": 7}),
    ]}])
    dispatcher = RecordingDispatcher()

    await make_worker(dispatcher, consumer).run()

    assert dispatcher.handled == [("sensor-data", 7)]
    assert consumer.commits == 1


@pytest.mark.asyncio
async def test_end_to_end_with_dispatcher(dispatcher, db_session):
    readings = [
        {"vehicleId": "V1", "timestamp": "2024-01-01T10:05:00Z", "sensorType": "fuel",
         "fuelConsumed": 5.0, "distanceSinceLastReading": 50.0},
        {"vehicleId": "V1", "timestamp": "2024-01-01T10:40:00Z", "sensorType": "fuel",
         "fuelConsumed": 3.0, "distanceSinceLastReading": 30.0},
    ]
    consumer = FakeConsumer([{SENSOR: [record(SENSOR, i, r) for i, r in enumerate(readings)]}])

    worker = make_worker(dispatcher, consumer)
    await worker.run()

    bucket = (await UsageStatsService.get_vehicle_usage_stats(db_session, "V1"))[0]
    assert bucket.distance_traveled == pytest.approx(80.0)
    assert bucket.efficiency == pytest.approx(10.0)
    assert worker.processed == 2


@pytest.mark.asyncio
async def test_unprocessable_event_does_not_stop_the_worker(dispatcher, db_session):
    readings = [
        {"vehicleId": "V1", "timestamp": "9999-12-31T23:30:00Z", "sensorType": "fuel",
         "fuelConsumed": 1.0, "distanceSinceLastReading": 10.0},
        {"vehicleId": "V1", "timestamp": "2024-01-01T10:05:00Z", "sensorType": "fuel",
         "fuelConsumed": 1.0, "distanceSinceLastReading": 10.0, "sequence": 2**70},
        {"vehicleId": "V1", "timestamp": "2024-01-01T10:40:00Z", "sensorType": "fuel",
         "fuelConsumed": 2.0, "distanceSinceLastReading": 25.0},
    ]
    consumer = FakeConsumer([{SENSOR: [record(SENSOR, i, r) for i, r in enumerate(readings)]}])

    worker = make_worker(dispatcher, consumer)
    await worker.run()

    assert consumer.commits == 1
    assert worker.processed == 3
    bucket = (await UsageStatsService.get_vehicle_usage_stats(db_session, "V1"))[0]
    assert bucket.distance_traveled == pytest.approx(25.0)
