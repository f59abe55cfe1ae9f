import pytest

from kafka_throughput.codec import LocalCodec
from kafka_throughput.config import BenchmarkSettings
from kafka_throughput.consumer import ConsumerRunner
from kafka_throughput.delivery import DeliveryLog
from kafka_throughput.loopback import LoopbackBroker
from kafka_throughput.producer import ProducerRunner
from kafka_throughput.records import factory_for
from kafka_throughput.scenarios import (
    CommitMode,
    Format,
    Kind,
    RecordType,
    Scenario,
    SendMode,
    Size,
)


def fast_settings(**overrides) -> BenchmarkSettings:
    values = dict(
        poll_timeout_seconds=0.5,
        drain_timeout_seconds=5.0,
        sample_interval_ms=50,
    )
    values.update(overrides)
    return BenchmarkSettings(**values)


def producer_scenario(send_mode=SendMode.CALLBACK, fmt=Format.BINARY, size=Size.SMALL,
                      record_type=RecordType.SPECIFIC, message_count=100, **kwargs) -> Scenario:
    if fmt is Format.TEXT:
        record_type = RecordType.NOT_APPLICABLE
    if send_mode is SendMode.WINDOW:
        kwargs.setdefault("window_size", 10)
        kwargs.setdefault("batch_timeout_ms", 5000)
    return Scenario(
        id=kwargs.pop("id", "T1.1"),
        name=kwargs.pop("name", "Producer under test"),
        kind=Kind.PRODUCER,
        format=fmt,
        size=size,
        record_type=record_type,
        send_mode=send_mode,
        topic=kwargs.pop("topic", "bench-topic"),
        message_count=message_count,
        trials=kwargs.pop("trials", 1),
        **kwargs,
    )


def consumer_scenario(commit_mode=CommitMode.PER_MESSAGE, fmt=Format.BINARY, size=Size.SMALL,
                      message_count=100, **kwargs) -> Scenario:
    if commit_mode is CommitMode.BATCHED:
        kwargs.setdefault("commit_batch_size", 50)
        kwargs.setdefault("commit_interval_ms", 60_000)
    return Scenario(
        id=kwargs.pop("id", "T4.1"),
        name=kwargs.pop("name", "Consumer under test"),
        kind=Kind.CONSUMER,
        format=fmt,
        size=size,
        commit_mode=commit_mode,
        topic=kwargs.pop("topic", "bench-topic"),
        message_count=message_count,
        trials=kwargs.pop("trials", 1),
        **kwargs,
    )


@pytest.fixture
def codec():
    return LocalCodec()


@pytest.fixture
def broker():
    return LoopbackBroker()


@pytest.fixture
def delivery_log():
    return DeliveryLog()


@pytest.fixture
def producer_runner(broker, codec, delivery_log):
    return ProducerRunner(broker.client, codec, delivery_log, fast_settings())


@pytest.fixture
def consumer_runner(broker, codec):
    return ConsumerRunner(broker.client, codec, fast_settings())


def preload(broker, codec, topic, count, fmt=Format.BINARY, size=Size.SMALL):
    """Write count encoded records straight into a loopback topic."""
    factory = factory_for(fmt, size, RecordType.GENERIC)
    encode = codec.value_encoder(fmt, size)
    record = factory.build_template()
    entries = []
    for seq in range(1, count + 1):
        factory.stamp_header(record, seq, "2026-01-01T00:00:00+00:00")
        entries.append((codec.encode_key(seq), encode(record, topic)))
    broker.preload(topic, entries)
    return entries
