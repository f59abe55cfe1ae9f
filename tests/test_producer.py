import pytest

from kafka_throughput.broker import ACK_TIMEOUT, Ack, DeliveryStatus
from kafka_throughput.delivery import ERROR, SUCCESS
from kafka_throughput.loopback import LoopbackBroker
from kafka_throughput.producer import ProducerRunner
from kafka_throughput.scenarios import Format, RecordType, SendMode, Size

from conftest import fast_settings, producer_scenario


def runner_for(broker, codec, delivery_log, **settings):
    return ProducerRunner(broker.client, codec, delivery_log, fast_settings(**settings))


def test_callback_small_binary(producer_runner, broker, delivery_log):
    scenario = producer_scenario(SendMode.CALLBACK, message_count=1000)
    record = producer_runner.run_trial(scenario, 1)

    assert record.messages_processed == 1000
    assert record.failure_count == 0
    assert record.samples
    assert record.samples[-1].cumulative_messages <= record.messages_processed
    assert record.elapsed_seconds > 0
    assert record.peak_memory_bytes > 0
    assert record.mode_label == "callback"
    assert record.record_type == "specific"

    events = delivery_log.events()
    assert len(events) == record.messages_processed
    assert {e.level for e in events} == {SUCCESS}
    assert sorted(e.message_key for e in events) == list(range(1, 1001))

    stored = broker.records("bench-topic")
    assert len(stored) == 1000
    assert record.total_bytes == sum(len(value) for _, value in stored)


def test_callback_counts_failed_acks(codec, delivery_log):
    broker = LoopbackBroker(not_persisted_keys=[codec.encode_key(4)],
                            possibly_persisted_keys=[codec.encode_key(9)])
    runner = runner_for(broker, codec, delivery_log)

    record = runner.run_trial(producer_scenario(SendMode.CALLBACK, message_count=20), 1)

    assert record.messages_processed == 20
    assert record.failure_count == 2
    errors = [e for e in delivery_log.events() if e.level == ERROR]
    assert sorted(e.message_key for e in errors) == [4, 9]
    assert {e.error_code for e in errors} == {"_MSG_TIMED_OUT_QUEUE", "_MSG_TIMED_OUT"}
    assert len(delivery_log) == 20


def test_rejected_sends_are_failures_with_an_event(codec, delivery_log):
    broker = LoopbackBroker(rejected_keys=[codec.encode_key(2)])
    runner = runner_for(broker, codec, delivery_log)

    record = runner.run_trial(producer_scenario(SendMode.CALLBACK, message_count=5), 1)

    assert record.messages_processed == 5
    assert record.failure_count == 1
    assert len(broker.records("bench-topic")) == 4
    (rejected,) = [e for e in delivery_log.events() if e.level == ERROR]
    assert rejected.message_key == 2
    assert rejected.error_code == "_INVALID_ARG"
    assert rejected.status == "NotPersisted"


def test_await_each_waits_for_every_ack(codec, delivery_log):
    broker = LoopbackBroker(ack_latency=0.1)
    runner = runner_for(broker, codec, delivery_log)

    record = runner.run_trial(producer_scenario(SendMode.AWAIT_EACH, message_count=5), 1)

    assert record.messages_processed == 5
    assert record.failure_count == 0
    assert 0.45 <= record.elapsed_seconds < 1.5
    assert 90 <= record.mean_latency_ms < 300


def test_await_each_failures_are_not_persisted_acks(codec, delivery_log):
    broker = LoopbackBroker(
        not_persisted_keys=[codec.encode_key(3), codec.encode_key(7)],
        possibly_persisted_keys=[codec.encode_key(5)],
    )
    runner = runner_for(broker, codec, delivery_log)

    record = runner.run_trial(
        producer_scenario(SendMode.AWAIT_EACH, Format.TEXT, Size.LARGE, message_count=10), 1)

    assert record.failure_count == 2
    events = {e.message_key: e for e in delivery_log.events()}
    assert events[3].status == "NotPersisted"
    assert events[5].level == SUCCESS
    assert events[5].status == "PossiblyPersisted"
    assert len(broker.records("bench-topic")) == 8


def test_window_without_delay_fills_every_batch(producer_runner, broker):
    scenario = producer_scenario(SendMode.WINDOW, Format.TEXT, Size.LARGE, message_count=100,
                                 window_size=10)
    record = producer_runner.run_trial(scenario, 1)

    assert record.messages_processed == 100
    assert record.batch_sizes == (10,) * 10
    assert record.window_size == 10
    assert len(broker.records("bench-topic")) == 100


def test_window_last_batch_is_capped_by_remaining(producer_runner):
    scenario = producer_scenario(SendMode.WINDOW, message_count=25, window_size=10)
    record = producer_runner.run_trial(scenario, 1)

    assert record.batch_sizes == (10, 10, 5)


def test_window_deadline_cuts_batches_short(producer_runner):
    scenario = producer_scenario(SendMode.WINDOW, Format.TEXT, Size.LARGE, message_count=30,
                                 window_size=10, batch_timeout_ms=100, inter_message_delay_ms=20)
    record = producer_runner.run_trial(scenario, 1)

    assert record.messages_processed == 30
    assert sum(record.batch_sizes) == 30
    assert min(record.batch_sizes) < 10
    assert len(record.batch_sizes) > 3


def test_window_only_not_persisted_acks_fail(codec, delivery_log):
    broker = LoopbackBroker(not_persisted_keys=[codec.encode_key(1)],
                            possibly_persisted_keys=[codec.encode_key(2)])
    runner = runner_for(broker, codec, delivery_log)

    record = runner.run_trial(producer_scenario(SendMode.WINDOW, message_count=10), 1)

    assert record.failure_count == 1
    assert len(delivery_log) == 10


def test_window_unanswered_sends_time_out(codec, delivery_log):
    broker = LoopbackBroker(ack_latency=0.5)
    runner = runner_for(broker, codec, delivery_log, drain_timeout_seconds=0.05)

    record = runner.run_trial(producer_scenario(SendMode.WINDOW, message_count=3), 1)

    assert record.failure_count == 3
    assert {e.error_code for e in delivery_log.events()} == {"AckTimeout"}


def test_duration_cap_stops_the_trial(codec, delivery_log):
    broker = LoopbackBroker(ack_latency=0.05)
    runner = runner_for(broker, codec, delivery_log)
    scenario = producer_scenario(SendMode.AWAIT_EACH, message_count=10_000, duration=0.3)

    record = runner.run_trial(scenario, 1)

    assert 0 < record.messages_processed < 10_000
    assert record.elapsed_seconds <= 0.3 + 0.5


@pytest.mark.parametrize("fmt, size, record_type", [
    (Format.BINARY, Size.LARGE, RecordType.SPECIFIC),
    (Format.BINARY, Size.SMALL, RecordType.GENERIC),
    (Format.TEXT, Size.SMALL, RecordType.NOT_APPLICABLE),
])
def test_every_payload_variant_produces(producer_runner, broker, fmt, size, record_type):
    scenario = producer_scenario(SendMode.CALLBACK, fmt, size, record_type, message_count=10)
    record = producer_runner.run_trial(scenario, 2)

    assert record.trial_index == 2
    assert record.messages_processed == 10
    assert record.failure_count == 0
    assert record.total_bytes > 0


def test_progress_is_reported(codec, delivery_log):
    broker = LoopbackBroker(ack_latency=0.05)
    runner = runner_for(broker, codec, delivery_log)
    seen = []

    record = runner.run_trial(producer_scenario(SendMode.AWAIT_EACH, message_count=25), 1,
                              on_progress=lambda count, elapsed: seen.append(count))

    assert record.messages_processed == 25
    assert seen
    assert seen == sorted(seen)
    assert len(record.samples) >= 2


class UnansweredClient:
    """Answers every await with the timeout ack KafkaBrokerClient produces."""

    def produce_and_await(self, topic, key, value):
        return Ack(key=key, partition=-1, offset=-1, status=DeliveryStatus.POSSIBLY_PERSISTED,
                   error_code=ACK_TIMEOUT, error_reason="no acknowledgement within 60s")

    def drain(self, timeout):
        return 0

    def close(self):
        pass


def test_await_each_ack_timeout_is_a_failure(codec, delivery_log):
    runner = ProducerRunner(UnansweredClient, codec, delivery_log, fast_settings())

    record = runner.run_trial(producer_scenario(SendMode.AWAIT_EACH, message_count=3), 1)

    assert record.failure_count == 3
    events = delivery_log.events()
    assert {e.level for e in events} == {ERROR}
    assert {e.error_code for e in events} == {ACK_TIMEOUT}
    assert {e.status for e in events} == {"PossiblyPersisted"}
