from dataclasses import replace

import pytest

from kafka_throughput.config import BenchmarkSettings, Settings
from kafka_throughput.errors import ConfigInvalid, EmptySelection
from kafka_throughput.scenarios import (
    CommitMode,
    Format,
    Kind,
    RecordType,
    SendMode,
    Size,
    enumerate_scenarios,
    matches_filter,
    select_scenarios,
)

from conftest import consumer_scenario, producer_scenario


def settings_with(**benchmark) -> Settings:
    return Settings(benchmark=BenchmarkSettings(**benchmark))


def test_default_matrix_shape():
    scenarios = enumerate_scenarios(Settings())
    by_prefix = {}
    for s in scenarios:
        by_prefix.setdefault(s.prefix, []).append(s)

    assert list(by_prefix) == ["T1", "T2", "T3", "T3B", "T4"]
    assert len(by_prefix["T1"]) == 4
    assert len(by_prefix["T2"]) == 4
    assert len(by_prefix["T3"]) == 12
    assert len(by_prefix["T3B"]) == 12
    assert len(by_prefix["T4"]) == 8
    assert [s.id for s in by_prefix["T3"]][:3] == ["T3.1", "T3.2", "T3.3"]


def test_ids_are_unique_and_stable():
    settings = settings_with(binary_record_types=("specific", "generic"))
    first = [s.id for s in enumerate_scenarios(settings)]
    second = [s.id for s in enumerate_scenarios(settings)]

    assert first == second
    assert len(first) == len(set(first))


def test_scenario_fields_follow_the_group():
    scenarios = {s.id: s for s in enumerate_scenarios(Settings())}

    first = scenarios["T1.1"]
    assert first.name == "Producer Avro Small Specific Callback"
    assert first.send_mode is SendMode.CALLBACK
    assert first.record_type is RecordType.SPECIFIC
    assert first.topic == "test-avro-small-specificrecord"
    assert first.duration == 60.0
    assert first.trials == 3

    text_await = scenarios["T2.3"]
    assert text_await.format is Format.TEXT
    assert text_await.record_type is RecordType.NOT_APPLICABLE
    assert text_await.topic == "test-json-small"

    window = scenarios["T3.2"]
    assert window.window_size == 10
    assert window.batch_timeout_ms == 5000
    assert window.inter_message_delay_ms == 0
    assert window.name == "Batch Avro Small Specific Window-10"

    delayed = scenarios["T3B.1"]
    assert delayed.inter_message_delay_ms == 100
    assert delayed.name.startswith("Arrival ")

    per_message, batched = scenarios["T4.1"], scenarios["T4.2"]
    assert per_message.commit_mode is CommitMode.PER_MESSAGE
    assert per_message.commit_batch_size == 0
    assert batched.commit_mode is CommitMode.BATCHED
    assert batched.commit_batch_size == 5000
    assert batched.trials == 5
    assert batched.name == "Consumer Avro Small BatchCommit"


def test_consumer_reads_first_binary_record_type_topic():
    settings = settings_with(binary_record_types=("generic", "specific"), groups=("consumer",))
    consumers = enumerate_scenarios(settings)

    assert consumers[0].topic == "test-avro-small"
    assert {s.kind for s in consumers} == {Kind.CONSUMER}


def test_generic_record_type_selects_generic_topic():
    settings = settings_with(binary_record_types=("generic",), groups=("callback",),
                             formats=("binary",), sizes=("large",))
    (only,) = enumerate_scenarios(settings)

    assert only.topic == "test-avro-large"
    assert only.name == "Producer Avro Large Generic Callback"


def test_duration_unset_means_count_only():
    scenarios = enumerate_scenarios(settings_with(duration_minutes=None))
    assert all(s.duration is None for s in scenarios)


@pytest.mark.parametrize("benchmark, message", [
    (dict(message_count=0), "message_count"),
    (dict(duration_minutes=0), "duration_minutes"),
    (dict(producer_trials=0), "callback"),
    (dict(window_sizes=()), "empty window size"),
    (dict(window_sizes=(10, 0)), "window sizes"),
    (dict(batch_timeout_ms=0), "batch_timeout_ms"),
    (dict(inter_message_delay_ms=0), "inter_message_delay_ms"),
    (dict(commit_batch_size=0, commit_interval_ms=0), "batched commits"),
    (dict(formats=()), "no format/size"),
    (dict(binary_record_types=()), "record type"),
    (dict(groups=("callback", "bogus")), "bogus"),
    (dict(sizes=("medium",)), "medium"),
])
def test_invalid_configuration(benchmark, message):
    with pytest.raises(ConfigInvalid, match=message):
        enumerate_scenarios(settings_with(**benchmark))


def test_window_settings_ignored_when_window_groups_disabled():
    settings = settings_with(window_sizes=(), groups=("callback", "consumer"))
    assert len(enumerate_scenarios(settings)) == 12


def test_scenario_invariants():
    with pytest.raises(ConfigInvalid, match="window size"):
        producer_scenario(SendMode.CALLBACK, window_size=5)
    with pytest.raises(ConfigInvalid, match="batch timeout"):
        producer_scenario(SendMode.WINDOW, batch_timeout_ms=0)
    with pytest.raises(ConfigInvalid, match="consumers only"):
        producer_scenario(SendMode.AWAIT_EACH, commit_batch_size=5)
    with pytest.raises(ConfigInvalid, match="batched"):
        consumer_scenario(CommitMode.PER_MESSAGE, commit_batch_size=5)
    with pytest.raises(ConfigInvalid, match="producers only"):
        consumer_scenario(CommitMode.BATCHED, inter_message_delay_ms=5)
    with pytest.raises(ConfigInvalid, match="message cap"):
        producer_scenario(message_count=0)

    scenario = producer_scenario()
    with pytest.raises(ConfigInvalid, match="send mode"):
        replace(scenario, commit_mode=CommitMode.BATCHED)


@pytest.mark.parametrize("scenario_id, test_filter, expected", [
    ("T1.1", "T1.1", True),
    ("T1.1", "t1.1", True),
    ("T1.10", "T1.1", False),
    ("T3.10", "T3.9-T3.12", True),
    ("T3.8", "T3.9-T3.12", False),
    ("T3B.10", "T3.9-T3.12", False),
    ("T3B.2", "t3b.1-T3B.3", True),
    ("T2.4", "T1.1, T2.4", True),
    ("T2.1", "T1.1,T2.4", False),
    ("T1.2", "T1.1-T2.4", False),
])
def test_matches_filter(scenario_id, test_filter, expected):
    assert matches_filter(scenario_id, test_filter) is expected


def test_range_selects_exactly_the_prefix_and_interval():
    scenarios = enumerate_scenarios(Settings())
    selected = select_scenarios(scenarios, "T3.2-T3.11")

    assert [s.id for s in selected] == [f"T3.{n}" for n in range(2, 12)]


def test_kind_filter_intersects_with_id_filter():
    scenarios = enumerate_scenarios(Settings())

    consumers = select_scenarios(scenarios, kind=Kind.CONSUMER)
    assert [s.id for s in consumers] == [f"T4.{n}" for n in range(1, 9)]

    mixed = select_scenarios(scenarios, "T1.1,T4.2", kind=Kind.PRODUCER)
    assert [s.id for s in mixed] == ["T1.1"]

    with pytest.raises(EmptySelection, match="consumers only"):
        select_scenarios(scenarios, "T1.1", kind=Kind.CONSUMER)


def test_empty_selection():
    with pytest.raises(EmptySelection, match="T9.9"):
        select_scenarios(enumerate_scenarios(Settings()), "T9.9")


def test_mode_label_and_prefix():
    window = producer_scenario(SendMode.WINDOW, id="T3B.12", size=Size.LARGE)
    assert window.mode_label == "window"
    assert window.prefix == "T3B"
    assert consumer_scenario(CommitMode.BATCHED).mode_label == "batched"
