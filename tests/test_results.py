import pytest

from kafka_throughput.results import MB, RunRecord, SuiteAggregator


def run(scenario_id, trial, messages=1000, total_bytes=MB, elapsed=2.0, cpu=10.0,
        memory=100 * MB, failures=0, name=None):
    return RunRecord(
        scenario_id=scenario_id,
        scenario_name=name or f"Scenario {scenario_id}",
        trial_index=trial,
        messages_processed=messages,
        total_bytes=int(total_bytes),
        elapsed_seconds=elapsed,
        peak_cpu_percent=cpu,
        peak_memory_bytes=int(memory),
        failure_count=failures,
        mode_label="callback",
        record_type="specific",
    )


def test_derived_rates():
    record = run("T1.1", 1, messages=500, total_bytes=2 * MB, elapsed=4.0, memory=64 * MB)

    assert record.messages_per_second == 125.0
    assert record.megabytes_per_second == 0.5
    assert record.mean_latency_ms == 8.0
    assert record.peak_memory_mb == 64.0


def test_rates_guard_against_zero():
    record = run("T1.1", 1, messages=0, elapsed=0.0)

    assert record.messages_per_second == 0.0
    assert record.megabytes_per_second == 0.0
    assert record.mean_latency_ms == 0.0


def test_average_is_the_arithmetic_mean():
    aggregator = SuiteAggregator()
    aggregator.append(run("T2.1", 1, messages=100, elapsed=1.0, cpu=10.0, failures=1, name="first"))
    aggregator.append(run("T2.1", 2, messages=200, elapsed=2.0, cpu=30.0, failures=0, name="second"))
    aggregator.append(run("T2.1", 3, messages=600, elapsed=6.0, cpu=20.0, failures=2, name="third"))

    avg = aggregator.average_for("T2.1")

    assert avg.run_count == 3
    assert avg.scenario_name == "first"
    assert avg.messages_processed == 300.0
    assert avg.elapsed_seconds == 3.0
    assert avg.peak_cpu_percent == pytest.approx(20.0)
    assert avg.failure_count == 1.0
    assert avg.total_bytes == MB
    assert avg.messages_per_second == 100.0


def test_unknown_scenario_has_no_average():
    aggregator = SuiteAggregator()
    assert aggregator.average_for("T9.9") is None
    assert aggregator.runs_for("T9.9") == []
    assert aggregator.averages() == []


def test_ordering():
    aggregator = SuiteAggregator()
    for record in [run("T3.2", 1), run("T1.1", 2), run("T1.1", 1), run("T10.1", 1)]:
        aggregator.append(record)

    assert aggregator.scenario_ids() == ["T1.1", "T10.1", "T3.2"]
    assert [r.trial_index for r in aggregator.runs_for("T1.1")] == [2, 1]
    assert [(r.scenario_id, r.trial_index) for r in aggregator.ordered_records()] == [
        ("T1.1", 1), ("T1.1", 2), ("T10.1", 1), ("T3.2", 1),
    ]
    assert [a.scenario_id for a in aggregator.averages()] == ["T1.1", "T10.1", "T3.2"]


def test_suite_timestamps():
    aggregator = SuiteAggregator()
    aggregator.mark_started()
    aggregator.mark_completed()

    assert aggregator.started_at <= aggregator.completed_at
    assert aggregator.started_at.tzinfo is not None
