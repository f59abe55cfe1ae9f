import os

import pytest
from click.testing import CliRunner

from kafka_throughput.cli import build_codec, main
from kafka_throughput.codec import LocalCodec
from kafka_throughput.config import SchemaRegistrySettings, Settings

SMALL_SUITE = """\
benchmark:
  message_count: 20
  duration_minutes: null
  producer_trials: 1
  window_trials: 1
  consumer_trials: 1
  window_sizes: [5]
  inter_message_delay_ms: 1
  commit_batch_size: 10
  formats: [text]
  sizes: [small]
  sample_interval_ms: 50
"""


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("COLUMNS", "200")
    for name in list(os.environ):
        if name.startswith("THROUGHPUT_"):
            monkeypatch.delenv(name)
    return tmp_path


def test_list_scenarios(workdir):
    result = CliRunner().invoke(main, ["--list", "--test", "T3.1-T3.3"])

    assert result.exit_code == 0
    assert "T3.1" in result.output
    assert "T3.3" in result.output
    assert "T3.4" not in result.output


def test_empty_selection_exits_2(workdir):
    result = CliRunner().invoke(main, ["--list", "--test", "T9.9"])
    assert result.exit_code == 2


def test_conflicting_kind_flags_exit_1(workdir):
    result = CliRunner().invoke(main, ["--producer-only", "--consumer-only", "--list"])
    assert result.exit_code == 1


def test_missing_config_exits_1(workdir):
    result = CliRunner().invoke(main, ["--config", str(workdir / "absent.yaml"), "--list"])
    assert result.exit_code == 1


def test_invalid_config_exits_1(workdir):
    (workdir / "throughput.yaml").write_text("benchmark:\n  window_sizes: [0]\n")
    result = CliRunner().invoke(main, ["--list"])
    assert result.exit_code == 1


def test_loopback_suite_writes_reports(workdir):
    (workdir / "throughput.yaml").write_text(SMALL_SUITE)
    results_dir = workdir / "out"

    result = CliRunner().invoke(main, ["--loopback", "--results-dir", str(results_dir)])

    assert result.exit_code == 0, result.output
    csv_files = list(results_dir.glob("throughput-results-*.csv"))
    assert len(csv_files) == 1
    rows = csv_files[0].read_text().splitlines()
    run_rows = [r for r in rows[1:] if ",AVG," not in r]
    avg_rows = [r for r in rows[1:] if ",AVG," in r]
    assert [r.split(",")[0] for r in run_rows] == ["T1.1", "T2.1", "T3.1", "T3B.1", "T4.1", "T4.2"]
    assert len(avg_rows) == 6
    assert all(r.split(",")[3] == "20" for r in run_rows)
    assert len(list(results_dir.glob("throughput-samples-*.json"))) == 1
    assert len(list(results_dir.glob("delivery-logs-*.jsonl"))) == 1


def test_producer_only_with_duration_override(workdir):
    (workdir / "throughput.yaml").write_text(SMALL_SUITE)

    result = CliRunner().invoke(main, ["--loopback", "--producer-only", "--test", "T1.1",
                                       "--duration", "0.5", "--results-dir", "out"])

    assert result.exit_code == 0, result.output
    rows = next((workdir / "out").glob("throughput-results-*.csv")).read_text().splitlines()
    assert rows[1].startswith("T1.1,")


def test_build_codec_without_registry(workdir):
    settings = Settings(schema_registry=SchemaRegistrySettings(cache_dir=str(workdir / "cache")))

    assert isinstance(build_codec(settings), LocalCodec)
    assert not (workdir / "cache").exists()

    build_codec(settings, refresh_schemas=True)
    assert (workdir / "cache" / "test-avro-small-value.avsc").exists()
