"""
Result output: rich console tables and the on-disk artifacts.

  throughput-results-<ts>.csv     one row per run, then one AVG row per id
  delivery-logs-<ts>.jsonl        one JSON object per delivery event
  throughput-samples-<ts>.json    ~1 Hz (elapsed, cumulative) series per run
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .console import console as default_console
from .delivery import DeliveryLog
from .results import AverageRecord, SuiteAggregator

CSV_HEADER = (
    "ScenarioId,ScenarioName,Trial,MessagesProcessed,TotalBytes,ElapsedMs,"
    "MessagesPerSecond,MegabytesPerSecond,MeanLatencyMs,PeakCpuPercent,"
    "PeakMemoryMB,FailureCount"
)


def format_throughput(t: float) -> str:
    if t >= 1_000_000:
        return f"{t/1_000_000:.1f}M/s"
    elif t >= 1_000:
        return f"{t/1_000:.1f}K/s"
    else:
        return f"{t:.0f}/s"


def format_memory(mb: float) -> str:
    if mb <= 0:
        return "-"
    elif mb >= 1024:
        return f"{mb/1024:.1f} GB"
    elif mb >= 1:
        return f"{mb:.1f} MB"
    else:
        return f"{mb*1024:.0f} KB"


def timestamp_suffix(when: Optional[datetime] = None) -> str:
    return (when or datetime.now()).strftime("%Y%m%d-%H%M%S")


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

def _quoted(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _csv_row(scenario_id: str, name: str, trial: str, messages: int, total_bytes: int,
             rec) -> str:
    return ",".join([
        scenario_id,
        _quoted(name),
        trial,
        str(messages),
        str(total_bytes),
        f"{rec.elapsed_seconds * 1000:.2f}",
        f"{rec.messages_per_second:.2f}",
        f"{rec.megabytes_per_second:.4f}",
        f"{rec.mean_latency_ms:.6f}",
        f"{rec.peak_cpu_percent:.2f}",
        f"{rec.peak_memory_mb:.2f}",
        str(int(rec.failure_count)),
    ])


def csv_lines(aggregator: SuiteAggregator) -> List[str]:
    lines = [CSV_HEADER]
    for r in aggregator.ordered_records():
        lines.append(_csv_row(r.scenario_id, r.scenario_name, str(r.trial_index),
                              r.messages_processed, r.total_bytes, r))
    for avg in aggregator.averages():
        lines.append(_csv_row(avg.scenario_id, avg.scenario_name, "AVG",
                              int(avg.messages_processed), int(avg.total_bytes), avg))
    return lines


def write_csv(aggregator: SuiteAggregator, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(csv_lines(aggregator)) + "\n")
    return path


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------

def samples_document(aggregator: SuiteAggregator) -> List[Dict]:
    return [
        {
            "scenarioId": r.scenario_id,
            "trial": r.trial_index,
            "samples": [[s.elapsed_seconds, s.cumulative_messages] for s in r.samples],
        }
        for r in aggregator.ordered_records()
    ]


def write_samples(aggregator: SuiteAggregator, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(samples_document(aggregator), f, indent=2)
    return path


def write_reports(aggregator: SuiteAggregator, delivery_log: DeliveryLog,
                  results_dir: Path) -> Dict[str, Path]:
    """Write every artifact; the delivery log only when it holds events."""
    results_dir = Path(results_dir)
    results_dir.mkdir(parents=True, exist_ok=True)
    suffix = timestamp_suffix(aggregator.started_at)

    written = {
        "csv": write_csv(aggregator, results_dir / f"throughput-results-{suffix}.csv"),
        "samples": write_samples(aggregator, results_dir / f"throughput-samples-{suffix}.json"),
    }
    log_path = results_dir / f"delivery-logs-{suffix}.jsonl"
    if delivery_log.write_jsonl(log_path):
        written["delivery_log"] = log_path
    return written


# ---------------------------------------------------------------------------
# Console
# ---------------------------------------------------------------------------

def _detail_row(table: Table, rec, trial: str, style: Optional[str] = None):
    table.add_row(
        rec.scenario_id,
        escape(rec.scenario_name),
        trial,
        f"{int(rec.messages_processed):,}",
        f"{rec.elapsed_seconds:.2f}s",
        format_throughput(rec.messages_per_second),
        f"{rec.megabytes_per_second:.2f}",
        f"{rec.mean_latency_ms:.3f}",
        f"{rec.peak_cpu_percent:.1f}",
        format_memory(rec.peak_memory_mb),
        f"{rec.failure_count:g}" if isinstance(rec, AverageRecord) else str(rec.failure_count),
        style=style,
    )


def print_results(aggregator: SuiteAggregator, console: Optional[Console] = None):
    """Per-run detail table with AVG rows, then a one-row-per-scenario summary."""
    console = console or default_console

    detail = Table(title="Benchmark Runs")
    detail.add_column("Id", style="cyan")
    detail.add_column("Scenario")
    detail.add_column("Run", justify="right")
    detail.add_column("Messages", justify="right")
    detail.add_column("Elapsed", justify="right")
    detail.add_column("Msgs/s", justify="right", style="green")
    detail.add_column("MB/s", justify="right")
    detail.add_column("Latency ms", justify="right")
    detail.add_column("CPU %", justify="right")
    detail.add_column("Memory", justify="right")
    detail.add_column("Failures", justify="right")

    for scenario_id in aggregator.scenario_ids():
        for r in aggregator.runs_for(scenario_id):
            _detail_row(detail, r, str(r.trial_index))
        _detail_row(detail, aggregator.average_for(scenario_id), "AVG", style="bold")
        detail.add_section()

    console.print()
    console.print(detail)

    summary = Table(title="Averages")
    summary.add_column("Id", style="cyan")
    summary.add_column("Scenario")
    summary.add_column("Mode")
    summary.add_column("Record")
    summary.add_column("Window", justify="right")
    summary.add_column("Runs", justify="right")
    summary.add_column("Msgs/s", justify="right", style="green")
    summary.add_column("MB/s", justify="right")
    summary.add_column("Failures", justify="right")

    for avg in aggregator.averages():
        summary.add_row(
            avg.scenario_id,
            escape(avg.scenario_name),
            avg.mode_label,
            avg.record_type,
            str(avg.window_size) if avg.window_size else "-",
            str(avg.run_count),
            format_throughput(avg.messages_per_second),
            f"{avg.megabytes_per_second:.2f}",
            f"{avg.failure_count:g}",
        )

    console.print(summary)

    if aggregator.started_at and aggregator.completed_at:
        took = (aggregator.completed_at - aggregator.started_at).total_seconds()
        console.print(f"\nSuite finished in {took:.1f}s "
                      f"({len(aggregator.records)} runs, {len(aggregator.scenario_ids())} scenarios)")
