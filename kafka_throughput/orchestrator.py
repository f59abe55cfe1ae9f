"""
Suite driver: runs the selected scenarios one trial at a time.

Trials never overlap. Each trial gets a rich status line that the runner's
progress callback keeps current, followed by a one-line summary.
"""

from typing import Optional, Sequence

from rich.console import Console
from rich.markup import escape

from .console import console as default_console
from .reporting import format_memory, format_throughput
from .results import RunRecord, SuiteAggregator
from .scenarios import Kind, Scenario

BAR_WIDTH = 20


def progress_text(scenario: Scenario, trial_index: int, count: int, elapsed: float) -> str:
    label = f"[cyan]{scenario.id}[/cyan] run {trial_index}/{scenario.trials}"
    if scenario.duration is None:
        return f"{label}  {count:,} messages  ({elapsed:.0f}s)"

    cap = scenario.duration
    fraction = min(elapsed / cap, 1.0) if cap > 0 else 1.0
    filled = int(fraction * BAR_WIDTH)
    bar = "█" * filled + "░" * (BAR_WIDTH - filled)
    remaining = max(cap - elapsed, 0.0)
    return (f"{label}  {bar} {elapsed:.0f}s / {cap:.0f}s  "
            f"({remaining:.0f}s left, {count:,} messages)")


def trial_summary(record: RunRecord) -> str:
    failures = (f"[red]{record.failure_count} failed[/red]" if record.failure_count
                else "[green]0 failed[/green]")
    return (f"  run {record.trial_index}: {record.messages_processed:,} msgs in "
            f"{record.elapsed_seconds:.2f}s  "
            f"{format_throughput(record.messages_per_second)}  "
            f"{record.megabytes_per_second:.2f} MB/s  "
            f"cpu {record.peak_cpu_percent:.1f}%  "
            f"mem {format_memory(record.peak_memory_mb)}  {failures}")


class Orchestrator:
    def __init__(self, producer_runner, consumer_runner,
                 aggregator: Optional[SuiteAggregator] = None,
                 console: Optional[Console] = None):
        self.producer_runner = producer_runner
        self.consumer_runner = consumer_runner
        self.aggregator = aggregator or SuiteAggregator()
        self.console = console or default_console

    def run(self, scenarios: Sequence[Scenario]) -> SuiteAggregator:
        self.aggregator.mark_started()
        try:
            for scenario in scenarios:
                self._run_scenario(scenario)
        finally:
            self.aggregator.mark_completed()
        return self.aggregator

    def _run_scenario(self, scenario: Scenario):
        runner = self.producer_runner if scenario.kind is Kind.PRODUCER else self.consumer_runner
        cap = f"{scenario.message_count:,} msgs"
        if scenario.duration is not None:
            cap += f" / {scenario.duration:.0f}s"

        self.console.rule(f"[bold]{scenario.id}[/bold] {escape(scenario.name)}")
        self.console.print(f"  topic [cyan]{escape(scenario.topic)}[/cyan]  cap {cap}  "
                           f"trials {scenario.trials}")

        for trial_index in range(1, scenario.trials + 1):
            with self.console.status(progress_text(scenario, trial_index, 0, 0.0)) as status:
                def on_progress(count, elapsed, trial_index=trial_index):
                    status.update(progress_text(scenario, trial_index, count, elapsed))

                record = runner.run_trial(scenario, trial_index, on_progress=on_progress)

            self.aggregator.append(record)
            self.console.print(trial_summary(record))
