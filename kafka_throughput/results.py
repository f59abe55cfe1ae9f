"""
Run records and their per-scenario aggregation.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .metrics import Sample

MB = 1_048_576.0


class _Rates:
    """Rates derived from messages_processed / total_bytes / elapsed_seconds."""

    @property
    def messages_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.messages_processed / self.elapsed_seconds

    @property
    def megabytes_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.total_bytes / MB / self.elapsed_seconds

    @property
    def mean_latency_ms(self) -> float:
        if self.messages_processed <= 0:
            return 0.0
        return self.elapsed_seconds * 1000.0 / self.messages_processed

    @property
    def peak_memory_mb(self) -> float:
        return self.peak_memory_bytes / MB


@dataclass(frozen=True)
class RunRecord(_Rates):
    scenario_id: str
    scenario_name: str
    trial_index: int
    messages_processed: int
    total_bytes: int
    elapsed_seconds: float
    peak_cpu_percent: float
    peak_memory_bytes: int
    failure_count: int
    mode_label: str
    record_type: str
    window_size: int = 0
    samples: Tuple[Sample, ...] = ()
    batch_sizes: Tuple[int, ...] = ()


@dataclass(frozen=True)
class AverageRecord(_Rates):
    scenario_id: str
    scenario_name: str
    run_count: int
    messages_processed: float
    total_bytes: float
    elapsed_seconds: float
    peak_cpu_percent: float
    peak_memory_bytes: float
    failure_count: float
    mode_label: str
    record_type: str
    window_size: int = 0


def _mean(values) -> float:
    values = list(values)
    return sum(values) / len(values)


class SuiteAggregator:
    """Owns every RunRecord of one suite run, in insertion order."""

    def __init__(self):
        self.records: List[RunRecord] = []
        self._by_id: Dict[str, List[RunRecord]] = {}
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None

    def mark_started(self):
        self.started_at = datetime.now(timezone.utc)

    def mark_completed(self):
        self.completed_at = datetime.now(timezone.utc)

    def append(self, record: RunRecord):
        self.records.append(record)
        self._by_id.setdefault(record.scenario_id, []).append(record)

    def runs_for(self, scenario_id: str) -> List[RunRecord]:
        return list(self._by_id.get(scenario_id, ()))

    def scenario_ids(self) -> List[str]:
        return sorted(self._by_id)

    def average_for(self, scenario_id: str) -> Optional[AverageRecord]:
        runs = self._by_id.get(scenario_id)
        if not runs:
            return None
        first = runs[0]
        return AverageRecord(
            scenario_id=scenario_id,
            scenario_name=first.scenario_name,
            run_count=len(runs),
            messages_processed=_mean(r.messages_processed for r in runs),
            total_bytes=_mean(r.total_bytes for r in runs),
            elapsed_seconds=_mean(r.elapsed_seconds for r in runs),
            peak_cpu_percent=_mean(r.peak_cpu_percent for r in runs),
            peak_memory_bytes=_mean(r.peak_memory_bytes for r in runs),
            failure_count=_mean(r.failure_count for r in runs),
            mode_label=first.mode_label,
            record_type=first.record_type,
            window_size=first.window_size,
        )

    def averages(self) -> List[AverageRecord]:
        return [self.average_for(sid) for sid in self.scenario_ids()]

    def ordered_records(self) -> List[RunRecord]:
        """Records sorted by scenario id, then trial index."""
        return sorted(self.records, key=lambda r: (r.scenario_id, r.trial_index))
