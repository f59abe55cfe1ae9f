"""
Per-trial measurement primitives.

  AtomicCounter       failure counter shared with delivery threads
  ResourceSampler     peak CPU% / RSS of this process on a timer thread
  TimeSeriesRecorder  ~1 Hz (elapsed, cumulative) samples for charts
  ProgressTicker      throttled progress fan-out to recorder and UI
"""

import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import psutil


class AtomicCounter:
    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


# ---------------------------------------------------------------------------
# Resource sampling
# ---------------------------------------------------------------------------

class ResourceSampler:
    """Track peak CPU and RSS of the current process.

    CPU% is normalised by core count: process CPU time delta divided by wall
    time delta and the number of logical cores.

    Usage:
        with ResourceSampler(interval=0.25) as sampler:
            run_trial()
        sampler.peak_cpu_percent, sampler.peak_memory_bytes
    """

    def __init__(self, interval: float = 0.25, pid: Optional[int] = None):
        self.interval = interval
        self.process = psutil.Process(pid or os.getpid())
        self.cores = psutil.cpu_count() or 1
        self.lock = threading.Lock()
        self.thread = None
        self._stop = threading.Event()
        self._peak_cpu = 0.0
        self._peak_rss = 0
        self._last_cpu = 0.0
        self._last_wall = 0.0

    def _cpu_seconds(self) -> float:
        times = self.process.cpu_times()
        return times.user + times.system

    def _tick(self):
        try:
            cpu = self._cpu_seconds()
            wall = time.perf_counter()
            rss = self.process.memory_info().rss
        except (psutil.Error, OSError):
            return

        with self.lock:
            wall_delta = wall - self._last_wall
            if wall_delta > 0:
                cpu_percent = (cpu - self._last_cpu) / wall_delta / self.cores * 100.0
                self._peak_cpu = max(self._peak_cpu, cpu_percent)
            self._peak_rss = max(self._peak_rss, rss)
            self._last_cpu = cpu
            self._last_wall = wall

    def _sample_loop(self):
        while not self._stop.wait(self.interval):
            self._tick()

    def start(self):
        try:
            self._last_cpu = self._cpu_seconds()
            self._peak_rss = self.process.memory_info().rss
        except (psutil.Error, OSError):
            pass
        self._last_wall = time.perf_counter()
        self._stop.clear()
        self.thread = threading.Thread(target=self._sample_loop, daemon=True)
        self.thread.start()

    def stop(self):
        self._stop.set()
        if self.thread:
            self.thread.join(timeout=5)
            self.thread = None
        # closing reading so sub-interval trials still report something
        self._tick()

    def __enter__(self) -> "ResourceSampler":
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
        return False

    @property
    def peak_cpu_percent(self) -> float:
        with self.lock:
            return self._peak_cpu

    @property
    def peak_memory_bytes(self) -> int:
        with self.lock:
            return self._peak_rss


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    elapsed_seconds: float
    cumulative_messages: int


class TimeSeriesRecorder:
    """Throttled (elapsed, cumulative) series, strictly ordered in time."""

    def __init__(self, min_interval: float = 1.0):
        self.min_interval = min_interval
        self._samples: List[Sample] = []

    def record(self, cumulative: int, elapsed: float):
        if self._samples:
            last = self._samples[-1]
            if elapsed - last.elapsed_seconds < self.min_interval:
                return
            if cumulative < last.cumulative_messages:
                return
        self._samples.append(Sample(elapsed, cumulative))

    def finish(self, cumulative: int, elapsed: float):
        if self._samples:
            last = self._samples[-1]
            if elapsed <= last.elapsed_seconds or cumulative < last.cumulative_messages:
                return
        self._samples.append(Sample(elapsed, cumulative))

    @property
    def samples(self) -> Tuple[Sample, ...]:
        return tuple(self._samples)


ProgressCallback = Callable[[int, float], None]


class ProgressTicker:
    """Forward progress at most once per interval to the recorder and caller."""

    def __init__(self, recorder: TimeSeriesRecorder, on_progress: Optional[ProgressCallback],
                 interval: float = 1.0):
        self.recorder = recorder
        self.on_progress = on_progress
        self.interval = interval
        self._last = 0.0

    def tick(self, count: int, elapsed: float):
        if elapsed - self._last < self.interval:
            return
        self._last = elapsed
        self.recorder.record(count, elapsed)
        if self.on_progress:
            self.on_progress(count, elapsed)
