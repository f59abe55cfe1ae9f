"""
Producer trial runner.

Three send modes share one loop skeleton (termination caps, progress, final
drain); only the way a message is handed to the client differs:

  callback    produce() with a delivery observer, never waits
  await_each  produce_and_await() per message
  window      up to N sends in flight, assembled before a batch deadline,
              then awaited together
"""

import time
from concurrent.futures import Future, wait
from typing import List, Optional, Tuple

from .broker import ACK_TIMEOUT, Ack, DeliveryStatus
from .config import BenchmarkSettings
from .console import warn
from .delivery import DeliveryEvent, DeliveryLog, ERROR, SUCCESS, utc_now_iso
from .errors import ProduceFailed
from .metrics import AtomicCounter, ProgressCallback, ProgressTicker, ResourceSampler, TimeSeriesRecorder
from .records import payload_for
from .results import RunRecord
from .scenarios import Scenario, SendMode


class _Trial:
    """Mutable state of one producer trial."""

    def __init__(self, scenario: Scenario, trial_index: int, client, payload, codec,
                 log: DeliveryLog, ticker: ProgressTicker):
        self.scenario = scenario
        self.trial_index = trial_index
        self.client = client
        self.factory = payload.factory
        self.encode = payload.encode
        self.codec = codec
        self.log = log
        self.ticker = ticker
        self.record = payload.factory.build_template()
        self.sent = 0
        self.total_bytes = 0
        self.failures = AtomicCounter()
        self.batch_sizes: List[int] = []
        self.start = time.perf_counter()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.start

    def should_continue(self) -> bool:
        if self.sent >= self.scenario.message_count:
            return False
        duration = self.scenario.duration
        return duration is None or self.elapsed < duration

    def next_sequence(self) -> int:
        self.sent += 1
        return self.sent

    def encode_message(self, seq: int) -> Tuple[bytes, bytes]:
        self.factory.stamp_header(self.record, seq, utc_now_iso())
        value = self.encode(self.record, self.scenario.topic)
        return self.codec.encode_key(seq), value

    def progress(self):
        self.ticker.tick(self.sent, self.elapsed)

    # -- outcomes -----------------------------------------------------------

    def success(self, seq: int, ack: Ack):
        self.log.append(DeliveryEvent(
            level=SUCCESS,
            scenario_id=self.scenario.id,
            trial_index=self.trial_index,
            message_key=seq,
            partition=ack.partition,
            offset=ack.offset,
            timestamp=utc_now_iso(),
            status=ack.status.value,
        ))

    def failure(self, seq: int, ack: Ack, default_code: str = "DeliveryError"):
        self.failures.increment()
        self.log.append(DeliveryEvent(
            level=ERROR,
            scenario_id=self.scenario.id,
            trial_index=self.trial_index,
            message_key=seq,
            partition=ack.partition,
            offset=ack.offset,
            timestamp=utc_now_iso(),
            status=ack.status.value,
            error_code=ack.error_code or default_code,
            error_reason=ack.error_reason or ack.status.value,
        ))

    def rejected(self, seq: int, exc: ProduceFailed):
        self.failure(seq, Ack(key=None, partition=-1, offset=-1,
                              status=DeliveryStatus.NOT_PERSISTED,
                              error_code=exc.code, error_reason=exc.reason))


class ProducerRunner:
    def __init__(self, client_factory, codec, delivery_log: DeliveryLog,
                 settings: BenchmarkSettings):
        self.client_factory = client_factory
        self.codec = codec
        self.delivery_log = delivery_log
        self.settings = settings
        self._modes = {
            SendMode.CALLBACK: self._send_callback,
            SendMode.AWAIT_EACH: self._send_await_each,
            SendMode.WINDOW: self._send_window,
        }

    def run_trial(self, scenario: Scenario, trial_index: int,
                  on_progress: Optional[ProgressCallback] = None) -> RunRecord:
        payload = payload_for(scenario, self.codec)
        recorder = TimeSeriesRecorder()
        ticker = ProgressTicker(recorder, on_progress)
        send = self._modes[scenario.send_mode]

        with ResourceSampler(self.settings.sample_interval_ms / 1000.0) as sampler:
            client = self.client_factory()
            trial = _Trial(scenario, trial_index, client, payload, self.codec,
                           self.delivery_log, ticker)
            try:
                send(trial)
            finally:
                try:
                    remaining = client.drain(self.settings.drain_timeout_seconds)
                    if remaining:
                        warn(f"FlushTimeoutExceeded: {scenario.id} trial {trial_index} "
                             f"still had {remaining} message(s) in flight after "
                             f"{self.settings.drain_timeout_seconds:.0f}s")
                finally:
                    client.close()
            elapsed = trial.elapsed

        recorder.finish(trial.sent, elapsed)
        return RunRecord(
            scenario_id=scenario.id,
            scenario_name=scenario.name,
            trial_index=trial_index,
            messages_processed=trial.sent,
            total_bytes=trial.total_bytes,
            elapsed_seconds=elapsed,
            peak_cpu_percent=sampler.peak_cpu_percent,
            peak_memory_bytes=sampler.peak_memory_bytes,
            failure_count=trial.failures.value,
            mode_label=scenario.mode_label,
            record_type=scenario.record_type.value,
            window_size=scenario.window_size,
            samples=recorder.samples,
            batch_sizes=tuple(trial.batch_sizes),
        )

    # -- send modes ---------------------------------------------------------

    def _send_callback(self, trial: _Trial):
        topic = trial.scenario.topic

        while trial.should_continue():
            seq = trial.next_sequence()

            def observe(ack: Ack, seq=seq):
                # runs on the client's delivery thread
                if ack.failed:
                    trial.failure(seq, ack)
                else:
                    trial.success(seq, ack)

            try:
                key, value = trial.encode_message(seq)
                trial.client.produce(topic, key, value, observe)
                trial.total_bytes += len(value)
            except ProduceFailed as e:
                trial.rejected(seq, e)
            trial.progress()

    def _send_await_each(self, trial: _Trial):
        topic = trial.scenario.topic

        while trial.should_continue():
            seq = trial.next_sequence()
            try:
                key, value = trial.encode_message(seq)
                ack = trial.client.produce_and_await(topic, key, value)
            except ProduceFailed as e:
                trial.rejected(seq, e)
            else:
                trial.total_bytes += len(value)
                if ack.status is DeliveryStatus.NOT_PERSISTED or ack.error_code == ACK_TIMEOUT:
                    trial.failure(seq, ack, default_code="NotPersisted")
                else:
                    trial.success(seq, ack)
            trial.progress()

    def _send_window(self, trial: _Trial):
        scenario = trial.scenario
        topic = scenario.topic
        batch_timeout = scenario.batch_timeout_ms / 1000.0
        delay = scenario.inter_message_delay_ms / 1000.0

        while trial.should_continue():
            batch = min(scenario.window_size, scenario.message_count - trial.sent)
            if batch <= 0:
                break

            in_flight: List[Tuple[int, Future]] = []
            attempted = 0
            deadline = time.monotonic() + batch_timeout
            while (attempted < batch
                   and time.monotonic() < deadline
                   and trial.should_continue()):
                seq = trial.next_sequence()
                attempted += 1
                future = Future()
                try:
                    key, value = trial.encode_message(seq)
                    trial.client.produce(topic, key, value, future.set_result)
                    trial.total_bytes += len(value)
                    in_flight.append((seq, future))
                except ProduceFailed as e:
                    trial.rejected(seq, e)
                if delay:
                    time.sleep(delay)

            if attempted == 0:
                break
            trial.batch_sizes.append(attempted)

            wait([f for _, f in in_flight], timeout=self.settings.drain_timeout_seconds)
            for seq, future in in_flight:
                if not future.done():
                    trial.failure(seq, Ack(key=None, partition=-1, offset=-1,
                                           status=DeliveryStatus.POSSIBLY_PERSISTED,
                                           error_code=ACK_TIMEOUT,
                                           error_reason="no acknowledgement before the drain deadline"))
                    continue
                ack = future.result()
                if ack.status is DeliveryStatus.NOT_PERSISTED:
                    trial.failure(seq, ack, default_code="NotPersisted")
                else:
                    trial.success(seq, ack)

            trial.progress()
