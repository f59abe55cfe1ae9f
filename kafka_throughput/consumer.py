"""
Consumer trial runner.

Every trial joins a fresh consumer group, reads the topic from the earliest
offset with auto-commit disabled, and commits either after every record or
in batches (every N records or every T milliseconds, whichever comes first).
"""

import time
import uuid
from typing import Optional

from .broker import PartitionEnd
from .codec import ByteAccountant
from .config import BenchmarkSettings
from .console import error, warn
from .errors import CommitFailed, ConsumeFailure
from .metrics import ProgressCallback, ProgressTicker, ResourceSampler, TimeSeriesRecorder
from .results import RunRecord
from .scenarios import CommitMode, Scenario

MAX_CONSUME_ERRORS = 100


def group_id_for(prefix: str, scenario: Scenario, trial_index: int) -> str:
    return f"{prefix}-{scenario.id}-trial-{trial_index}-{uuid.uuid4().hex}"


class ConsumerRunner:
    def __init__(self, client_factory, codec, settings: BenchmarkSettings,
                 group_prefix: str = "throughput-test"):
        self.client_factory = client_factory
        self.codec = codec
        self.settings = settings
        self.group_prefix = group_prefix

    def run_trial(self, scenario: Scenario, trial_index: int,
                  on_progress: Optional[ProgressCallback] = None) -> RunRecord:
        accountant = ByteAccountant(self.codec.value_decoder(scenario.format, scenario.size))
        recorder = TimeSeriesRecorder()
        ticker = ProgressTicker(recorder, on_progress)
        poll_timeout = self.settings.poll_timeout_seconds
        per_message = scenario.commit_mode is CommitMode.PER_MESSAGE
        batch_size = scenario.commit_batch_size
        interval = scenario.commit_interval_ms / 1000.0

        processed = 0
        failures = 0

        with ResourceSampler(self.settings.sample_interval_ms / 1000.0) as sampler:
            client = self.client_factory()
            try:
                client.subscribe(scenario.topic, group_id_for(self.group_prefix, scenario, trial_index),
                                 accountant)
                try:
                    start = time.perf_counter()
                    last_commit = start

                    while processed < scenario.message_count:
                        elapsed = time.perf_counter() - start
                        if scenario.duration is not None and elapsed >= scenario.duration:
                            break

                        try:
                            result = client.poll(poll_timeout)
                        except ConsumeFailure as e:
                            failures += 1
                            if failures > MAX_CONSUME_ERRORS:
                                error(f"{scenario.id} trial {trial_index}: aborting after "
                                      f"{failures} consume errors (last: {e.code}: {e.reason})")
                                break
                            continue

                        if result is None:
                            if scenario.duration is None:
                                warn(f"NoMessages: {scenario.id} trial {trial_index} got nothing "
                                     f"within {poll_timeout:.0f}s after {processed} message(s)")
                                break
                            # sample stalls too
                            ticker.tick(processed, time.perf_counter() - start)
                            continue
                        if isinstance(result, PartitionEnd):
                            ticker.tick(processed, time.perf_counter() - start)
                            continue

                        processed += 1

                        try:
                            if per_message:
                                client.commit(result)
                            else:
                                now = time.perf_counter()
                                count_due = batch_size > 0 and processed % batch_size == 0
                                time_due = interval > 0 and now - last_commit >= interval
                                if count_due or time_due:
                                    last_commit = now
                                    client.commit()
                        except CommitFailed as e:
                            failures += 1
                            warn(f"{scenario.id} trial {trial_index}: commit failed: {e}")

                        ticker.tick(processed, time.perf_counter() - start)

                    elapsed = time.perf_counter() - start
                finally:
                    # best-effort final commit
                    try:
                        client.commit()
                    except CommitFailed:
                        pass
            finally:
                client.close()

        recorder.finish(processed, elapsed)
        return RunRecord(
            scenario_id=scenario.id,
            scenario_name=scenario.name,
            trial_index=trial_index,
            messages_processed=processed,
            total_bytes=accountant.total_bytes(),
            elapsed_seconds=elapsed,
            peak_cpu_percent=sampler.peak_cpu_percent,
            peak_memory_bytes=sampler.peak_memory_bytes,
            failure_count=failures,
            mode_label=scenario.mode_label,
            record_type=scenario.record_type.value,
            samples=recorder.samples,
        )
