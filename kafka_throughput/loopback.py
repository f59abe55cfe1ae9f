"""
In-memory loopback broker.

Stands in for a Kafka cluster in dry runs (--loopback) and in the test
suite. Every topic is a single partition; produced values are appended when
their acknowledgement fires, so a consumer only ever sees persisted records.

Usage:
    broker = LoopbackBroker(ack_latency=0.1)
    client = broker.client()          # one client per trial
    client.produce_and_await("t", b"k", b"v")
    broker.records("t")               # [(b"k", b"v")]
"""

import heapq
import itertools
import threading
import time
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from .broker import Ack, ConsumedRecord, DeliveryStatus, OnDelivery, PartitionEnd, PollResult
from .errors import CommitFailed, ProduceFailed


class LoopbackBroker:
    """Shared state: topic logs, committed offsets and injected faults."""

    def __init__(
        self,
        ack_latency: float = 0.0,
        not_persisted_keys: Iterable[bytes] = (),
        possibly_persisted_keys: Iterable[bytes] = (),
        rejected_keys: Iterable[bytes] = (),
        failing_commits: int = 0,
    ):
        self.ack_latency = ack_latency
        self.not_persisted_keys = set(not_persisted_keys)
        self.possibly_persisted_keys = set(possibly_persisted_keys)
        self.rejected_keys = set(rejected_keys)
        self.failing_commits = failing_commits

        self._cond = threading.Condition()
        self._logs: Dict[str, List[Tuple[Optional[bytes], bytes]]] = defaultdict(list)
        self._committed: Dict[Tuple[str, str], int] = {}
        self.commit_log: Dict[str, List[int]] = defaultdict(list)

    def client(self) -> "LoopbackClient":
        return LoopbackClient(self)

    def preload(self, topic: str, records: Iterable[Tuple[Optional[bytes], bytes]]):
        with self._cond:
            self._logs[topic].extend(records)
            self._cond.notify_all()

    def records(self, topic: str) -> List[Tuple[Optional[bytes], bytes]]:
        with self._cond:
            return list(self._logs[topic])

    def committed(self, group_id: str, topic: str) -> Optional[int]:
        with self._cond:
            return self._committed.get((group_id, topic))

    # -- used by clients ----------------------------------------------------

    def _outcome(self, key: Optional[bytes]):
        if key in self.not_persisted_keys:
            return DeliveryStatus.NOT_PERSISTED, "_MSG_TIMED_OUT_QUEUE", "message was never transmitted"
        if key in self.possibly_persisted_keys:
            return DeliveryStatus.POSSIBLY_PERSISTED, "_MSG_TIMED_OUT", "message timed out in flight"
        return DeliveryStatus.PERSISTED, None, None

    def _append(self, topic: str, key: Optional[bytes], value: bytes) -> Ack:
        status, code, reason = self._outcome(key)
        with self._cond:
            if status is DeliveryStatus.NOT_PERSISTED:
                offset = -1
            else:
                log = self._logs[topic]
                log.append((key, value))
                offset = len(log) - 1
                self._cond.notify_all()
        return Ack(key=key, partition=0, offset=offset, status=status,
                   error_code=code, error_reason=reason)

    def _read(self, topic: str, position: int, timeout: float):
        """Return the record at position, or None once the wait times out."""
        with self._cond:
            log = self._logs[topic]
            if position >= len(log):
                self._cond.wait_for(lambda: position < len(self._logs[topic]), timeout)
            if position < len(log):
                return log[position]
            return None

    def _end_offset(self, topic: str) -> int:
        with self._cond:
            return len(self._logs[topic])

    def _commit(self, group_id: str, topic: str, next_offset: int):
        with self._cond:
            if self.failing_commits > 0:
                self.failing_commits -= 1
                raise CommitFailed("injected commit failure")
            self._committed[(group_id, topic)] = next_offset
            self.commit_log[group_id].append(next_offset)


class LoopbackClient:
    """BrokerClient bound to a LoopbackBroker.

    Acknowledgements are delivered by a per-client thread after the
    broker's ack latency, in due-time order.
    """

    def __init__(self, broker: LoopbackBroker):
        self.broker = broker
        self._cond = threading.Condition()
        self._pending: List = []
        self._seq = itertools.count()
        self._in_flight = 0
        self.running = False
        self.thread = None

        self._topic: Optional[str] = None
        self._group_id: Optional[str] = None
        self._decoder = None
        self._position = 0
        self._eof_reported = False

    # -- producer -----------------------------------------------------------

    def _ensure_thread(self):
        if self.thread is None:
            self.running = True
            self.thread = threading.Thread(target=self._delivery_loop, daemon=True)
            self.thread.start()

    def _delivery_loop(self):
        while True:
            with self._cond:
                while self.running and (not self._pending or self._pending[0][0] > time.monotonic()):
                    timeout = self._pending[0][0] - time.monotonic() if self._pending else None
                    self._cond.wait(timeout)
                if not self.running:
                    return
                _, _, topic, key, value, callback = heapq.heappop(self._pending)

            ack = self.broker._append(topic, key, value)
            callback(ack)

            with self._cond:
                self._in_flight -= 1
                self._cond.notify_all()

    def _schedule(self, topic: str, key: bytes, value: bytes, callback: OnDelivery):
        if key in self.broker.rejected_keys:
            raise ProduceFailed("message rejected by local queue", code="_INVALID_ARG")
        self._ensure_thread()
        due = time.monotonic() + self.broker.ack_latency
        with self._cond:
            heapq.heappush(self._pending, (due, next(self._seq), topic, key, value, callback))
            self._in_flight += 1
            self._cond.notify_all()

    def produce(self, topic: str, key: bytes, value: bytes, on_delivery: OnDelivery):
        self._schedule(topic, key, value, on_delivery)

    def produce_and_await(self, topic: str, key: bytes, value: bytes) -> Ack:
        done = threading.Event()
        result = {}

        def on_delivery(ack):
            result["ack"] = ack
            done.set()

        self._schedule(topic, key, value, on_delivery)
        done.wait()
        return result["ack"]

    def drain(self, timeout: float) -> int:
        deadline = time.monotonic() + timeout
        with self._cond:
            while self._in_flight:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            return self._in_flight

    # -- consumer -----------------------------------------------------------

    def subscribe(self, topic: str, group_id: str, value_decoder):
        self._topic = topic
        self._group_id = group_id
        self._decoder = value_decoder
        committed = self.broker.committed(group_id, topic)
        self._position = committed if committed is not None else 0
        self._eof_reported = False

    def poll(self, timeout: float) -> PollResult:
        if not self._eof_reported and self._position >= self.broker._end_offset(self._topic):
            self._eof_reported = True
            return PartitionEnd(self._topic, 0, self._position)

        entry = self.broker._read(self._topic, self._position, timeout)
        if entry is None:
            return None

        offset = self._position
        self._position += 1
        self._eof_reported = False
        key, raw = entry
        value = self._decoder(raw, self._topic)
        return ConsumedRecord(self._topic, 0, offset, key, value)

    def commit(self, record: Optional[ConsumedRecord] = None):
        next_offset = record.offset + 1 if record is not None else self._position
        self.broker._commit(self._group_id, self._topic, next_offset)

    # -- lifecycle ----------------------------------------------------------

    def close(self):
        with self._cond:
            self.running = False
            self._cond.notify_all()
        if self.thread:
            self.thread.join(timeout=5)
            self.thread = None
