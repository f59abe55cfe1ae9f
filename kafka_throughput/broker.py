"""
Broker client surface used by the trial runners, and its confluent-kafka
implementation.

One client serves one trial: a producer trial calls produce / drain / close,
a consumer trial calls subscribe / poll / commit / close. Delivery observers
run on the client's own I/O thread, never on the driver thread.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union

from confluent_kafka import Consumer as KafkaConsumer
from confluent_kafka import KafkaError, KafkaException, TopicPartition
from confluent_kafka import Producer as KafkaProducer

from .config import KafkaSettings
from .errors import CommitFailed, ConsumeFailure, ProduceFailed

# code of the synthetic ack for a send that was never answered
ACK_TIMEOUT = "AckTimeout"


class DeliveryStatus(str, Enum):
    PERSISTED = "Persisted"
    POSSIBLY_PERSISTED = "PossiblyPersisted"
    NOT_PERSISTED = "NotPersisted"


@dataclass(frozen=True)
class Ack:
    key: Optional[bytes]
    partition: int
    offset: int
    status: DeliveryStatus
    error_code: Optional[str] = None
    error_reason: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error_code is not None


@dataclass(frozen=True)
class ConsumedRecord:
    topic: str
    partition: int
    offset: int
    key: Optional[bytes]
    value: Any


@dataclass(frozen=True)
class PartitionEnd:
    topic: str
    partition: int
    offset: int


PollResult = Union[ConsumedRecord, PartitionEnd, None]
OnDelivery = Callable[[Ack], None]


class BrokerClient(Protocol):
    def produce(self, topic: str, key: bytes, value: bytes, on_delivery: OnDelivery) -> None: ...

    def produce_and_await(self, topic: str, key: bytes, value: bytes) -> Ack: ...

    def drain(self, timeout: float) -> int: ...

    def subscribe(self, topic: str, group_id: str, value_decoder) -> None: ...

    def poll(self, timeout: float) -> PollResult: ...

    def commit(self, record: Optional[ConsumedRecord] = None) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# confluent-kafka client
# ---------------------------------------------------------------------------

def _security_config(settings: KafkaSettings) -> dict:
    conf = {}
    if settings.security_protocol and settings.security_protocol.upper() != "PLAINTEXT":
        conf["security.protocol"] = settings.security_protocol
    if settings.sasl_username:
        conf["sasl.mechanism"] = settings.sasl_mechanism
        conf["sasl.username"] = settings.sasl_username
        conf["sasl.password"] = settings.sasl_password
    return conf


def producer_config(settings: KafkaSettings) -> dict:
    conf = {
        "bootstrap.servers": settings.bootstrap_servers,
        "acks": settings.acks,
        "enable.idempotence": True,
        "linger.ms": settings.linger_ms,
        "batch.size": settings.batch_size,
        "compression.type": settings.compression_type,
        "log_level": 3,
    }
    conf.update(_security_config(settings))
    return conf


def consumer_config(settings: KafkaSettings, group_id: str) -> dict:
    conf = {
        "bootstrap.servers": settings.bootstrap_servers,
        "group.id": group_id,
        "auto.offset.reset": "earliest",
        "enable.auto.commit": False,
        "enable.partition.eof": True,
        "fetch.max.bytes": 50 * 1024 * 1024,
        "max.partition.fetch.bytes": 10 * 1024 * 1024,
        "log_level": 3,
    }
    conf.update(_security_config(settings))
    return conf


def ack_from_delivery(err: Optional[KafkaError], msg) -> Ack:
    if err is None:
        status = DeliveryStatus.PERSISTED
    elif err.code() == KafkaError._MSG_TIMED_OUT:
        # timed out locally; the broker may still have written it
        status = DeliveryStatus.POSSIBLY_PERSISTED
    else:
        status = DeliveryStatus.NOT_PERSISTED
    return Ack(
        key=msg.key() if msg is not None else None,
        partition=msg.partition() if msg is not None else -1,
        offset=msg.offset() if msg is not None else -1,
        status=status,
        error_code=err.name() if err is not None else None,
        error_reason=err.str() if err is not None else None,
    )


class KafkaBrokerClient:
    """BrokerClient over confluent-kafka.

    The producer is polled by a daemon thread so delivery callbacks fire
    while the driver keeps producing.
    """

    def __init__(self, settings: KafkaSettings, enqueue_timeout: float = 30.0,
                 await_timeout: float = 60.0):
        self.settings = settings
        self.enqueue_timeout = enqueue_timeout
        self.await_timeout = await_timeout
        self._producer: Optional[KafkaProducer] = None
        self._consumer: Optional[KafkaConsumer] = None
        self._decoder = None
        self.running = False
        self.thread = None

    # -- producer -----------------------------------------------------------

    def _ensure_producer(self) -> KafkaProducer:
        if self._producer is None:
            self._producer = KafkaProducer(producer_config(self.settings))
            self.running = True
            self.thread = threading.Thread(target=self._poll_loop, daemon=True)
            self.thread.start()
        return self._producer

    def _poll_loop(self):
        while self.running:
            self._producer.poll(0.1)

    def _enqueue(self, topic: str, key: bytes, value: bytes, callback):
        producer = self._ensure_producer()
        deadline = time.monotonic() + self.enqueue_timeout
        while True:
            try:
                producer.produce(topic, key=key, value=value, on_delivery=callback)
                return
            except BufferError:
                # local queue full, let deliveries drain
                if time.monotonic() >= deadline:
                    raise ProduceFailed("local producer queue is full", code="QueueFull")
                producer.poll(0.05)
            except KafkaException as e:
                err = e.args[0] if e.args else None
                code = err.name() if isinstance(err, KafkaError) else "ProduceFailed"
                raise ProduceFailed(str(e), code=code) from e

    def produce(self, topic: str, key: bytes, value: bytes, on_delivery: OnDelivery):
        self._enqueue(topic, key, value, lambda err, msg: on_delivery(ack_from_delivery(err, msg)))

    def produce_and_await(self, topic: str, key: bytes, value: bytes) -> Ack:
        done = threading.Event()
        result = {}

        def on_delivery(err, msg):
            result["ack"] = ack_from_delivery(err, msg)
            done.set()

        self._enqueue(topic, key, value, on_delivery)
        if not done.wait(self.await_timeout):
            return Ack(key=key, partition=-1, offset=-1,
                       status=DeliveryStatus.POSSIBLY_PERSISTED,
                       error_code=ACK_TIMEOUT,
                       error_reason=f"no acknowledgement within {self.await_timeout:.0f}s")
        return result["ack"]

    def drain(self, timeout: float) -> int:
        if self._producer is None:
            return 0
        return self._producer.flush(timeout)

    # -- consumer -----------------------------------------------------------

    def subscribe(self, topic: str, group_id: str, value_decoder):
        self._consumer = KafkaConsumer(consumer_config(self.settings, group_id))
        self._decoder = value_decoder
        self._consumer.subscribe([topic])

    def poll(self, timeout: float) -> PollResult:
        msg = self._consumer.poll(timeout)
        if msg is None:
            return None

        err = msg.error()
        if err is not None:
            if err.code() == KafkaError._PARTITION_EOF:
                return PartitionEnd(msg.topic(), msg.partition(), msg.offset())
            raise ConsumeFailure(err.str(), code=err.name())

        value = self._decoder(msg.value(), msg.topic())
        return ConsumedRecord(msg.topic(), msg.partition(), msg.offset(), msg.key(), value)

    def commit(self, record: Optional[ConsumedRecord] = None):
        try:
            if record is None:
                self._consumer.commit(asynchronous=False)
            else:
                offsets = [TopicPartition(record.topic, record.partition, record.offset + 1)]
                self._consumer.commit(offsets=offsets, asynchronous=False)
        except KafkaException as e:
            raise CommitFailed(str(e)) from e

    # -- lifecycle ----------------------------------------------------------

    def close(self):
        self.running = False
        if self.thread:
            self.thread.join(timeout=5)
            self.thread = None
        if self._consumer is not None:
            self._consumer.close()
            self._consumer = None
        self._producer = None
