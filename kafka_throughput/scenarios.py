"""
Scenario catalog: the benchmark matrix.

Canonical numbering, one index sequence per group:

  T1.x   callback producers     (produce + delivery observer)
  T2.x   await-each producers   (produce and wait for every ack)
  T3.x   window producers       (up to N in flight, batch deadline)
  T3B.x  window producers with a fixed inter-message delay
  T4.x   consumers              (per-message or batched commits)

Within a group: format x size x record type (binary only) x window size.
Consumers: format x size x commit mode.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from .config import Settings
from .errors import ConfigInvalid, EmptySelection


class Kind(str, Enum):
    PRODUCER = "producer"
    CONSUMER = "consumer"


class Format(str, Enum):
    BINARY = "binary"
    TEXT = "text"


class Size(str, Enum):
    SMALL = "small"
    LARGE = "large"


class SendMode(str, Enum):
    CALLBACK = "callback"
    AWAIT_EACH = "await_each"
    WINDOW = "window"


class CommitMode(str, Enum):
    PER_MESSAGE = "per_message"
    BATCHED = "batched"


class RecordType(str, Enum):
    SPECIFIC = "specific"
    GENERIC = "generic"
    NOT_APPLICABLE = "n/a"


GROUPS = ("callback", "await_each", "window", "window_delayed", "consumer")

GROUP_PREFIX = {
    "callback": "T1",
    "await_each": "T2",
    "window": "T3",
    "window_delayed": "T3B",
    "consumer": "T4",
}

FORMAT_LABEL = {Format.BINARY: "Avro", Format.TEXT: "JSON"}


@dataclass(frozen=True)
class Scenario:
    id: str
    name: str
    kind: Kind
    format: Format
    size: Size
    topic: str
    message_count: int
    trials: int
    record_type: RecordType = RecordType.NOT_APPLICABLE
    send_mode: Optional[SendMode] = None
    commit_mode: Optional[CommitMode] = None
    duration: Optional[float] = None
    window_size: int = 0
    batch_timeout_ms: int = 0
    commit_batch_size: int = 0
    commit_interval_ms: int = 0
    inter_message_delay_ms: int = 0

    def __post_init__(self):
        if self.message_count <= 0:
            raise ConfigInvalid(f"{self.id}: message cap must be positive")
        if self.duration is not None and self.duration <= 0:
            raise ConfigInvalid(f"{self.id}: duration cap must be positive")
        if self.trials <= 0:
            raise ConfigInvalid(f"{self.id}: trials must be positive")

        if self.kind is Kind.PRODUCER:
            if self.send_mode is None or self.commit_mode is not None:
                raise ConfigInvalid(f"{self.id}: a producer needs exactly one send mode")
            if (self.window_size > 0) != (self.send_mode is SendMode.WINDOW):
                raise ConfigInvalid(f"{self.id}: window size is set iff the send mode is window")
            if self.send_mode is SendMode.WINDOW and self.batch_timeout_ms <= 0:
                raise ConfigInvalid(f"{self.id}: window mode needs a positive batch timeout")
            if self.commit_batch_size or self.commit_interval_ms:
                raise ConfigInvalid(f"{self.id}: commit settings apply to consumers only")
        else:
            if self.commit_mode is None or self.send_mode is not None:
                raise ConfigInvalid(f"{self.id}: a consumer needs exactly one commit mode")
            batched = self.commit_mode is CommitMode.BATCHED
            has_batch_settings = self.commit_batch_size > 0 or self.commit_interval_ms > 0
            if batched != has_batch_settings:
                raise ConfigInvalid(
                    f"{self.id}: commit batch size/interval are set iff commits are batched"
                )
            if self.window_size or self.inter_message_delay_ms:
                raise ConfigInvalid(f"{self.id}: window settings apply to producers only")

        if min(self.window_size, self.batch_timeout_ms, self.commit_batch_size,
               self.commit_interval_ms, self.inter_message_delay_ms) < 0:
            raise ConfigInvalid(f"{self.id}: numeric parameters must not be negative")

    @property
    def mode_label(self) -> str:
        mode = self.send_mode if self.kind is Kind.PRODUCER else self.commit_mode
        return mode.value

    @property
    def prefix(self) -> str:
        return self.id.rsplit(".", 1)[0]


# ---------------------------------------------------------------------------
# Enumeration
# ---------------------------------------------------------------------------

def _parse_enum(enum_cls, values: Iterable[str], what: str) -> List:
    parsed = []
    for v in values:
        try:
            parsed.append(enum_cls(v))
        except ValueError:
            allowed = ", ".join(e.value for e in enum_cls)
            raise ConfigInvalid(f"unknown {what} '{v}' (expected one of: {allowed})")
    return parsed


def producer_topic(settings: Settings, fmt: Format, size: Size, record_type: RecordType) -> str:
    topics = settings.topics
    if fmt is Format.TEXT:
        return topics.text_small if size is Size.SMALL else topics.text_large
    if record_type is RecordType.GENERIC:
        return topics.binary_small_generic if size is Size.SMALL else topics.binary_large_generic
    return topics.binary_small_specific if size is Size.SMALL else topics.binary_large_specific


def _validate(settings: Settings, groups: Sequence[str]):
    bench = settings.benchmark
    if bench.message_count <= 0:
        raise ConfigInvalid("message_count must be positive")
    if bench.duration_minutes is not None and bench.duration_minutes <= 0:
        raise ConfigInvalid("duration_minutes must be positive when set")

    unknown = [g for g in groups if g not in GROUPS]
    if unknown:
        raise ConfigInvalid(f"unknown scenario group(s): {', '.join(unknown)}")

    trial_counts = {
        "callback": bench.producer_trials,
        "await_each": bench.producer_trials,
        "window": bench.window_trials,
        "window_delayed": bench.window_trials,
        "consumer": bench.consumer_trials,
    }
    for group in groups:
        if trial_counts[group] <= 0:
            raise ConfigInvalid(f"trial count for group '{group}' must be positive")

    if groups and (not bench.formats or not bench.sizes):
        raise ConfigInvalid("enabled groups have no format/size combinations")
    if "binary" in bench.formats and not bench.binary_record_types:
        raise ConfigInvalid("binary format enabled without any record type")

    if "window" in groups or "window_delayed" in groups:
        if not bench.window_sizes:
            raise ConfigInvalid("window groups enabled with an empty window size list")
        if any(w <= 0 for w in bench.window_sizes):
            raise ConfigInvalid("window sizes must be positive")
        if bench.batch_timeout_ms <= 0:
            raise ConfigInvalid("batch_timeout_ms must be positive")
    if "window_delayed" in groups and bench.inter_message_delay_ms <= 0:
        raise ConfigInvalid("window_delayed group needs a positive inter_message_delay_ms")
    if "consumer" in groups and bench.commit_batch_size <= 0 and bench.commit_interval_ms <= 0:
        raise ConfigInvalid("batched commits need commit_batch_size or commit_interval_ms")


def enumerate_scenarios(settings: Settings) -> List[Scenario]:
    """Build the ordered scenario matrix; producers first, then consumers."""
    bench = settings.benchmark
    groups = [g for g in GROUPS if g in bench.groups]
    _validate(settings, bench.groups)

    formats = _parse_enum(Format, bench.formats, "format")
    sizes = _parse_enum(Size, bench.sizes, "size")
    record_types = _parse_enum(RecordType, bench.binary_record_types, "record type")
    if RecordType.NOT_APPLICABLE in record_types:
        raise ConfigInvalid("binary record types must be 'specific' or 'generic'")
    duration = bench.duration_seconds

    def combos():
        for fmt in formats:
            for size in sizes:
                types = record_types if fmt is Format.BINARY else [RecordType.NOT_APPLICABLE]
                for record_type in types:
                    yield fmt, size, record_type

    scenarios: List[Scenario] = []

    for group in groups:
        prefix = GROUP_PREFIX[group]
        index = 1

        if group in ("callback", "await_each"):
            mode = SendMode.CALLBACK if group == "callback" else SendMode.AWAIT_EACH
            api = "Callback" if group == "callback" else "AwaitEach"
            for fmt, size, record_type in combos():
                scenarios.append(Scenario(
                    id=f"{prefix}.{index}",
                    name=f"Producer {_describe(fmt, size, record_type)} {api}",
                    kind=Kind.PRODUCER,
                    format=fmt,
                    size=size,
                    record_type=record_type,
                    send_mode=mode,
                    topic=producer_topic(settings, fmt, size, record_type),
                    message_count=bench.message_count,
                    duration=duration,
                    trials=bench.producer_trials,
                ))
                index += 1

        elif group in ("window", "window_delayed"):
            delay = bench.inter_message_delay_ms if group == "window_delayed" else 0
            label = "Arrival" if delay else "Batch"
            for fmt, size, record_type in combos():
                for window in bench.window_sizes:
                    scenarios.append(Scenario(
                        id=f"{prefix}.{index}",
                        name=f"{label} {_describe(fmt, size, record_type)} Window-{window}",
                        kind=Kind.PRODUCER,
                        format=fmt,
                        size=size,
                        record_type=record_type,
                        send_mode=SendMode.WINDOW,
                        topic=producer_topic(settings, fmt, size, record_type),
                        message_count=bench.message_count,
                        duration=duration,
                        trials=bench.window_trials,
                        window_size=window,
                        batch_timeout_ms=bench.batch_timeout_ms,
                        inter_message_delay_ms=delay,
                    ))
                    index += 1

        else:
            for fmt in formats:
                for size in sizes:
                    # consumers read what the first configured record type wrote
                    topic = producer_topic(settings, fmt, size, record_types[0] if record_types
                                           else RecordType.NOT_APPLICABLE)
                    for commit_mode in CommitMode:
                        batched = commit_mode is CommitMode.BATCHED
                        scenarios.append(Scenario(
                            id=f"{prefix}.{index}",
                            name=(f"Consumer {FORMAT_LABEL[fmt]} {size.value.title()} "
                                  f"{'BatchCommit' if batched else 'PerMessageCommit'}"),
                            kind=Kind.CONSUMER,
                            format=fmt,
                            size=size,
                            commit_mode=commit_mode,
                            topic=topic,
                            message_count=bench.message_count,
                            duration=duration,
                            trials=bench.consumer_trials,
                            commit_batch_size=bench.commit_batch_size if batched else 0,
                            commit_interval_ms=bench.commit_interval_ms if batched else 0,
                        ))
                        index += 1

    return scenarios


def _describe(fmt: Format, size: Size, record_type: RecordType) -> str:
    label = f"{FORMAT_LABEL[fmt]} {size.value.title()}"
    if record_type is not RecordType.NOT_APPLICABLE:
        label += f" {record_type.value.title()}"
    return label


# ---------------------------------------------------------------------------
# Operator filters
# ---------------------------------------------------------------------------

def _split_id(scenario_id: str):
    """'T3B.12' -> ('T3B.', 12); ids without a numeric suffix -> (id, None)."""
    dot = scenario_id.rfind(".")
    if dot < 0:
        return scenario_id, None
    prefix, suffix = scenario_id[:dot + 1], scenario_id[dot + 1:]
    try:
        return prefix, int(suffix)
    except ValueError:
        return prefix, None


def matches_filter(scenario_id: str, test_filter: str) -> bool:
    spec = test_filter.strip()
    sid = scenario_id.upper()

    if "-" in spec:
        start, end = (part.strip().upper() for part in spec.split("-", 1))
        start_prefix, start_num = _split_id(start)
        end_prefix, end_num = _split_id(end)
        prefix, num = _split_id(sid)
        if None in (start_num, end_num, num):
            return False
        return (prefix == start_prefix == end_prefix
                and start_num <= num <= end_num)

    if "," in spec:
        ids = {part.strip().upper() for part in spec.split(",") if part.strip()}
        return sid in ids

    return sid == spec.upper()


def select_scenarios(
    scenarios: Sequence[Scenario],
    test_filter: Optional[str] = None,
    kind: Optional[Kind] = None,
) -> List[Scenario]:
    """Apply the operator's id filter and kind filter, keeping declared order."""
    selected = [
        s for s in scenarios
        if (not test_filter or matches_filter(s.id, test_filter))
        and (kind is None or s.kind is kind)
    ]
    if not selected:
        parts = []
        if test_filter:
            parts.append(f"--test {test_filter}")
        if kind is not None:
            parts.append(f"{kind.value}s only")
        raise EmptySelection(
            "No scenarios matched the filter criteria"
            + (f" ({', '.join(parts)})" if parts else "")
        )
    return selected
