"""
Layered configuration.

Settings are built once at start-up and never mutated:

  1. dataclass defaults
  2. throughput.yaml (or the file given with --config)
  3. throughput.local.yaml next to it (credentials, gitignored)
  4. THROUGHPUT_<SECTION>__<KEY> environment variables

Example:
  THROUGHPUT_KAFKA__BOOTSTRAP_SERVERS=broker:9092
  THROUGHPUT_BENCHMARK__WINDOW_SIZES="[1, 50]"
"""

import os
import typing
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigInvalid

DEFAULT_CONFIG_FILE = "throughput.yaml"
ENV_PREFIX = "THROUGHPUT_"


@dataclass(frozen=True)
class KafkaSettings:
    bootstrap_servers: str = "localhost:9092"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_username: str = ""
    sasl_password: str = ""
    acks: str = "all"
    linger_ms: int = 100
    batch_size: int = 1_000_000
    compression_type: str = "lz4"
    consumer_group_prefix: str = "throughput-test"


@dataclass(frozen=True)
class SchemaRegistrySettings:
    url: str = ""
    basic_auth_user_info: str = ""
    cache_dir: str = "schema-cache"
    small_subject: str = "test-avro-small-value"
    large_subject: str = "test-avro-large-value"


@dataclass(frozen=True)
class TopicSettings:
    binary_small_specific: str = "test-avro-small-specificrecord"
    binary_small_generic: str = "test-avro-small"
    binary_large_specific: str = "test-avro-large-specificrecord"
    binary_large_generic: str = "test-avro-large"
    text_small: str = "test-json-small"
    text_large: str = "test-json-large"


@dataclass(frozen=True)
class BenchmarkSettings:
    message_count: int = 100_000
    duration_minutes: Optional[float] = 1
    producer_trials: int = 3
    window_trials: int = 3
    consumer_trials: int = 5
    batch_timeout_ms: int = 5000
    window_sizes: Tuple[int, ...] = (1, 10, 100)
    commit_batch_size: int = 5000
    commit_interval_ms: int = 5000
    inter_message_delay_ms: int = 100
    formats: Tuple[str, ...] = ("binary", "text")
    sizes: Tuple[str, ...] = ("small", "large")
    binary_record_types: Tuple[str, ...] = ("specific",)
    groups: Tuple[str, ...] = ("callback", "await_each", "window", "window_delayed", "consumer")
    poll_timeout_seconds: float = 5.0
    drain_timeout_seconds: float = 60.0
    sample_interval_ms: int = 250

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.duration_minutes is None:
            return None
        return self.duration_minutes * 60.0


@dataclass(frozen=True)
class Settings:
    kafka: KafkaSettings = field(default_factory=KafkaSettings)
    schema_registry: SchemaRegistrySettings = field(default_factory=SchemaRegistrySettings)
    topics: TopicSettings = field(default_factory=TopicSettings)
    benchmark: BenchmarkSettings = field(default_factory=BenchmarkSettings)

    def with_duration(self, minutes: Optional[float]) -> "Settings":
        """Return a copy whose duration cap is replaced (CLI --duration)."""
        return replace(self, benchmark=replace(self.benchmark, duration_minutes=minutes))


SECTIONS = {
    "kafka": KafkaSettings,
    "schema_registry": SchemaRegistrySettings,
    "topics": TopicSettings,
    "benchmark": BenchmarkSettings,
}


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def local_override_path(path: Path) -> Path:
    return path.with_name(f"{path.stem}.local{path.suffix}")


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigInvalid(f"{path}: top level must be a mapping")
    return data


def _merge(base: Dict[str, Dict[str, Any]], layer: Mapping[str, Any], origin: str):
    for section, values in layer.items():
        if section not in SECTIONS:
            raise ConfigInvalid(f"{origin}: unknown section '{section}'")
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigInvalid(f"{origin}: section '{section}' must be a mapping")
        base.setdefault(section, {}).update(values)


def _env_layer(environ: Mapping[str, str]) -> Dict[str, Dict[str, Any]]:
    layer: Dict[str, Dict[str, Any]] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or "__" not in name:
            continue
        section, key = name[len(ENV_PREFIX):].lower().split("__", 1)
        # yaml gives "5" -> 5, "null" -> None, "[1, 10]" -> [1, 10]
        layer.setdefault(section, {})[key] = yaml.safe_load(raw) if raw != "" else ""
    return layer


def _coerce(hint, value, where: str):
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)

    if origin is typing.Union and type(None) in args:
        if value is None:
            return None
        inner = next(a for a in args if a is not type(None))
        return _coerce(inner, value, where)

    try:
        if origin is tuple:
            if isinstance(value, str):
                value = [v.strip() for v in value.split(",") if v.strip()]
            if not isinstance(value, (list, tuple)):
                raise TypeError(f"expected a list, got {value!r}")
            return tuple(_coerce(args[0], v, where) for v in value)
        if hint is bool:
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if hint is int:
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"expected an integer, got {value!r}")
            return int(value)
        if hint is float:
            return float(value)
        if hint is str:
            return "" if value is None else str(value)
    except (TypeError, ValueError) as e:
        raise ConfigInvalid(f"{where}: {e}") from e
    return value


def _build(cls, values: Mapping[str, Any], section: str):
    hints = typing.get_type_hints(cls)
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigInvalid(f"unknown key(s) in '{section}': {', '.join(sorted(unknown))}")
    kwargs = {k: _coerce(hints[k], v, f"{section}.{k}") for k, v in values.items()}
    return cls(**kwargs)


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build Settings from defaults, YAML layers and the environment."""
    environ = os.environ if environ is None else environ
    merged: Dict[str, Dict[str, Any]] = {}

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigInvalid(f"config file not found: {path}")
    else:
        candidate = Path(DEFAULT_CONFIG_FILE)
        path = candidate if candidate.exists() else None

    if path is not None:
        _merge(merged, _read_yaml(path), str(path))
        local = local_override_path(path)
        if local.exists():
            _merge(merged, _read_yaml(local), str(local))

    _merge(merged, _env_layer(environ), "environment")

    return Settings(**{
        name: _build(cls, merged.get(name, {}), name)
        for name, cls in SECTIONS.items()
    })
