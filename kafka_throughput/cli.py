"""
kafka-throughput: run the throughput benchmark matrix.

Usage:
    kafka-throughput                         # full matrix against throughput.yaml
    kafka-throughput --test T3.1-T3.6        # a range of window scenarios
    kafka-throughput --test T1.1,T4.2 --duration 0.5
    kafka-throughput --producer-only --loopback   # dry run, no cluster needed
    kafka-throughput --list

Exit codes: 0 success, 1 configuration error, 2 no scenario matched.
"""

import sys
from pathlib import Path
from typing import Optional

import click
from confluent_kafka.schema_registry.error import SchemaRegistryError
from rich.panel import Panel
from rich.table import Table

from .broker import KafkaBrokerClient
from .codec import LocalCodec, RegistryCodec, registry_client
from .config import Settings, load_settings
from .console import console, error
from .consumer import ConsumerRunner
from .delivery import DeliveryLog
from .errors import ConfigInvalid, EmptySelection, SchemaNotCached
from .loopback import LoopbackBroker
from .orchestrator import Orchestrator
from .producer import ProducerRunner
from .records import default_avro_schemas
from .reporting import print_results, write_reports
from .scenarios import Kind, enumerate_scenarios, select_scenarios
from .schema_cache import SchemaCache

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_EMPTY_SELECTION = 2


def build_codec(settings: Settings, refresh_schemas: bool = False):
    """RegistryCodec when a Schema Registry URL is configured, else LocalCodec."""
    sr = settings.schema_registry
    cache = SchemaCache(sr.cache_dir, bundled=default_avro_schemas(sr.small_subject, sr.large_subject))
    subjects = [sr.small_subject, sr.large_subject]

    if not sr.url:
        if refresh_schemas:
            cache.prepare(subjects, refresh=True)
        return LocalCodec()

    registry = registry_client(sr)
    cache.prepare(subjects, registry=registry, refresh=refresh_schemas)
    return RegistryCodec(registry, cache, sr)


def print_scenarios(scenarios):
    table = Table(title=f"Scenarios ({len(scenarios)})")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Topic")
    table.add_column("Cap", justify="right")
    table.add_column("Trials", justify="right")
    for s in scenarios:
        cap = f"{s.message_count:,}"
        if s.duration is not None:
            cap += f" / {s.duration:.0f}s"
        table.add_row(s.id, s.name, s.kind.value, s.topic, cap, str(s.trials))
    console.print(table)


def run(
    config_path: Optional[Path] = None,
    test_filter: Optional[str] = None,
    producer_only: bool = False,
    consumer_only: bool = False,
    duration: Optional[float] = None,
    refresh_schemas: bool = False,
    loopback: bool = False,
    results_dir: Path = Path("results"),
    list_only: bool = False,
) -> int:
    if producer_only and consumer_only:
        raise ConfigInvalid("--producer-only and --consumer-only are mutually exclusive")

    settings = load_settings(config_path)
    if duration is not None:
        settings = settings.with_duration(duration)

    kind = Kind.PRODUCER if producer_only else Kind.CONSUMER if consumer_only else None
    scenarios = select_scenarios(enumerate_scenarios(settings), test_filter, kind)

    if list_only:
        print_scenarios(scenarios)
        return EXIT_OK

    target = "loopback (in-memory)" if loopback else settings.kafka.bootstrap_servers
    duration_cap = settings.benchmark.duration_seconds
    console.print(Panel(
        f"[bold]Kafka throughput benchmark[/bold]\n"
        f"Broker: {target}\n"
        f"Scenarios: {len(scenarios)}  "
        f"Cap: {settings.benchmark.message_count:,} msgs"
        + (f" / {duration_cap:.0f}s" if duration_cap is not None else ""),
        title="Suite",
    ))

    if loopback:
        broker = LoopbackBroker()
        client_factory = broker.client
        codec = LocalCodec()
    else:
        def client_factory():
            return KafkaBrokerClient(settings.kafka)
        codec = build_codec(settings, refresh_schemas)

    delivery_log = DeliveryLog()
    orchestrator = Orchestrator(
        ProducerRunner(client_factory, codec, delivery_log, settings.benchmark),
        ConsumerRunner(client_factory, codec, settings.benchmark,
                       group_prefix=settings.kafka.consumer_group_prefix),
    )
    aggregator = orchestrator.run(scenarios)

    print_results(aggregator)
    written = write_reports(aggregator, delivery_log, results_dir)
    for label, path in written.items():
        console.print(f"  {label}: [cyan]{path}[/cyan]")
    return EXIT_OK


@click.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              default=None, help="Settings file (default: ./throughput.yaml if present)")
@click.option("--test", "test_filter", default=None,
              help="Scenario id, range (T3.1-T3.6) or list (T1.1,T2.4)")
@click.option("--producer-only", is_flag=True, help="Run producer scenarios only")
@click.option("--consumer-only", is_flag=True, help="Run consumer scenarios only")
@click.option("--duration", type=float, default=None,
              help="Duration cap per trial in minutes (overrides the config)")
@click.option("--refresh-schemas", is_flag=True, help="Re-download cached schemas")
@click.option("--loopback", is_flag=True, help="Use the in-memory broker (dry run)")
@click.option("--results-dir", type=click.Path(file_okay=False, path_type=Path),
              default=Path("results"), show_default=True, help="Where reports are written")
@click.option("--list", "list_only", is_flag=True, help="List the selected scenarios and exit")
def main(config_path, test_filter, producer_only, consumer_only, duration,
         refresh_schemas, loopback, results_dir, list_only):
    """Benchmark Kafka producer and consumer throughput."""
    try:
        code = run(config_path, test_filter, producer_only, consumer_only, duration,
                   refresh_schemas, loopback, results_dir, list_only)
    except EmptySelection as e:
        error(str(e))
        sys.exit(EXIT_EMPTY_SELECTION)
    except (ConfigInvalid, SchemaNotCached) as e:
        error(str(e))
        sys.exit(EXIT_CONFIG)
    except SchemaRegistryError as e:
        error(f"Schema Registry: {e}")
        sys.exit(EXIT_CONFIG)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
