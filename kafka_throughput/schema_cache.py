"""
Read-through cache of Avro schemas, one file per registry subject.

    schema-cache/test-avro-small-value.avsc
    schema-cache/test-avro-large-value.avsc

The cache is prepared once before any trial runs; trial code only reads.
"""

from pathlib import Path
from typing import Dict, Iterable, Optional

from .console import console
from .errors import SchemaNotCached


class SchemaCache:
    def __init__(self, cache_dir, bundled: Optional[Dict[str, str]] = None):
        self.cache_dir = Path(cache_dir)
        self._bundled = bundled or {}

    def path_for(self, subject: str) -> Path:
        return self.cache_dir / f"{subject}.avsc"

    def prepare(self, subjects: Iterable[str], registry=None, refresh: bool = False):
        """Make sure every subject has a cached schema file.

        With a registry client the latest registered version is downloaded;
        without one the bundled schema is written instead. Existing files are
        kept unless refresh is set.
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        for subject in subjects:
            path = self.path_for(subject)
            if path.exists() and not refresh:
                continue

            if registry is not None:
                registered = registry.get_latest_version(subject)
                schema_str = registered.schema.schema_str
                console.print(f"  Cached schema [cyan]{subject}[/cyan] "
                              f"(version {registered.version}, id {registered.schema_id})")
            elif subject in self._bundled:
                schema_str = self._bundled[subject]
                console.print(f"  Cached bundled schema [cyan]{subject}[/cyan]")
            else:
                raise SchemaNotCached(subject, path)

            path.write_text(schema_str)

    def get(self, subject: str) -> str:
        path = self.path_for(subject)
        if not path.exists():
            raise SchemaNotCached(subject, path)
        return path.read_text()
