"""Centralized runtime settings loaded from environment variables."""

from __future__ import annotations

import codecs
import os
from dataclasses import dataclass
from pathlib import Path

INGEST_MODES = ("build", "update", "rebuild")

INDEX_PROPERTIES = "index_properties"
INDEX_HOSTS = "index_hosts"
TAXO_PROPERTIES = "taxo_properties"
TAXO_HOSTS = "taxo_hosts"

DEFAULT_MODE = "build"
DEFAULT_DELIMITER = ","
DEFAULT_ENCODING = "utf-8"
DEFAULT_ID_FIELD = "id"
DEFAULT_MAX_ERRORS = 100
DEFAULT_COMMIT_INTERVAL = 5000


class ConfigError(ValueError):
    """Raised when ingestion options are inconsistent or out of range."""


@dataclass
class IndexPaths:
    """On-disk locations of both destinations and their taxonomy stores."""

    properties: Path
    hosts: Path
    properties_taxonomy: Path
    hosts_taxonomy: Path

    @classmethod
    def under(cls, index_root: str | Path) -> IndexPaths:
        root = Path(index_root)
        return cls(
            properties=root / INDEX_PROPERTIES,
            hosts=root / INDEX_HOSTS,
            properties_taxonomy=root / TAXO_PROPERTIES,
            hosts_taxonomy=root / TAXO_HOSTS,
        )

    def all(self) -> list[Path]:
        return [self.properties, self.hosts, self.properties_taxonomy, self.hosts_taxonomy]


@dataclass
class IngestOptions:
    """Everything one ingestion run needs; produced by the CLI, API, or settings."""

    input_path: Path
    paths: IndexPaths
    mode: str = DEFAULT_MODE
    delimiter: str = DEFAULT_DELIMITER
    encoding: str = DEFAULT_ENCODING
    id_field: str = DEFAULT_ID_FIELD
    max_errors: int = DEFAULT_MAX_ERRORS
    commit_interval: int = DEFAULT_COMMIT_INTERVAL
    dry_run: bool = False
    force: bool = False

    def validate(self) -> IngestOptions:
        if self.mode not in INGEST_MODES:
            raise ConfigError(f"Unsupported mode {self.mode!r}; expected one of {', '.join(INGEST_MODES)}")
        if len(self.delimiter) != 1:
            raise ConfigError(f"Delimiter must be a single character, got {self.delimiter!r}")
        if not self.id_field.strip():
            raise ConfigError("Id field name must not be blank")
        if self.max_errors < 0:
            raise ConfigError("max_errors must be >= 0")
        if self.commit_interval < 1:
            raise ConfigError("commit_interval must be >= 1")
        try:
            codecs.lookup(self.encoding)
        except LookupError as exc:
            raise ConfigError(f"Unknown encoding {self.encoding!r}") from exc
        return self


@dataclass
class Settings:
    """Indexer settings; CLI flags and API payloads override these per run."""

    input_path: str | None
    index_root: str
    paths: IndexPaths
    mode: str
    delimiter: str
    encoding: str
    id_field: str
    max_errors: int
    commit_interval: int
    dry_run: bool
    force: bool
    log_file: str | None

    def ingest_options(self, input_path: str | Path | None = None, **overrides: object) -> IngestOptions:
        """Build validated run options from settings, applying explicit overrides."""

        resolved_input = input_path or self.input_path
        if not resolved_input:
            raise ConfigError("No input CSV configured (LISTINGS_INPUT_PATH or --input)")
        values: dict[str, object] = {
            "paths": self.paths,
            "mode": self.mode,
            "delimiter": self.delimiter,
            "encoding": self.encoding,
            "id_field": self.id_field,
            "max_errors": self.max_errors,
            "commit_interval": self.commit_interval,
            "dry_run": self.dry_run,
            "force": self.force,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return IngestOptions(input_path=Path(resolved_input), **values).validate()  # type: ignore[arg-type]


def load_settings() -> Settings:
    """Load settings from environment with safe defaults for local runs."""

    def parse_bool(value: str | None, default: bool) -> bool:
        if value is None:
            return default
        lowered = value.strip().lower()
        return lowered in {"1", "true", "yes", "on"}

    def parse_int(value: str | None, default: int) -> int:
        if value is None or value.strip() == "":
            return default
        try:
            return int(value)
        except ValueError:
            return default

    index_root = os.getenv("INDEX_ROOT", "index_root")
    defaults = IndexPaths.under(index_root)
    paths = IndexPaths(
        properties=Path(os.getenv("PROPERTIES_INDEX_DIR") or defaults.properties),
        hosts=Path(os.getenv("HOSTS_INDEX_DIR") or defaults.hosts),
        properties_taxonomy=Path(os.getenv("PROPERTIES_TAXO_DIR") or defaults.properties_taxonomy),
        hosts_taxonomy=Path(os.getenv("HOSTS_TAXO_DIR") or defaults.hosts_taxonomy),
    )
    return Settings(
        input_path=os.getenv("LISTINGS_INPUT_PATH"),
        index_root=index_root,
        paths=paths,
        mode=os.getenv("INDEX_MODE", DEFAULT_MODE).strip().lower(),
        delimiter=os.getenv("CSV_DELIMITER", DEFAULT_DELIMITER),
        encoding=os.getenv("CSV_ENCODING", DEFAULT_ENCODING),
        id_field=os.getenv("ID_FIELD", DEFAULT_ID_FIELD),
        max_errors=parse_int(os.getenv("MAX_ERRORS"), DEFAULT_MAX_ERRORS),
        commit_interval=parse_int(os.getenv("COMMIT_INTERVAL"), DEFAULT_COMMIT_INTERVAL),
        dry_run=parse_bool(os.getenv("INDEX_DRY_RUN"), False),
        force=parse_bool(os.getenv("INDEX_FORCE"), False),
        log_file=os.getenv("INDEX_LOG_FILE"),
    )
