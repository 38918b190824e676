"""Streaming ingestion run: CSV rows -> property and host documents -> both indexes."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from listing_index.config import IngestOptions
from listing_index.services.csv_rows import CsvRowReader
from listing_index.services.documents import (
    HOST_ID_COLUMN,
    HOST_KEY_FIELD,
    PROPERTY_KEY_FIELD,
    HostRecord,
    build_host_record,
    build_property_record,
    host_document,
    property_document,
)
from listing_index.services.fields import Header, is_blank
from listing_index.services.index_writer import Destination, DualIndexWriter, IndexStoreError

logger = logging.getLogger(__name__)


class RowError(ValueError):
    """A single data row cannot be indexed; the run counts it and moves on."""


class SourceError(FileNotFoundError):
    """The input CSV is missing, unreadable, or lacks a usable header."""


class ErrorCeilingExceeded(RuntimeError):
    """Raised after finalization when row errors exceeded `max_errors`."""

    def __init__(self, result: RunResult) -> None:
        super().__init__(
            f"Error ceiling exceeded: {result.errors} row errors (max {result.max_errors})"
        )
        self.result = result


class RunState(str, Enum):
    CONFIGURING = "configuring"
    STREAMING = "streaming"
    COMMITTING = "committing"
    FINALIZING = "finalizing"
    CLOSED = "closed"
    ABORTED = "aborted"


@dataclass
class RunResult:
    properties_indexed: int = 0
    hosts_indexed: int = 0
    rows_read: int = 0
    errors: int = 0
    properties_skipped: int = 0
    elapsed_ms: int = 0
    max_errors: int = 0
    dry_run: bool = False
    state: RunState = RunState.CONFIGURING
    failed: bool = False

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["state"] = self.state.value
        return payload


@dataclass
class RunContext:
    """State owned by one `run()` call and dropped when it returns."""

    header: Header
    result: RunResult
    seen_hosts: dict[str, HostRecord] = field(default_factory=dict)


WriterFactory = Callable[[IngestOptions], DualIndexWriter]


def default_writer_factory(options: IngestOptions) -> DualIndexWriter:
    return DualIndexWriter(
        options.paths,
        mode=options.mode,
        force=options.force,
        dry_run=options.dry_run,
    )


def _is_blank_row(row: Sequence[str]) -> bool:
    return all(is_blank(cell) for cell in row)


class IngestionPipeline:
    """Single-threaded run over one listings CSV.

    Rows are processed one at a time: the listing is upserted into the
    properties index, and its host is upserted into the hosts index the first
    time that host id is seen in the run. Both destinations are committed every
    `commit_interval` rows and once more before closing.
    """

    def __init__(self, options: IngestOptions, writer_factory: WriterFactory | None = None) -> None:
        self.options = options.validate()
        self.writer_factory = writer_factory or default_writer_factory
        self.state = RunState.CONFIGURING

    def run(self) -> RunResult:
        options = self.options
        started = time.perf_counter()
        self.state = RunState.CONFIGURING
        result = RunResult(max_errors=options.max_errors, dry_run=options.dry_run)
        logger.info(
            "Indexing %s into %s / %s (mode=%s, dry_run=%s)",
            options.input_path,
            options.paths.properties,
            options.paths.hosts,
            options.mode,
            options.dry_run,
        )

        if not options.input_path.is_file():
            raise SourceError(f"Input CSV not found: {options.input_path}")
        try:
            stream = open(options.input_path, "r", encoding=options.encoding, errors="replace", newline="")
        except OSError as exc:
            raise SourceError(f"Cannot read input CSV {options.input_path}: {exc}") from exc

        with stream:
            rows = CsvRowReader(stream, delimiter=options.delimiter)
            context = RunContext(header=self._read_header(rows), result=result)
            writer = self.writer_factory(options)
            writer.open()
            try:
                self._stream(rows, writer, context)
                self._finalize(writer, result)
            except BaseException:
                self.state = RunState.ABORTED
                self._close_after_failure(writer)
                raise
            finally:
                result.elapsed_ms = int((time.perf_counter() - started) * 1000)
                result.state = self.state

        logger.info(
            "Done: %d properties, %d hosts, %d errors, %d skipped, %d rows in %d ms",
            result.properties_indexed,
            result.hosts_indexed,
            result.errors,
            result.properties_skipped,
            result.rows_read,
            result.elapsed_ms,
        )
        if result.errors > options.max_errors:
            result.failed = True
            logger.error(
                "Run FAILED: %d row errors exceeded the ceiling of %d; documents committed so far are kept",
                result.errors,
                options.max_errors,
            )
            raise ErrorCeilingExceeded(result)
        return result

    def _read_header(self, rows: CsvRowReader) -> Header:
        header_cells = next(rows, None)
        if header_cells is None or _is_blank_row(header_cells):
            raise SourceError(f"Input CSV has no header row: {self.options.input_path}")
        header = Header(header_cells)
        if self.options.id_field not in header:
            raise SourceError(f"Input CSV has no {self.options.id_field!r} column: {self.options.input_path}")
        if HOST_ID_COLUMN not in header:
            logger.warning("Input CSV has no %r column; no hosts will be indexed", HOST_ID_COLUMN)
        return header

    def _stream(self, rows: CsvRowReader, writer: DualIndexWriter, context: RunContext) -> None:
        result = context.result
        self.state = RunState.STREAMING
        for row in rows:
            if _is_blank_row(row):
                continue
            result.rows_read += 1
            try:
                self.process_row(row, writer, context)
            except IndexStoreError:
                raise
            except Exception as exc:
                result.errors += 1
                logger.error("Row %d: %s", result.rows_read, exc)
                if result.errors > self.options.max_errors:
                    self.state = RunState.ABORTED
                    logger.error("Error ceiling of %d exceeded; stopping the stream", self.options.max_errors)
                    return

            if result.rows_read % self.options.commit_interval == 0:
                self.state = RunState.COMMITTING
                writer.commit_all()
                logger.debug(
                    "Committed after %d rows (%d properties, %d hosts)",
                    result.rows_read,
                    result.properties_indexed,
                    result.hosts_indexed,
                )
                self.state = RunState.STREAMING

    def process_row(self, row: Sequence[str], writer: DualIndexWriter, context: RunContext) -> None:
        header = context.header
        result = context.result
        id_field = self.options.id_field

        if is_blank(header.get(row, id_field)):
            raise RowError(f"missing {id_field!r}")
        record = build_property_record(row, header, id_field=id_field)
        if record is None:
            result.properties_skipped += 1
            logger.warning("Row %d: %s is not an integer; listing skipped", result.rows_read, id_field)
        else:
            writer.upsert(Destination.PROPERTIES, PROPERTY_KEY_FIELD, str(record.id), property_document(record))
            result.properties_indexed += 1

        host_id = header.get(row, HOST_ID_COLUMN)
        if is_blank(host_id) or host_id.strip() in context.seen_hosts:
            return
        host = build_host_record(row, header)
        if host is None:
            return
        context.seen_hosts[host.host_id] = host
        writer.upsert(Destination.HOSTS, HOST_KEY_FIELD, host.host_id, host_document(host))
        result.hosts_indexed += 1

    def _finalize(self, writer: DualIndexWriter, result: RunResult) -> None:
        aborted = self.state == RunState.ABORTED
        self.state = RunState.FINALIZING
        writer.commit_all()
        writer.close_all()
        self.state = RunState.ABORTED if aborted else RunState.CLOSED

    def _close_after_failure(self, writer: DualIndexWriter) -> None:
        try:
            writer.close_all()
        except IndexStoreError:
            logger.exception("Closing indexes after a failed run also failed")


def run_ingestion(options: IngestOptions, writer_factory: WriterFactory | None = None) -> RunResult:
    return IngestionPipeline(options, writer_factory=writer_factory).run()
