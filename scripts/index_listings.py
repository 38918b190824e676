#!/usr/bin/env python3
"""Index an Airbnb listings CSV into the properties and hosts indexes.

Usage notes:
- `build` starts both indexes empty; `update` upserts into existing ones.
- `rebuild --force` deletes the index and taxonomy directories first.
- `--dry-run` parses and builds every document but writes nothing.
- Settings come from the environment/.env; flags override them.
"""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

from dotenv import load_dotenv

from listing_index.config import INGEST_MODES, ConfigError, IndexPaths, load_settings
from listing_index.services.index_writer import IndexStoreError
from listing_index.services.pipeline import ErrorCeilingExceeded, SourceError, run_ingestion

EXIT_OK = 0
EXIT_ERROR_CEILING = 2
EXIT_STORAGE = 3
EXIT_BAD_ARGS = 4
EXIT_UNEXPECTED = 5

LOG_FORMAT = "[%(levelname)s] %(message)s"

logger = logging.getLogger("index_listings")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI for one ingestion run."""
    parser = argparse.ArgumentParser(description="Index an Airbnb listings CSV into property and host indexes.")
    parser.add_argument("--input", default=None, help="Listings CSV path (defaults to LISTINGS_INPUT_PATH).")
    parser.add_argument(
        "--index-root",
        default=None,
        help="Directory holding index_properties/, index_hosts/ and their taxo_* stores (defaults to INDEX_ROOT).",
    )
    parser.add_argument("--mode", choices=list(INGEST_MODES), default=None, help="Ingestion mode.")
    parser.add_argument("--delimiter", default=None, help="Single-character CSV delimiter.")
    parser.add_argument("--encoding", default=None, help="Input file encoding.")
    parser.add_argument("--id-field", default=None, help="Name of the listing id column.")
    parser.add_argument("--max-errors", type=int, default=None, help="Row error ceiling before the run fails.")
    parser.add_argument("--commit-interval", type=int, default=None, help="Commit both indexes every N rows.")
    parser.add_argument("--log-file", default=None, help="Also append log lines to this file.")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Process rows without writing.")
    parser.add_argument(
        "--force",
        action="store_true",
        default=None,
        help="Allow --mode rebuild to delete existing index directories.",
    )
    return parser


def configure_logging(log_file: str | None = None, level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    if log_file:
        handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def main(argv: Sequence[str] | None = None) -> int:
    """Resolve config from env/CLI, run the pipeline, and map the outcome to an exit code."""
    load_dotenv()
    try:
        args = build_parser().parse_args(argv)
    except SystemExit as exc:
        return EXIT_OK if exc.code in (0, None) else EXIT_BAD_ARGS

    settings = load_settings()
    configure_logging(args.log_file or settings.log_file)

    try:
        options = settings.ingest_options(
            args.input,
            paths=IndexPaths.under(args.index_root) if args.index_root else None,
            mode=args.mode,
            delimiter=args.delimiter,
            encoding=args.encoding,
            id_field=args.id_field,
            max_errors=args.max_errors,
            commit_interval=args.commit_interval,
            dry_run=args.dry_run,
            force=args.force,
        )
    except ConfigError as exc:
        logger.error("Invalid arguments: %s", exc)
        return EXIT_BAD_ARGS

    try:
        run_ingestion(options)
    except ErrorCeilingExceeded as exc:
        logger.error(
            "Indexing failed: %d errors (max %d); %d properties and %d hosts were committed",
            exc.result.errors,
            exc.result.max_errors,
            exc.result.properties_indexed,
            exc.result.hosts_indexed,
        )
        return EXIT_ERROR_CEILING
    except (SourceError, IndexStoreError, OSError) as exc:
        logger.error("Indexing failed: %s", exc)
        return EXIT_STORAGE
    except Exception:
        logger.exception("Unexpected failure during indexing")
        return EXIT_UNEXPECTED
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
