"""Upsert/commit/close control over the properties and hosts destinations."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from listing_index.config import IndexPaths
from listing_index.services.documents import create_facets_config
from listing_index.services.search_index import (
    Document,
    FacetsConfig,
    IndexStoreError,
    IndexWriter,
    OpenMode,
    TaxonomyWriter,
)

logger = logging.getLogger(__name__)


class Destination(str, Enum):
    PROPERTIES = "properties"
    HOSTS = "hosts"


@dataclass
class StorePair:
    """One destination index with its paired taxonomy store."""

    index: IndexWriter
    taxonomy: TaxonomyWriter


def resolve_open_mode(mode: str, *, force: bool) -> tuple[OpenMode, bool]:
    """Map an ingestion mode to (open mode, remove directories first).

    ``build`` and ``rebuild`` start from an empty index; only ``rebuild`` with
    ``force`` also deletes the on-disk directories, taxonomies included.
    ``update`` appends to whatever exists.
    """

    if mode == "rebuild":
        return OpenMode.CREATE, force
    if mode == "build":
        return OpenMode.CREATE, False
    if mode == "update":
        return OpenMode.CREATE_OR_APPEND, False
    raise ValueError(f"Unsupported ingestion mode: {mode}")


def remove_store_dir(path: Path) -> bool:
    """Best-effort recursive delete; returns False when something was left behind."""

    if not path.exists():
        return True
    shutil.rmtree(path, ignore_errors=True)
    if path.exists():
        logger.warning("Could not fully remove %s; directory is left in a partial state", path)
        return False
    return True


class DualIndexWriter:
    """Writes listing and host documents to two independent destinations.

    Nothing spans both destinations: each one commits and closes on its own.
    In dry-run mode no store is opened and every write is discarded.
    """

    def __init__(
        self,
        paths: IndexPaths,
        *,
        mode: str = "build",
        force: bool = False,
        dry_run: bool = False,
        facets_config: FacetsConfig | None = None,
    ) -> None:
        self.paths = paths
        self.mode = mode
        self.force = force
        self.dry_run = dry_run
        self.facets_config = facets_config or create_facets_config()
        self._stores: dict[Destination, StorePair] = {}

    @property
    def is_open(self) -> bool:
        return bool(self._stores)

    def open(self) -> None:
        if self.dry_run:
            logger.info("Dry run: index stores are not opened")
            return
        open_mode, wipe = resolve_open_mode(self.mode, force=self.force)
        if wipe:
            for path in self.paths.all():
                remove_store_dir(path)
            logger.info("Indexes and taxonomies removed (rebuild --force)")
        elif self.mode == "rebuild":
            logger.warning("Rebuild without --force: documents are recreated but directories are kept")

        self._stores[Destination.PROPERTIES] = StorePair(
            index=IndexWriter(self.paths.properties, open_mode=open_mode),
            taxonomy=TaxonomyWriter(self.paths.properties_taxonomy),
        )
        self._stores[Destination.HOSTS] = StorePair(
            index=IndexWriter(self.paths.hosts, open_mode=open_mode),
            taxonomy=TaxonomyWriter(self.paths.hosts_taxonomy),
        )
        logger.info("Indexes opened (mode=%s, open_mode=%s)", self.mode, open_mode.value)

    def _store(self, destination: Destination) -> StorePair:
        store = self._stores.get(destination)
        if store is None:
            raise IndexStoreError(f"Destination {destination.value} is not open")
        return store

    def upsert(self, destination: Destination, key_field: str, key_value: str, document: Document) -> None:
        """Replace any document with `key_field == key_value` by `document`.

        Facet labels are registered in the destination's taxonomy before the
        document is written.
        """

        if self.dry_run:
            logger.debug("DRY-RUN: upsert %s %s=%s", destination.value, key_field, key_value)
            return
        store = self._store(destination)
        built = self.facets_config.build(store.taxonomy, document)
        store.index.update_document(key_field, key_value, built)

    def commit(self, destination: Destination) -> None:
        if self.dry_run:
            return
        store = self._store(destination)
        store.taxonomy.commit()
        store.index.commit()

    def close(self, destination: Destination) -> None:
        """Commit and close the destination index, then its taxonomy."""

        if self.dry_run:
            return
        store = self._stores.pop(destination, None)
        if store is None:
            return
        try:
            store.taxonomy.commit()
            store.index.close()
        finally:
            store.taxonomy.close()
        logger.info("Index and taxonomy for %s closed", destination.value)

    def commit_all(self) -> None:
        for destination in Destination:
            self.commit(destination)

    def close_all(self) -> None:
        """Close both destinations; the first failure is re-raised after trying the other."""

        errors: list[IndexStoreError] = []
        for destination in Destination:
            try:
                self.close(destination)
            except IndexStoreError as exc:
                logger.error("Closing %s failed: %s", destination.value, exc)
                errors.append(exc)
        if errors:
            raise errors[0]
