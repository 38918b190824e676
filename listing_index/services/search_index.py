"""Directory-backed search index and facet taxonomy built on SQLite + FTS5.

Each index directory holds one ``index.db``; each taxonomy directory holds one
``taxonomy.db``. Documents are bags of typed fields:

- ``string``: exact-match keyword term (also the upsert key space)
- ``text``: full-text tokens (FTS5)
- ``point``: numeric value for range filters
- ``sorted``: per-document sort value
- ``latlon``: geo point
- ``stored``: returned verbatim, not searchable
- ``facet``: label path resolved to taxonomy ordinals at build time
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

INDEX_DB_NAME = "index.db"
TAXONOMY_DB_NAME = "taxonomy.db"
PATH_SEPARATOR = "\x1f"
ROOT_ORDINAL = 0


class IndexStoreError(RuntimeError):
    """Raised when the underlying store cannot be opened, committed, or closed."""


class FieldKind(str, Enum):
    STRING = "string"
    TEXT = "text"
    POINT = "point"
    SORTED = "sorted"
    LATLON = "latlon"
    STORED = "stored"
    FACET = "facet"


class OpenMode(str, Enum):
    CREATE = "create"
    CREATE_OR_APPEND = "create_or_append"


@dataclass(frozen=True)
class IndexField:
    name: str
    kind: FieldKind
    value: Any
    stored: bool = False


@dataclass
class Document:
    """Ordered collection of typed fields; facet ordinals are filled by `FacetsConfig.build`."""

    fields: list[IndexField] = field(default_factory=list)
    facet_ordinals: list[tuple[str, int]] | None = None

    def add(self, index_field: IndexField) -> None:
        self.fields.append(index_field)

    def add_string(self, name: str, value: str, *, stored: bool = True) -> None:
        self.add(IndexField(name, FieldKind.STRING, value, stored))

    def add_text(self, name: str, value: str | None, *, stored: bool = True) -> None:
        """Add a full-text field; blank values are skipped."""

        if value is None or not value.strip():
            return
        self.add(IndexField(name, FieldKind.TEXT, value, stored))

    def add_point(self, name: str, value: int | float) -> None:
        self.add(IndexField(name, FieldKind.POINT, value))

    def add_sorted(self, name: str, value: int | float | str) -> None:
        self.add(IndexField(name, FieldKind.SORTED, value))

    def add_latlon(self, name: str, latitude: float, longitude: float) -> None:
        self.add(IndexField(name, FieldKind.LATLON, (latitude, longitude)))

    def add_stored(self, name: str, value: Any) -> None:
        self.add(IndexField(name, FieldKind.STORED, value, True))

    def add_facet(self, dim: str, *path: str) -> None:
        if not path:
            raise ValueError(f"Facet {dim!r} needs at least one path component")
        self.add(IndexField(dim, FieldKind.FACET, tuple(path)))

    def values(self, name: str, kind: FieldKind | None = None) -> list[Any]:
        return [
            f.value
            for f in self.fields
            if f.name == name and (kind is None or f.kind == kind)
        ]

    def get(self, name: str) -> Any | None:
        """Return the first stored value for `name`."""

        for f in self.fields:
            if f.name == name and f.stored:
                return f.value
        return None

    def facet_paths(self) -> list[tuple[str, tuple[str, ...]]]:
        return [(f.name, f.value) for f in self.fields if f.kind == FieldKind.FACET]

    def stored_fields(self) -> dict[str, Any]:
        """Collapse stored fields to a JSON-able dict; repeated names become lists."""

        grouped: dict[str, list[Any]] = defaultdict(list)
        for f in self.fields:
            if f.stored:
                grouped[f.name].append(f.value)
        return {name: vals[0] if len(vals) == 1 else vals for name, vals in grouped.items()}


def _category_key(dim: str, path: tuple[str, ...]) -> str:
    return PATH_SEPARATOR.join((dim, *path))


def _connect(db_path: Path, *, read_only: bool = False) -> sqlite3.Connection:
    if read_only:
        conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
    else:
        conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


class TaxonomyWriter:
    """Assigns stable ordinals to facet label paths; ancestors are added first."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            self._conn: sqlite3.Connection | None = _connect(self.path / TAXONOMY_DB_NAME)
            self._ensure_schema()
            self._ordinals = {
                row["path"]: row["ordinal"]
                for row in self._conn.execute("SELECT ordinal, path FROM categories")
            }
        except (OSError, sqlite3.Error) as exc:
            raise IndexStoreError(f"Cannot open taxonomy at {self.path}: {exc}") from exc

    def _ensure_schema(self) -> None:
        ddl = """
        CREATE TABLE IF NOT EXISTS categories (
            ordinal INTEGER PRIMARY KEY,
            parent INTEGER NOT NULL,
            path TEXT NOT NULL UNIQUE,
            label TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_categories_parent ON categories(parent);
        INSERT OR IGNORE INTO categories (ordinal, parent, path, label)
        VALUES (0, -1, '', '');
        """
        assert self._conn is not None
        self._conn.executescript(ddl)
        self._conn.commit()

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise IndexStoreError(f"Taxonomy at {self.path} is closed")
        return self._conn

    def add_category(self, dim: str, *path: str) -> int:
        """Return the ordinal of `dim/path...`, registering it and its ancestors if new."""

        conn = self._require_open()
        components = (dim, *path)
        parent = ROOT_ORDINAL
        for depth in range(1, len(components) + 1):
            key = PATH_SEPARATOR.join(components[:depth])
            ordinal = self._ordinals.get(key)
            if ordinal is None:
                ordinal = len(self._ordinals)
                try:
                    conn.execute(
                        "INSERT INTO categories (ordinal, parent, path, label) VALUES (?, ?, ?, ?)",
                        (ordinal, parent, key, components[depth - 1]),
                    )
                except sqlite3.Error as exc:
                    raise IndexStoreError(f"Cannot add category {key!r} at {self.path}: {exc}") from exc
                self._ordinals[key] = ordinal
            parent = ordinal
        return parent

    def size(self) -> int:
        return len(self._ordinals)

    def commit(self) -> None:
        try:
            self._require_open().commit()
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Taxonomy commit failed at {self.path}: {exc}") from exc

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.commit()
            self._conn.close()
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Taxonomy close failed at {self.path}: {exc}") from exc
        finally:
            self._conn = None


class TaxonomyReader:
    """Read-only ordinal lookups used when aggregating facet counts."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        db_path = self.path / TAXONOMY_DB_NAME
        if not db_path.exists():
            raise FileNotFoundError(f"No taxonomy found at {self.path}")
        self._conn = _connect(db_path, read_only=True)

    def get_ordinal(self, dim: str, *path: str) -> int | None:
        row = self._conn.execute(
            "SELECT ordinal FROM categories WHERE path = ?",
            (_category_key(dim, path),),
        ).fetchone()
        return None if row is None else int(row["ordinal"])

    def children(self, ordinal: int) -> list[tuple[int, str]]:
        rows = self._conn.execute(
            "SELECT ordinal, label FROM categories WHERE parent = ? ORDER BY ordinal",
            (ordinal,),
        ).fetchall()
        return [(int(row["ordinal"]), row["label"]) for row in rows]

    def size(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM categories").fetchone()[0])

    def close(self) -> None:
        self._conn.close()


@dataclass
class FacetsConfig:
    """Per-dimension facet settings shared by writers and readers."""

    hierarchical: set[str] = field(default_factory=set)
    multi_valued: set[str] = field(default_factory=set)

    def set_hierarchical(self, dim: str, value: bool = True) -> None:
        if value:
            self.hierarchical.add(dim)
        else:
            self.hierarchical.discard(dim)

    def set_multi_valued(self, dim: str, value: bool = True) -> None:
        if value:
            self.multi_valued.add(dim)
        else:
            self.multi_valued.discard(dim)

    def build(self, taxonomy: TaxonomyWriter, document: Document) -> Document:
        """Register the document's facet labels and return a copy carrying their ordinals.

        Hierarchical dimensions index every level of the path so that counts
        can be taken at any depth.
        """

        seen_dims: set[str] = set()
        ordinals: list[tuple[str, int]] = []
        for dim, path in document.facet_paths():
            if dim in seen_dims and dim not in self.multi_valued:
                raise ValueError(f"Facet dimension {dim!r} is not multi-valued")
            seen_dims.add(dim)
            if dim in self.hierarchical:
                for depth in range(1, len(path) + 1):
                    ordinals.append((dim, taxonomy.add_category(dim, *path[:depth])))
            else:
                if len(path) != 1:
                    raise ValueError(f"Facet dimension {dim!r} is not hierarchical: {path}")
                ordinals.append((dim, taxonomy.add_category(dim, path[0])))
        return Document(fields=list(document.fields), facet_ordinals=ordinals)


INDEX_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    doc_id INTEGER PRIMARY KEY AUTOINCREMENT,
    stored_json TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS terms (
    doc_id INTEGER NOT NULL,
    field TEXT NOT NULL,
    value TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_terms_field_value ON terms(field, value);
CREATE INDEX IF NOT EXISTS idx_terms_doc ON terms(doc_id);
CREATE TABLE IF NOT EXISTS points (
    doc_id INTEGER NOT NULL,
    field TEXT NOT NULL,
    value REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_points_field_value ON points(field, value);
CREATE INDEX IF NOT EXISTS idx_points_doc ON points(doc_id);
CREATE TABLE IF NOT EXISTS sort_values (
    doc_id INTEGER NOT NULL,
    field TEXT NOT NULL,
    num_value REAL,
    str_value TEXT
);
CREATE INDEX IF NOT EXISTS idx_sort_values_doc ON sort_values(doc_id);
CREATE TABLE IF NOT EXISTS geo_points (
    doc_id INTEGER NOT NULL,
    field TEXT NOT NULL,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_geo_points_doc ON geo_points(doc_id);
CREATE TABLE IF NOT EXISTS facet_ordinals (
    doc_id INTEGER NOT NULL,
    dim TEXT NOT NULL,
    ordinal INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_facet_ordinals_ordinal ON facet_ordinals(ordinal);
CREATE INDEX IF NOT EXISTS idx_facet_ordinals_doc ON facet_ordinals(doc_id);
CREATE TABLE IF NOT EXISTS text_fields (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    doc_id INTEGER NOT NULL,
    field TEXT NOT NULL,
    body TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_text_fields_doc ON text_fields(doc_id);
CREATE VIRTUAL TABLE IF NOT EXISTS text_fts USING fts5(
    field UNINDEXED,
    body,
    content='text_fields',
    content_rowid='id'
);
CREATE TRIGGER IF NOT EXISTS text_fields_ai AFTER INSERT ON text_fields BEGIN
    INSERT INTO text_fts(rowid, field, body) VALUES (new.id, new.field, new.body);
END;
CREATE TRIGGER IF NOT EXISTS text_fields_ad AFTER DELETE ON text_fields BEGIN
    INSERT INTO text_fts(text_fts, rowid, field, body)
    VALUES ('delete', old.id, old.field, old.body);
END;
"""

INDEX_TABLES = (
    "text_fts",
    "text_fields",
    "facet_ordinals",
    "geo_points",
    "sort_values",
    "points",
    "terms",
    "documents",
)

_PER_DOC_TABLES = ("terms", "points", "sort_values", "geo_points", "facet_ordinals", "text_fields")


class IndexWriter:
    """Writes documents into one index directory; changes are pending until `commit`."""

    def __init__(self, path: str | Path, *, open_mode: OpenMode = OpenMode.CREATE_OR_APPEND) -> None:
        self.path = Path(path)
        self.open_mode = open_mode
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            self._conn: sqlite3.Connection | None = _connect(self.path / INDEX_DB_NAME)
            if open_mode == OpenMode.CREATE:
                self._drop_tables()
            self._conn.executescript(INDEX_SCHEMA)
            self._conn.commit()
        except (OSError, sqlite3.Error) as exc:
            raise IndexStoreError(f"Cannot open index at {self.path}: {exc}") from exc

    def _drop_tables(self) -> None:
        assert self._conn is not None
        script = "".join(f"DROP TABLE IF EXISTS {table};\n" for table in INDEX_TABLES)
        self._conn.executescript(script)
        logger.debug("Index at %s opened in create mode; existing documents dropped", self.path)

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise IndexStoreError(f"Index at {self.path} is closed")
        return self._conn

    @contextmanager
    def _savepoint(self, name: str) -> Iterator[sqlite3.Connection]:
        """Apply the enclosed writes all-or-nothing inside the pending transaction."""

        conn = self._require_open()
        try:
            if not conn.in_transaction:
                conn.execute("BEGIN")
            conn.execute(f"SAVEPOINT {name}")
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Cannot start write at {self.path}: {exc}") from exc
        try:
            yield conn
        except BaseException:
            try:
                conn.execute(f"ROLLBACK TO {name}")
                conn.execute(f"RELEASE {name}")
            except sqlite3.Error as exc:
                raise IndexStoreError(f"Cannot undo partial write at {self.path}: {exc}") from exc
            raise
        try:
            conn.execute(f"RELEASE {name}")
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Cannot finish write at {self.path}: {exc}") from exc

    def delete_documents(self, term_field: str, term_value: str) -> int:
        """Delete every document holding the exact term; returns how many were removed."""

        conn = self._require_open()
        try:
            doc_ids = [
                row["doc_id"]
                for row in conn.execute(
                    "SELECT DISTINCT doc_id FROM terms WHERE field = ? AND value = ?",
                    (term_field, term_value),
                )
            ]
            for doc_id in doc_ids:
                for table in _PER_DOC_TABLES:
                    conn.execute(f"DELETE FROM {table} WHERE doc_id = ?", (doc_id,))
                conn.execute("DELETE FROM documents WHERE doc_id = ?", (doc_id,))
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Cannot delete documents at {self.path}: {exc}") from exc
        return len(doc_ids)

    def add_document(self, document: Document) -> int:
        """Insert `document`; a value the store cannot bind leaves nothing behind."""

        if document.facet_paths() and document.facet_ordinals is None:
            raise ValueError("Document has unresolved facets; run FacetsConfig.build first")
        with self._savepoint("add_document") as conn:
            try:
                return self._insert(conn, document)
            except sqlite3.Error as exc:
                raise IndexStoreError(f"Cannot add document at {self.path}: {exc}") from exc

    def _insert(self, conn: sqlite3.Connection, document: Document) -> int:
        cursor = conn.execute(
            "INSERT INTO documents (stored_json) VALUES (?)",
            (json.dumps(document.stored_fields(), ensure_ascii=False),),
        )
        doc_id = int(cursor.lastrowid)
        for f in document.fields:
            if f.kind == FieldKind.STRING:
                conn.execute(
                    "INSERT INTO terms (doc_id, field, value) VALUES (?, ?, ?)",
                    (doc_id, f.name, str(f.value)),
                )
            elif f.kind == FieldKind.TEXT:
                conn.execute(
                    "INSERT INTO text_fields (doc_id, field, body) VALUES (?, ?, ?)",
                    (doc_id, f.name, f.value),
                )
            elif f.kind == FieldKind.POINT:
                conn.execute(
                    "INSERT INTO points (doc_id, field, value) VALUES (?, ?, ?)",
                    (doc_id, f.name, f.value),
                )
            elif f.kind == FieldKind.SORTED:
                numeric = isinstance(f.value, (int, float))
                conn.execute(
                    "INSERT INTO sort_values (doc_id, field, num_value, str_value) VALUES (?, ?, ?, ?)",
                    (doc_id, f.name, f.value if numeric else None, None if numeric else str(f.value)),
                )
            elif f.kind == FieldKind.LATLON:
                latitude, longitude = f.value
                conn.execute(
                    "INSERT INTO geo_points (doc_id, field, latitude, longitude) VALUES (?, ?, ?, ?)",
                    (doc_id, f.name, latitude, longitude),
                )
        for dim, ordinal in document.facet_ordinals or []:
            conn.execute(
                "INSERT INTO facet_ordinals (doc_id, dim, ordinal) VALUES (?, ?, ?)",
                (doc_id, dim, ordinal),
            )
        return doc_id

    def update_document(self, term_field: str, term_value: str, document: Document) -> int:
        """Replace all documents matching the exact term with `document`.

        If the new document cannot be written the old one is kept.
        """

        with self._savepoint("upsert"):
            self.delete_documents(term_field, term_value)
            return self.add_document(document)

    def num_docs(self) -> int:
        return int(self._require_open().execute("SELECT COUNT(*) FROM documents").fetchone()[0])

    def commit(self) -> None:
        try:
            self._require_open().commit()
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Index commit failed at {self.path}: {exc}") from exc

    def close(self) -> None:
        """Commit pending changes and release the store."""

        if self._conn is None:
            return
        try:
            self._conn.commit()
            self._conn.close()
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Index close failed at {self.path}: {exc}") from exc
        finally:
            self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None


class IndexReader:
    """Read-only view over a committed index directory."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        db_path = self.path / INDEX_DB_NAME
        if not db_path.exists():
            raise FileNotFoundError(f"No index found at {self.path}")
        self._conn = _connect(db_path, read_only=True)

    def num_docs(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0])

    def _stored(self, doc_ids: list[int]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for doc_id in doc_ids:
            row = self._conn.execute(
                "SELECT stored_json FROM documents WHERE doc_id = ?", (doc_id,)
            ).fetchone()
            if row is not None:
                out.append(json.loads(row["stored_json"]))
        return out

    def find_by_term(self, term_field: str, term_value: str) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT DISTINCT doc_id FROM terms WHERE field = ? AND value = ? ORDER BY doc_id",
            (term_field, term_value),
        ).fetchall()
        return self._stored([int(row["doc_id"]) for row in rows])

    def search(self, query: str, *, field_name: str = "contents", limit: int = 10) -> list[dict[str, Any]]:
        """Full-text match (FTS5 syntax) restricted to one text field, best first."""

        hits = self._conn.execute(
            "SELECT rowid AS id FROM text_fts WHERE text_fts MATCH ? AND field = ? ORDER BY bm25(text_fts)",
            (query, field_name),
        ).fetchall()
        doc_ids: list[int] = []
        for hit in hits:
            row = self._conn.execute("SELECT doc_id FROM text_fields WHERE id = ?", (hit["id"],)).fetchone()
            if row is None or int(row["doc_id"]) in doc_ids:
                continue
            doc_ids.append(int(row["doc_id"]))
            if len(doc_ids) >= max(1, int(limit)):
                break
        return self._stored(doc_ids)

    def geo_point(
        self,
        term_field: str,
        term_value: str,
        field_name: str = "location",
    ) -> tuple[float, float] | None:
        row = self._conn.execute(
            """
            SELECT geo_points.latitude, geo_points.longitude
            FROM geo_points JOIN terms ON terms.doc_id = geo_points.doc_id
            WHERE terms.field = ? AND terms.value = ? AND geo_points.field = ?
            LIMIT 1
            """,
            (term_field, term_value, field_name),
        ).fetchone()
        return None if row is None else (float(row[0]), float(row[1]))

    def facet_counts(self, taxonomy: TaxonomyReader, dim: str, *path: str) -> dict[str, int]:
        """Count documents per child label under `dim/path...`; unused labels are omitted."""

        parent = taxonomy.get_ordinal(dim, *path)
        if parent is None:
            return {}
        counts: dict[str, int] = {}
        for ordinal, label in taxonomy.children(parent):
            count = self._conn.execute(
                "SELECT COUNT(DISTINCT doc_id) FROM facet_ordinals WHERE ordinal = ?",
                (ordinal,),
            ).fetchone()[0]
            if count:
                counts[label] = int(count)
        return counts

    def close(self) -> None:
        self._conn.close()
