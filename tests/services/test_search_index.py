from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from listing_index.services.search_index import (
    INDEX_DB_NAME,
    TAXONOMY_DB_NAME,
    Document,
    FacetsConfig,
    IndexReader,
    IndexStoreError,
    IndexWriter,
    OpenMode,
    TaxonomyReader,
    TaxonomyWriter,
)


def _doc(key: str, title: str, *, city: str = "madrid") -> Document:
    doc = Document()
    doc.add_string("id", key)
    doc.add_text("title", title)
    doc.add_text("contents", f"{title} {city}", stored=False)
    doc.add_point("price", 100.0)
    doc.add_facet("city", city)
    return doc


def _write(index_dir: Path, taxo_dir: Path, docs: list[tuple[str, Document]], **kwargs) -> None:
    config = FacetsConfig()
    writer = IndexWriter(index_dir, **kwargs)
    taxonomy = TaxonomyWriter(taxo_dir)
    for key, doc in docs:
        writer.update_document("id", key, config.build(taxonomy, doc))
    taxonomy.commit()
    writer.close()
    taxonomy.close()


def test_update_document_twice_leaves_one_document_with_latest_values(tmp_path: Path) -> None:
    _write(tmp_path / "idx", tmp_path / "taxo", [("1", _doc("1", "old title")), ("1", _doc("1", "new title"))])

    reader = IndexReader(tmp_path / "idx")
    try:
        assert reader.num_docs() == 1
        assert reader.find_by_term("id", "1") == [{"id": "1", "title": "new title"}]
    finally:
        reader.close()


def test_uncommitted_changes_are_not_visible_until_commit(tmp_path: Path) -> None:
    config = FacetsConfig()
    writer = IndexWriter(tmp_path / "idx")
    taxonomy = TaxonomyWriter(tmp_path / "taxo")
    writer.update_document("id", "1", config.build(taxonomy, _doc("1", "pending")))

    reader = IndexReader(tmp_path / "idx")
    try:
        assert reader.num_docs() == 0
        writer.commit()
        assert reader.num_docs() == 1
    finally:
        reader.close()
        writer.close()
        taxonomy.close()


def test_create_mode_starts_empty_and_append_mode_keeps_documents(tmp_path: Path) -> None:
    _write(tmp_path / "idx", tmp_path / "taxo", [("1", _doc("1", "a"))])
    _write(tmp_path / "idx", tmp_path / "taxo", [("2", _doc("2", "b"))], open_mode=OpenMode.CREATE_OR_APPEND)

    reader = IndexReader(tmp_path / "idx")
    assert reader.num_docs() == 2
    reader.close()

    _write(tmp_path / "idx", tmp_path / "taxo", [("3", _doc("3", "c"))], open_mode=OpenMode.CREATE)

    reader = IndexReader(tmp_path / "idx")
    assert reader.num_docs() == 1
    assert reader.find_by_term("id", "1") == []
    reader.close()


def test_taxonomy_assigns_stable_ordinals_with_ancestors_first(tmp_path: Path) -> None:
    taxonomy = TaxonomyWriter(tmp_path / "taxo")
    leaf = taxonomy.add_category("property_type", "home", "entire home")
    assert taxonomy.add_category("property_type", "home", "entire home") == leaf
    assert taxonomy.size() == 4
    taxonomy.close()

    reopened = TaxonomyWriter(tmp_path / "taxo")
    assert reopened.add_category("property_type", "home", "entire home") == leaf
    assert reopened.size() == 4
    reopened.close()

    reader = TaxonomyReader(tmp_path / "taxo")
    try:
        dim = reader.get_ordinal("property_type")
        family = reader.get_ordinal("property_type", "home")
        assert dim is not None and family is not None
        assert dim < family < leaf
        assert reader.children(family) == [(leaf, "entire home")]
    finally:
        reader.close()


def test_hierarchical_facets_count_at_every_level(tmp_path: Path) -> None:
    config = FacetsConfig()
    config.set_hierarchical("property_type")
    writer = IndexWriter(tmp_path / "idx")
    taxonomy = TaxonomyWriter(tmp_path / "taxo")
    for key, family, kind in [("1", "home", "entire home"), ("2", "home", "room in home"), ("3", "loft", "entire loft")]:
        doc = Document()
        doc.add_string("id", key)
        doc.add_facet("property_type", family, kind)
        writer.add_document(config.build(taxonomy, doc))
    taxonomy.close()
    writer.close()

    reader = IndexReader(tmp_path / "idx")
    taxo_reader = TaxonomyReader(tmp_path / "taxo")
    try:
        assert reader.facet_counts(taxo_reader, "property_type") == {"home": 2, "loft": 1}
        assert reader.facet_counts(taxo_reader, "property_type", "home") == {"entire home": 1, "room in home": 1}
        assert reader.facet_counts(taxo_reader, "unknown") == {}
    finally:
        reader.close()
        taxo_reader.close()


def test_facet_counts_ignore_labels_whose_documents_were_replaced(tmp_path: Path) -> None:
    _write(
        tmp_path / "idx",
        tmp_path / "taxo",
        [("1", _doc("1", "a", city="madrid")), ("1", _doc("1", "a", city="sevilla"))],
    )

    reader = IndexReader(tmp_path / "idx")
    taxonomy = TaxonomyReader(tmp_path / "taxo")
    try:
        assert reader.facet_counts(taxonomy, "city") == {"sevilla": 1}
    finally:
        reader.close()
        taxonomy.close()


def test_flat_dimension_rejects_paths_and_repeats(tmp_path: Path) -> None:
    config = FacetsConfig()
    taxonomy = TaxonomyWriter(tmp_path / "taxo")

    nested = Document()
    nested.add_facet("city", "spain", "madrid")
    with pytest.raises(ValueError):
        config.build(taxonomy, nested)

    repeated = Document()
    repeated.add_facet("city", "madrid")
    repeated.add_facet("city", "sevilla")
    with pytest.raises(ValueError):
        config.build(taxonomy, repeated)

    config.set_multi_valued("city")
    built = config.build(taxonomy, repeated)
    assert len(built.facet_ordinals or []) == 2
    taxonomy.close()


def test_unresolved_facets_cannot_be_written(tmp_path: Path) -> None:
    writer = IndexWriter(tmp_path / "idx")
    try:
        with pytest.raises(ValueError):
            writer.add_document(_doc("1", "no ordinals"))
    finally:
        writer.close()


def test_full_text_search_and_geo_lookup(tmp_path: Path) -> None:
    config = FacetsConfig()
    writer = IndexWriter(tmp_path / "idx")
    taxonomy = TaxonomyWriter(tmp_path / "taxo")
    cozy = _doc("1", "cozy loft near the beach")
    cozy.add_latlon("location", 40.4, -3.7)
    writer.add_document(config.build(taxonomy, cozy))
    writer.add_document(config.build(taxonomy, _doc("2", "quiet mountain cabin")))
    writer.close()
    taxonomy.close()

    reader = IndexReader(tmp_path / "idx")
    try:
        assert [hit["id"] for hit in reader.search("beach")] == ["1"]
        assert [hit["id"] for hit in reader.search("cabin", field_name="title")] == ["2"]
        assert reader.search("beach", field_name="title")[0]["title"] == "cozy loft near the beach"
        assert reader.geo_point("id", "1") == (40.4, -3.7)
        assert reader.geo_point("id", "2") is None
    finally:
        reader.close()


def test_stored_fields_skip_unstored_values_and_group_repeats() -> None:
    doc = Document()
    doc.add_string("id", "7")
    doc.add_text("contents", "hidden", stored=False)
    doc.add_text("amenity", "Wifi")
    doc.add_text("amenity", "Kitchen")
    doc.add_text("name", "   ")

    assert doc.stored_fields() == {"id": "7", "amenity": ["Wifi", "Kitchen"]}
    assert doc.get("contents") is None


def test_closed_writer_raises_store_error(tmp_path: Path) -> None:
    writer = IndexWriter(tmp_path / "idx")
    writer.close()

    with pytest.raises(IndexStoreError):
        writer.commit()
    assert not writer.is_open


def test_readers_require_existing_stores(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        IndexReader(tmp_path / "missing")
    with pytest.raises(FileNotFoundError):
        TaxonomyReader(tmp_path / "missing")


def test_failed_update_keeps_the_previous_document(tmp_path: Path) -> None:
    _write(tmp_path / "idx", tmp_path / "taxo", [("7", _doc("7", "old title"))])
    config = FacetsConfig()
    writer = IndexWriter(tmp_path / "idx")
    taxonomy = TaxonomyWriter(tmp_path / "taxo")
    oversized = _doc("7", "new title")
    oversized.add_point("number_of_reviews", 10**30)

    with pytest.raises(OverflowError):
        writer.update_document("id", "7", config.build(taxonomy, oversized))
    with pytest.raises(ValueError):
        writer.update_document("id", "7", _doc("7", "unresolved facets"))
    writer.close()
    taxonomy.close()

    reader = IndexReader(tmp_path / "idx")
    try:
        assert reader.num_docs() == 1
        assert reader.find_by_term("id", "7") == [{"id": "7", "title": "old title"}]
        assert [hit["id"] for hit in reader.search("old")] == ["7"]
        assert reader.search("new") == []
    finally:
        reader.close()


def test_failed_add_leaves_no_partial_document(tmp_path: Path) -> None:
    config = FacetsConfig()
    writer = IndexWriter(tmp_path / "idx")
    taxonomy = TaxonomyWriter(tmp_path / "taxo")
    writer.add_document(config.build(taxonomy, _doc("1", "kept")))
    oversized = _doc("2", "dropped")
    oversized.add_sorted("number_of_reviews", -(10**30))

    with pytest.raises(OverflowError):
        writer.add_document(config.build(taxonomy, oversized))
    assert writer.num_docs() == 1
    writer.close()
    taxonomy.close()

    reader = IndexReader(tmp_path / "idx")
    try:
        assert reader.find_by_term("id", "2") == []
        assert reader.search("dropped") == []
    finally:
        reader.close()


def test_missing_index_tables_raise_store_error(tmp_path: Path) -> None:
    config = FacetsConfig()
    writer = IndexWriter(tmp_path / "idx")
    taxonomy = TaxonomyWriter(tmp_path / "taxo")
    document = config.build(taxonomy, _doc("1", "loft"))
    other = sqlite3.connect(tmp_path / "idx" / INDEX_DB_NAME)
    other.execute("DROP TABLE terms")
    other.close()

    try:
        with pytest.raises(IndexStoreError):
            writer.update_document("id", "1", document)
    finally:
        writer.close()
        taxonomy.close()


def test_missing_taxonomy_table_raises_store_error(tmp_path: Path) -> None:
    taxonomy = TaxonomyWriter(tmp_path / "taxo")
    other = sqlite3.connect(tmp_path / "taxo" / TAXONOMY_DB_NAME)
    other.execute("DROP TABLE categories")
    other.close()

    try:
        with pytest.raises(IndexStoreError):
            taxonomy.add_category("city", "madrid")
    finally:
        taxonomy.close()
