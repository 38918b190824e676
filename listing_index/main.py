"""FastAPI ops surface: trigger ingestion runs and inspect the on-disk indexes."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Body, FastAPI, HTTPException

from listing_index.config import ConfigError, load_settings
from listing_index.schemas import (
    DestinationStatsResponse,
    HealthResponse,
    IndexesResponse,
    IngestRequest,
    RunSummaryResponse,
)
from listing_index.services.documents import HOST_FACET_DIMS, PROPERTY_FACET_DIMS
from listing_index.services.index_writer import IndexStoreError
from listing_index.services.pipeline import (
    ErrorCeilingExceeded,
    RunResult,
    SourceError,
    run_ingestion,
)
from listing_index.services.search_index import (
    INDEX_DB_NAME,
    TAXONOMY_DB_NAME,
    IndexReader,
    TaxonomyReader,
)

load_dotenv()
settings = load_settings()
app = FastAPI(title="Airbnb Listing Indexer", version="0.1.0")
logger = logging.getLogger(__name__)

# property_type is hierarchical; its top level (families) is reported like a flat dim.
FLAT_FACET_DIMS = {
    "properties": PROPERTY_FACET_DIMS,
    "hosts": HOST_FACET_DIMS,
}


def _summary(result: RunResult) -> RunSummaryResponse:
    payload = result.as_dict()
    payload.pop("failed")
    return RunSummaryResponse(status="failed" if result.failed else "ok", **payload)


def _destination_stats(name: str, index_path: Path, taxonomy_path: Path) -> DestinationStatsResponse:
    exists = (index_path / INDEX_DB_NAME).exists() and (taxonomy_path / TAXONOMY_DB_NAME).exists()
    stats = DestinationStatsResponse(name=name, path=str(index_path), exists=exists)
    if not exists:
        return stats

    reader = IndexReader(index_path)
    taxonomy = TaxonomyReader(taxonomy_path)
    try:
        stats.num_docs = reader.num_docs()
        stats.taxonomy_size = taxonomy.size()
        for dim in FLAT_FACET_DIMS[name]:
            counts = reader.facet_counts(taxonomy, dim)
            if counts:
                stats.facets[dim] = counts
    finally:
        reader.close()
        taxonomy.close()
    return stats


@app.get("/api/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/api/indexes", response_model=IndexesResponse)
def indexes() -> IndexesResponse:
    """Report document counts and facet label counts for both destinations."""

    paths = settings.paths
    return IndexesResponse(
        destinations=[
            _destination_stats("properties", paths.properties, paths.properties_taxonomy),
            _destination_stats("hosts", paths.hosts, paths.hosts_taxonomy),
        ]
    )


@app.post("/api/ingest", response_model=RunSummaryResponse)
def ingest(payload: IngestRequest | None = Body(default=None)) -> RunSummaryResponse:
    """Run one ingestion synchronously and return its summary."""

    request = payload or IngestRequest()
    try:
        options = settings.ingest_options(
            request.input_path,
            mode=request.mode,
            dry_run=request.dry_run,
            force=request.force,
            max_errors=request.max_errors,
            delimiter=request.delimiter,
            encoding=request.encoding,
            id_field=request.id_field,
        )
    except ConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    try:
        result = run_ingestion(options)
    except SourceError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ErrorCeilingExceeded as exc:
        raise HTTPException(status_code=409, detail=_summary(exc.result).model_dump()) from exc
    except IndexStoreError as exc:
        logger.error("Ingestion failed in the index store: %s", exc)
        raise HTTPException(status_code=500, detail=f"{type(exc).__name__}: {exc}") from exc
    return _summary(result)
