"""Pydantic schemas for the indexer ops API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: Literal["ok"]


class IngestRequest(BaseModel):
    """Input schema for `POST /api/ingest`; unset options fall back to settings."""

    input_path: str | None = Field(default=None, description="Listings CSV path; defaults to LISTINGS_INPUT_PATH")
    mode: Literal["build", "update", "rebuild"] | None = Field(default=None, description="Ingestion mode")
    dry_run: bool | None = Field(default=None, description="Run the whole pipeline without writing")
    force: bool | None = Field(default=None, description="Allow rebuild to delete index directories first")
    max_errors: int | None = Field(default=None, ge=0, description="Row error ceiling")
    delimiter: str | None = Field(default=None, min_length=1, max_length=1)
    encoding: str | None = Field(default=None, min_length=1)
    id_field: str | None = Field(default=None, min_length=1, description="Name of the listing id column")


class RunSummaryResponse(BaseModel):
    """Output schema for `POST /api/ingest`, also the 409 detail on a ceiling breach."""

    status: Literal["ok", "failed"]
    properties_indexed: int
    hosts_indexed: int
    rows_read: int
    errors: int
    properties_skipped: int
    max_errors: int
    elapsed_ms: int
    dry_run: bool
    state: str


class DestinationStatsResponse(BaseModel):
    """One index destination as seen on disk."""

    name: str
    path: str
    exists: bool
    num_docs: int = 0
    taxonomy_size: int = 0
    facets: dict[str, dict[str, int]] = Field(default_factory=dict)


class IndexesResponse(BaseModel):
    """Response schema for `GET /api/indexes`."""

    destinations: list[DestinationStatsResponse]
