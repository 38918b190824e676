from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import listing_index.main as main_module
from listing_index.config import IndexPaths
from listing_index.schemas import IngestRequest

CSV_TEXT = (
    "id,name,property_type,price,neighbourhood_cleansed,host_id,host_name,host_response_time\n"
    "1,Loft Sol,Entire loft,90,Centro,10,Ana,within an hour\n"
    "2,Casa Retiro,Entire home,450,Retiro,10,Ana,within an hour\n"
    "3,Room,Private room in rental unit,200,Centro,11,Luis,within a day\n"
)


@pytest.fixture
def client(monkeypatch, tmp_path: Path) -> TestClient:
    monkeypatch.setattr(main_module.settings, "paths", IndexPaths.under(tmp_path / "indexes"))
    monkeypatch.setattr(main_module.settings, "input_path", None)
    return TestClient(main_module.app)


def _csv(tmp_path: Path, text: str = CSV_TEXT) -> str:
    path = tmp_path / "listings.csv"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_health(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_indexes_before_any_run_report_missing_destinations(client: TestClient) -> None:
    payload = client.get("/api/indexes").json()

    assert [d["name"] for d in payload["destinations"]] == ["properties", "hosts"]
    assert all(d["exists"] is False and d["num_docs"] == 0 for d in payload["destinations"])


def test_ingest_then_inspect_indexes(client: TestClient, tmp_path: Path) -> None:
    response = client.post("/api/ingest", json={"input_path": _csv(tmp_path), "mode": "build"})

    assert response.status_code == 200
    summary = response.json()
    assert summary["status"] == "ok"
    assert summary["properties_indexed"] == 3
    assert summary["hosts_indexed"] == 2
    assert summary["state"] == "closed"

    destinations = {d["name"]: d for d in client.get("/api/indexes").json()["destinations"]}
    properties = destinations["properties"]
    assert properties["exists"] is True
    assert properties["num_docs"] == 3
    assert properties["facets"]["price_range"] == {"barato": 1, "caro": 1, "asequible": 1}
    assert properties["facets"]["neighbourhood_cleansed"] == {"centro": 2, "retiro": 1}
    assert properties["facets"]["property_type"] == {"loft": 1, "home": 1, "rental unit": 1}
    hosts = destinations["hosts"]
    assert hosts["num_docs"] == 2
    assert hosts["facets"]["host_response_time"] == {"within an hour": 1, "within a day": 1}


def test_ingest_missing_input_is_404(client: TestClient, tmp_path: Path) -> None:
    response = client.post("/api/ingest", json={"input_path": str(tmp_path / "nope.csv")})

    assert response.status_code == 404
    assert not (tmp_path / "indexes").exists()


def test_ingest_invalid_options_are_422(client: TestClient, tmp_path: Path) -> None:
    bad_mode = client.post("/api/ingest", json={"input_path": _csv(tmp_path), "mode": "append"})
    bad_encoding = client.post("/api/ingest", json={"input_path": _csv(tmp_path), "encoding": "no-such-codec"})
    no_input = client.post("/api/ingest", json={})

    assert bad_mode.status_code == 422
    assert bad_encoding.status_code == 422
    assert no_input.status_code == 422


def test_ingest_error_ceiling_is_409_with_summary(client: TestClient, tmp_path: Path) -> None:
    text = "id,name,host_id\n1,ok,1\n,bad,2\n,bad,3\n"

    response = client.post("/api/ingest", json={"input_path": _csv(tmp_path, text), "max_errors": 1})

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["status"] == "failed"
    assert detail["errors"] == 2
    assert detail["properties_indexed"] == 1


def test_ingest_dry_run_called_directly(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(main_module.settings, "paths", IndexPaths.under(tmp_path / "indexes"))

    summary = main_module.ingest(IngestRequest(input_path=_csv(tmp_path), dry_run=True))

    assert summary.status == "ok"
    assert summary.dry_run is True
    assert summary.properties_indexed == 3
    assert not (tmp_path / "indexes").exists()
