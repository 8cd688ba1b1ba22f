"""
Tests for the FastAPI ingestion endpoints.
"""

import sys
import unittest.mock
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add project root to path so the api package resolves
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.main import app, get_catalog, get_ingestor
from librarian import settings
from librarian.catalog import CatalogStore
from librarian.filters import FilterConfig
from librarian.ingest import LibraryIngestor
from librarian.models import ArchiveItem, ClassificationResult
from librarian.pdf import PdfDownload
from librarian.storage import StorageUploader

PDF_BYTES = b"%PDF-1.4\n% test document\n"


@pytest.fixture
def catalog(tmp_path):
    store = CatalogStore(tmp_path / "catalog.duckdb")
    yield store
    store.close()


@pytest.fixture
def fetcher():
    return unittest.mock.MagicMock(return_value=[
        ArchiveItem(identifier="a", title="The Republic", creator="Plato"),
        ArchiveItem(identifier="b", title="Leaves of Grass", creator="Whitman"),
    ])


@pytest.fixture
def client(tmp_path, catalog, fetcher, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "cron-secret")
    monkeypatch.setattr(settings, "ADMIN_INGEST_SECRET", "admin-secret")
    monkeypatch.setattr(settings, "DEFAULT_DELAY_SECONDS", 0)

    ingestor = LibraryIngestor(
        catalog, StorageUploader(tmp_path / "storage"),
        classifier=unittest.mock.MagicMock(return_value=ClassificationResult(genres=["Literature"])),
        fetcher=fetcher,
        downloader=unittest.mock.MagicMock(return_value=PdfDownload(content=PDF_BYTES, size=len(PDF_BYTES))),
        filter_config=FilterConfig(),
    )
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_ingestor] = lambda: ingestor
    yield TestClient(app)
    app.dependency_overrides.clear()


ADMIN = {"Authorization": "Bearer admin-secret"}
CRON = {"Authorization": "Bearer cron-secret"}


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"

    def test_genres(self, client):
        data = client.get("/api/genres").json()
        assert len(data["genres"]) == 27
        assert "Philosophy" in data["genres"]
        assert "Legal Code" in data["subgenres"]


class TestCronIngest:

    def test_requires_secret(self, client, fetcher):
        assert client.get("/api/ingest").status_code == 401
        assert client.get("/api/ingest", headers=ADMIN).status_code == 401
        fetcher.assert_not_called()

    def test_runs_job(self, client, catalog, fetcher):
        response = client.get("/api/ingest", headers=CRON)

        assert response.status_code == 200
        data = response.json()
        assert data["success"]
        assert data["result"]["status"] == "completed"
        assert data["result"]["added"] == 2
        fetcher.assert_called_once_with(batch_size=settings.DEFAULT_BATCH_SIZE, page=1)
        assert catalog.recent_job_logs()[0]["job_type"] == "scheduled"

    def test_open_when_no_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", None)
        assert client.get("/api/ingest").status_code == 200


class TestTriggerIngest:

    def test_requires_secret(self, client):
        assert client.post("/api/ingest/trigger", json={}, headers=CRON).status_code == 401

    def test_manual_run(self, client, catalog, fetcher):
        response = client.post("/api/ingest/trigger", json={"batch_size": 5, "page": 4}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["result"]["page"] == 4
        fetcher.assert_called_once_with(batch_size=5, page=4)
        assert catalog.get_book("a").genres == ["Literature"]
        assert catalog.get_state().last_page == 5

    def test_dry_run(self, client, catalog):
        response = client.post("/api/ingest/trigger", json={"dry_run": True}, headers=ADMIN)

        assert response.json()["result"]["dry_run"] is True
        assert catalog.list_books() == []

    def test_batch_size_validated(self, client):
        response = client.post("/api/ingest/trigger", json={"batch_size": 500}, headers=ADMIN)
        assert response.status_code == 422

    def test_conflict_while_job_running(self, client, catalog, fetcher):
        with catalog.job_lock:
            response = client.post("/api/ingest/trigger", json={}, headers=ADMIN)
            cron = client.get("/api/ingest", headers=CRON)

        assert response.status_code == 409
        assert cron.status_code == 409
        fetcher.assert_not_called()

    def test_reset(self, client, catalog, fetcher):
        catalog.update_state("internet_archive", last_page=8)

        response = client.post("/api/ingest/trigger", json={"reset": True}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["state"]["last_page"] == 1
        fetcher.assert_not_called()


class TestStateEndpoints:

    def test_pause_and_resume(self, client, fetcher):
        response = client.post("/api/ingest/pause", json={"paused_by": "ops"}, headers=ADMIN)
        assert response.json()["is_paused"] is True
        assert client.get("/api/ingest/state").json()["paused_by"] == "ops"

        paused_run = client.get("/api/ingest", headers=CRON).json()
        assert paused_run["result"]["status"] == "paused"
        fetcher.assert_not_called()

        response = client.post("/api/ingest/resume", headers=ADMIN)
        assert response.json()["is_paused"] is False

    def test_pause_requires_secret(self, client):
        assert client.post("/api/ingest/pause", json={}).status_code == 401

    def test_jobs(self, client):
        client.get("/api/ingest", headers=CRON)

        jobs = client.get("/api/ingest/jobs?limit=5").json()
        assert len(jobs) == 1
        assert jobs[0]["books_added"] == 2

        job = client.get(f"/api/ingest/jobs/{jobs[0]['id']}").json()
        assert job["status"] == "completed"
        assert client.get("/api/ingest/jobs/9999").status_code == 404


class TestClassifyEndpoint:

    def test_mock_classification(self, client, monkeypatch):
        monkeypatch.setenv("MOCK_GENRE_CLASSIFIER", "true")
        monkeypatch.delenv("ENABLE_GENRE_CLASSIFICATION", raising=False)

        response = client.post("/api/classify", json={"title": "Commentaries on the Law", "author": "Blackstone"})

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["result"] == {"genres": ["Law", "Politics"], "subgenre": "Legal Code"}

    def test_disabled(self, client, monkeypatch):
        monkeypatch.setenv("ENABLE_GENRE_CLASSIFICATION", "false")

        data = client.post("/api/classify", json={"title": "The Republic"}).json()

        assert data == {"enabled": False, "result": None}
