"""
Tests for the DuckDB catalog store.
"""

import duckdb
import pytest

from librarian.catalog import DEFAULT_COVER_URL, CatalogStore
from librarian.errors import CatalogError
from librarian.models import CatalogRecord, JobError, JobResult, JobStatus


@pytest.fixture
def catalog(tmp_path):
    store = CatalogStore(tmp_path / "catalog.duckdb")
    yield store
    store.close()


def _record(identifier="book1", **overrides):
    data = dict(title="The Republic", author="Plato", year=380, source_identifier=identifier,
                pdf_url=f"/storage/books/internet_archive/{identifier}.pdf")
    data.update(overrides)
    return CatalogRecord(**data)


class TestBooks:
    """Catalog records."""

    def test_insert_and_get(self, catalog):
        book_id = catalog.upsert_book(_record(genres=["Philosophy"], subgenre="Ancient", pages=300))

        record = catalog.get_book("book1")
        assert record.id == book_id
        assert record.title == "The Republic"
        assert record.year == 380
        assert record.genres == ["Philosophy"]
        assert record.subgenre == "Ancient"
        assert record.pages == 300
        assert record.cover_url == DEFAULT_COVER_URL
        assert record.created_at is not None

    def test_missing_book(self, catalog):
        assert catalog.get_book("nope") is None
        assert catalog.get_book("") is None

    def test_upsert_updates_in_place(self, catalog):
        first = catalog.upsert_book(_record())
        second = catalog.upsert_book(_record(title="The Republic (Jowett translation)"))

        assert first == second
        assert len(catalog.list_books()) == 1
        assert catalog.get_book("book1").title == "The Republic (Jowett translation)"

    def test_null_genres_filled_later(self, catalog):
        catalog.upsert_book(_record())
        assert catalog.get_book("book1").genres is None

        catalog.upsert_book(_record(genres=["Philosophy", "Politics"]))
        assert catalog.get_book("book1").genres == ["Philosophy", "Politics"]

    def test_existing_genres_never_overwritten(self, catalog):
        catalog.upsert_book(_record(genres=["Philosophy"], subgenre="Ancient"))

        catalog.upsert_book(_record(genres=["Drama"], subgenre="Modern"))
        catalog.upsert_book(_record(genres=None, subgenre=None))

        record = catalog.get_book("book1")
        assert record.genres == ["Philosophy"]
        assert record.subgenre == "Ancient"

    def test_empty_genres_stored_as_null(self, catalog):
        catalog.upsert_book(_record(genres=[], subgenre="Ancient"))
        record = catalog.get_book("book1")
        assert record.genres is None
        assert record.subgenre is None

    @pytest.mark.parametrize("field", ["title", "author", "source_identifier"])
    def test_required_fields(self, catalog, field):
        with pytest.raises(CatalogError):
            catalog.upsert_book(_record(**{field: "  "}))

    def test_existing_and_classified_identifiers(self, catalog):
        catalog.upsert_book(_record("a", genres=["Law"]))
        catalog.upsert_book(_record("b"))

        assert catalog.existing_identifiers(["a", "b", "c", ""]) == {"a", "b"}
        assert catalog.classified_identifiers(["a", "b", "c"]) == {"a"}
        assert catalog.existing_identifiers([]) == set()

    def test_list_books_newest_first(self, catalog):
        catalog.upsert_book(_record("a"))
        catalog.upsert_book(_record("b"))
        assert [r.source_identifier for r in catalog.list_books()] == ["b", "a"]
        assert len(catalog.list_books(limit=1)) == 1


class TestJobLogs:
    """Ingestion job history."""

    def test_create_and_complete(self, catalog):
        log_id = catalog.create_job_log("job_1", "scheduled")
        running = catalog.get_job_log(log_id)
        assert running["status"] == "running"
        assert running["job_type"] == "scheduled"

        result = JobResult(job_id="job_1", page=3, processed=2, added=1, failed=1,
                           errors=[JobError(identifier="bad", error="PDF download or validation failed")])
        result.finalize()
        catalog.log_job_result(log_id, result)

        job = catalog.get_job_log(log_id)
        assert job["status"] == JobStatus.PARTIAL.value
        assert job["page"] == 3
        assert job["books_added"] == 1
        assert job["books_failed"] == 1
        assert job["error_details"][0]["identifier"] == "bad"
        assert job["completed_at"] is not None

    def test_recent_logs(self, catalog):
        ids = [catalog.create_job_log(f"job_{i}") for i in range(3)]
        logs = catalog.recent_job_logs(limit=2)
        assert len(logs) == 2
        assert {log["id"] for log in logs} <= set(ids)

    def test_missing_log(self, catalog):
        assert catalog.get_job_log(12345) is None


class TestIngestionState:
    """Paging and pause state."""

    def test_default_state(self, catalog):
        state = catalog.get_state()
        assert state.source == "internet_archive"
        assert state.last_page == 1
        assert state.total_ingested == 0
        assert not state.is_paused

    def test_mark_run_completed(self, catalog):
        catalog.mark_run_started("internet_archive")
        assert catalog.get_state().last_run_status == "running"

        result = JobResult(job_id="job_1", added=3, skipped=2)
        result.finalize()
        catalog.mark_run_completed("internet_archive", result, next_page=2)
        catalog.mark_run_completed("internet_archive", result)

        state = catalog.get_state()
        assert state.last_page == 3
        assert state.total_ingested == 6
        assert state.last_run_status == "completed"
        assert state.last_run_skipped == 2
        assert state.last_run_at is not None

    def test_pause_resume(self, catalog):
        paused = catalog.pause(paused_by="ops")
        assert paused.is_paused
        assert paused.paused_by == "ops"
        assert paused.paused_at is not None
        assert catalog.get_state().is_paused

        resumed = catalog.resume()
        assert not resumed.is_paused
        assert resumed.paused_by is None

    def test_reset(self, catalog):
        catalog.update_state("internet_archive", last_page=9)
        state = catalog.reset_state()
        assert state.last_page == 1
        assert state.last_run_status == "reset"

    def test_unknown_field_rejected(self, catalog):
        with pytest.raises(ValueError):
            catalog.update_state("internet_archive", current_page=2)

    def test_sources_are_independent(self, catalog):
        catalog.update_state("gutenberg", last_page=4)
        assert catalog.get_state("gutenberg").last_page == 4
        assert catalog.get_state().last_page == 1


def test_migrates_catalog_without_genre_columns(tmp_path):
    db_path = tmp_path / "old.duckdb"
    conn = duckdb.connect(str(db_path))
    conn.execute("CREATE SEQUENCE books_id_seq START 1")
    conn.execute("""
        CREATE TABLE books (
            id INTEGER DEFAULT nextval('books_id_seq'),
            title VARCHAR NOT NULL, author VARCHAR NOT NULL, published_year INTEGER,
            language VARCHAR, source VARCHAR, source_identifier VARCHAR NOT NULL,
            pdf_url VARCHAR, description VARCHAR, cover_url VARCHAR,
            created_at TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("INSERT INTO books (title, author, source_identifier) VALUES ('Old', 'Anon', 'old1')")
    conn.close()

    store = CatalogStore(db_path)
    try:
        record = store.get_book("old1")
        assert record.genres is None
        assert record.pages is None

        store.upsert_book(CatalogRecord(title="Old", author="Anon", source_identifier="old1", genres=["Poetry"]))
        assert store.get_book("old1").genres == ["Poetry"]
    finally:
        store.close()
