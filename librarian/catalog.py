"""
Catalog store backed by DuckDB.

Holds the ``books`` catalog, the ``ingestion_logs`` job history and the
``ingestion_state`` paging/pause state used by the ingestion pipeline.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import duckdb

from . import settings
from .errors import CatalogError
from .models import CatalogRecord, IngestionState, JobResult

logger = logging.getLogger(__name__)

INTERNET_ARCHIVE_SOURCE = "internet_archive"
DEFAULT_COVER_URL = "https://picsum.photos/seed/book/400/600"

_BOOK_COLUMNS = (
    "id", "title", "author", "published_year", "language", "source", "source_identifier",
    "pdf_url", "description", "cover_url", "genres", "subgenre", "pages", "created_at",
)

_STATE_FIELDS = set(IngestionState.__fields__) - {"source"}


class CatalogStore:
    """Reads and writes catalog records and ingestion bookkeeping."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or settings.CATALOG_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_conn = duckdb.connect(str(self.db_path))
        self._lock = threading.RLock()
        # Held for the whole of an ingestion job; one job per catalog at a time
        self.job_lock = threading.Lock()
        self._setup_database()

    def _setup_database(self) -> None:
        """Create tables if they don't exist and migrate older ones."""
        self.db_conn.execute("CREATE SEQUENCE IF NOT EXISTS books_id_seq START 1")
        self.db_conn.execute("CREATE SEQUENCE IF NOT EXISTS ingestion_logs_id_seq START 1")

        # source_identifier uniqueness is enforced by upsert_book
        self.db_conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id                INTEGER DEFAULT nextval('books_id_seq'),
                title             VARCHAR NOT NULL,
                author            VARCHAR NOT NULL,
                published_year    INTEGER,
                language          VARCHAR,
                source            VARCHAR DEFAULT 'internet_archive',
                source_identifier VARCHAR NOT NULL,
                pdf_url           VARCHAR,
                description       VARCHAR,
                cover_url         VARCHAR,
                genres            VARCHAR[],
                subgenre          VARCHAR,
                pages             INTEGER,
                created_at        TIMESTAMP DEFAULT current_timestamp
            )
        """)

        self.db_conn.execute("""
            CREATE TABLE IF NOT EXISTS ingestion_logs (
                id              INTEGER DEFAULT nextval('ingestion_logs_id_seq'),
                job_id          VARCHAR,
                job_type        VARCHAR,
                status          VARCHAR,
                started_at      TIMESTAMP,
                completed_at    TIMESTAMP,
                page            INTEGER,
                books_processed INTEGER DEFAULT 0,
                books_added     INTEGER DEFAULT 0,
                books_skipped   INTEGER DEFAULT 0,
                books_filtered  INTEGER DEFAULT 0,
                books_failed    INTEGER DEFAULT 0,
                error_details   VARCHAR
            )
        """)

        self.db_conn.execute("""
            CREATE TABLE IF NOT EXISTS ingestion_state (
                source           VARCHAR,
                last_page        INTEGER DEFAULT 1,
                total_ingested   INTEGER DEFAULT 0,
                last_run_at      TIMESTAMP,
                last_run_status  VARCHAR DEFAULT 'idle',
                last_run_added   INTEGER DEFAULT 0,
                last_run_skipped INTEGER DEFAULT 0,
                last_run_failed  INTEGER DEFAULT 0,
                is_paused        BOOLEAN DEFAULT false,
                paused_at        TIMESTAMP,
                paused_by        VARCHAR,
                updated_at       TIMESTAMP
            )
        """)

        # Catalogs created before genre classification lack these columns
        result = self.db_conn.execute("PRAGMA table_info(books)").fetchall()
        existing_columns = {row[1] for row in result}
        for column, column_type in (("genres", "VARCHAR[]"), ("subgenre", "VARCHAR"), ("pages", "INTEGER")):
            if column not in existing_columns:
                self.db_conn.execute(f"ALTER TABLE books ADD COLUMN {column} {column_type}")
                logger.info(f"Added {column} column to books table")

        logger.info(f"Catalog tables initialized at {self.db_path}")

    def _fetch(self, sql: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            cursor = self.db_conn.execute(sql, list(params))
            columns = [d[0] for d in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> None:
        with self._lock:
            self.db_conn.execute(sql, list(params))

    # Books

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> CatalogRecord:
        data = dict(row)
        data["year"] = data.pop("published_year", None)
        return CatalogRecord(**data)

    def get_book(self, source_identifier: str) -> Optional[CatalogRecord]:
        """Look up a catalog record by its source identifier."""
        if not source_identifier:
            return None
        rows = self._fetch(
            f"SELECT {', '.join(_BOOK_COLUMNS)} FROM books WHERE source_identifier = ? LIMIT 1",
            [source_identifier],
        )
        return self._to_record(rows[0]) if rows else None

    def existing_identifiers(self, identifiers: Iterable[str]) -> Set[str]:
        """The subset of ``identifiers`` already present in the catalog."""
        ids = [i for i in identifiers if i and isinstance(i, str)]
        if not ids:
            return set()
        rows = self._fetch("SELECT source_identifier FROM books WHERE list_contains(?, source_identifier)", [ids])
        return {row["source_identifier"] for row in rows}

    def classified_identifiers(self, identifiers: Iterable[str]) -> Set[str]:
        """The subset of ``identifiers`` whose catalog record already has genres."""
        ids = [i for i in identifiers if i and isinstance(i, str)]
        if not ids:
            return set()
        rows = self._fetch(
            "SELECT source_identifier FROM books WHERE genres IS NOT NULL AND list_contains(?, source_identifier)",
            [ids],
        )
        return {row["source_identifier"] for row in rows}

    def list_books(self, limit: int = 50) -> List[CatalogRecord]:
        rows = self._fetch(f"SELECT {', '.join(_BOOK_COLUMNS)} FROM books ORDER BY id DESC LIMIT ?", [limit])
        return [self._to_record(row) for row in rows]

    def upsert_book(self, record: CatalogRecord) -> int:
        """
        Insert a catalog record, or update the existing one for its source identifier.

        Genres already stored for a source identifier are never replaced:
        once ``genres`` is non-null, the stored ``genres``/``subgenre`` pair wins.

        Returns:
            The row id

        Raises:
            CatalogError: If a required field is missing
        """
        for field in ("title", "author", "source_identifier"):
            if not (getattr(record, field) or "").strip():
                raise CatalogError(f"Invalid book data: {field} is required")

        # Lookup and write form one step so concurrent jobs cannot both insert
        with self._lock:
            return self._upsert_locked(record)

    def _upsert_locked(self, record: CatalogRecord) -> int:
        existing = self.get_book(record.source_identifier)
        genres, subgenre = record.genres or None, record.subgenre
        if existing and existing.genres is not None:
            genres, subgenre = existing.genres, existing.subgenre

        values = [
            record.title.strip(), record.author.strip(), record.year, record.language,
            record.source or INTERNET_ARCHIVE_SOURCE, record.pdf_url, record.description,
            record.cover_url or DEFAULT_COVER_URL, genres, subgenre if genres else None, record.pages,
        ]

        if existing is None:
            logger.info(f"Inserting book: {record.title} ({record.source_identifier})")
            rows = self._fetch("""
                INSERT INTO books (title, author, published_year, language, source, pdf_url,
                                   description, cover_url, genres, subgenre, pages, source_identifier)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
            """, values + [record.source_identifier])
            return rows[0]["id"]

        logger.info(f"Updating book: {record.title} ({record.source_identifier})")
        self._execute("""
            UPDATE books SET title = ?, author = ?, published_year = ?, language = ?, source = ?,
                             pdf_url = ?, description = ?, cover_url = ?, genres = ?, subgenre = ?, pages = ?
            WHERE source_identifier = ?
        """, values + [record.source_identifier])
        return existing.id

    # Job logs

    def create_job_log(self, job_id: str, job_type: str = "scheduled") -> int:
        rows = self._fetch("""
            INSERT INTO ingestion_logs (job_id, job_type, status, started_at)
            VALUES (?, ?, 'running', ?)
            RETURNING id
        """, [job_id, job_type, datetime.utcnow()])
        log_id = rows[0]["id"]
        logger.info(f"Created job log {log_id} for {job_id}")
        return log_id

    def log_job_result(self, log_id: int, result: JobResult) -> None:
        errors = [e.dict() for e in result.errors]
        self._execute("""
            UPDATE ingestion_logs
            SET status = ?, completed_at = ?, page = ?, books_processed = ?, books_added = ?,
                books_skipped = ?, books_filtered = ?, books_failed = ?, error_details = ?
            WHERE id = ?
        """, [
            result.status.value, result.completed_at or datetime.utcnow(), result.page,
            result.processed, result.added, result.skipped, result.filtered, result.failed,
            json.dumps(errors, default=str) if errors else None, log_id,
        ])
        logger.info(f"Logged job result {log_id}: {result.status.value} "
                    f"(processed={result.processed}, added={result.added}, "
                    f"skipped={result.skipped}, filtered={result.filtered}, failed={result.failed})")

    def recent_job_logs(self, limit: int = 10) -> List[Dict[str, Any]]:
        rows = self._fetch("SELECT * FROM ingestion_logs ORDER BY started_at DESC, id DESC LIMIT ?", [limit])
        for row in rows:
            row["error_details"] = json.loads(row["error_details"]) if row["error_details"] else None
        return rows

    def get_job_log(self, log_id: int) -> Optional[Dict[str, Any]]:
        rows = self._fetch("SELECT * FROM ingestion_logs WHERE id = ?", [log_id])
        if not rows:
            return None
        row = rows[0]
        row["error_details"] = json.loads(row["error_details"]) if row["error_details"] else None
        return row

    # Ingestion state

    def get_state(self, source: str = INTERNET_ARCHIVE_SOURCE) -> IngestionState:
        """Current state for a source, creating the default row on first use."""
        rows = self._fetch(
            f"SELECT source, {', '.join(sorted(_STATE_FIELDS))} FROM ingestion_state WHERE source = ?",
            [source],
        )
        if rows:
            return IngestionState(**rows[0])

        state = IngestionState(source=source)
        self._execute("INSERT INTO ingestion_state (source, updated_at) VALUES (?, ?)", [source, datetime.utcnow()])
        return state

    def update_state(self, source: str, **updates: Any) -> IngestionState:
        unknown = set(updates) - _STATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown ingestion state fields: {sorted(unknown)}")

        self.get_state(source)
        if updates:
            assignments = ", ".join(f"{name} = ?" for name in updates)
            self._execute(
                f"UPDATE ingestion_state SET {assignments}, updated_at = ? WHERE source = ?",
                list(updates.values()) + [datetime.utcnow(), source],
            )
        state = self.get_state(source)
        logger.info(f"Updated state for {source}: page={state.last_page}, total={state.total_ingested}")
        return state

    def mark_run_started(self, source: str = INTERNET_ARCHIVE_SOURCE) -> IngestionState:
        return self.update_state(source, last_run_status="running", last_run_at=datetime.utcnow())

    def mark_run_completed(self, source: str, result: JobResult, next_page: Optional[int] = None) -> IngestionState:
        current = self.get_state(source)
        return self.update_state(
            source,
            last_page=next_page or current.last_page + 1,
            total_ingested=current.total_ingested + result.added,
            last_run_status=result.status.value,
            last_run_added=result.added,
            last_run_skipped=result.skipped,
            last_run_failed=result.failed,
        )

    def reset_state(self, source: str = INTERNET_ARCHIVE_SOURCE) -> IngestionState:
        return self.update_state(source, last_page=1, last_run_status="reset")

    def pause(self, source: str = INTERNET_ARCHIVE_SOURCE, paused_by: str = "admin") -> IngestionState:
        state = self.update_state(source, is_paused=True, paused_at=datetime.utcnow(), paused_by=paused_by)
        logger.info(f"Ingestion paused for {source} by {paused_by}")
        return state

    def resume(self, source: str = INTERNET_ARCHIVE_SOURCE) -> IngestionState:
        state = self.update_state(source, is_paused=False, paused_at=None, paused_by=None)
        logger.info(f"Ingestion resumed for {source}")
        return state

    def close(self) -> None:
        """Close database connection."""
        self.db_conn.close()
