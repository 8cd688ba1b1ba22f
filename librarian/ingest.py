"""
Ingestion pipeline for public-domain books.

Fetches metadata from the Internet Archive, classifies each book into the
genre taxonomy, downloads and stores its PDF and writes the catalog record.
Genre classification is best effort: a book whose classification fails is
stored with null genres and still counts as added.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from . import settings
from .archive import fetch_books, get_pdf_url
from .catalog import INTERNET_ARCHIVE_SOURCE, CatalogStore
from .classifier import classify_book
from .filters import FilterConfig, apply_filters, filter_summary, has_active_filters
from .models import (ArchiveItem, BookMetadata, BookOutcome, BookStatus, CatalogRecord,
                     ClassificationResult, JobError, JobResult, JobStatus)
from .pdf import PdfDownload, download_and_validate, sanitize_filename
from .storage import StorageUploader

logger = logging.getLogger(__name__)

Classifier = Callable[[BookMetadata], Optional[ClassificationResult]]
Fetcher = Callable[..., List[ArchiveItem]]
Downloader = Callable[[str], Optional[PdfDownload]]


def generate_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"


class LibraryIngestor:
    """Runs ingestion jobs against the catalog and storage."""

    def __init__(self, catalog: CatalogStore, storage: StorageUploader,
                 classifier: Classifier = classify_book,
                 fetcher: Fetcher = fetch_books,
                 downloader: Downloader = download_and_validate,
                 filter_config: Optional[FilterConfig] = None,
                 source: str = INTERNET_ARCHIVE_SOURCE):
        self.catalog = catalog
        self.storage = storage
        self.classifier = classifier
        self.fetcher = fetcher
        self.downloader = downloader
        self.filter_config = filter_config or FilterConfig.from_env()
        self.source = source

    def _classify(self, item: ArchiveItem, existing: Optional[CatalogRecord]) -> Tuple[Optional[List[str]], Optional[str]]:
        """Genres for a book: carried forward if already stored, otherwise classified."""
        if existing is not None and existing.genres is not None:
            logger.info(f"Book {item.identifier} already classified as {', '.join(existing.genres)}, skipping classification")
            return list(existing.genres), existing.subgenre

        try:
            result = self.classifier(item.to_metadata())
        except Exception as e:
            logger.warning(f"Genre classifier raised for {item.identifier}, storing without genres: {e}")
            return None, None

        if result is None:
            return None, None
        return list(result.genres), result.subgenre

    def _store_pdf(self, item: ArchiveItem, existing: Optional[CatalogRecord]) -> Tuple[Optional[str], Optional[int]]:
        if existing is not None and existing.pdf_url:
            return existing.pdf_url, existing.pages

        download = self.downloader(get_pdf_url(item.identifier))
        if download is None:
            return None, None

        pdf_url = self.storage.upload_pdf(download.content, sanitize_filename(item.identifier))
        return pdf_url, download.pages

    def process_book(self, item: ArchiveItem, dry_run: bool = False) -> BookOutcome:
        """
        Ingest a single book.

        Steps: catalog lookup, classification (skipped for books that already
        have genres), filters, PDF download and upload, catalog write. The
        catalog write happens only after classification has resolved.

        Args:
            item: Archive metadata for the book
            dry_run: Log what would happen without network calls or writes

        Returns:
            BookOutcome; exceptions are reported as a failed outcome, never raised
        """
        identifier = item.identifier
        logger.info(f"Processing book: {item.title} ({identifier})")

        try:
            existing = self.catalog.get_book(identifier)

            if dry_run:
                logger.info(f"[DRY RUN] Would download, classify and store: {identifier}")
                return BookOutcome(identifier=identifier, status=BookStatus.ADDED)

            genres, subgenre = self._classify(item, existing)

            decision = apply_filters(item.creator, genres, self.filter_config)
            if not decision.passed:
                logger.info(f"Filtered: {item.title} ({identifier}) - {decision.reason}")
                return BookOutcome(identifier=identifier, status=BookStatus.FILTERED,
                                   error=decision.reason, genres=genres, subgenre=subgenre)

            pdf_url, pages = self._store_pdf(item, existing)
            if pdf_url is None:
                logger.error(f"PDF validation failed for: {identifier}")
                return BookOutcome(identifier=identifier, status=BookStatus.FAILED,
                                   error="PDF download or validation failed")

            record = CatalogRecord(
                title=item.title or "Unknown Title",
                author=item.creator or "Unknown Author",
                year=item.year,
                language=item.language,
                source=self.source,
                source_identifier=identifier,
                pdf_url=pdf_url,
                description=item.description,
                genres=genres,
                subgenre=subgenre,
                pages=pages,
            )
            book_id = self.catalog.upsert_book(record)

            logger.info(f"Added book: {item.title} (ID: {book_id}, genres: {', '.join(genres) if genres else 'none'})")
            return BookOutcome(identifier=identifier, status=BookStatus.ADDED, genres=genres, subgenre=subgenre)

        except Exception as e:
            logger.error(f"Error processing book {identifier}: {e}")
            return BookOutcome(identifier=identifier, status=BookStatus.FAILED, error=str(e))

    def _select_books(self, items: List[ArchiveItem], backfill: bool) -> List[ArchiveItem]:
        """Drop duplicates and books already in the catalog (or, when backfilling, already classified)."""
        unique = {}
        for item in items:
            if item.identifier and item.identifier not in unique:
                unique[item.identifier] = item

        ids = list(unique)
        if backfill:
            done = self.catalog.classified_identifiers(ids)
        else:
            done = self.catalog.existing_identifiers(ids)

        selected = [item for identifier, item in unique.items() if identifier not in done]
        logger.info(f"Filtered {len(items)} books: {len(selected)} to process, {len(items) - len(selected)} duplicates")
        return selected

    def run_ingestion_job(self, batch_size: Optional[int] = None, page: Optional[int] = None,
                          dry_run: bool = False, backfill: bool = False,
                          delay_seconds: Optional[float] = None, job_type: str = "manual") -> JobResult:
        """
        Run one ingestion job over a page of archive results.

        Books are processed sequentially; a failure in one book never stops
        the others. Only one job runs per catalog at a time: a job started
        while another is in progress returns immediately with status
        ``already_running``.

        Args:
            batch_size: Books to fetch (default from settings)
            page: Result page; continues from the stored state when omitted
            dry_run: Report what would be ingested without side effects
            backfill: Reprocess catalog records that have no genres yet
            delay_seconds: Pause between books (not applied in dry run)
            job_type: "scheduled" or "manual", recorded in the job log

        Returns:
            JobResult summary
        """
        if not self.catalog.job_lock.acquire(blocking=False):
            logger.warning(f"Ingestion job already running for {self.source}, skipping run")
            return JobResult(job_id=generate_job_id(), status=JobStatus.ALREADY_RUNNING, page=page or 1,
                             dry_run=dry_run, completed_at=datetime.utcnow())
        try:
            return self._run_locked(batch_size, page, dry_run, backfill, delay_seconds, job_type)
        finally:
            self.catalog.job_lock.release()

    def _run_locked(self, batch_size: Optional[int], page: Optional[int], dry_run: bool, backfill: bool,
                    delay_seconds: Optional[float], job_type: str) -> JobResult:
        batch_size = batch_size or settings.DEFAULT_BATCH_SIZE
        delay_seconds = settings.DEFAULT_DELAY_SECONDS if delay_seconds is None else delay_seconds

        state = self.catalog.get_state(self.source)
        page = page or state.last_page
        result = JobResult(job_id=generate_job_id(), page=page, dry_run=dry_run)

        logger.info(f"Starting ingestion job {result.job_id}: batch_size={batch_size}, page={page}, "
                    f"dry_run={dry_run}, backfill={backfill}")

        if state.is_paused:
            logger.info(f"Ingestion paused for {self.source} (by {state.paused_by}), skipping run")
            result.status = JobStatus.PAUSED
            result.completed_at = datetime.utcnow()
            return result

        if has_active_filters(self.filter_config):
            logger.info(filter_summary(self.filter_config))

        log_id = None
        if not dry_run:
            try:
                log_id = self.catalog.create_job_log(result.job_id, job_type)
                self.catalog.mark_run_started(self.source)
            except Exception as e:
                logger.error(f"Failed to create job log, continuing without it: {e}")

        fetched = 0
        try:
            items = self.fetcher(batch_size=batch_size, page=page)
            fetched = len(items)
            logger.info(f"Fetched {fetched} books from the archive")

            books = self._select_books(items, backfill)
            result.skipped = fetched - len(books)

            for i, item in enumerate(books):
                result.record(self.process_book(item, dry_run))
                if i < len(books) - 1 and delay_seconds > 0 and not dry_run:
                    time.sleep(delay_seconds)

            result.finalize()

        except Exception as e:
            logger.error(f"Critical error during ingestion: {e}")
            fetched = 0
            result.status = JobStatus.FAILED
            result.errors.append(JobError(identifier="job", error=str(e)))
            result.completed_at = datetime.utcnow()

        if not dry_run:
            if log_id is not None:
                try:
                    self.catalog.log_job_result(log_id, result)
                except Exception as e:
                    logger.error(f"Failed to log job result: {e}")
            try:
                if fetched:
                    self.catalog.mark_run_completed(self.source, result, next_page=page + 1)
                else:
                    # Nothing came back; stay on this page until an admin resets the state
                    self.catalog.update_state(self.source, last_run_status=result.status.value)
            except Exception as e:
                logger.error(f"Failed to update ingestion state: {e}")

        logger.info(f"Job {result.job_id} completed with status: {result.status.value}")
        logger.info(f"Summary: processed={result.processed}, added={result.added}, skipped={result.skipped}, "
                    f"filtered={result.filtered}, failed={result.failed}")
        return result
