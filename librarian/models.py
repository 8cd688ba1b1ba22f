"""
Pydantic models for the Librarian application.
"""

import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, validator

from .taxonomy import MAX_GENRES, validate_genre, validate_subgenre


class BookMetadata(BaseModel):
    """Snapshot of a book's metadata taken at ingestion time, used for classification."""

    title: str = Field(description="Book title")
    author: str = Field(default="Unknown Author", description="Book author")
    year: Optional[int] = Field(default=None, description="Publication year")
    description: Optional[str] = Field(default=None, description="Free-text description, may be empty")
    identifier: Optional[str] = Field(default=None, description="Source identifier, for log context")

    class Config:
        """Pydantic configuration."""
        frozen = True


class ClassificationResult(BaseModel):
    """Validated genre classification. Always holds 1-3 canonical primary genres."""

    genres: List[str] = Field(description="Primary genres in the order the model reported them")
    subgenre: Optional[str] = Field(default=None, description="Optional canonical sub-genre")

    class Config:
        """Pydantic configuration."""
        frozen = True

    @validator("genres")
    def genres_in_taxonomy(cls, value):
        if not 1 <= len(value) <= MAX_GENRES:
            raise ValueError(f"expected 1-{MAX_GENRES} genres, got {len(value)}")
        for genre in value:
            if validate_genre(genre) != genre:
                raise ValueError(f"not a canonical primary genre: {genre!r}")
        return value

    @validator("subgenre")
    def subgenre_in_taxonomy(cls, value):
        if value is not None and validate_subgenre(value) != value:
            raise ValueError(f"not a canonical sub-genre: {value!r}")
        return value


class ArchiveItem(BaseModel):
    """A single Internet Archive search document, normalised."""

    identifier: str
    title: str = "Unknown Title"
    creator: str = "Unknown Author"
    date: Optional[str] = None
    language: Optional[str] = None
    description: Optional[str] = None

    @property
    def year(self) -> Optional[int]:
        """First four-digit run in the archive date, if any."""
        if not self.date:
            return None
        match = re.search(r"\d{4}", self.date)
        return int(match.group(0)) if match else None

    def to_metadata(self) -> BookMetadata:
        return BookMetadata(
            title=self.title,
            author=self.creator,
            year=self.year,
            description=self.description,
            identifier=self.identifier,
        )


class CatalogRecord(BaseModel):
    """A row of the catalog ``books`` table."""

    id: Optional[int] = None
    title: str
    author: str
    year: Optional[int] = None
    language: Optional[str] = None
    source: str = "internet_archive"
    source_identifier: str
    pdf_url: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None
    genres: Optional[List[str]] = None
    subgenre: Optional[str] = None
    pages: Optional[int] = None
    created_at: Optional[datetime] = None


class BookStatus(str, Enum):
    """Outcome of ingesting a single book."""
    ADDED = "added"
    SKIPPED = "skipped"
    FILTERED = "filtered"
    FAILED = "failed"


class BookOutcome(BaseModel):
    identifier: str
    status: BookStatus
    error: Optional[str] = None
    genres: Optional[List[str]] = None
    subgenre: Optional[str] = None


class JobError(BaseModel):
    identifier: str
    error: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    PAUSED = "paused"
    ALREADY_RUNNING = "already_running"


class JobResult(BaseModel):
    """Summary of one ingestion job run."""

    job_id: str
    status: JobStatus = JobStatus.COMPLETED
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    page: int = 1
    dry_run: bool = False
    processed: int = 0
    added: int = 0
    skipped: int = 0
    filtered: int = 0
    failed: int = 0
    errors: List[JobError] = Field(default_factory=list)

    def record(self, outcome: BookOutcome) -> None:
        """Fold a single book outcome into the counters."""
        self.processed += 1
        if outcome.status == BookStatus.ADDED:
            self.added += 1
        elif outcome.status == BookStatus.FILTERED:
            self.filtered += 1
        elif outcome.status == BookStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append(JobError(identifier=outcome.identifier, error=outcome.error or "Unknown error"))

    def finalize(self) -> None:
        """Derive the final status from the counters."""
        if self.failed > 0 and self.added > 0:
            self.status = JobStatus.PARTIAL
        elif self.failed > 0:
            self.status = JobStatus.FAILED
        else:
            self.status = JobStatus.COMPLETED
        self.completed_at = datetime.utcnow()


class IngestionState(BaseModel):
    """Paging and pause state for one ingestion source."""

    source: str = "internet_archive"
    last_page: int = 1
    total_ingested: int = 0
    last_run_at: Optional[datetime] = None
    last_run_status: str = "idle"
    last_run_added: int = 0
    last_run_skipped: int = 0
    last_run_failed: int = 0
    is_paused: bool = False
    paused_at: Optional[datetime] = None
    paused_by: Optional[str] = None
