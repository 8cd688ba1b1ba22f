"""
FastAPI backend for the Librarian ingestion service.
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from librarian import settings
from librarian.catalog import CatalogStore
from librarian.classifier import classify_book, is_classification_enabled
from librarian.ingest import LibraryIngestor
from librarian.models import BookMetadata, IngestionState, JobResult, JobStatus
from librarian.storage import StorageUploader
from librarian.taxonomy import all_genres, all_subgenres

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Librarian API", description="Public-domain book ingestion and genre classification")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str


class TriggerRequest(BaseModel):
    """Request model for a manual ingestion run."""
    batch_size: int = Field(default=settings.DEFAULT_BATCH_SIZE, ge=1, le=settings.MAX_BATCH_SIZE)
    page: Optional[int] = Field(default=None, ge=1)
    dry_run: bool = False
    backfill: bool = False
    reset: bool = False


class PauseRequest(BaseModel):
    paused_by: str = "admin"


class TriggerResponse(BaseModel):
    success: bool
    duration_ms: int
    result: JobResult


class ClassifyResponse(BaseModel):
    enabled: bool
    result: Optional[Dict[str, Any]] = None


@lru_cache(maxsize=1)
def get_catalog() -> CatalogStore:
    """Process-wide catalog store; DuckDB allows a single writer per file."""
    return CatalogStore(settings.CATALOG_DB_PATH)


def get_ingestor(catalog: CatalogStore = Depends(get_catalog)) -> LibraryIngestor:
    return LibraryIngestor(catalog, StorageUploader())


def _require_bearer(authorization: Optional[str], secret: Optional[str]) -> None:
    """Reject the request unless it carries ``Bearer <secret>``; open when no secret is configured."""
    if secret and authorization != f"Bearer {secret}":
        logger.warning("Unauthorized ingestion request attempt")
        raise HTTPException(status_code=401, detail="Invalid or missing authorization")


def _run_job(ingestor: LibraryIngestor, job_type: str, **options: Any) -> TriggerResponse:
    started = datetime.utcnow()
    try:
        result = ingestor.run_ingestion_job(job_type=job_type, **options)
    except Exception as e:
        logger.error(f"Critical error running {job_type} ingestion: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if result.status == JobStatus.ALREADY_RUNNING:
        raise HTTPException(status_code=409, detail="An ingestion job is already running")

    duration_ms = int((datetime.utcnow() - started).total_seconds() * 1000)
    logger.info(f"{job_type.capitalize()} ingestion completed in {duration_ms}ms: {result.status.value}")
    return TriggerResponse(success=True, duration_ms=duration_ms, result=result)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok")


@app.get("/")
@app.head("/")
async def root():
    """Root endpoint for platform health checks."""
    return {"message": "Librarian API is running", "status": "ok"}


@app.get("/api/genres")
async def get_genres() -> Dict[str, List[str]]:
    """The controlled genre taxonomy."""
    return {"genres": all_genres(), "subgenres": all_subgenres()}


@app.get("/api/ingest", response_model=TriggerResponse)
def cron_ingest(
    authorization: Optional[str] = Header(default=None),
    ingestor: LibraryIngestor = Depends(get_ingestor),
) -> TriggerResponse:
    """
    Scheduled ingestion run, continuing from the stored page.

    Requires ``Authorization: Bearer $CRON_SECRET`` when CRON_SECRET is set.
    """
    _require_bearer(authorization, settings.CRON_SECRET)
    logger.info(f"Cron ingestion triggered, batch size {settings.DEFAULT_BATCH_SIZE}")
    return _run_job(ingestor, "scheduled", batch_size=settings.DEFAULT_BATCH_SIZE)


@app.post("/api/ingest/trigger")
def trigger_ingest(
    request: TriggerRequest,
    authorization: Optional[str] = Header(default=None),
    ingestor: LibraryIngestor = Depends(get_ingestor),
):
    """
    Manually trigger an ingestion run, or reset paging state.

    Requires ``Authorization: Bearer $ADMIN_INGEST_SECRET`` when that secret is set.
    """
    _require_bearer(authorization, settings.ADMIN_INGEST_SECRET)

    if request.reset:
        state = ingestor.catalog.reset_state(ingestor.source)
        return {"success": True, "message": "Ingestion state reset to page 1", "state": state}

    return _run_job(
        ingestor, "manual",
        batch_size=request.batch_size,
        page=request.page,
        dry_run=request.dry_run,
        backfill=request.backfill,
    )


@app.get("/api/ingest/state", response_model=IngestionState)
def get_ingestion_state(catalog: CatalogStore = Depends(get_catalog)) -> IngestionState:
    return catalog.get_state()


@app.post("/api/ingest/pause", response_model=IngestionState)
def pause_ingestion(
    request: PauseRequest,
    authorization: Optional[str] = Header(default=None),
    catalog: CatalogStore = Depends(get_catalog),
) -> IngestionState:
    _require_bearer(authorization, settings.ADMIN_INGEST_SECRET)
    return catalog.pause(paused_by=request.paused_by)


@app.post("/api/ingest/resume", response_model=IngestionState)
def resume_ingestion(
    authorization: Optional[str] = Header(default=None),
    catalog: CatalogStore = Depends(get_catalog),
) -> IngestionState:
    _require_bearer(authorization, settings.ADMIN_INGEST_SECRET)
    return catalog.resume()


@app.get("/api/ingest/jobs")
def list_jobs(
    limit: int = Query(default=10, ge=1, le=100),
    catalog: CatalogStore = Depends(get_catalog),
) -> List[Dict[str, Any]]:
    """Most recent ingestion job logs."""
    return catalog.recent_job_logs(limit)


@app.get("/api/ingest/jobs/{log_id}")
def get_job(log_id: int, catalog: CatalogStore = Depends(get_catalog)) -> Dict[str, Any]:
    job = catalog.get_job_log(log_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job log {log_id} not found")
    return job


@app.post("/api/classify", response_model=ClassifyResponse)
def classify(book: BookMetadata) -> ClassifyResponse:
    """Classify one book. ``result`` is null when classification is disabled or fails."""
    result = classify_book(book)
    return ClassifyResponse(
        enabled=is_classification_enabled(),
        result=result.dict() if result else None,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
