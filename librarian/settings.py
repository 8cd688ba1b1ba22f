"""
Global settings and configuration for the Librarian application.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, ""))
    except ValueError:
        return default


def _positive(value: float, default: float) -> float:
    return value if value > 0 else default


# Directory Paths
PROJECT_ROOT = Path(__file__).parent.parent
LIBRARY_ROOT = Path(os.getenv("LIBRARY_ROOT", PROJECT_ROOT / "library"))

# Catalog store (DuckDB)
CATALOG_DB_PATH = Path(os.getenv("CATALOG_DB_PATH", LIBRARY_ROOT / "catalog.duckdb"))

# Object storage for ingested PDFs
STORAGE_ROOT = Path(os.getenv("STORAGE_ROOT", LIBRARY_ROOT / "storage"))
STORAGE_PUBLIC_BASE_URL = os.getenv("STORAGE_PUBLIC_BASE_URL", "/storage")

# Internet Archive crawling
ARCHIVE_USER_AGENT = "LibrarianDigitalLibrary/1.0 (Educational Library System)"
ARCHIVE_SEARCH_URL = "https://archive.org/advancedsearch.php"
ARCHIVE_DOWNLOAD_URL = "https://archive.org/download"
ARCHIVE_REQUEST_DELAY = 1.5  # seconds before each search request

# Batch processing
DEFAULT_BATCH_SIZE = int(os.getenv("INGEST_BATCH_SIZE", "30"))
DEFAULT_DELAY_SECONDS = _env_float("INGEST_DELAY_SECONDS", 1.0)  # between books
MAX_BATCH_SIZE = 100

# Endpoint secrets (unset means the endpoint is open)
CRON_SECRET = os.getenv("CRON_SECRET")
ADMIN_INGEST_SECRET = os.getenv("ADMIN_INGEST_SECRET")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Genre classification defaults
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_CLASSIFIER_MODEL = "meta-llama/llama-3.2-3b-instruct:free"
DEFAULT_CLASSIFIER_TIMEOUT = 10.0  # seconds, per attempt
CLASSIFIER_MAX_RETRIES = 2
CLASSIFIER_RETRY_BASE_DELAY = 1.0  # seconds, doubled on each retry


class ClassifierConfig(BaseModel):
    """Runtime toggles for the genre classifier."""

    api_key: Optional[str] = Field(default=None, description="OpenRouter API key")
    base_url: str = OPENROUTER_BASE_URL
    model: str = DEFAULT_CLASSIFIER_MODEL
    timeout: float = Field(default=DEFAULT_CLASSIFIER_TIMEOUT, gt=0)
    max_retries: int = Field(default=CLASSIFIER_MAX_RETRIES, ge=0)
    retry_base_delay: float = Field(default=CLASSIFIER_RETRY_BASE_DELAY, ge=0)
    enabled: bool = True
    mock_mode: bool = False

    class Config:
        """Pydantic configuration."""
        frozen = True


def get_classifier_config() -> ClassifierConfig:
    """
    Read the classifier configuration from the environment.

    Called on every classification so toggles take effect without a restart.
    """
    return ClassifierConfig(
        api_key=os.getenv("OPENROUTER_API_KEY") or None,
        base_url=os.getenv("OPENROUTER_BASE_URL", OPENROUTER_BASE_URL),
        model=os.getenv("GENRE_CLASSIFIER_MODEL") or DEFAULT_CLASSIFIER_MODEL,
        timeout=_positive(_env_float("GENRE_CLASSIFIER_TIMEOUT", DEFAULT_CLASSIFIER_TIMEOUT), DEFAULT_CLASSIFIER_TIMEOUT),
        enabled=_env_flag("ENABLE_GENRE_CLASSIFICATION", True),
        mock_mode=_env_flag("MOCK_GENRE_CLASSIFIER", False),
    )
