"""
Internet Archive client for discovering public-domain books.
"""

import logging
import time
from typing import Any, Dict, List

import requests
from pydantic import ValidationError

from . import settings
from .errors import ArchiveFetchError
from .models import ArchiveItem

logger = logging.getLogger(__name__)

SEARCH_QUERY = "mediatype:texts AND format:pdf AND date:[* TO 1927]"
SEARCH_FIELDS = ["identifier", "title", "creator", "date", "language", "description"]
REQUEST_TIMEOUT = 30  # seconds


def get_pdf_url(identifier: str) -> str:
    """Direct PDF download URL for an archive item."""
    if not identifier or not isinstance(identifier, str):
        raise ValueError("Invalid identifier: must be a non-empty string")
    return f"{settings.ARCHIVE_DOWNLOAD_URL}/{identifier}/{identifier}.pdf"


def build_search_params(batch_size: int = settings.DEFAULT_BATCH_SIZE, page: int = 1) -> Dict[str, Any]:
    """Query parameters for the advanced search API: public-domain PDFs, most downloaded first."""
    return {
        "q": SEARCH_QUERY,
        "fl[]": SEARCH_FIELDS,
        "sort[]": "downloads desc",
        "rows": batch_size or settings.DEFAULT_BATCH_SIZE,
        "page": page or 1,
        "output": "json",
    }


def _joined(value: Any, separator: str) -> Any:
    if isinstance(value, list):
        return separator.join(str(v) for v in value)
    return value


def parse_book_document(doc: Dict[str, Any]) -> ArchiveItem:
    """Normalise one search document; list-valued fields are flattened."""
    language = doc.get("language")
    if isinstance(language, list):
        language = language[0] if language else None

    return ArchiveItem(
        identifier=doc.get("identifier") or "",
        title=_joined(doc.get("title"), " ") or "Unknown Title",
        creator=_joined(doc.get("creator"), ", ") or "Unknown Author",
        date=_joined(doc.get("date"), " ") or None,
        language=language or None,
        description=_joined(doc.get("description"), " ") or None,
    )


def fetch_books(batch_size: int = settings.DEFAULT_BATCH_SIZE, page: int = 1,
                delay_seconds: float = settings.ARCHIVE_REQUEST_DELAY,
                session: requests.Session = None) -> List[ArchiveItem]:
    """
    Fetch a page of public-domain book metadata from the Internet Archive.

    Args:
        batch_size: Number of books to request
        page: 1-based result page
        delay_seconds: Pause before the request, to crawl politely
        session: Optional requests session

    Returns:
        Parsed archive items that carry an identifier

    Raises:
        ArchiveFetchError: If the request fails or returns a non-2xx status
    """
    http = session or requests
    params = build_search_params(batch_size, page)
    headers = {"User-Agent": settings.ARCHIVE_USER_AGENT, "Accept": "application/json"}

    logger.info(f"Fetching books from Internet Archive (batch_size={batch_size}, page={page})")

    retried = False
    while True:
        if delay_seconds > 0:
            time.sleep(delay_seconds)
        try:
            response = http.get(settings.ARCHIVE_SEARCH_URL, params=params, headers=headers, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise ArchiveFetchError(f"Internet Archive request failed: {e}") from e

        # Honour one rate-limit response, then give up
        if response.status_code == 429 and not retried:
            retry_after = response.headers.get("Retry-After", "60")
            wait = int(retry_after) if retry_after.isdigit() else 60
            logger.warning(f"Rate limited by Internet Archive, waiting {wait}s")
            time.sleep(wait)
            retried = True
            continue
        break

    if not response.ok:
        raise ArchiveFetchError(f"Internet Archive API error: {response.status_code} {response.reason}")

    try:
        data = response.json()
    except ValueError as e:
        raise ArchiveFetchError(f"Internet Archive returned invalid JSON: {e}") from e

    docs = (data.get("response") or {}).get("docs")
    if not isinstance(docs, list):
        logger.info("No documents found in Internet Archive response")
        return []

    books = []
    for doc in docs:
        if not isinstance(doc, dict) or not doc.get("identifier"):
            continue
        try:
            books.append(parse_book_document(doc))
        except ValidationError as e:
            logger.warning(f"Skipping malformed archive document {doc.get('identifier')!r}: {e}")
    logger.info(f"Fetched {len(books)} books")
    return books
