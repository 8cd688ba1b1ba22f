"""
Download and validate PDFs before they are uploaded to storage.
"""

import io
import logging
import re
from dataclasses import dataclass
from typing import Optional

import requests
from pypdf import PdfReader

from . import settings

logger = logging.getLogger(__name__)

PDF_MAGIC_BYTES = b"%PDF"
MAX_FILENAME_LENGTH = 200
MAX_PDF_SIZE = 100 * 1024 * 1024  # 100MB
DOWNLOAD_TIMEOUT = 30  # seconds

SAFE_FILENAME = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class PdfDownload:
    content: bytes
    size: int
    pages: Optional[int] = None


def sanitize_filename(identifier: str) -> str:
    """Reduce an identifier to ``[A-Za-z0-9_-]``, at most 200 characters."""
    if not identifier or not isinstance(identifier, str):
        raise ValueError("Invalid identifier: must be a non-empty string")

    sanitized = re.sub(r"[^A-Za-z0-9_-]", "_", identifier)
    sanitized = re.sub(r"_+", "_", sanitized).strip("_")
    return (sanitized or "unnamed")[:MAX_FILENAME_LENGTH]


def is_valid_filename(filename: str) -> bool:
    if not filename or not isinstance(filename, str) or len(filename) > MAX_FILENAME_LENGTH:
        return False
    return bool(SAFE_FILENAME.match(filename))


def is_valid_pdf(content: bytes) -> bool:
    return bool(content) and content[:len(PDF_MAGIC_BYTES)] == PDF_MAGIC_BYTES


def count_pages(content: bytes) -> Optional[int]:
    """Page count, or None when pypdf cannot read the file."""
    try:
        return len(PdfReader(io.BytesIO(content)).pages)
    except Exception as e:
        logger.debug(f"Could not count PDF pages: {e}")
        return None


def download_and_validate(url: str, timeout: float = DOWNLOAD_TIMEOUT,
                          max_size_bytes: int = MAX_PDF_SIZE) -> Optional[PdfDownload]:
    """
    Download a PDF and check that it really is one.

    Args:
        url: PDF download URL
        timeout: Request timeout in seconds
        max_size_bytes: Largest accepted file

    Returns:
        PdfDownload, or None if the download failed or the file is not a valid PDF
    """
    if not url or not isinstance(url, str):
        logger.error("Invalid PDF URL provided")
        return None

    logger.info(f"Downloading PDF from: {url}")
    headers = {"User-Agent": settings.ARCHIVE_USER_AGENT}

    try:
        with requests.get(url, headers=headers, timeout=timeout, stream=True) as response:
            if not response.ok:
                logger.error(f"PDF download HTTP error: {response.status_code} {response.reason}")
                return None

            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > max_size_bytes:
                logger.error(f"PDF too large: {declared} bytes (max: {max_size_bytes})")
                return None

            buffer = bytearray()
            for chunk in response.iter_content(chunk_size=64 * 1024):
                buffer.extend(chunk)
                if len(buffer) > max_size_bytes:
                    logger.error(f"PDF too large: over {max_size_bytes} bytes")
                    return None
    except requests.Timeout:
        logger.error(f"PDF download timed out after {timeout}s: {url}")
        return None
    except requests.RequestException as e:
        logger.error(f"PDF download error: {e}")
        return None

    content = bytes(buffer)
    if not content:
        logger.error("Downloaded PDF is empty")
        return None

    if not is_valid_pdf(content):
        logger.error("Invalid PDF: missing %PDF header")
        return None

    logger.info(f"Validated PDF: {len(content)} bytes")
    return PdfDownload(content=content, size=len(content), pages=count_pages(content))
