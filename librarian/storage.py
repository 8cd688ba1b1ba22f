"""
Object storage for ingested PDFs.

Files live under ``<storage root>/books/internet_archive/`` and are served
from ``STORAGE_PUBLIC_BASE_URL``. Existing files are never overwritten.
"""

import logging
from pathlib import Path
from typing import Optional

from . import settings
from .errors import StorageError

logger = logging.getLogger(__name__)

BUCKET_NAME = "books"
IA_PATH_PREFIX = "internet_archive"


def get_storage_path(filename: str) -> str:
    if not filename or not isinstance(filename, str):
        raise ValueError("Invalid filename: must be a non-empty string")
    return f"{IA_PATH_PREFIX}/{filename}.pdf"


class StorageUploader:
    """Writes PDFs into the local bucket directory."""

    def __init__(self, root: Optional[Path] = None, public_base_url: Optional[str] = None):
        self.bucket_dir = Path(root or settings.STORAGE_ROOT) / BUCKET_NAME
        self.public_base_url = (public_base_url or settings.STORAGE_PUBLIC_BASE_URL).rstrip("/")
        self.bucket_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.bucket_dir / path).resolve()
        if self.bucket_dir.resolve() not in target.parents:
            raise StorageError(f"Storage path escapes bucket: {path}")
        return target

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{BUCKET_NAME}/{path}"

    def file_exists(self, path: str) -> bool:
        if not path:
            return False
        try:
            return self._resolve(path).is_file()
        except StorageError:
            return False

    def upload_pdf(self, content: bytes, filename: str) -> str:
        """
        Store a PDF and return its public URL.

        If the file is already present it is left untouched and its URL returned.

        Raises:
            ValueError: If the content or filename is empty
            StorageError: If the file cannot be written
        """
        if not content:
            raise ValueError("Invalid PDF content: must be non-empty")

        path = get_storage_path(filename)
        target = self._resolve(path)

        if target.is_file():
            logger.info(f"File already exists in storage: {path}")
            return self.public_url(path)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "xb") as f:
                f.write(content)
        except FileExistsError:
            logger.info(f"File already exists (concurrent upload): {path}")
        except OSError as e:
            raise StorageError(f"Storage upload failed for {path}: {e}") from e

        url = self.public_url(path)
        logger.info(f"Uploaded PDF to storage: {url}")
        return url

    def delete_file(self, path: str) -> bool:
        try:
            self._resolve(path).unlink()
        except FileNotFoundError:
            return False
        except (OSError, StorageError) as e:
            logger.error(f"Error deleting {path}: {e}")
            return False
        logger.info(f"Deleted file: {path}")
        return True
