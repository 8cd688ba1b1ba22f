"""
Librarian: public-domain book ingestion for a digital library.

This package fetches public-domain books from the Internet Archive, stores
their PDFs, classifies them into a controlled genre taxonomy using an AI model
and writes them to a DuckDB catalog. Classification is best effort and never
blocks ingestion.
"""

from .taxonomy import PRIMARY_GENRES, SUB_GENRES, validate_genres, validate_subgenre
from .classifier import classify_book, parse_response, build_prompt
from .catalog import CatalogStore
from .storage import StorageUploader
from .ingest import LibraryIngestor
from .models import BookMetadata, ClassificationResult, CatalogRecord, JobResult

__version__ = "1.0.0"
