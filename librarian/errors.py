"""
Exceptions raised by the ingestion collaborators.
"""


class LibrarianError(Exception):
    """Base class for Librarian errors."""


class ArchiveFetchError(LibrarianError):
    """The Internet Archive search request failed."""


class StorageError(LibrarianError):
    """A PDF could not be written to or read from storage."""


class CatalogError(LibrarianError):
    """A catalog write was rejected."""
