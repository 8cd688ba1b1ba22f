"""
Optional allow-list filters applied to books during ingestion.

Filters run after classification and before the PDF download, so filtered
books cost no bandwidth.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .taxonomy import validate_genre

logger = logging.getLogger(__name__)


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


@dataclass(frozen=True)
class FilterConfig:
    allowed_genres: Tuple[str, ...] = ()
    allowed_authors: Tuple[str, ...] = ()
    enable_genre_filter: bool = False
    enable_author_filter: bool = False

    @classmethod
    def from_env(cls) -> "FilterConfig":
        return cls(
            allowed_genres=tuple(_split_csv(os.getenv("INGEST_ALLOWED_GENRES", ""))),
            allowed_authors=tuple(_split_csv(os.getenv("INGEST_ALLOWED_AUTHORS", ""))),
            enable_genre_filter=os.getenv("ENABLE_GENRE_FILTER", "").lower() == "true",
            enable_author_filter=os.getenv("ENABLE_AUTHOR_FILTER", "").lower() == "true",
        )

    @property
    def genre_filter_active(self) -> bool:
        return self.enable_genre_filter and bool(self.allowed_genres)

    @property
    def author_filter_active(self) -> bool:
        return self.enable_author_filter and bool(self.allowed_authors)


@dataclass
class FilterDecision:
    passed: bool
    reason: Optional[str] = None
    filter_type: str = "passed"  # passed | filtered_genre | filtered_author
    checks: dict = field(default_factory=dict)


def validate_genre_names(genres: Sequence[str]) -> Tuple[bool, List[str]]:
    """Check configured genre names against the taxonomy; returns (valid, invalid names)."""
    invalid = [genre for genre in genres if validate_genre(genre) is None]
    return not invalid, invalid


def check_genre_filter(book_genres: Optional[Sequence[str]], config: FilterConfig) -> FilterDecision:
    """
    Pass if any of the book's genres is allowed.

    Books without genres always pass: a failed or disabled classification
    says nothing about the genre, and must not keep a book out of the catalog.
    """
    if not config.genre_filter_active or not book_genres:
        return FilterDecision(passed=True)

    allowed = {genre.lower() for genre in config.allowed_genres}
    if any(genre.lower() in allowed for genre in book_genres):
        return FilterDecision(passed=True)

    return FilterDecision(
        passed=False,
        reason=f"Genre not in allowed list. Book genres: [{', '.join(book_genres)}], "
               f"Allowed: [{', '.join(config.allowed_genres)}]",
        filter_type="filtered_genre",
    )


def check_author_filter(author: Optional[str], config: FilterConfig) -> FilterDecision:
    """Pass if any allowed author is a case-insensitive substring of the book's author."""
    if not config.author_filter_active:
        return FilterDecision(passed=True)

    if not author or not author.strip():
        return FilterDecision(passed=False, reason="Book has no author", filter_type="filtered_author")

    normalized = author.lower().strip()
    if any(allowed.lower().strip() in normalized for allowed in config.allowed_authors):
        return FilterDecision(passed=True)

    return FilterDecision(
        passed=False,
        reason=f'Author not in allowed list. Book author: "{author}", '
               f"Allowed: [{', '.join(config.allowed_authors)}]",
        filter_type="filtered_author",
    )


def apply_filters(author: Optional[str], genres: Optional[Sequence[str]], config: FilterConfig) -> FilterDecision:
    """Genre filter first, then author filter."""
    genre_result = check_genre_filter(genres, config)
    if not genre_result.passed:
        genre_result.reason = f"Genre filter failed: {genre_result.reason}"
        genre_result.checks = {"genre": False}
        return genre_result

    author_result = check_author_filter(author, config)
    if not author_result.passed:
        author_result.reason = f"Author filter failed: {author_result.reason}"
        author_result.checks = {"genre": True, "author": False}
        return author_result

    return FilterDecision(passed=True, checks={"genre": True, "author": True})


def has_active_filters(config: FilterConfig) -> bool:
    return config.genre_filter_active or config.author_filter_active


def filter_summary(config: FilterConfig) -> str:
    parts = []
    if config.genre_filter_active:
        parts.append(f"Genre filter: {len(config.allowed_genres)} allowed genres [{', '.join(config.allowed_genres)}]")
    else:
        parts.append("Genre filter: disabled (allow all)")
    if config.author_filter_active:
        parts.append(f"Author filter: {len(config.allowed_authors)} allowed authors [{', '.join(config.allowed_authors)}]")
    else:
        parts.append("Author filter: disabled (allow all)")
    return ", ".join(parts)
