"""
Controlled vocabulary for book genres and sub-genres.

The taxonomy is fixed at import time. Extending it means editing the tuples
below and redeploying; nothing mutates it at runtime.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

# The classifier must pick 1-3 of these
PRIMARY_GENRES: Tuple[str, ...] = (
    "Philosophy",
    "Religion",
    "Theology",
    "Sacred Texts",
    "History",
    "Biography",
    "Science",
    "Mathematics",
    "Medicine",
    "Law",
    "Politics",
    "Economics",
    "Literature",
    "Poetry",
    "Drama",
    "Mythology",
    "Military & Strategy",
    "Education",
    "Linguistics",
    "Ethics",
    "Anthropology",
    "Sociology",
    "Psychology",
    "Geography",
    "Astronomy",
    "Alchemy & Esoterica",
    "Art & Architecture",
)

# ...and optionally one of these
SUB_GENRES: Tuple[str, ...] = (
    "Ancient",
    "Medieval",
    "Classical",
    "Early Modern",
    "Commentary",
    "Translation",
    "Manuscript",
    "Legal Code",
    "Canonical Text",
)

MAX_GENRES = 3

_PRIMARY_LOOKUP: Dict[str, str] = {genre.lower(): genre for genre in PRIMARY_GENRES}
_SUB_LOOKUP: Dict[str, str] = {subgenre.lower(): subgenre for subgenre in SUB_GENRES}


def _normalize(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def validate_genre(candidate: Any) -> Optional[str]:
    """Return the canonical primary genre matching ``candidate``, or None."""
    key = _normalize(candidate)
    return _PRIMARY_LOOKUP.get(key) if key else None


def validate_genres(candidates: Iterable[Any]) -> List[str]:
    """
    Filter candidate genres down to canonical taxonomy entries.

    Matching is case-insensitive and ignores surrounding whitespace. Input
    order is preserved, duplicates are collapsed and anything outside the
    taxonomy is dropped silently.

    Args:
        candidates: Genre strings as reported by the model

    Returns:
        Canonical genre names, possibly empty
    """
    if isinstance(candidates, (str, bytes)) or not isinstance(candidates, Iterable):
        return []

    valid: List[str] = []
    for candidate in candidates:
        genre = validate_genre(candidate)
        if genre and genre not in valid:
            valid.append(genre)
    return valid


def validate_subgenre(candidate: Any) -> Optional[str]:
    """Return the canonical sub-genre matching ``candidate``, or None."""
    key = _normalize(candidate)
    return _SUB_LOOKUP.get(key) if key else None


def is_valid_genre(candidate: Any) -> bool:
    return validate_genre(candidate) is not None


def is_valid_subgenre(candidate: Any) -> bool:
    return validate_subgenre(candidate) is not None


def all_genres() -> List[str]:
    return list(PRIMARY_GENRES)


def all_subgenres() -> List[str]:
    return list(SUB_GENRES)
