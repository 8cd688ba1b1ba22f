"""
Genre classification for ingested books.

Asks an OpenAI-compatible chat endpoint (OpenRouter by default) to place a book
in the controlled taxonomy. Classification is an enrichment: every failure is
logged and collapses to ``None`` so ingestion never depends on it.
"""

import json
import logging
import time
from enum import Enum
from typing import Any, Dict, Iterable, Optional

import openai

from .models import BookMetadata, ClassificationResult
from .settings import ClassifierConfig, get_classifier_config
from .taxonomy import MAX_GENRES, PRIMARY_GENRES, SUB_GENRES, validate_genres, validate_subgenre

logger = logging.getLogger(__name__)

DESCRIPTION_LIMIT = 500  # characters of description sent to the model

# Sent with every request; OpenRouter uses them for attribution
EXTRA_HEADERS = {
    "HTTP-Referer": "https://github.com/librarian-digital-library",
    "X-Title": "Librarian Digital Library",
}


class ClassificationFailure(str, Enum):
    """Why a classification attempt produced no result."""
    DISABLED = "disabled"
    MISSING_TITLE = "missing_title"
    NO_CREDENTIALS = "no_credentials"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    EMPTY_RESPONSE = "empty_response"
    MALFORMED_RESPONSE = "malformed_response"
    NO_VALID_GENRES = "no_valid_genres"


MOCK_RESPONSES: Dict[str, ClassificationResult] = {
    "philosophy": ClassificationResult(genres=["Philosophy", "Ethics"], subgenre="Ancient"),
    "religion": ClassificationResult(genres=["Religion", "Theology"], subgenre="Canonical Text"),
    "history": ClassificationResult(genres=["History", "Biography"], subgenre="Medieval"),
    "science": ClassificationResult(genres=["Science", "Mathematics"], subgenre=None),
    "literature": ClassificationResult(genres=["Literature", "Poetry"], subgenre="Classical"),
    "law": ClassificationResult(genres=["Law", "Politics"], subgenre="Legal Code"),
    "default": ClassificationResult(genres=["Literature"], subgenre=None),
}

# Checked in order; the first keyword found in the lowercased title wins
MOCK_KEYWORDS = (
    ("philosophy", ("philosoph", "plato", "aristotle")),
    ("religion", ("bible", "religion", "god", "church")),
    ("history", ("history", "war", "empire")),
    ("science", ("science", "math", "physics")),
    ("law", ("law", "legal", "court")),
    ("literature", ("poem", "poetry", "verse")),
)


def _describe(book: BookMetadata) -> str:
    if book.identifier:
        return f"'{book.title}' ({book.identifier})"
    return f"'{book.title}'"


def is_classification_enabled(config: Optional[ClassifierConfig] = None) -> bool:
    """True when classify_book would attempt a (real or mock) classification."""
    config = config or get_classifier_config()
    return config.enabled and (config.mock_mode or bool(config.api_key))


def build_prompt(book: BookMetadata) -> str:
    """
    Build the classification prompt for a book.

    Optional fields that are missing or empty are left out entirely.

    Args:
        book: Book metadata

    Returns:
        Prompt text listing both taxonomies and the JSON-only reply format
    """
    lines = [f"Title: {book.title}", f"Author: {book.author or 'Unknown'}"]
    if book.year:
        lines.append(f"Year: {book.year}")
    if book.description and book.description.strip():
        lines.append(f"Description: {book.description.strip()[:DESCRIPTION_LIMIT]}")
    lines.append("Source: Internet Archive")
    book_info = "\n".join(lines)

    return f"""You are a librarian classifying public-domain books. Analyze the book and assign genres.

BOOK INFORMATION:
{book_info}

ALLOWED PRIMARY GENRES (choose 1-{MAX_GENRES}):
{', '.join(PRIMARY_GENRES)}

ALLOWED SUB-GENRES (choose 0-1):
{', '.join(SUB_GENRES)}

RULES:
1. Choose 1-{MAX_GENRES} primary genres that best describe the book
2. Optionally choose 1 sub-genre if applicable
3. Use ONLY genres from the lists above - do not invent new ones
4. Respond with ONLY valid JSON, no explanations or extra text

RESPONSE FORMAT (JSON only):
{{"genres": ["Genre1", "Genre2"], "subgenre": "SubGenre"}}

If no sub-genre applies, use: {{"genres": ["Genre1"], "subgenre": null}}"""


def mock_classification(book: BookMetadata) -> ClassificationResult:
    """Deterministic stand-in for the model, keyed by keywords in the title."""
    title = (book.title or "").lower()
    for key, keywords in MOCK_KEYWORDS:
        if any(keyword in title for keyword in keywords):
            return MOCK_RESPONSES[key]
    return MOCK_RESPONSES["default"]


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first JSON object embedded in ``text``, ignoring surrounding prose."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(value, dict):
                return value
        start = text.find("{", start + 1)
    return None


def parse_response(text: Optional[str], context: str = "book") -> Optional[ClassificationResult]:
    """
    Parse and validate the model's reply.

    Genres outside the taxonomy are dropped. If none survive the result is
    None rather than an empty list. More than three valid genres are truncated
    to the first three, in the order the model gave them.

    Args:
        text: Raw reply text
        context: Book description used in log messages

    Returns:
        ClassificationResult or None
    """
    if not text or not text.strip():
        logger.warning(f"Genre classification failed [{ClassificationFailure.EMPTY_RESPONSE.value}] for {context}: empty reply")
        return None

    payload = extract_json_object(text)
    if payload is None:
        logger.warning(f"Genre classification failed [{ClassificationFailure.MALFORMED_RESPONSE.value}] "
                       f"for {context}: no JSON object in reply {text[:200]!r}")
        return None

    raw_genres = payload.get("genres")
    if not isinstance(raw_genres, list):
        logger.warning(f"Genre classification failed [{ClassificationFailure.MALFORMED_RESPONSE.value}] "
                       f"for {context}: reply has no 'genres' array")
        return None

    genres = validate_genres(raw_genres)
    if not genres:
        logger.warning(f"Genre classification failed [{ClassificationFailure.NO_VALID_GENRES.value}] "
                       f"for {context}: none of {raw_genres!r} are in the taxonomy")
        return None

    if len(genres) > MAX_GENRES:
        logger.info(f"Truncating {len(genres)} genres to {MAX_GENRES} for {context}")
        genres = genres[:MAX_GENRES]

    return ClassificationResult(genres=genres, subgenre=validate_subgenre(payload.get("subgenre")))


def _build_client(config: ClassifierConfig) -> openai.OpenAI:
    # SDK retries are off: classify_book owns the retry budget
    return openai.OpenAI(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=config.timeout,
        max_retries=0,
    )


def _request_completion(client: openai.OpenAI, prompt: str, config: ClassifierConfig) -> Optional[str]:
    response = client.chat.completions.create(
        model=config.model,
        messages=[{"role": "user", "content": prompt}],
        max_tokens=150,
        temperature=0.3,
        extra_headers=EXTRA_HEADERS,
    )
    if not response.choices:
        return None
    return response.choices[0].message.content


def classify_book(book: BookMetadata, config: Optional[ClassifierConfig] = None) -> Optional[ClassificationResult]:
    """
    Classify a book into the genre taxonomy.

    Never raises. Transport failures (connection errors, timeouts, HTTP 429
    and 5xx) are retried with exponential backoff; malformed replies are not.

    Args:
        book: Book metadata
        config: Classifier configuration, read from the environment if omitted

    Returns:
        ClassificationResult with 1-3 canonical genres, or None on any failure
    """
    if not book.title or not book.title.strip():
        logger.warning(f"Genre classification skipped [{ClassificationFailure.MISSING_TITLE.value}]: "
                       f"book {book.identifier or '<unknown>'} has no title")
        return None

    config = config or get_classifier_config()
    context = _describe(book)

    if not config.enabled:
        logger.debug(f"Genre classification skipped [{ClassificationFailure.DISABLED.value}] for {context}")
        return None

    if config.mock_mode:
        result = mock_classification(book)
        logger.info(f"Mock classification for {context}: {', '.join(result.genres)}")
        return result

    if not config.api_key:
        logger.info(f"Genre classification skipped [{ClassificationFailure.NO_CREDENTIALS.value}] for {context}: no API key configured")
        return None

    prompt = build_prompt(book)
    logger.info(f"Classifying {context} with {config.model}")

    try:
        client = _build_client(config)
    except Exception as e:
        logger.warning(f"Genre classification failed [{ClassificationFailure.TRANSPORT.value}] for {context}: {e}")
        return None

    attempts = config.max_retries + 1
    for attempt in range(attempts):
        try:
            text = _request_completion(client, prompt, config)
        except openai.APITimeoutError as e:
            category, cause = ClassificationFailure.TIMEOUT, e
        except openai.APIConnectionError as e:
            category, cause = ClassificationFailure.TRANSPORT, e
        except openai.RateLimitError as e:
            category, cause = ClassificationFailure.RATE_LIMITED, e
        except openai.InternalServerError as e:
            category, cause = ClassificationFailure.TRANSPORT, e
        except openai.APIStatusError as e:
            # 4xx other than 429 will not improve on retry
            logger.warning(f"Genre classification failed [{ClassificationFailure.TRANSPORT.value}] "
                           f"for {context}: HTTP {e.status_code}: {e}")
            return None
        except Exception as e:
            logger.warning(f"Genre classification failed [{ClassificationFailure.TRANSPORT.value}] for {context}: {e}")
            return None
        else:
            result = parse_response(text, context)
            if result:
                subgenre = f" ({result.subgenre})" if result.subgenre else ""
                logger.info(f"Classified {context} as: {', '.join(result.genres)}{subgenre}")
            return result

        if attempt < attempts - 1:
            delay = config.retry_base_delay * (2 ** attempt)
            logger.info(f"Classification attempt {attempt + 1}/{attempts} for {context} failed "
                        f"[{category.value}]: {cause}; retrying in {delay:.1f}s")
            time.sleep(delay)

    logger.warning(f"Genre classification failed [{category.value}] for {context} "
                   f"after {attempts} attempts: {cause}")
    return None


def classify_books(books: Iterable[BookMetadata], delay_seconds: float = 0.5) -> Dict[str, ClassificationResult]:
    """
    Classify several books one after another.

    Args:
        books: Book metadata
        delay_seconds: Pause between requests to stay under rate limits

    Returns:
        Results keyed by identifier (or title); failed books are omitted
    """
    results: Dict[str, ClassificationResult] = {}
    for i, book in enumerate(books):
        if i and delay_seconds > 0:
            time.sleep(delay_seconds)
        result = classify_book(book)
        if result:
            results[book.identifier or book.title] = result
    return results
