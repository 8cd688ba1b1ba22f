"""
Tests for the ingestion allow-list filters.
"""

from librarian.filters import (
    FilterConfig,
    apply_filters,
    check_author_filter,
    check_genre_filter,
    filter_summary,
    has_active_filters,
    validate_genre_names,
)

GENRE_FILTER = FilterConfig(allowed_genres=("Philosophy", "Poetry"), enable_genre_filter=True)
AUTHOR_FILTER = FilterConfig(allowed_authors=("Plato", "Homer"), enable_author_filter=True)


class TestFilterConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("INGEST_ALLOWED_GENRES", "Philosophy, Poetry ,,")
        monkeypatch.setenv("INGEST_ALLOWED_AUTHORS", "Plato")
        monkeypatch.setenv("ENABLE_GENRE_FILTER", "TRUE")
        monkeypatch.delenv("ENABLE_AUTHOR_FILTER", raising=False)

        config = FilterConfig.from_env()

        assert config.allowed_genres == ("Philosophy", "Poetry")
        assert config.allowed_authors == ("Plato",)
        assert config.genre_filter_active
        assert not config.author_filter_active

    def test_enabled_without_values_is_inactive(self):
        config = FilterConfig(enable_genre_filter=True, enable_author_filter=True)
        assert not has_active_filters(config)

    def test_default_allows_everything(self):
        decision = apply_filters(None, None, FilterConfig())
        assert decision.passed
        assert decision.checks == {"genre": True, "author": True}


class TestGenreFilter:

    def test_matching_genre(self):
        assert check_genre_filter(["History", "poetry"], GENRE_FILTER).passed

    def test_no_match(self):
        decision = check_genre_filter(["History"], GENRE_FILTER)
        assert not decision.passed
        assert decision.filter_type == "filtered_genre"
        assert "History" in decision.reason

    def test_unclassified_book_passes_active_filter(self):
        assert check_genre_filter(None, GENRE_FILTER).passed
        assert check_genre_filter([], GENRE_FILTER).passed

    def test_validate_genre_names(self):
        assert validate_genre_names(["philosophy", "Law"]) == (True, [])
        assert validate_genre_names(["Law", "Cookery"]) == (False, ["Cookery"])


class TestAuthorFilter:

    def test_substring_match(self):
        assert check_author_filter("Homer, approximately 800 BC", AUTHOR_FILTER).passed

    def test_no_match(self):
        decision = check_author_filter("Aristotle", AUTHOR_FILTER)
        assert not decision.passed
        assert decision.filter_type == "filtered_author"

    def test_missing_author(self):
        assert not check_author_filter("  ", AUTHOR_FILTER).passed


class TestApplyFilters:

    def test_genre_checked_first(self):
        config = FilterConfig(allowed_genres=("Poetry",), allowed_authors=("Plato",),
                              enable_genre_filter=True, enable_author_filter=True)

        decision = apply_filters("Aristotle", ["History"], config)

        assert not decision.passed
        assert decision.reason.startswith("Genre filter failed")
        assert decision.checks == {"genre": False}

    def test_author_failure(self):
        decision = apply_filters("Aristotle", ["Philosophy"], AUTHOR_FILTER)
        assert decision.reason.startswith("Author filter failed")
        assert decision.checks == {"genre": True, "author": False}

    def test_summary(self):
        assert filter_summary(GENRE_FILTER) == (
            "Genre filter: 2 allowed genres [Philosophy, Poetry], Author filter: disabled (allow all)"
        )
