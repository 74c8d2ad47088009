"""Tests for text utility functions."""

from __future__ import annotations

import pytest

from entityfinder.utils.text import as_text, tokenize


class TestTokenize:
    """Test tokenize function."""

    def test_lowercases_words(self) -> None:
        """Should split on non-word characters and lowercase."""
        assert tokenize("Ann B. Lee-Smith") == ["ann", "b", "lee", "smith"]

    def test_empty_text(self) -> None:
        """Should handle empty text."""
        assert tokenize("") == []

    def test_unicode(self) -> None:
        """Should keep accented letters inside tokens."""
        assert tokenize("José Müller") == ["josé", "müller"]


class TestAsText:
    """Test as_text function."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "null"),
            (True, "true"),
            (False, "false"),
            (3.0, "3"),
            (3.5, "3.5"),
            (7, "7"),
            ("abc", "abc"),
        ],
    )
    def test_json_spelling(self, value, expected) -> None:
        """Should spell scalars the way JSON does."""
        assert as_text(value) == expected
