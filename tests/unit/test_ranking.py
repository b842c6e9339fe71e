"""Tests for local relevance ranking."""

from ldims_mcp.ldims.ranking import (
    Snippet,
    SnippetMatch,
    best_match,
    excerpt,
    query_terms,
    rank,
    record_snippets,
    score_snippet,
)
from ldims_mcp.ldims.schemas import SearchRecord


def test_query_terms_are_distinct_and_lowercase() -> None:
    """Test that query terms are split, lowercased and deduplicated."""
    assert query_terms("Budget  budget Report") == ["budget", "report"]


class TestScoreSnippet:
    """Test suite for snippet scoring."""

    def test_full_phrase_scores_one(self) -> None:
        """Test that a verbatim phrase with all terms scores 1."""
        match = score_snippet(Snippet("remarks", "The Annual Safety Report"), "safety report")

        assert match.score == 1.0
        assert match.position == 11

    def test_partial_terms(self) -> None:
        """Test that term coverage without the phrase scores half the coverage."""
        match = score_snippet(Snippet("content", "report on budget"), "budget plan")

        assert match.score == 0.25
        assert match.position == 10

    def test_terms_without_phrase(self) -> None:
        """Test that all terms in a different order score 0.5."""
        match = score_snippet(Snippet("content", "report of safety"), "safety report")

        assert match.score == 0.5
        assert match.position == 0

    def test_no_match(self) -> None:
        """Test that an unrelated snippet does not match."""
        match = score_snippet(Snippet("content", "minutes of meeting"), "budget")

        assert match.score == 0.0
        assert match.position is None
        assert not match.matched

    def test_exact_mode_requires_phrase(self) -> None:
        """Test that exact mode only scores verbatim phrases."""
        snippet = Snippet("content", "report of safety")

        assert score_snippet(snippet, "safety report", "exact").score == 0.0
        assert score_snippet(snippet, "of safety", "exact").score == 1.0


class TestBestMatch:
    """Test suite for picking a document's best snippet."""

    def test_highest_score_then_earliest_position(self) -> None:
        """Test the tie-break on position."""
        a = SnippetMatch(Snippet("a", "x"), 0.5, 20)
        b = SnippetMatch(Snippet("b", "x"), 0.5, 3)
        c = SnippetMatch(Snippet("c", "x"), 0.25, 0)

        assert best_match([a, b, c]) is b

    def test_none_when_nothing_matched(self) -> None:
        """Test that unmatched snippets give no best match."""
        assert best_match([SnippetMatch(Snippet("a", "x"), 0.0, None)]) is None


def test_record_snippets_order() -> None:
    """Test that file contents come before document content and remarks."""
    record = SearchRecord.model_validate(
        {
            "id": 1,
            "extractedContent": "document text",
            "remarks": "a remark",
            "files": [
                {"id": 7, "fileName": "a.pdf", "extractedContent": "file text"},
                {"id": 8, "fileName": "b.pdf", "extractedContent": "   "},
            ],
        }
    )

    snippets = record_snippets(record)

    assert [s.source for s in snippets] == ["a.pdf", "content", "remarks"]


class TestExcerpt:
    """Test suite for context excerpts."""

    def test_short_text_is_not_cut(self) -> None:
        """Test that short text is returned whole."""
        assert excerpt("budget plan", 0, 6) == "budget plan"

    def test_long_text_gets_ellipses(self) -> None:
        """Test that cut text is marked at both ends."""
        text = "a" * 200 + "budget" + "b" * 200

        result = excerpt(text, 200, 6, radius=10)

        assert result == "..." + "a" * 10 + "budget" + "b" * 10 + "..."


def test_rank_orders_matched_then_unmatched() -> None:
    """Test ranking by score, then position, with unmatched items last in input order."""
    snippet = Snippet("s", "x")
    items = ["none-1", "low", "high-late", "none-2", "high-early"]
    matches = [
        None,
        SnippetMatch(snippet, 0.25, 0),
        SnippetMatch(snippet, 1.0, 40),
        None,
        SnippetMatch(snippet, 1.0, 5),
    ]

    assert rank(items, matches) == ["high-early", "high-late", "low", "none-1", "none-2"]
