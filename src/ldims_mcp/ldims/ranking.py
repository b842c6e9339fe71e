"""Relevance ranking of backend search records.

The LDIMS search endpoint returns matching documents without a relevance
signal, so results are ranked locally from the text the backend returns:
the extracted content of each attached file, the document-level extracted
content, and the document remarks. Each of these is a snippet.

Snippet score:

- ``semantic`` mode: ``0.5 * term_coverage + 0.5 * phrase_hit``, where
  ``term_coverage`` is the fraction of distinct query terms found in the
  snippet and ``phrase_hit`` is 1 when the whole query occurs verbatim.
- ``exact`` mode: ``phrase_hit`` only.

Matching is case-insensitive. A snippet's position is the offset of its
earliest match. A document scores as its best snippet; ties between its
snippets go to the earliest position.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Final, TypeVar

from ldims_mcp.constants import CONTEXT_EXCERPT_RADIUS
from ldims_mcp.ldims.schemas import SearchMode, SearchRecord

T = TypeVar("T")

_ELLIPSIS: Final = "..."


@dataclass(frozen=True)
class Snippet:
    """A piece of text a document can be matched on.

    Attributes:
        source: Where the text came from (file name, ``content`` or ``remarks``).
        text: The text itself.
    """

    source: str
    text: str


@dataclass(frozen=True)
class SnippetMatch:
    """Score of one snippet against a query.

    Attributes:
        snippet: The scored snippet.
        score: Score in ``[0, 1]``.
        position: Offset of the earliest match, None when nothing matched.
        length: Length of the text matched at ``position``.
    """

    snippet: Snippet
    score: float
    position: int | None
    length: int = 0

    @property
    def matched(self) -> bool:
        """Whether anything in the snippet matched."""
        return self.position is not None and self.score > 0


def query_terms(query: str) -> list[str]:
    """Split a query into distinct lowercase terms, keeping their order.

    Args:
        query: Raw query string.

    Returns:
        Distinct whitespace-separated terms.
    """
    return list(dict.fromkeys(query.lower().split()))


def score_snippet(snippet: Snippet, query: str, mode: SearchMode = "semantic") -> SnippetMatch:
    """Score a snippet against a query.

    Args:
        snippet: Text to score.
        query: Search query.
        mode: ``semantic`` or ``exact``.

    Returns:
        The snippet's match.

    Example:
        >>> score_snippet(Snippet("remarks", "Annual safety report"), "safety report").score
        1.0
    """
    text = snippet.text.lower()
    phrase = " ".join(query.lower().split())
    phrase_at = text.find(phrase) if phrase else -1

    hits: list[tuple[int, int]] = []
    if phrase_at >= 0:
        hits.append((phrase_at, len(phrase)))

    if mode == "exact":
        score = 1.0 if phrase_at >= 0 else 0.0
    else:
        terms = query_terms(query)
        found = 0
        for term in terms:
            at = text.find(term)
            if at >= 0:
                found += 1
                hits.append((at, len(term)))
        coverage = found / len(terms) if terms else 0.0
        score = 0.5 * coverage + 0.5 * (1.0 if phrase_at >= 0 else 0.0)

    if not hits or score == 0:
        return SnippetMatch(snippet=snippet, score=0.0, position=None)
    position, length = min(hits)
    return SnippetMatch(snippet=snippet, score=score, position=position, length=length)


def best_match(matches: Iterable[SnippetMatch]) -> SnippetMatch | None:
    """Pick the best snippet match: highest score, then earliest position.

    Args:
        matches: Candidate matches.

    Returns:
        The best matched snippet, or None if none matched.
    """
    matched = [m for m in matches if m.matched]
    if not matched:
        return None
    return min(matched, key=lambda m: (-m.score, m.position))


def record_snippets(record: SearchRecord) -> list[Snippet]:
    """Collect the text of a search record that queries are matched against.

    Args:
        record: Backend search record.

    Returns:
        Snippets from file contents, document content and remarks, in that order.
    """
    snippets = [
        Snippet(source=file.file_name, text=file.extracted_content)
        for file in record.files
        if file.extracted_content and file.extracted_content.strip()
    ]
    if record.extracted_content and record.extracted_content.strip():
        snippets.append(Snippet(source="content", text=record.extracted_content))
    if record.remarks and record.remarks.strip():
        snippets.append(Snippet(source="remarks", text=record.remarks))
    return snippets


def excerpt(text: str, position: int, length: int = 0, radius: int = CONTEXT_EXCERPT_RADIUS) -> str:
    """Cut an excerpt of ``text`` around a match.

    Args:
        text: Full text.
        position: Offset of the match.
        length: Length of the match.
        radius: Characters kept on each side of the match.

    Returns:
        The excerpt, with ellipses where the text was cut.
    """
    start = max(0, position - radius)
    end = min(len(text), position + length + radius)
    prefix = _ELLIPSIS if start > 0 else ""
    suffix = _ELLIPSIS if end < len(text) else ""
    return f"{prefix}{text[start:end].strip()}{suffix}"


def rank(items: Sequence[T], matches: Sequence[SnippetMatch | None]) -> list[T]:
    """Order items by their best match.

    Matched items come first by descending score then ascending position.
    Unmatched items follow in their original order.

    Args:
        items: Items in backend order.
        matches: Best match of each item, aligned with ``items``.

    Returns:
        Items in ranked order.
    """
    matched = [(item, m) for item, m in zip(items, matches, strict=True) if m is not None]
    unmatched = [item for item, m in zip(items, matches, strict=True) if m is None]
    matched.sort(key=lambda pair: (-pair[1].score, pair[1].position))
    return [item for item, _ in matched] + unmatched
