"""Lexical relevance scoring of catalog entries against a free-text query."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING

from models import ScoredEntry

if TYPE_CHECKING:
    from models import Catalog, Entry

MIN_TOKEN_LEN = 3


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    """Additive weights for each relevance signal.

    Phrase weights apply once per entry when the whole lowercased query is a
    substring of the field. Token weights are multiplied by the occurrence
    count (title, snippet, full text) or applied once per token (tag, context).
    """

    phrase_title: int = 100
    phrase_snippet: int = 50
    phrase_full_text: int = 20
    token_title: int = 15
    token_snippet: int = 10
    token_full_text: int = 3
    token_tag: int = 30
    token_context: int = 5

    @classmethod
    def from_env(cls) -> "ScoringWeights":
        """Read overrides such as SCORE_WEIGHT_PHRASE_TITLE=120 from the environment."""
        overrides: dict[str, int] = {}
        for f in fields(cls):
            raw = os.getenv(f"SCORE_WEIGHT_{f.name.upper()}")
            if raw is not None and raw.strip():
                overrides[f.name] = int(raw)
        return cls(**overrides)


DEFAULT_WEIGHTS = ScoringWeights()


def tokenize(query: str) -> list[str]:
    """Split a lowercased query on whitespace, dropping tokens of 2 chars or fewer."""
    return [token for token in query.lower().split() if len(token) >= MIN_TOKEN_LEN]


def score_entry(entry: Entry, query: str, weights: ScoringWeights = DEFAULT_WEIGHTS) -> int:
    """Score one entry. Matching is literal substring counting, never pattern based."""
    phrase = query.lower()
    if not phrase.strip():
        return 0

    title = entry.title.lower()
    snippet = entry.snippet.lower()
    full_text = entry.full_text
    context = entry.context.lower()
    tags = [tag.lower() for tag in entry.tags]

    score = 0
    if phrase in title:
        score += weights.phrase_title
    if phrase in snippet:
        score += weights.phrase_snippet
    if phrase in full_text:
        score += weights.phrase_full_text

    for token in tokenize(phrase):
        score += title.count(token) * weights.token_title
        score += snippet.count(token) * weights.token_snippet
        score += full_text.count(token) * weights.token_full_text
        if any(token in tag for tag in tags):
            score += weights.token_tag
        if token in context:
            score += weights.token_context

    return score


def score_entries(
    catalog: Catalog,
    query: str,
    limit: int = 5,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> list[ScoredEntry]:
    """Return up to ``limit`` entries with a positive score, best first.

    ``sorted`` is stable, so entries with equal scores keep catalog order.
    """
    if not query or not query.strip():
        return []

    scored = [ScoredEntry(entry=entry, score=score_entry(entry, query, weights)) for entry in catalog]
    relevant = [item for item in scored if item.score > 0]
    relevant.sort(key=lambda item: item.score, reverse=True)
    return relevant[: max(limit, 0)]
