"""Lexical relevance scoring over stored chunks.

score(chunk) = Σ occurrences of each query token in the chunk text
             + phrase_bonus if the whole query appears verbatim

Tokens are the lowercased, whitespace-separated words of the query longer
than ``min_length`` characters. Matching is case-insensitive, counts
non-overlapping occurrences, and treats tokens as literal text.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from lorebase.db.models import Chunk

DEFAULT_MIN_TOKEN_LENGTH = 3
DEFAULT_PHRASE_BONUS = 10


@dataclass
class ScoredChunk:
    """A chunk together with its lexical relevance score (higher = better)."""

    chunk: Chunk
    score: int


def tokenize_query(query: str, min_length: int = DEFAULT_MIN_TOKEN_LENGTH) -> list[str]:
    """Return the lowercased words of *query* longer than *min_length*."""
    return [word for word in query.lower().split() if len(word) > min_length]


def score_text(
    text: str,
    query: str,
    tokens: Iterable[str],
    phrase_bonus: int = DEFAULT_PHRASE_BONUS,
) -> int:
    """Score one text against pre-tokenized *tokens* of *query*."""
    haystack = text.lower()
    score = sum(haystack.count(token) for token in tokens)
    phrase = query.lower()
    if phrase and phrase in haystack:
        score += phrase_bonus
    return score


def score_chunks(
    chunks: Iterable[Chunk],
    query: str,
    max_results: int,
    phrase_bonus: int = DEFAULT_PHRASE_BONUS,
    min_token_length: int = DEFAULT_MIN_TOKEN_LENGTH,
) -> list[ScoredChunk]:
    """Rank *chunks* by lexical relevance to *query*, best first.

    Chunks scoring zero are dropped. Ties keep their input order.
    Returns at most *max_results* entries; a query with no usable tokens
    returns an empty list.
    """
    tokens = tokenize_query(query, min_token_length)
    if not tokens or max_results <= 0:
        return []

    scored = [
        ScoredChunk(chunk=chunk, score=score_text(chunk.text, query, tokens, phrase_bonus))
        for chunk in chunks
    ]
    # sorted() is stable: equal scores stay in storage order
    ranked = sorted((s for s in scored if s.score > 0), key=lambda s: s.score, reverse=True)
    return ranked[:max_results]
