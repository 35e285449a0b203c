"""Tests for lexical relevance scoring."""

from __future__ import annotations

from lorebase.db.models import Chunk
from lorebase.rag.scorer import score_chunks, score_text, tokenize_query


def _chunk(text: str, path: str = "a.md") -> Chunk:
    return Chunk(source_id="s", repo_name="acme/docs", file_path=path, chunk_index=0, text=text)


def test_tokenize_query_drops_short_words():
    assert tokenize_query("How do I Install the CLI tool?") == ["install", "tool?"]


def test_tokenize_query_custom_min_length():
    assert tokenize_query("api key setup", min_length=2) == ["api", "key", "setup"]


def test_short_token_query_returns_empty():
    chunks = [_chunk("the cat sat on the mat")]
    assert score_chunks(chunks, "the cat sat", max_results=5) == []


def test_ranking_scenario_phrase_beats_occurrences():
    a = _chunk("An apple a day.", "a.md")
    b = _chunk("apple pie, apple tart and apple juice", "b.md")
    c = _chunk("We sell apple banana smoothies.", "c.md")

    ranked = score_chunks([a, b, c], "apple banana", max_results=3)

    assert [s.chunk.file_path for s in ranked] == ["c.md", "b.md", "a.md"]
    assert [s.score for s in ranked] == [12, 3, 1]


def test_scoring_is_case_insensitive():
    assert score_text("APPLE Apple apple", "apple", ["apple"]) == 3 + 10


def test_zero_scores_dropped():
    ranked = score_chunks([_chunk("nothing relevant"), _chunk("install guide")], "install", 5)
    assert [s.chunk.text for s in ranked] == ["install guide"]


def test_ties_keep_scan_order():
    chunks = [_chunk("setup once", f"{i}.md") for i in range(4)]
    ranked = score_chunks(chunks, "setup", max_results=4)
    assert [s.chunk.file_path for s in ranked] == ["0.md", "1.md", "2.md", "3.md"]


def test_max_results_limit():
    chunks = [_chunk("setup " * i, f"{i}.md") for i in range(1, 8)]
    ranked = score_chunks(chunks, "setup", max_results=3)
    assert [s.chunk.file_path for s in ranked] == ["7.md", "6.md", "5.md"]


def test_more_occurrences_never_score_lower():
    base = "configure the server then restart"
    query = "configure server"
    tokens = tokenize_query(query)
    previous = score_text(base, query, tokens)
    for extra in range(1, 5):
        current = score_text(base + " configure" * extra, query, tokens)
        assert current >= previous
        previous = current


def test_tokens_matched_literally():
    # Regex metacharacters in the query are plain text
    ranked = score_chunks([_chunk("use (a+b)* carefully"), _chunk("aab")], "(a+b)*", 5)
    assert len(ranked) == 1
    assert ranked[0].chunk.text == "use (a+b)* carefully"
