"""Bounded-scan lexical retriever.

Reads the first ``scan_limit`` chunks (storage order) of sources in the
``ready`` state and ranks them with the lexical scorer. Retrieval never
fails the caller: any error is logged and yields no context.
"""

from __future__ import annotations

from loguru import logger

from lorebase.config import RetrievalCfg
from lorebase.db.repository import Repository
from lorebase.rag.scorer import ScoredChunk, score_chunks


def retrieve(
    query: str,
    repo: Repository,
    max_results: int,
    config: RetrievalCfg | None = None,
) -> list[ScoredChunk]:
    """Return up to *max_results* chunks relevant to *query*, best first."""
    cfg = config or RetrievalCfg()
    try:
        candidates = repo.query_chunks(ready_only=True, limit=cfg.scan_limit)
        results = score_chunks(
            candidates,
            query,
            max_results,
            phrase_bonus=cfg.phrase_bonus,
            min_token_length=cfg.min_token_length,
        )
    except Exception as exc:
        logger.warning("Retrieval failed, continuing without context: {}", exc)
        return []
    logger.debug("Retrieved {} of {} scanned chunks", len(results), len(candidates))
    return results
