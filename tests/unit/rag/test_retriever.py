"""Tests for the bounded-scan retriever."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from lorebase.config import RetrievalCfg
from lorebase.db.models import Chunk, Source, SourceState, SourceStatus
from lorebase.db.repository import Repository
from lorebase.rag.retriever import retrieve


@pytest.fixture
def repo(tmp_db):
    r = Repository(tmp_db)
    for sid, name in (("s1", "ready-docs"), ("s2", "pending-docs")):
        r.add_source(Source(id=sid, url=f"https://github.com/acme/{name}", owner="acme", repo=name))
    r.update_status("s1", SourceStatus(state=SourceState.READY, progress=100))
    return r


def _chunk(source_id: str, index: int, text: str) -> Chunk:
    return Chunk(
        source_id=source_id,
        repo_name=f"acme/{source_id}",
        file_path=f"doc{index}.md",
        chunk_index=index,
        text=text,
    )


def test_retrieve_only_ready_sources(repo):
    repo.add_chunks([_chunk("s1", 0, "deploy with docker")])
    repo.add_chunks([_chunk("s2", 0, "deploy deploy deploy")])
    results = retrieve("deploy", repo, max_results=5)
    assert [r.chunk.source_id for r in results] == ["s1"]


def test_retrieve_bounded_scan(repo):
    repo.add_chunks([_chunk("s1", i, "filler text") for i in range(5)])
    repo.add_chunks([_chunk("s1", 5, "deploy guide")])
    assert retrieve("deploy", repo, 5, RetrievalCfg(scan_limit=5)) == []
    assert len(retrieve("deploy", repo, 5, RetrievalCfg(scan_limit=6))) == 1


def test_retrieve_ranks_best_first(repo):
    repo.add_chunks(
        [
            _chunk("s1", 0, "deploy once"),
            _chunk("s1", 1, "deploy deploy"),
        ]
    )
    results = retrieve("deploy", repo, max_results=1)
    assert [r.chunk.chunk_index for r in results] == [1]


def test_retrieve_degrades_to_empty_on_error():
    broken = MagicMock(spec=Repository)
    broken.query_chunks.side_effect = RuntimeError("database is locked")
    assert retrieve("deploy", broken, max_results=5) == []
