"""Tests for the Repository pattern."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from lorebase.db.models import (
    Chunk,
    Citation,
    Conversation,
    Role,
    Source,
    SourceState,
    SourceStatus,
    Turn,
)
from lorebase.db.repository import (
    ConversationNotFoundError,
    Repository,
    SourceNotFoundError,
)


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


def _source(id="src-1", owner="acme", name="docs", branch="main"):
    return Source(
        id=id,
        url=f"https://github.com/{owner}/{name}",
        owner=owner,
        repo=name,
        branch=branch,
    )


def _chunk(source_id="src-1", path="README.md", index=0, text="hello world", repo_name="acme/docs"):
    return Chunk(
        source_id=source_id,
        repo_name=repo_name,
        file_path=path,
        chunk_index=index,
        text=text,
        language="markdown",
    )


def _ready(repo: Repository, source_id: str) -> None:
    repo.update_status(source_id, SourceStatus(state=SourceState.READY, progress=100))


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------

def test_add_and_get_source(repo):
    stored = repo.add_source(_source())
    assert stored.id == "src-1"
    assert stored.repo_name == "acme/docs"
    assert stored.status.state is SourceState.PENDING
    assert stored.status.progress == 0
    assert stored.created_at is not None


def test_get_source_not_found(repo):
    assert repo.get_source("nonexistent") is None


def test_require_source_raises(repo):
    with pytest.raises(SourceNotFoundError):
        repo.require_source("nonexistent")


def test_get_source_by_origin(repo):
    repo.add_source(_source(branch="dev"))
    assert repo.get_source_by_origin("acme", "docs", "dev").id == "src-1"
    assert repo.get_source_by_origin("acme", "docs", "main") is None


def test_list_sources(repo):
    repo.add_source(_source(id="s1", name="a"))
    repo.add_source(_source(id="s2", name="b"))
    assert {s.repo for s in repo.list_sources()} == {"a", "b"}


def test_update_status_overwrites_whole_block(repo):
    repo.add_source(_source())
    repo.update_status(
        "src-1",
        SourceStatus(state=SourceState.ERROR, progress=20, error="boom", file_count=3),
    )
    repo.update_status("src-1", SourceStatus(state=SourceState.INDEXING, progress=0))
    status = repo.get_source("src-1").status
    assert status.state is SourceState.INDEXING
    assert status.error is None
    assert status.file_count == 0


def test_update_status_missing_source_raises(repo):
    with pytest.raises(SourceNotFoundError):
        repo.update_status("ghost", SourceStatus())


def test_source_to_record_shape(repo):
    repo.add_source(_source())
    repo.update_status(
        "src-1",
        SourceStatus(
            state=SourceState.READY,
            progress=100,
            file_count=2,
            chunk_count=5,
            last_sync="2026-01-01T00:00:00.000000Z",
        ),
    )
    record = repo.get_source("src-1").to_record()
    assert record["origin"] == {
        "url": "https://github.com/acme/docs",
        "owner": "acme",
        "repo": "docs",
        "branch": "main",
    }
    assert record["status"] == {
        "state": "ready",
        "progress": 100,
        "lastSync": "2026-01-01T00:00:00.000000Z",
    }
    assert record["stats"] == {"fileCount": 2, "chunkCount": 5}


def test_delete_source_cascades_chunks(repo):
    repo.add_source(_source())
    repo.add_chunks([_chunk(index=i) for i in range(7)])
    deleted = repo.delete_source("src-1", batch_size=3)
    assert deleted == 7
    assert repo.get_source("src-1") is None
    assert repo.count_chunks() == 0


# ------------------------------------------------------------------
# Lease
# ------------------------------------------------------------------

def test_acquire_lease_once(repo):
    repo.add_source(_source())
    assert repo.acquire_lease("src-1", "run-a", ttl_seconds=60) is True
    assert repo.acquire_lease("src-1", "run-b", ttl_seconds=60) is False
    assert repo.get_source("src-1").run_id == "run-a"


def test_acquire_lease_after_release(repo):
    repo.add_source(_source())
    repo.acquire_lease("src-1", "run-a", ttl_seconds=60)
    repo.release_lease("src-1", "run-a")
    assert repo.get_source("src-1").run_id is None
    assert repo.acquire_lease("src-1", "run-b", ttl_seconds=60) is True


def test_release_lease_ignores_other_run(repo):
    repo.add_source(_source())
    repo.acquire_lease("src-1", "run-a", ttl_seconds=60)
    repo.release_lease("src-1", "run-b")
    assert repo.get_source("src-1").run_id == "run-a"


def test_acquire_expired_lease(repo):
    repo.add_source(_source())
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    assert repo.acquire_lease("src-1", "run-a", ttl_seconds=60, now=past)
    assert repo.acquire_lease("src-1", "run-b", ttl_seconds=60) is True
    assert repo.get_source("src-1").run_id == "run-b"


def test_acquire_lease_missing_source(repo):
    assert repo.acquire_lease("ghost", "run-a", ttl_seconds=60) is False


# ------------------------------------------------------------------
# Chunks
# ------------------------------------------------------------------

def test_add_chunks_and_query_in_storage_order(repo):
    repo.add_source(_source())
    repo.add_chunks([_chunk(index=i, text=f"text {i}") for i in range(3)])
    chunks = repo.query_chunks(source_id="src-1")
    assert [c.text for c in chunks] == ["text 0", "text 1", "text 2"]
    assert all(c.rowid is not None for c in chunks)
    assert chunks[0].language == "markdown"


def test_add_chunks_empty(repo):
    assert repo.add_chunks([]) == 0


def test_replace_chunks_replaces_not_appends(repo):
    repo.add_source(_source())
    repo.replace_chunks("src-1", [_chunk(index=i) for i in range(5)], batch_size=2)
    inserted = repo.replace_chunks("src-1", [_chunk(index=i) for i in range(3)], batch_size=2)
    assert inserted == 3
    assert repo.count_chunks("src-1") == 3


def test_query_chunks_limit(repo):
    repo.add_source(_source())
    repo.add_chunks([_chunk(index=i) for i in range(10)])
    assert len(repo.query_chunks(limit=4)) == 4


def test_query_chunks_ready_only(repo):
    repo.add_source(_source(id="s1", name="a"))
    repo.add_source(_source(id="s2", name="b"))
    repo.add_chunks([_chunk(source_id="s1", repo_name="acme/a")])
    repo.add_chunks([_chunk(source_id="s2", repo_name="acme/b")])
    _ready(repo, "s2")
    chunks = repo.query_chunks(ready_only=True)
    assert [c.source_id for c in chunks] == ["s2"]


def test_query_chunks_by_repo_name(repo):
    repo.add_source(_source(id="s1", name="a"))
    repo.add_source(_source(id="s2", name="b"))
    repo.add_chunks([_chunk(source_id="s1", repo_name="acme/a")])
    repo.add_chunks([_chunk(source_id="s2", repo_name="acme/b")])
    assert [c.source_id for c in repo.query_chunks(repo_name="acme/a")] == ["s1"]


def test_delete_chunks_by_source_batched(repo):
    repo.add_source(_source(id="s1", name="a"))
    repo.add_source(_source(id="s2", name="b"))
    repo.add_chunks([_chunk(source_id="s1", index=i) for i in range(5)])
    repo.add_chunks([_chunk(source_id="s2", index=i) for i in range(2)])
    assert repo.delete_chunks_by_source("s1", batch_size=2) == 5
    assert repo.count_chunks("s1") == 0
    assert repo.count_chunks("s2") == 2


# ------------------------------------------------------------------
# Conversations and turns
# ------------------------------------------------------------------

def _conversation(repo, id="c1", owner="alice", title="New Chat"):
    return repo.create_conversation(Conversation(id=id, owner=owner, title=title))


def test_create_and_get_conversation(repo):
    created = _conversation(repo)
    assert created.message_count == 0
    assert created.pinned is False
    assert repo.get_conversation("c1").title == "New Chat"


def test_require_conversation_raises(repo):
    with pytest.raises(ConversationNotFoundError):
        repo.require_conversation("ghost")


def test_list_conversations_pinned_first(repo):
    _conversation(repo, id="c1")
    c2 = _conversation(repo, id="c2")
    _conversation(repo, id="c3", owner="bob")
    c2.pinned = True
    repo.update_conversation(c2)
    listed = repo.list_conversations("alice")
    assert [c.id for c in listed][0] == "c2"
    assert {c.id for c in listed} == {"c1", "c2"}


def test_update_conversation(repo):
    c = _conversation(repo)
    c.title = "Renamed"
    c.last_message = "latest"
    updated = repo.update_conversation(c)
    assert updated.title == "Renamed"
    assert updated.last_message == "latest"


def test_update_missing_conversation_raises(repo):
    with pytest.raises(ConversationNotFoundError):
        repo.update_conversation(Conversation(id="ghost", owner="alice", title="x"))


def test_add_turn_assigns_id_seq_and_counts(repo):
    _conversation(repo)
    t1 = repo.add_turn(Turn(conversation_id="c1", role=Role.USER, text="hi"))
    t2 = repo.add_turn(Turn(conversation_id="c1", role=Role.ASSISTANT, text="hello"))
    assert t1.id and t2.id and t1.id != t2.id
    assert t1.seq < t2.seq
    assert repo.get_conversation("c1").message_count == 2


def test_turn_citations_roundtrip(repo):
    _conversation(repo)
    cite = Citation("acme/docs", "README.md", "https://github.com/acme/docs/blob/main/README.md")
    repo.add_turn(Turn(conversation_id="c1", role=Role.ASSISTANT, text="a", citations=[cite]))
    assert repo.list_turns("c1")[0].citations == [cite]


def test_recent_turns_window_oldest_first(repo):
    _conversation(repo)
    turns = [
        repo.add_turn(Turn(conversation_id="c1", role=Role.USER, text=f"m{i}"))
        for i in range(6)
    ]
    recent = repo.recent_turns("c1", limit=3)
    assert [t.text for t in recent] == ["m3", "m4", "m5"]
    before = repo.recent_turns("c1", limit=3, before_seq=turns[-1].seq)
    assert [t.text for t in before] == ["m2", "m3", "m4"]
    assert repo.recent_turns("c1", limit=0) == []


def test_mark_turn_error(repo):
    _conversation(repo)
    turn = repo.add_turn(Turn(conversation_id="c1", role=Role.USER, text="hi"))
    repo.mark_turn_error(turn.id)
    assert repo.list_turns("c1")[0].is_error is True


def test_delete_conversation_cascades_turns(repo):
    _conversation(repo)
    repo.add_turn(Turn(conversation_id="c1", role=Role.USER, text="hi"))
    assert repo.delete_conversation("c1") is True
    assert repo.count_turns("c1") == 0
    assert repo.delete_conversation("c1") is False


def test_delete_conversations_by_owner(repo):
    _conversation(repo, id="c1")
    _conversation(repo, id="c2")
    _conversation(repo, id="c3", owner="bob")
    repo.add_turn(Turn(conversation_id="c1", role=Role.USER, text="hi"))
    assert repo.delete_conversations_by_owner("alice") == 2
    assert [c.id for c in repo.list_conversations()] == ["c3"]
    assert repo.count_turns("c1") == 0


def test_stats(repo):
    repo.add_source(_source())
    repo.add_chunks([_chunk(index=i) for i in range(2)])
    _conversation(repo)
    repo.add_turn(Turn(conversation_id="c1", role=Role.USER, text="hi"))
    stats = repo.stats()
    assert stats["sources"] == 1
    assert stats["sources_by_state"]["pending"] == 1
    assert stats["sources_by_state"]["ready"] == 0
    assert stats["chunks"] == 2
    assert stats["conversations"] == 1
    assert stats["turns"] == 1
