"""Repository pattern for all Lorebase database operations.

Single interface for: sources (status + indexing lease), chunks (bulk
replace / batched delete / bounded query), conversations, and turns.
All writes replace whole records or rows with no optimistic concurrency
checks, so the last writer wins.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterable, Iterator, Sequence
from datetime import datetime, timedelta, timezone

from lorebase.db.models import (
    Chunk,
    Citation,
    Conversation,
    Role,
    Source,
    SourceState,
    SourceStatus,
    Turn,
    utc_timestamp,
)

DEFAULT_WRITE_BATCH = 500

_SOURCE_COLUMNS = (
    "id, url, owner, repo, branch, state, progress, error, file_count, "
    "chunk_count, last_sync, run_id, lease_expires_at, created_at"
)
_CHUNK_COLUMNS = (
    "chunks.rowid AS rowid, chunks.source_id, chunks.repo_name, chunks.file_path, "
    "chunks.chunk_index, chunks.text, chunks.language, chunks.checksum, "
    "chunks.metadata, chunks.created_at"
)
_CONVERSATION_COLUMNS = (
    "id, owner, title, pinned, mode_id, message_count, last_message, created_at, updated_at"
)
_TURN_COLUMNS = "seq, id, conversation_id, role, text, citations, is_error, channel, created_at"


class SourceNotFoundError(LookupError):
    """Raised when a source id does not exist."""


class ConversationNotFoundError(LookupError):
    """Raised when a conversation id does not exist."""


class Repository:
    """Data access layer for all Lorebase entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see lorebase.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> Source:
        """Insert a new source record and return it as stored."""
        self._conn.execute(
            """
            INSERT INTO sources (id, url, owner, repo, branch, state, progress)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.url,
                source.owner,
                source.repo,
                source.branch,
                source.status.state.value,
                source.status.progress,
            ),
        )
        self._conn.commit()
        return self.require_source(source.id)

    def get_source(self, source_id: str) -> Source | None:
        """Return a source by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def require_source(self, source_id: str) -> Source:
        """Return a source by ID or raise SourceNotFoundError."""
        source = self.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source '{source_id}' not found")
        return source

    def get_source_by_origin(self, owner: str, repo: str, branch: str) -> Source | None:
        """Return the source registered for owner/repo@branch, or None."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE owner = ? AND repo = ? AND branch = ?",
            (owner, repo, branch),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self) -> list[Source]:
        """Return all sources ordered by registration time (oldest first)."""
        rows = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources ORDER BY created_at, id"
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def update_status(self, source_id: str, status: SourceStatus) -> None:
        """Overwrite the full status block of a source.

        Raises:
            SourceNotFoundError: If the source no longer exists.
        """
        cur = self._conn.execute(
            """
            UPDATE sources
            SET state = ?, progress = ?, error = ?, file_count = ?,
                chunk_count = ?, last_sync = ?
            WHERE id = ?
            """,
            (
                status.state.value,
                status.progress,
                status.error,
                status.file_count,
                status.chunk_count,
                status.last_sync,
                source_id,
            ),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            raise SourceNotFoundError(f"Source '{source_id}' not found")

    def delete_source(self, source_id: str, batch_size: int = DEFAULT_WRITE_BATCH) -> int:
        """Delete a source and all of its chunks. Returns the number of chunks deleted.

        Chunks are removed in batches before the source row itself.
        """
        deleted = self.delete_chunks_by_source(source_id, batch_size=batch_size)
        self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        self._conn.commit()
        return deleted

    # ------------------------------------------------------------------
    # Indexing lease
    # ------------------------------------------------------------------

    def acquire_lease(
        self,
        source_id: str,
        run_id: str,
        ttl_seconds: int,
        now: datetime | None = None,
    ) -> bool:
        """Atomically claim the indexing lease for *source_id*.

        Succeeds when no lease is held or the held lease has expired.
        Returns False if another live run holds the lease.
        """
        now = now or datetime.now(timezone.utc)
        expires = utc_timestamp(now + timedelta(seconds=ttl_seconds))
        cur = self._conn.execute(
            """
            UPDATE sources SET run_id = ?, lease_expires_at = ?
            WHERE id = ?
              AND (run_id IS NULL OR lease_expires_at IS NULL OR lease_expires_at <= ?)
            """,
            (run_id, expires, source_id, utc_timestamp(now)),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def release_lease(self, source_id: str, run_id: str) -> None:
        """Release the lease if *run_id* still holds it."""
        self._conn.execute(
            "UPDATE sources SET run_id = NULL, lease_expires_at = NULL WHERE id = ? AND run_id = ?",
            (source_id, run_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Insert *chunks* in a single transaction. Returns the number inserted."""
        if not chunks:
            return 0
        with self._conn:
            self._conn.executemany(
                """
                INSERT INTO chunks
                    (source_id, repo_name, file_path, chunk_index, text,
                     language, checksum, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        c.source_id,
                        c.repo_name,
                        c.file_path,
                        c.chunk_index,
                        c.text,
                        c.language,
                        c.checksum,
                        c.metadata,
                    )
                    for c in chunks
                ],
            )
        return len(chunks)

    def replace_chunks(
        self,
        source_id: str,
        chunks: Sequence[Chunk],
        batch_size: int = DEFAULT_WRITE_BATCH,
    ) -> int:
        """Delete every chunk of *source_id*, then insert *chunks* in batches.

        Not atomic across batches: readers may briefly see zero or partial
        chunks. Returns the number of chunks inserted.
        """
        self.delete_chunks_by_source(source_id, batch_size=batch_size)
        inserted = 0
        for batch in _batched(chunks, batch_size):
            inserted += self.add_chunks(batch)
        return inserted

    def query_chunks(
        self,
        source_id: str | None = None,
        repo_name: str | None = None,
        ready_only: bool = False,
        limit: int | None = None,
    ) -> list[Chunk]:
        """Return chunks in storage order, optionally filtered.

        Args:
            source_id: Only chunks of this source.
            repo_name: Only chunks of this ``owner/repo``.
            ready_only: Only chunks whose source is in the ``ready`` state.
            limit: Maximum number of chunks to return.
        """
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks"
        clauses: list[str] = []
        params: list[object] = []
        if ready_only:
            sql += " JOIN sources ON sources.id = chunks.source_id"
            clauses.append("sources.state = ?")
            params.append(SourceState.READY.value)
        if source_id is not None:
            clauses.append("chunks.source_id = ?")
            params.append(source_id)
        if repo_name is not None:
            clauses.append("chunks.repo_name = ?")
            params.append(repo_name)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY chunks.rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_chunk(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_chunks(self, source_id: str | None = None) -> int:
        """Return the number of chunks (of one source, or in total)."""
        if source_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def delete_chunks_by_source(
        self, source_id: str, batch_size: int = DEFAULT_WRITE_BATCH
    ) -> int:
        """Delete all chunks of *source_id* in batches. Returns the number deleted."""
        deleted = 0
        while True:
            rowids = [
                r[0]
                for r in self._conn.execute(
                    "SELECT rowid FROM chunks WHERE source_id = ? LIMIT ?",
                    (source_id, batch_size),
                ).fetchall()
            ]
            if not rowids:
                return deleted
            placeholders = ",".join("?" * len(rowids))
            self._conn.execute(f"DELETE FROM chunks WHERE rowid IN ({placeholders})", rowids)
            self._conn.commit()
            deleted += len(rowids)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, conversation: Conversation) -> Conversation:
        now = utc_timestamp()
        self._conn.execute(
            """
            INSERT INTO conversations (id, owner, title, pinned, mode_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conversation.id,
                conversation.owner,
                conversation.title,
                int(conversation.pinned),
                conversation.mode_id,
                now,
                now,
            ),
        )
        self._conn.commit()
        return self.require_conversation(conversation.id)

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = self._conn.execute(
            f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        return _row_to_conversation(row) if row else None

    def require_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation '{conversation_id}' not found")
        return conversation

    def list_conversations(self, owner: str | None = None) -> list[Conversation]:
        """Return conversations, pinned first, then most recently updated."""
        sql = f"SELECT {_CONVERSATION_COLUMNS} FROM conversations"
        params: tuple = ()
        if owner is not None:
            sql += " WHERE owner = ?"
            params = (owner,)
        sql += " ORDER BY pinned DESC, updated_at DESC"
        return [_row_to_conversation(r) for r in self._conn.execute(sql, params).fetchall()]

    def update_conversation(self, conversation: Conversation) -> Conversation:
        """Overwrite the mutable fields of a conversation and bump updated_at."""
        cur = self._conn.execute(
            """
            UPDATE conversations
            SET title = ?, pinned = ?, mode_id = ?, last_message = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                conversation.title,
                int(conversation.pinned),
                conversation.mode_id,
                conversation.last_message,
                utc_timestamp(),
                conversation.id,
            ),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            raise ConversationNotFoundError(f"Conversation '{conversation.id}' not found")
        return self.require_conversation(conversation.id)

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its turns. Returns False if it did not exist."""
        with self._conn:
            self._conn.execute("DELETE FROM turns WHERE conversation_id = ?", (conversation_id,))
            cur = self._conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        return cur.rowcount == 1

    def delete_conversations_by_owner(self, owner: str) -> int:
        """Delete every conversation (and turn) of *owner*. Returns conversations deleted."""
        with self._conn:
            self._conn.execute(
                "DELETE FROM turns WHERE conversation_id IN "
                "(SELECT id FROM conversations WHERE owner = ?)",
                (owner,),
            )
            cur = self._conn.execute("DELETE FROM conversations WHERE owner = ?", (owner,))
        return cur.rowcount

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def add_turn(self, turn: Turn) -> Turn:
        """Append *turn* to its conversation and bump the message count."""
        turn_id = turn.id or str(uuid.uuid4())
        with self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO turns (id, conversation_id, role, text, citations, is_error, channel, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    turn_id,
                    turn.conversation_id,
                    turn.role.value,
                    turn.text,
                    json.dumps([c.to_record() for c in turn.citations]),
                    int(turn.is_error),
                    turn.channel,
                    utc_timestamp(),
                ),
            )
            self._conn.execute(
                "UPDATE conversations SET message_count = message_count + 1, updated_at = ? WHERE id = ?",
                (utc_timestamp(), turn.conversation_id),
            )
        row = self._conn.execute(
            f"SELECT {_TURN_COLUMNS} FROM turns WHERE seq = ?", (cur.lastrowid,)
        ).fetchone()
        return _row_to_turn(row)

    def list_turns(self, conversation_id: str) -> list[Turn]:
        """Return every turn of a conversation in insertion order."""
        rows = self._conn.execute(
            f"SELECT {_TURN_COLUMNS} FROM turns WHERE conversation_id = ? ORDER BY seq",
            (conversation_id,),
        ).fetchall()
        return [_row_to_turn(r) for r in rows]

    def recent_turns(
        self,
        conversation_id: str,
        limit: int,
        before_seq: int | None = None,
    ) -> list[Turn]:
        """Return up to *limit* most recent turns, oldest first.

        Args:
            before_seq: Only turns inserted before this sequence number
                (used to exclude the turn that was just appended).
        """
        if limit <= 0:
            return []
        sql = f"SELECT {_TURN_COLUMNS} FROM turns WHERE conversation_id = ?"
        params: list[object] = [conversation_id]
        if before_seq is not None:
            sql += " AND seq < ?"
            params.append(before_seq)
        sql += " ORDER BY seq DESC LIMIT ?"
        params.append(limit)
        rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_turn(r) for r in reversed(rows)]

    def count_turns(self, conversation_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM turns WHERE conversation_id = ?", (conversation_id,)
        ).fetchone()[0]

    def mark_turn_error(self, turn_id: str) -> None:
        """Flag a turn as failed (its reply could not be generated)."""
        self._conn.execute("UPDATE turns SET is_error = 1 WHERE id = ?", (turn_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, object]:
        """Return totals for the status overview."""
        by_state = {state.value: 0 for state in SourceState}
        for row in self._conn.execute(
            "SELECT state, COUNT(*) AS n FROM sources GROUP BY state"
        ).fetchall():
            by_state[row["state"]] = row["n"]
        return {
            "sources": sum(by_state.values()),
            "sources_by_state": by_state,
            "chunks": self.count_chunks(),
            "conversations": self._conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0],
            "turns": self._conn.execute("SELECT COUNT(*) FROM turns").fetchone()[0],
        }


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _batched(items: Iterable[Chunk], size: int) -> Iterator[list[Chunk]]:
    batch: list[Chunk] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        url=row["url"],
        owner=row["owner"],
        repo=row["repo"],
        branch=row["branch"],
        status=SourceStatus(
            state=SourceState(row["state"]),
            progress=row["progress"],
            error=row["error"],
            file_count=row["file_count"],
            chunk_count=row["chunk_count"],
            last_sync=row["last_sync"],
        ),
        run_id=row["run_id"],
        lease_expires_at=row["lease_expires_at"],
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["rowid"],
        source_id=row["source_id"],
        repo_name=row["repo_name"],
        file_path=row["file_path"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        language=row["language"],
        checksum=row["checksum"],
        metadata=row["metadata"],
        created_at=row["created_at"],
    )


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        owner=row["owner"],
        title=row["title"],
        pinned=bool(row["pinned"]),
        mode_id=row["mode_id"],
        message_count=row["message_count"],
        last_message=row["last_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_turn(row: sqlite3.Row) -> Turn:
    return Turn(
        seq=row["seq"],
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=Role(row["role"]),
        text=row["text"],
        citations=[Citation.from_record(c) for c in json.loads(row["citations"])],
        is_error=bool(row["is_error"]),
        channel=row["channel"],
        created_at=row["created_at"],
    )
