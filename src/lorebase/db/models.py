"""Domain models for the Lorebase document store."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_timestamp(moment: datetime | None = None) -> str:
    """Return *moment* (default: now) as a fixed-width, sortable UTC string."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SourceState(str, Enum):
    PENDING = "pending"
    INDEXING = "indexing"
    READY = "ready"
    ERROR = "error"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class SourceStatus:
    """Lifecycle status of a source; written as one unit by the orchestrator."""

    state: SourceState = SourceState.PENDING
    progress: int = 0
    error: str | None = None
    file_count: int = 0
    chunk_count: int = 0
    last_sync: str | None = None


@dataclass
class Source:
    """A registered GitHub repository (owner/repo at a branch)."""

    id: str
    url: str
    owner: str
    repo: str
    branch: str = "main"
    status: SourceStatus = field(default_factory=SourceStatus)
    run_id: str | None = None
    lease_expires_at: str | None = None
    created_at: str | None = None

    @property
    def repo_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def to_record(self) -> dict:
        """Return the source shape consumed by admin/UI layers."""
        status: dict = {"state": self.status.state.value, "progress": self.status.progress}
        if self.status.error:
            status["error"] = self.status.error
        if self.status.last_sync:
            status["lastSync"] = self.status.last_sync
        return {
            "id": self.id,
            "origin": {
                "url": self.url,
                "owner": self.owner,
                "repo": self.repo,
                "branch": self.branch,
            },
            "status": status,
            "stats": {
                "fileCount": self.status.file_count,
                "chunkCount": self.status.chunk_count,
            },
        }


@dataclass
class Chunk:
    source_id: str
    repo_name: str
    file_path: str
    chunk_index: int
    text: str
    language: str = "unknown"
    checksum: str = ""
    metadata: str = field(default_factory=lambda: "{}")
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved chunks

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)


@dataclass(frozen=True)
class Citation:
    """Provenance of a chunk used to ground an assistant reply."""

    repo_name: str
    file_path: str
    url: str

    def to_record(self) -> dict:
        return {"repoName": self.repo_name, "filePath": self.file_path, "url": self.url}

    @classmethod
    def from_record(cls, data: dict) -> Citation:
        return cls(repo_name=data["repoName"], file_path=data["filePath"], url=data["url"])


@dataclass
class Conversation:
    id: str
    owner: str
    title: str
    pinned: bool = False
    mode_id: str | None = None
    message_count: int = 0
    last_message: str = ""
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Turn:
    conversation_id: str
    role: Role
    text: str
    citations: list[Citation] = field(default_factory=list)
    is_error: bool = False
    channel: str = "text"
    id: str | None = None
    created_at: str | None = None
    seq: int | None = None  # insertion order; set after insert
