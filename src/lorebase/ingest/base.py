"""Base chunker interface for repository files."""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from pathlib import PurePosixPath

from lorebase.db.models import Chunk

_LANGUAGES: dict[str, str] = {
    "md": "markdown",
    "txt": "text",
    "py": "python",
    "js": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "jsx": "javascript",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "go": "go",
    "rs": "rust",
    "rb": "ruby",
    "php": "php",
    "swift": "swift",
    "kt": "kotlin",
    "html": "html",
    "css": "css",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
}


def detect_language(file_path: str) -> str:
    """Map a file extension to a content-language tag ('unknown' if unmapped)."""
    suffix = PurePosixPath(file_path).suffix.lower().lstrip(".")
    return _LANGUAGES.get(suffix, "unknown")


def checksum(text: str) -> str:
    """SHA-256 hex digest of *text* (UTF-8)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class BaseChunker(ABC):
    """Abstract base for chunkers.

    Sizes are measured in characters. Subclasses implement ``split()``;
    ``chunk()`` turns the resulting strings into Chunk records with
    sequential ``chunk_index``, a language tag, and a checksum.
    """

    def __init__(self, chunk_size: int = 1500, overlap: int = 200, min_chars: int = 100) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than chunk_size")
        if min_chars < 0:
            raise ValueError("min_chars must be >= 0")
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.min_chars = min_chars

    @abstractmethod
    def split(self, text: str) -> list[str]:
        """Split *text* into ordered text fragments."""

    def chunk(
        self,
        source_id: str,
        repo_name: str,
        file_path: str,
        content: str,
        metadata: dict | None = None,
    ) -> list[Chunk]:
        """Split *content* of one file into Chunk records.

        Args:
            source_id: ID of the owning Source.
            repo_name: ``owner/repo`` the file belongs to.
            file_path: Path of the file inside the repository.
            content: Decoded file text.
            metadata: Extra per-file metadata stored as JSON on every chunk.

        Returns:
            Ordered list of Chunk objects with sequential ``chunk_index``.
        """
        return self._make_chunks(
            source_id, repo_name, file_path, self.split(content), metadata or {}
        )

    @staticmethod
    def _make_chunks(
        source_id: str,
        repo_name: str,
        file_path: str,
        texts: list[str],
        metadata: dict,
    ) -> list[Chunk]:
        language = detect_language(file_path)
        meta = json.dumps({"language": language, **metadata})
        return [
            Chunk(
                source_id=source_id,
                repo_name=repo_name,
                file_path=file_path,
                chunk_index=i,
                text=t,
                language=language,
                checksum=checksum(t),
                metadata=meta,
            )
            for i, t in enumerate(texts)
        ]
