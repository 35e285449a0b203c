"""Lorebase indexing pipeline: fetcher, chunker, orchestrator."""

from lorebase.ingest.base import BaseChunker, detect_language
from lorebase.ingest.chunker import BoundaryChunker, chunk_text
from lorebase.ingest.fetcher import FetchError, FileEntry, GitHubFetcher, Origin, filter_files, parse_origin
from lorebase.ingest.orchestrator import IndexingOrchestrator, IndexResult, IndexRun

__all__ = [
    "BaseChunker",
    "BoundaryChunker",
    "FetchError",
    "FileEntry",
    "GitHubFetcher",
    "IndexRun",
    "IndexResult",
    "IndexingOrchestrator",
    "Origin",
    "chunk_text",
    "detect_language",
    "filter_files",
    "parse_origin",
]
