"""Indexing orchestrator: fetch → chunk → store, with status checkpoints.

One run re-indexes a single source from scratch:

  0. claim the source's indexing lease (a live lease refuses the run)
  1. state=indexing, progress=0                       → checkpoint
  2. delete the source's existing chunks (batched)
  3. list the repository tree                         → checkpoint 10
  4. filter files                                     → checkpoint 20
  5. per batch of files: fetch + chunk concurrently, one bulk write
                                                      → checkpoint 20..90
  6. state=ready, progress=100, counts, last_sync     → checkpoint

Per-file failures are logged and skipped. Any other failure moves the
source to ``error`` with the message persisted and raises IndexingError.
The in-memory run only becomes ``ready`` once that status is stored. The
lease is released on every terminal path.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import NoReturn

from loguru import logger

from lorebase.config import IndexingCfg
from lorebase.db.models import Chunk, Source, SourceState, SourceStatus, utc_timestamp
from lorebase.db.repository import Repository
from lorebase.ingest.chunker import BoundaryChunker
from lorebase.ingest.fetcher import FetchError, FileEntry, GitHubFetcher, Origin, filter_files

# Legal state transitions; indexing → indexing only for an abandoned run.
_TRANSITIONS: dict[SourceState, frozenset[SourceState]] = {
    SourceState.PENDING: frozenset({SourceState.INDEXING}),
    SourceState.INDEXING: frozenset({SourceState.READY, SourceState.ERROR}),
    SourceState.READY: frozenset({SourceState.INDEXING}),
    SourceState.ERROR: frozenset({SourceState.INDEXING}),
}

PROGRESS_LISTED = 10
PROGRESS_FILTERED = 20
PROGRESS_BATCH_SPAN = 70
PROGRESS_DONE = 100


class IndexingError(RuntimeError):
    """Raised when an indexing run fails; the message is stored on the source."""


class LeaseHeldError(RuntimeError):
    """Raised when another live run holds the source's indexing lease."""


class InvalidTransitionError(ValueError):
    """Raised on an illegal source state transition or a progress decrease."""


class PermissionDeniedError(PermissionError):
    """Raised when a non-admin actor triggers an admin operation."""


@dataclass
class IndexRun:
    """Status of one indexing run, written to the store at each checkpoint."""

    source_id: str
    run_id: str
    state: SourceState
    progress: int = 0
    error: str | None = None
    file_count: int = 0
    chunk_count: int = 0
    last_sync: str | None = None
    total_files: int = 0
    processed_files: int = 0
    skipped_files: list[str] = field(default_factory=list)

    @classmethod
    def for_source(cls, source: Source, run_id: str) -> IndexRun:
        return cls(
            source_id=source.id,
            run_id=run_id,
            state=source.status.state,
            last_sync=source.status.last_sync,
        )

    def transition(self, to: SourceState, *, recovering: bool = False) -> None:
        """Move to state *to*.

        Args:
            recovering: Permit ``indexing → indexing`` (the previous run's
                lease expired without a terminal state).

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        restart = recovering and self.state is SourceState.INDEXING and to is SourceState.INDEXING
        if not restart and to not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Illegal source state transition: {self.state.value} -> {to.value}"
            )
        if to is SourceState.INDEXING:
            self.progress = 0
            self.error = None
            self.file_count = 0
            self.chunk_count = 0
        self.state = to

    def advance(self, progress: int) -> None:
        """Raise progress to *progress* (clamped to 0..100); never lowers it."""
        progress = max(0, min(PROGRESS_DONE, progress))
        if progress < self.progress:
            raise InvalidTransitionError(
                f"Progress cannot decrease within a run ({self.progress} -> {progress})"
            )
        self.progress = progress

    def to_status(self) -> SourceStatus:
        return SourceStatus(
            state=self.state,
            progress=self.progress,
            error=self.error,
            file_count=self.file_count,
            chunk_count=self.chunk_count,
            last_sync=self.last_sync,
        )

    def checkpoint(self, repo: Repository) -> None:
        """Persist the whole status block."""
        repo.update_status(self.source_id, self.to_status())

    def complete(self, repo: Repository) -> None:
        """Write the ready status at 100%, then adopt it.

        The run stays in ``indexing`` if the write fails.
        """
        if SourceState.READY not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Illegal source state transition: {self.state.value} -> ready"
            )
        status = replace(self.to_status(), state=SourceState.READY, progress=PROGRESS_DONE)
        repo.update_status(self.source_id, status)
        self.state = SourceState.READY
        self.progress = PROGRESS_DONE


@dataclass
class IndexResult:
    source_id: str
    file_count: int
    chunk_count: int
    skipped_files: list[str] = field(default_factory=list)


ProgressCallback = Callable[[IndexRun], None]


class IndexingOrchestrator:
    """Drive the indexing lifecycle of sources stored in *repo*."""

    def __init__(
        self,
        repo: Repository,
        fetcher: GitHubFetcher,
        config: IndexingCfg | None = None,
    ) -> None:
        self._repo = repo
        self._fetcher = fetcher
        self._cfg = config or IndexingCfg()
        self._chunker = BoundaryChunker(
            chunk_size=self._cfg.chunk_size,
            overlap=self._cfg.chunk_overlap,
            min_chars=self._cfg.min_chunk_chars,
        )

    def trigger(
        self,
        source_id: str,
        *,
        actor: str,
        is_admin: Callable[[str], bool],
        on_progress: ProgressCallback | None = None,
    ) -> IndexResult:
        """Admin entry point: check *actor* with *is_admin*, then run.

        Raises:
            PermissionDeniedError: If *actor* is not an admin.
        """
        if not is_admin(actor):
            raise PermissionDeniedError(f"User '{actor}' is not allowed to index sources")
        logger.info("Indexing of {} triggered by {}", source_id, actor)
        return self.run(source_id, on_progress=on_progress)

    def run(self, source_id: str, on_progress: ProgressCallback | None = None) -> IndexResult:
        """Re-index *source_id* from scratch.

        A progress callback that fails on the final (``ready`` or ``error``)
        notification is logged; the recorded outcome of the run stands.

        Raises:
            SourceNotFoundError: If the source does not exist.
            LeaseHeldError: If another live run holds the lease.
            IndexingError: If the run fails (the source is left in ``error``
                when that state can still be written).
        """
        source = self._repo.require_source(source_id)
        run_id = uuid.uuid4().hex
        if not self._repo.acquire_lease(source_id, run_id, self._cfg.lease_seconds):
            raise LeaseHeldError(
                f"Source '{source.repo_name}' is already being indexed by another run"
            )

        run = IndexRun.for_source(source, run_id)
        try:
            try:
                recovering = source.status.state is SourceState.INDEXING
                if recovering:
                    logger.warning("Restarting abandoned indexing run for {}", source.repo_name)
                run.transition(SourceState.INDEXING, recovering=recovering)
                run.checkpoint(self._repo)
                self._notify(on_progress, run)
                self._index(source, run, on_progress)
            except Exception as exc:
                self._fail(source, run, exc, on_progress)
        finally:
            self._repo.release_lease(source_id, run_id)

        logger.info(
            "Indexed {}: {} files, {} chunks",
            source.repo_name,
            run.file_count,
            run.chunk_count,
        )
        self._notify_final(on_progress, run)
        return IndexResult(
            source_id=source_id,
            file_count=run.file_count,
            chunk_count=run.chunk_count,
            skipped_files=list(run.skipped_files),
        )

    def _fail(
        self,
        source: Source,
        run: IndexRun,
        exc: Exception,
        on_progress: ProgressCallback | None,
    ) -> NoReturn:
        """Record *exc* on the source as far as possible, then raise IndexingError."""
        run.error = str(exc) or exc.__class__.__name__
        logger.error("Indexing {} failed: {}", source.repo_name, run.error)
        if run.state is SourceState.INDEXING:
            run.transition(SourceState.ERROR)
            try:
                run.checkpoint(self._repo)
            except Exception as write_exc:
                logger.error("Could not record the failure of {}: {}", source.repo_name, write_exc)
            else:
                self._notify_final(on_progress, run)
        if isinstance(exc, IndexingError):
            raise exc
        raise IndexingError(run.error) from exc

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _index(self, source: Source, run: IndexRun, on_progress: ProgressCallback | None) -> None:
        cfg = self._cfg
        origin = Origin(owner=source.owner, repo=source.repo, branch=source.branch)

        removed = self._repo.delete_chunks_by_source(source.id, batch_size=cfg.write_batch_size)
        logger.debug("Removed {} existing chunks of {}", removed, source.repo_name)

        try:
            entries = self._fetcher.list_files(origin)
        except FetchError as exc:
            if exc.status is not None:
                raise IndexingError(f"GitHub API error: {exc.status}") from exc
            raise IndexingError(f"Could not reach GitHub: {exc}") from exc
        run.advance(PROGRESS_LISTED)
        run.checkpoint(self._repo)
        self._notify(on_progress, run)

        if not entries:
            raise IndexingError("No files found in repository")

        files = filter_files(entries, cfg.max_file_size, cfg.ignored_dirs, cfg.allowed_extensions)
        if not files:
            raise IndexingError("No relevant files found in repository")
        logger.debug("{} of {} tree entries selected in {}", len(files), len(entries), source.repo_name)

        run.total_files = len(files)
        run.advance(PROGRESS_FILTERED)
        run.checkpoint(self._repo)
        self._notify(on_progress, run)

        for start in range(0, len(files), cfg.file_batch_size):
            batch = files[start : start + cfg.file_batch_size]
            chunks = self._process_batch(source, origin, batch, run)
            self._repo.add_chunks(chunks)
            run.chunk_count += len(chunks)
            run.processed_files += len(batch)
            run.advance(
                PROGRESS_FILTERED + (run.processed_files * PROGRESS_BATCH_SPAN) // run.total_files
            )
            run.checkpoint(self._repo)
            self._notify(on_progress, run)

        run.file_count = len(files)
        run.last_sync = utc_timestamp()
        run.complete(self._repo)

    def _process_batch(
        self,
        source: Source,
        origin: Origin,
        batch: Sequence[FileEntry],
        run: IndexRun,
    ) -> list[Chunk]:
        """Fetch and chunk *batch* concurrently; failed files are skipped."""
        chunks: list[Chunk] = []
        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            futures = [pool.submit(self._process_file, source, origin, entry) for entry in batch]
            for entry, future in zip(batch, futures):
                try:
                    chunks.extend(future.result())
                except Exception as exc:
                    logger.warning("Skipping {} in {}: {}", entry.path, source.repo_name, exc)
                    run.skipped_files.append(entry.path)
        return chunks

    def _process_file(self, source: Source, origin: Origin, entry: FileEntry) -> list[Chunk]:
        url = self._fetcher.download_url(entry, origin)
        text = self._fetcher.read_file(url).decode("utf-8", errors="replace")
        return self._chunker.chunk(
            source.id,
            source.repo_name,
            entry.path,
            text,
            metadata={"sha": entry.sha, "size": entry.size},
        )

    @staticmethod
    def _notify(on_progress: ProgressCallback | None, run: IndexRun) -> None:
        if on_progress is not None:
            on_progress(run)

    @staticmethod
    def _notify_final(on_progress: ProgressCallback | None, run: IndexRun) -> None:
        if on_progress is None:
            return
        try:
            on_progress(run)
        except Exception as exc:
            logger.warning(
                "Progress callback failed on the {} notification of {}: {}",
                run.state.value,
                run.source_id,
                exc,
            )
