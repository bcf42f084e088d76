"""Incremental indexing of a note corpus into the graph and search index.

Files are loaded and their links extracted in parallel worker threads.
Results are committed one document at a time, in path order, by the calling
thread, so the graph store only ever sees a single writer. Cancellation is
checked between commits; documents committed before that point stay indexed.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from ..config import IGNORED_DIRS, Settings
from ..errors import InvariantViolation, ParseError
from ..graph import GraphStore
from ..models import Document, DocumentState, LinkReference
from ..parser.links import extract_references
from ..parser.markdown import discover_files, is_ignored, parse_document
from .whoosh_index import WhooshIndex

log = logging.getLogger(__name__)

# Allowed state changes per file. A path whose file reappears after removal
# starts over at LOADED.
TRANSITIONS: dict[DocumentState, frozenset[DocumentState]] = {
    DocumentState.UNSEEN: frozenset({DocumentState.LOADED, DocumentState.FAILED}),
    DocumentState.LOADED: frozenset({DocumentState.EXTRACTED, DocumentState.FAILED}),
    DocumentState.EXTRACTED: frozenset({DocumentState.RESOLVED, DocumentState.FAILED}),
    DocumentState.RESOLVED: frozenset({DocumentState.INDEXED}),
    DocumentState.INDEXED: frozenset(
        {DocumentState.LOADED, DocumentState.REMOVED, DocumentState.FAILED}
    ),
    DocumentState.FAILED: frozenset(
        {DocumentState.LOADED, DocumentState.REMOVED, DocumentState.FAILED}
    ),
    DocumentState.REMOVED: frozenset({DocumentState.LOADED, DocumentState.FAILED}),
}


@dataclass
class IndexReport:
    """Outcome of a rebuild or refresh."""

    indexed: list[str] = field(default_factory=list)  # Document ids (re)committed
    unchanged: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: list[ParseError] = field(default_factory=list)
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "indexed": len(self.indexed),
            "unchanged": len(self.unchanged),
            "removed": len(self.removed),
            "failed": [{"path": str(e.path), "reason": e.reason} for e in self.failed],
            "cancelled": self.cancelled,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


Loaded = tuple[Document, list[LinkReference]]


class IncrementalIndexer:
    """Keeps a GraphStore and WhooshIndex in sync with files under root."""

    def __init__(
        self,
        root: Path,
        store: GraphStore,
        search_index: WhooshIndex,
        settings: Settings | None = None,
    ):
        self._root = Path(root)
        self._store = store
        self._search_index = search_index
        self._settings = settings or Settings()
        self._lock = threading.Lock()
        self._states: dict[str, DocumentState] = {}  # relative path -> state
        self._hashes: dict[str, str] = {}  # relative path -> content hash
        self._ids: dict[str, str] = {}  # relative path -> document id
        self._failures: dict[str, ParseError] = {}
        self.last_indexed: datetime | None = None

    @property
    def root(self) -> Path:
        return self._root

    def state(self, path: str | Path) -> DocumentState:
        """Lifecycle state of a file, by absolute or root-relative path."""
        rel = self._relative(Path(path))
        return self._states.get(rel, DocumentState.UNSEEN) if rel else DocumentState.UNSEEN

    @property
    def failures(self) -> dict[str, ParseError]:
        return dict(self._failures)

    def _transition(self, rel: str, new: DocumentState) -> None:
        current = self._states.get(rel, DocumentState.UNSEEN)
        if new not in TRANSITIONS[current]:
            raise InvariantViolation(self._ids.get(rel), "state", f"{rel}: {current.value} -> {new.value}")
        self._states[rel] = new

    def _relative(self, path: Path) -> str | None:
        if not path.is_absolute():
            path = self._root / path
        try:
            rel = path.relative_to(self._root)
        except ValueError:
            try:
                rel = path.resolve().relative_to(self._root.resolve())
            except (OSError, ValueError):
                return None
        return rel.as_posix()

    def _tracked(self, rel: str) -> bool:
        parts = rel.split("/")
        if any(part in IGNORED_DIRS for part in parts[:-1]):
            return False
        if not any(rel.lower().endswith(ext.lower()) for ext in self._settings.extensions):
            return False
        return not is_ignored(rel, self._settings.ignore)

    def _load(self, path: Path, started: dict[Path, float]) -> Loaded:
        """Loader + extractor for one file. Runs in a worker thread."""
        started[path] = time.monotonic()
        doc = parse_document(path, self._root)
        return doc, extract_references(doc.id, doc.raw_body)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def rebuild(self, cancel: threading.Event | None = None) -> IndexReport:
        """Scan the whole corpus.

        Unchanged files are skipped by content hash, files that disappeared
        since the previous scan are removed, everything else is (re)indexed.
        """
        with self._lock:
            started = time.monotonic()
            report = IndexReport()
            files = discover_files(self._root, self._settings.extensions, self._settings.ignore)
            present = {path.relative_to(self._root).as_posix(): path for path in files}
            log.info("Indexing %d files under %s", len(files), self._root)

            with self._search_index.batch():
                for rel in sorted(set(self._ids) - set(present)):
                    self._remove(rel, report)
                for rel in sorted(set(self._failures) - set(present)):
                    self._remove(rel, report)
                self._process(sorted(present.items()), report, cancel)

            return self._finish(report, started)

    def refresh(self, paths: Iterable[str | Path], cancel: threading.Event | None = None) -> IndexReport:
        """Re-index specific files. Missing files are removed from the index."""
        with self._lock:
            started = time.monotonic()
            report = IndexReport()
            existing: dict[str, Path] = {}
            missing: set[str] = set()

            for path in paths:
                rel = self._relative(Path(path))
                if rel is None or not self._tracked(rel):
                    log.debug("Ignoring untracked path %s", path)
                    continue
                full = self._root / rel
                if full.is_file():
                    existing[rel] = full
                else:
                    missing.add(rel)

            with self._search_index.batch():
                for rel in sorted(missing):
                    self._remove(rel, report)
                self._process(sorted(existing.items()), report, cancel)

            return self._finish(report, started)

    def adopt(self, documents: Iterable[Document]) -> None:
        """Mark documents restored from a snapshot as indexed."""
        with self._lock:
            for doc in documents:
                self._states[doc.path] = DocumentState.INDEXED
                self._hashes[doc.path] = doc.content_hash
                self._ids[doc.path] = doc.id
            self.last_indexed = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Per-document units
    # ------------------------------------------------------------------

    def _process(
        self,
        items: list[tuple[str, Path]],
        report: IndexReport,
        cancel: threading.Event | None,
    ) -> None:
        if not items:
            return

        started: dict[Path, float] = {}  # path -> monotonic time a worker picked it up
        executors = [self._executor(len(items))]
        futures: dict[str, Future] = {
            rel: executors[0].submit(self._load, path, started) for rel, path in items
        }
        try:
            for position, (rel, path) in enumerate(items):
                if cancel is not None and cancel.is_set():
                    report.cancelled = True
                    log.info("Indexing cancelled after %d documents", len(report.indexed))
                    break
                outcome = self._outcome(path, futures[rel], started)
                if isinstance(outcome, ParseError):
                    self._fail(rel, outcome, report)
                    if futures[rel].running():
                        # Timed out with its worker still busy; queued files move to a fresh pool
                        executors.append(self._executor(len(items) - position - 1 or 1))
                        for later, later_path in items[position + 1 :]:
                            if futures[later].cancel():
                                futures[later] = executors[-1].submit(self._load, later_path, started)
                else:
                    self._commit(rel, *outcome, report)
        finally:
            for executor in executors:
                executor.shutdown(wait=False, cancel_futures=True)

    def _executor(self, size: int) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=min(self._settings.workers, size),
            thread_name_prefix="notegraph-load",
        )

    def _outcome(self, path: Path, future: Future, started: dict[Path, float]) -> Loaded | ParseError:
        """Wait for one file. Its timeout runs from the moment a worker starts it."""
        timeout = self._settings.parse_timeout
        while True:
            began = started.get(path)
            remaining = timeout if began is None else began + timeout - time.monotonic()
            try:
                return future.result(timeout=max(0.0, remaining))
            except FutureTimeoutError:
                began = started.get(path)
                if began is not None and time.monotonic() - began >= timeout:
                    future.cancel()
                    return ParseError(path, f"Timed out after {timeout:g}s")
            except ParseError as e:
                return e

    def _commit(self, rel: str, doc: Document, refs: list[LinkReference], report: IndexReport) -> None:
        if (
            self._states.get(rel) == DocumentState.INDEXED
            and self._hashes.get(rel) == doc.content_hash
            and self._ids.get(rel) == doc.id
        ):
            report.unchanged.append(doc.id)
            return

        owner = next(
            (other for other, doc_id in self._ids.items() if doc_id == doc.id and other != rel),
            None,
        )
        if owner is not None:
            self._fail(rel, ParseError(self._root / rel, f"Duplicate uid {doc.id!r} (already used by {owner})"), report)
            return

        self._transition(rel, DocumentState.LOADED)
        self._transition(rel, DocumentState.EXTRACTED)

        previous = self._ids.get(rel)
        if previous is not None and previous != doc.id:
            self._store.remove(previous)
            self._search_index.delete_document(previous)

        self._store.upsert(doc, refs)
        self._transition(rel, DocumentState.RESOLVED)
        self._search_index.index_document(doc)
        self._transition(rel, DocumentState.INDEXED)

        self._hashes[rel] = doc.content_hash
        self._ids[rel] = doc.id
        self._failures.pop(rel, None)
        report.indexed.append(doc.id)

    def _fail(self, rel: str, error: ParseError, report: IndexReport) -> None:
        log.warning("Skipping %s: %s", rel, error.reason)
        previous = self._ids.pop(rel, None)
        if previous is not None:
            # The stale version must not stay queryable
            self._store.remove(previous)
            self._search_index.delete_document(previous)
        self._hashes.pop(rel, None)
        self._transition(rel, DocumentState.FAILED)
        self._failures[rel] = error
        report.failed.append(error)

    def _remove(self, rel: str, report: IndexReport) -> None:
        previous = self._ids.pop(rel, None)
        self._hashes.pop(rel, None)
        self._failures.pop(rel, None)
        if rel in self._states and self._states[rel] != DocumentState.REMOVED:
            self._transition(rel, DocumentState.REMOVED)
        if previous is None:
            return
        self._store.remove(previous)
        self._search_index.delete_document(previous)
        report.removed.append(previous)
        log.debug("Removed %s", rel)

    def _finish(self, report: IndexReport, started: float) -> IndexReport:
        report.elapsed_seconds = time.monotonic() - started
        self.last_indexed = datetime.now(timezone.utc)
        log.info(
            "Indexed %d, unchanged %d, removed %d, failed %d%s",
            len(report.indexed),
            len(report.unchanged),
            len(report.removed),
            len(report.failed),
            " (cancelled)" if report.cancelled else "",
        )
        return report
