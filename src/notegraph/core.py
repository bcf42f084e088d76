"""Query interface over one note corpus.

A NoteGraph owns its store, search index and indexer; there is no module
level state, so several corpora (or several tests) can live side by side.

Design principles:
- Query methods are async for consistency with the rest of the API
- Indexing runs in a worker thread so the event loop stays responsive
"""

from __future__ import annotations

import asyncio
import logging
import threading
import warnings
from pathlib import Path
from typing import Iterable

from .config import DEFAULT_SEARCH_LIMIT, Settings, load_settings
from .errors import AmbiguousLinkError, DanglingLinkWarning, IndexCorruptionError
from .graph import Direction, GraphStore
from .indexer.incremental import IncrementalIndexer, IndexReport
from .indexer.watcher import FileWatcher
from .indexer.whoosh_index import WhooshIndex
from .models import Ambiguity, DanglingLink, IndexStatus, RankedResult, TagCount
from .parser.links import parse_link_text
from .query import QueryEngine
from .snapshot import default_snapshot_path, load_snapshot, save_snapshot

log = logging.getLogger(__name__)


class NoteGraph:
    """Linked note corpus: graph, tags and full-text search."""

    def __init__(
        self,
        root: Path | str,
        settings: Settings | None = None,
        index_dir: Path | None = None,
    ):
        """Create an empty graph for a corpus. Call build() or open() to fill it.

        Args:
            root: Corpus root directory.
            settings: Overrides; defaults to root/.notegraph.yaml or built-ins.
            index_dir: On-disk search index directory. None keeps it in memory.
        """
        self.root = Path(root)
        self.settings = settings if settings is not None else load_settings(self.root)
        self.store = GraphStore()
        self.search_index = WhooshIndex(index_dir)
        self.indexer = IncrementalIndexer(self.root, self.store, self.search_index, self.settings)
        self.query = QueryEngine(self.store, self.search_index)
        # Report of the scan open() fell back to, None after a restore
        self.last_report: IndexReport | None = None

    @classmethod
    def open(
        cls,
        root: Path | str,
        snapshot_path: Path | None = None,
        settings: Settings | None = None,
    ) -> "NoteGraph":
        """Restore a graph from a snapshot, or rebuild it from the files.

        A missing or corrupt snapshot is never fatal: the corpus is scanned
        instead.
        """
        graph = cls(root, settings=settings)
        path = snapshot_path or default_snapshot_path(graph.root)

        if not path.exists():
            log.info("No snapshot at %s, building from files", path)
            graph.last_report = graph.indexer.rebuild()
            return graph

        try:
            graph.restore(path)
        except IndexCorruptionError as e:
            log.warning("%s; rebuilding from files", e)
            graph.store.clear()
            graph.search_index.clear()
            graph.last_report = graph.indexer.rebuild()
        return graph

    def restore(self, path: Path) -> None:
        """Replace the current state with a saved snapshot.

        Raises:
            IndexCorruptionError: If the snapshot fails validation.
        """
        payload = load_snapshot(path)
        self.store.clear()
        self.store.bulk_load(
            (doc, payload.references.get(doc.id, [])) for doc in payload.documents
        )
        self.search_index.clear()
        self.search_index.index_documents(payload.documents)
        self.indexer.adopt(payload.documents)
        log.info("Restored %d documents from %s", len(payload.documents), path)

    def save(self, path: Path | None = None) -> Path:
        """Persist documents and references; returns the snapshot path."""
        return save_snapshot(self.store, path or default_snapshot_path(self.root))

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def build(self, cancel: threading.Event | None = None) -> IndexReport:
        """Scan the corpus and index everything that changed."""
        return await asyncio.to_thread(self.indexer.rebuild, cancel)

    async def refresh(self, paths: Iterable[str | Path]) -> IndexReport:
        """Re-index the given files; deleted files are removed."""
        return await asyncio.to_thread(self.indexer.refresh, list(paths))

    def watch(self, on_refresh=None) -> FileWatcher:
        """A FileWatcher for this corpus. Use as a context manager."""
        return FileWatcher(
            self.indexer,
            debounce_seconds=self.settings.debounce_seconds,
            extensions=self.settings.extensions,
            on_refresh=on_refresh,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search(
        self,
        text: str = "",
        tags: list[str] | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> list[RankedResult]:
        return self.query.search(text, tags=tags, limit=limit, offset=offset)

    async def backlinks(self, path: str) -> list[str]:
        """Paths of documents linking to path."""
        return self.query.backlinks(path)

    async def forward_links(self, path: str) -> list[str]:
        return self.query.forward_links(path)

    async def by_tag(self, tag: str) -> list[str]:
        return self.query.by_tag(tag)

    async def tags(self) -> list[TagCount]:
        return self.query.tags()

    async def orphans(self) -> list[str]:
        return self.query.orphans()

    async def ambiguities(self) -> list[Ambiguity]:
        return self.query.ambiguities()

    async def dangling(self) -> list[DanglingLink]:
        return self.query.dangling()

    async def shortest_path(self, start: str, goal: str) -> list[str] | None:
        return self.query.shortest_path(start, goal)

    async def neighbors(self, path: str, depth: int = 1, direction: Direction = "both") -> list[str]:
        return self.query.neighbors(path, depth=depth, direction=direction)

    async def hubs(self, limit: int = 10) -> list[dict]:
        return self.query.hubs(limit)

    async def status(self) -> IndexStatus:
        snapshot = self.store.snapshot()
        return IndexStatus(
            documents=len(snapshot),
            edges=len(snapshot.edges),
            dangling=len(snapshot.dangling),
            tags=len(snapshot.tags),
            ambiguities=len(snapshot.ambiguities),
            failed=len(self.indexer.failures),
            version=snapshot.version,
            last_indexed=self.indexer.last_indexed,
        )

    def resolve(self, target: str, source: str | None = None, strict: bool = False) -> str | None:
        """Resolve link text the way a [[target]] link would be.

        Args:
            target: Link text, with or without brackets, anchor or label.
            source: Path of the linking document, for relative targets.
            strict: Raise instead of silently picking a winner among equals.

        Returns:
            Path of the resolved document, or None if nothing matches
            (a DanglingLinkWarning is emitted).

        Raises:
            AmbiguousLinkError: In strict mode, when several documents match.
        """
        source_id = ""
        if source is not None:
            source_id = self.store.snapshot().find(source) or ""

        ref = parse_link_text(source_id, target)
        resolution = self.store.resolution_of(ref) if ref is not None else None
        if resolution is None or resolution.dangling:
            warnings.warn(DanglingLinkWarning(target, source), stacklevel=2)
            return None

        paths = [self._path(doc_id) for doc_id in resolution.candidates]
        if resolution.ambiguous and strict:
            raise AmbiguousLinkError(target, paths, chosen=paths[0])
        return paths[0]

    def _path(self, doc_id: str) -> str:
        doc = self.store.get(doc_id)
        return doc.path if doc is not None else doc_id
