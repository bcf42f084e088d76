"""Read-side queries: full-text search and graph lookups by path.

Every call works against one GraphStore snapshot, so a single answer never
mixes two versions of the graph.
"""

from __future__ import annotations

import logging

from .config import DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT, SNIPPET_LENGTH
from .graph import Direction, GraphSnapshot, GraphStore
from .indexer.whoosh_index import WhooshIndex
from .models import Ambiguity, DanglingLink, RankedResult, TagCount

log = logging.getLogger(__name__)


def _snippet(body: str, length: int = SNIPPET_LENGTH) -> str:
    text = " ".join(body.split())
    return text[:length] + "..." if len(text) > length else text


def _clean_tags(tags: list[str] | None) -> set[str]:
    return {tag.strip().lstrip("#") for tag in tags or () if tag.strip().lstrip("#")}


class QueryEngine:
    """Search and graph queries over a GraphStore and its search index."""

    def __init__(self, store: GraphStore, search_index: WhooshIndex):
        self._store = store
        self._search_index = search_index

    def snapshot(self) -> GraphSnapshot:
        return self._store.snapshot()

    def search(
        self,
        text: str = "",
        tags: list[str] | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> list[RankedResult]:
        """Ranked full-text search with optional tag filter.

        Tags are an exact AND filter and never affect the score. With empty
        text and tags given, every document carrying all the tags is returned
        with score 0. Equal scores are ordered by document id.

        Args:
            text: Free-text query matched against title and body.
            tags: Tags every result must carry.
            limit: Page size, capped at MAX_SEARCH_LIMIT.
            offset: Number of ranked results to skip.
        """
        limit = max(0, min(limit, MAX_SEARCH_LIMIT))
        offset = max(0, offset)
        snapshot = self._store.snapshot()

        wanted = _clean_tags(tags)
        members: set[str] | None = None
        if wanted:
            members = set(snapshot.documents)
            for tag in wanted:
                members &= snapshot.by_tag(tag)

        if text.strip():
            scored = [
                (doc_id, score)
                for doc_id, score in self._search_index.search(text)
                if doc_id in snapshot and (members is None or doc_id in members)
            ]
        elif members is not None:
            scored = [(doc_id, 0.0) for doc_id in members]
        else:
            return []

        scored.sort(key=lambda hit: (-hit[1], hit[0]))
        page = scored[offset : offset + limit]
        log.debug("search %r tags=%s: %d hits, returning %d", text, sorted(wanted), len(scored), len(page))

        results = []
        for doc_id, score in page:
            doc = snapshot.documents[doc_id]
            results.append(
                RankedResult(
                    id=doc.id,
                    path=doc.path,
                    title=doc.title,
                    score=score,
                    snippet=_snippet(doc.raw_body),
                    tags=sorted(doc.tags),
                )
            )
        return results

    # ------------------------------------------------------------------
    # Graph queries by path
    # ------------------------------------------------------------------

    def _paths(self, snapshot: GraphSnapshot, doc_ids) -> list[str]:
        return sorted(snapshot.path_of(doc_id) for doc_id in doc_ids)

    def backlinks(self, path: str) -> list[str]:
        """Paths of documents linking to path. Unknown paths have none."""
        snapshot = self._store.snapshot()
        doc_id = snapshot.find(path)
        if doc_id is None:
            return []
        return self._paths(snapshot, snapshot.backlinks(doc_id))

    def forward_links(self, path: str) -> list[str]:
        """Paths of documents path links to."""
        snapshot = self._store.snapshot()
        doc_id = snapshot.find(path)
        if doc_id is None:
            return []
        return self._paths(snapshot, snapshot.forward_links(doc_id))

    def by_tag(self, tag: str) -> list[str]:
        snapshot = self._store.snapshot()
        return self._paths(snapshot, snapshot.by_tag(tag.lstrip("#")))

    def tags(self) -> list[TagCount]:
        return self._store.snapshot().tag_counts()

    def orphans(self) -> list[str]:
        snapshot = self._store.snapshot()
        return self._paths(snapshot, snapshot.orphans())

    def ambiguities(self) -> list[Ambiguity]:
        return list(self._store.snapshot().ambiguities)

    def dangling(self) -> list[DanglingLink]:
        return list(self._store.snapshot().dangling)

    def shortest_path(self, start: str, goal: str) -> list[str] | None:
        """Paths along the shortest chain of links from start to goal, or None."""
        snapshot = self._store.snapshot()
        start_id, goal_id = snapshot.find(start), snapshot.find(goal)
        if start_id is None or goal_id is None:
            return None
        chain = snapshot.shortest_path(start_id, goal_id)
        if chain is None:
            return None
        return [snapshot.path_of(doc_id) for doc_id in chain]

    def neighbors(self, path: str, depth: int = 1, direction: Direction = "both") -> list[str]:
        """Paths within depth hops of path, excluding path itself."""
        snapshot = self._store.snapshot()
        doc_id = snapshot.find(path)
        if doc_id is None:
            return []
        return self._paths(snapshot, snapshot.neighbors(doc_id, depth, direction))

    def hubs(self, limit: int = 10) -> list[dict]:
        """Most connected documents with their link counts."""
        snapshot = self._store.snapshot()
        return [
            {"path": snapshot.path_of(doc_id), "incoming": incoming, "outgoing": outgoing}
            for doc_id, incoming, outgoing in snapshot.hubs(limit)
        ]
