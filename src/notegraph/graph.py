"""Bidirectional document graph with tag index and incremental mutation.

The GraphStore is the single owner of derived state: resolved edges,
dangling links, the tag index and the title index. Mutations are serialized
behind one lock and only re-resolve the sources whose links could have
changed. Readers work on immutable GraphSnapshot objects, rebuilt lazily
after each mutation, so a long query never sees a half-applied update.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Literal, Mapping

from .errors import InvariantViolation
from .models import Ambiguity, DanglingLink, Document, LinkReference, ResolvedEdge, TagCount
from .parser.title_index import TitleIndex, document_keys
from .resolver import Resolution, reference_keys, resolve_reference

log = logging.getLogger(__name__)

Direction = Literal["outgoing", "incoming", "both"]


@dataclass
class ChangeSet:
    """What a single mutation touched."""

    version: int
    upserted: str | None = None
    removed: str | None = None
    reresolved: set[str] = field(default_factory=set)  # Sources whose links were recomputed


class GraphSnapshot:
    """Immutable, versioned view of the graph. Safe to share across threads."""

    def __init__(
        self,
        version: int,
        documents: dict[str, Document],
        references: dict[str, tuple[LinkReference, ...]],
        edges: frozenset[ResolvedEdge],
        tags: dict[str, frozenset[str]],
        dangling: tuple[DanglingLink, ...],
        ambiguities: tuple[Ambiguity, ...],
    ) -> None:
        self.version = version
        self.documents: Mapping[str, Document] = MappingProxyType(documents)
        self.references: Mapping[str, tuple[LinkReference, ...]] = MappingProxyType(references)
        self.edges = edges
        self.tags: Mapping[str, frozenset[str]] = MappingProxyType(tags)
        self.dangling = dangling
        self.ambiguities = ambiguities

        forward: dict[str, set[str]] = {}
        backward: dict[str, set[str]] = {}
        for edge in edges:
            forward.setdefault(edge.source, set()).add(edge.target)
            backward.setdefault(edge.target, set()).add(edge.source)
        self._forward = {key: frozenset(value) for key, value in forward.items()}
        self._backward = {key: frozenset(value) for key, value in backward.items()}
        self._dangling_sources = frozenset(link.source for link in dangling)
        self._by_path = {doc.path: doc_id for doc_id, doc in documents.items()}
        self._by_path_key = {doc.path_key: doc_id for doc_id, doc in documents.items()}

    def __len__(self) -> int:
        return len(self.documents)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self.documents

    def find(self, key: str) -> str | None:
        """Map a document id, relative path, or path without extension to an id."""
        key = key.strip().replace("\\", "/").lstrip("/")
        if key in self.documents:
            return key
        if key in self._by_path:
            return self._by_path[key]
        return self._by_path_key.get(key)

    def path_of(self, doc_id: str) -> str:
        return self.documents[doc_id].path

    def backlinks(self, doc_id: str) -> frozenset[str]:
        """Documents with a resolved link to doc_id."""
        return self._backward.get(doc_id, frozenset())

    def forward_links(self, doc_id: str) -> frozenset[str]:
        """Documents doc_id links to."""
        return self._forward.get(doc_id, frozenset())

    def by_tag(self, tag: str) -> frozenset[str]:
        return self.tags.get(tag, frozenset())

    def orphans(self) -> frozenset[str]:
        """Documents with no resolved in-edges, no resolved out-edges, and no dangling links."""
        return frozenset(
            doc_id
            for doc_id in self.documents
            if doc_id not in self._forward
            and doc_id not in self._backward
            and doc_id not in self._dangling_sources
        )

    def tag_counts(self) -> list[TagCount]:
        """Tags with document counts, most used first, then by name."""
        counts = [TagCount(tag=tag, count=len(ids)) for tag, ids in self.tags.items()]
        counts.sort(key=lambda tc: (-tc.count, tc.tag))
        return counts

    def shortest_path(self, start: str, goal: str) -> list[str] | None:
        """Shortest chain of forward links from start to goal (BFS), or None."""
        if start not in self.documents or goal not in self.documents:
            return None
        if start == goal:
            return [start]

        previous: dict[str, str] = {}
        visited = {start}
        queue: deque[str] = deque([start])
        while queue:
            node = queue.popleft()
            for neighbor in sorted(self.forward_links(node)):
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                previous[neighbor] = node
                if neighbor == goal:
                    path = [goal]
                    while path[-1] != start:
                        path.append(previous[path[-1]])
                    return list(reversed(path))
                queue.append(neighbor)
        return None

    def neighbors(self, doc_id: str, depth: int = 1, direction: Direction = "both") -> set[str]:
        """Documents within depth hops of doc_id, not including doc_id itself."""
        visited = {doc_id}
        queue: deque[tuple[str, int]] = deque([(doc_id, 0)])
        while queue:
            node, current_depth = queue.popleft()
            if current_depth >= depth:
                continue
            adjacent: set[str] = set()
            if direction in ("outgoing", "both"):
                adjacent |= self.forward_links(node)
            if direction in ("incoming", "both"):
                adjacent |= self.backlinks(node)
            for neighbor in sorted(adjacent - visited):
                visited.add(neighbor)
                queue.append((neighbor, current_depth + 1))
        visited.discard(doc_id)
        return visited

    def hubs(self, limit: int = 10) -> list[tuple[str, int, int]]:
        """Most connected documents as (id, incoming, outgoing)."""
        rows = [
            (doc_id, len(self.backlinks(doc_id)), len(self.forward_links(doc_id)))
            for doc_id in self.documents
        ]
        rows = [row for row in rows if row[1] + row[2] > 0]
        rows.sort(key=lambda row: (-(row[1] + row[2]), row[0]))
        return rows[:limit]

    def state(self) -> dict:
        """Order-independent summary used to compare two snapshots."""
        return {
            "documents": sorted(self.documents),
            "edges": sorted((e.source, e.target, e.kind) for e in self.edges),
            "tags": {tag: sorted(ids) for tag, ids in sorted(self.tags.items())},
            "dangling": sorted((d.source, d.raw_target, d.kind) for d in self.dangling),
            "ambiguities": [a.model_dump() for a in self.ambiguities],
        }


class GraphStore:
    """Owner of the document graph. All mutation goes through here."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._version = 0
        self._reset()

    def _reset(self) -> None:
        self._docs: dict[str, Document] = {}
        self._refs: dict[str, tuple[LinkReference, ...]] = {}
        self._index = TitleIndex()
        self._resolutions: dict[str, list[tuple[LinkReference, Resolution]]] = {}
        self._out: dict[str, set[ResolvedEdge]] = {}
        self._in: dict[str, set[ResolvedEdge]] = {}
        self._dangling: dict[str, set[DanglingLink]] = {}
        self._tags: dict[str, set[str]] = {}
        # folded name/path key -> sources holding a reference that could match it
        self._key_sources: dict[str, set[str]] = {}
        self._source_keys: dict[str, set[str]] = {}
        self._snapshot: GraphSnapshot | None = None

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._docs

    @property
    def version(self) -> int:
        return self._version

    def get(self, doc_id: str) -> Document | None:
        return self._docs.get(doc_id)

    def references(self, doc_id: str) -> tuple[LinkReference, ...]:
        return self._refs.get(doc_id, ())

    def resolution_of(self, ref: LinkReference) -> Resolution:
        """Resolve an arbitrary reference against the current title index."""
        with self._lock:
            return resolve_reference(ref, self._index)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def upsert(self, doc: Document, references: Iterable[LinkReference]) -> ChangeSet:
        """Insert or replace a document and its outgoing references.

        Re-resolves the document's own links plus every other document whose
        links mention one of the old or new names of this document.
        """
        refs = tuple(references)
        for ref in refs:
            if ref.source != doc.id:
                raise InvariantViolation(doc.id, "upsert", f"reference owned by {ref.source!r}")

        with self._lock:
            old = self._docs.get(doc.id)
            affected = {doc.id}
            identity_changed = old is None or _identity(old) != _identity(doc)

            if old is not None:
                self._untag(old)
                if identity_changed:
                    affected |= self._sources_matching(document_keys(old))
                    self._index.remove(old.id)

            self._docs[doc.id] = doc
            self._tag(doc)
            if identity_changed:
                self._index.add(doc)
                affected |= self._sources_matching(document_keys(doc))

            self._set_references(doc.id, refs)
            self._reresolve(affected)
            self._bump()
            log.debug("Upserted %s (re-resolved %d sources)", doc.id, len(affected))
            return ChangeSet(version=self._version, upserted=doc.id, reresolved=affected)

    def remove(self, doc_id: str) -> ChangeSet:
        """Delete a document, retracting every edge where it is source or target.

        Links that pointed at it are re-resolved; with no other match they
        become dangling.
        """
        with self._lock:
            doc = self._docs.pop(doc_id, None)
            if doc is None:
                return ChangeSet(version=self._version)

            self._untag(doc)
            affected = self._sources_matching(document_keys(doc))
            affected |= {edge.source for edge in self._in.get(doc_id, ())}
            affected.discard(doc_id)

            self._retract(doc_id)
            self._set_references(doc_id, ())
            del self._refs[doc_id]
            self._index.remove(doc_id)
            self._reresolve(affected)

            leftover = self._in.pop(doc_id, set())
            if leftover:
                raise InvariantViolation(
                    doc_id, "remove", f"{len(leftover)} edges still target the removed document"
                )

            self._bump()
            log.debug("Removed %s (re-resolved %d sources)", doc_id, len(affected))
            return ChangeSet(version=self._version, removed=doc_id, reresolved=affected)

    def bulk_load(self, items: Iterable[tuple[Document, Iterable[LinkReference]]]) -> ChangeSet:
        """Load many documents, resolving links once at the end."""
        with self._lock:
            loaded: set[str] = set()
            for doc, refs in items:
                old = self._docs.get(doc.id)
                if old is not None:
                    self._untag(old)
                    self._index.remove(old.id)
                self._docs[doc.id] = doc
                self._tag(doc)
                self._index.add(doc)
                loaded.add(doc.id)
                self._refs[doc.id] = tuple(refs)

            for doc_id in loaded:
                self._set_references(doc_id, self._refs[doc_id])

            self._reresolve(set(self._docs))
            self._bump()
            return ChangeSet(version=self._version, reresolved=set(self._docs))

    def clear(self) -> None:
        """Drop every document. The version keeps counting up."""
        with self._lock:
            self._reset()
            self._bump()

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _bump(self) -> None:
        self._version += 1
        self._snapshot = None

    def _tag(self, doc: Document) -> None:
        for tag in doc.tags:
            self._tags.setdefault(tag, set()).add(doc.id)

    def _untag(self, doc: Document) -> None:
        for tag in doc.tags:
            owners = self._tags.get(tag)
            if owners is None:
                continue
            owners.discard(doc.id)
            if not owners:
                del self._tags[tag]

    def _sources_matching(self, keys: set[str]) -> set[str]:
        sources: set[str] = set()
        for key in keys:
            sources |= self._key_sources.get(key, set())
        return sources

    def _set_references(self, source: str, refs: tuple[LinkReference, ...]) -> None:
        for key in self._source_keys.pop(source, set()):
            owners = self._key_sources.get(key)
            if owners is not None:
                owners.discard(source)
                if not owners:
                    del self._key_sources[key]

        self._refs[source] = refs
        keys: set[str] = set()
        for ref in refs:
            keys |= reference_keys(ref, self._index)
        if keys:
            self._source_keys[source] = keys
            for key in keys:
                self._key_sources.setdefault(key, set()).add(source)

    def _reresolve(self, sources: set[str]) -> None:
        for source in sorted(sources):
            if source not in self._docs:
                continue
            self._retract(source)
            self._resolve(source)

    def _retract(self, source: str) -> None:
        for edge in self._out.pop(source, set()):
            incoming = self._in.get(edge.target)
            if incoming is not None:
                incoming.discard(edge)
                if not incoming:
                    del self._in[edge.target]
        self._dangling.pop(source, None)
        self._resolutions.pop(source, None)

    def _resolve(self, source: str) -> None:
        results: list[tuple[LinkReference, Resolution]] = []
        for ref in self._refs.get(source, ()):
            resolution = resolve_reference(ref, self._index)
            results.append((ref, resolution))
            if resolution.target is None:
                self._dangling.setdefault(source, set()).add(
                    DanglingLink(source=source, raw_target=ref.raw_target, target=ref.target, kind=ref.kind)
                )
                continue
            edge = ResolvedEdge(source=source, target=resolution.target, kind=ref.kind)
            self._out.setdefault(source, set()).add(edge)
            self._in.setdefault(resolution.target, set()).add(edge)
        self._resolutions[source] = results

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> GraphSnapshot:
        """Current immutable view. Cached until the next mutation."""
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        with self._lock:
            if self._snapshot is None:
                self._snapshot = self._build_snapshot()
            return self._snapshot

    def _build_snapshot(self) -> GraphSnapshot:
        edges = frozenset(edge for edges in self._out.values() for edge in edges)
        dangling = tuple(
            sorted(
                (link for links in self._dangling.values() for link in links),
                key=lambda d: (d.source, d.raw_target, d.kind),
            )
        )
        return GraphSnapshot(
            version=self._version,
            documents=dict(self._docs),
            references=dict(self._refs),
            edges=edges,
            tags={tag: frozenset(ids) for tag, ids in self._tags.items()},
            dangling=dangling,
            ambiguities=self._collect_ambiguities(),
        )

    def _collect_ambiguities(self) -> tuple[Ambiguity, ...]:
        grouped: dict[tuple[str, tuple[str, ...]], set[str]] = {}
        for source, results in self._resolutions.items():
            for ref, resolution in results:
                if resolution.ambiguous:
                    grouped.setdefault((ref.raw_target, resolution.candidates), set()).add(source)

        ambiguities = [
            Ambiguity(
                raw_target=raw_target,
                candidates=[self._docs[c].path for c in candidates],
                chosen=self._docs[candidates[0]].path,
                sources=sorted(self._docs[s].path for s in sources),
            )
            for (raw_target, candidates), sources in grouped.items()
        ]
        ambiguities.sort(key=lambda a: (a.raw_target.casefold(), a.raw_target, a.candidates))
        return tuple(ambiguities)

    def backlinks(self, doc_id: str) -> frozenset[str]:
        return self.snapshot().backlinks(doc_id)

    def forward_links(self, doc_id: str) -> frozenset[str]:
        return self.snapshot().forward_links(doc_id)

    def by_tag(self, tag: str) -> frozenset[str]:
        return self.snapshot().by_tag(tag)

    def orphans(self) -> frozenset[str]:
        return self.snapshot().orphans()

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    def check_consistency(self) -> None:
        """Verify derived state against the document set.

        Raises:
            InvariantViolation: With the offending document and the broken rule.
        """
        with self._lock:
            for tag, owners in self._tags.items():
                if not owners:
                    raise InvariantViolation(None, "tags", f"tag {tag!r} has no owners")
                for doc_id in owners:
                    doc = self._docs.get(doc_id)
                    if doc is None or tag not in doc.tags:
                        raise InvariantViolation(doc_id, "tags", f"stale tag entry {tag!r}")
            for doc in self._docs.values():
                for tag in doc.tags:
                    if doc.id not in self._tags.get(tag, ()):
                        raise InvariantViolation(doc.id, "tags", f"missing tag entry {tag!r}")
                if doc.id not in self._index:
                    raise InvariantViolation(doc.id, "aliases", "document missing from title index")
            if len(self._index) != len(self._docs):
                raise InvariantViolation(None, "aliases", "title index holds removed documents")

            for source, edges in self._out.items():
                for edge in edges:
                    if source not in self._docs or edge.target not in self._docs:
                        raise InvariantViolation(source, "edges", f"edge to missing document {edge.target!r}")
                    if edge not in self._in.get(edge.target, ()):
                        raise InvariantViolation(source, "edges", f"backlink missing for {edge.target!r}")
            for target, edges in self._in.items():
                for edge in edges:
                    if edge not in self._out.get(edge.source, ()):
                        raise InvariantViolation(target, "edges", f"forward link missing from {edge.source!r}")


def _identity(doc: Document) -> tuple:
    """Fields that decide which links resolve to a document."""
    return (doc.path, doc.title, doc.aliases)
