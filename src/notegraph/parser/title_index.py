"""Title/alias/path index for resolving wiki-style links.

Enables resolution of [[Title]] and [[Alias]] style links in addition
to path-style [[path/to/entry]] links. Unlike a plain dict, a name may be
claimed by several documents; collisions are kept so the resolver can
report them instead of silently picking one.
"""

from __future__ import annotations

import logging
import unicodedata
from typing import Iterable, Literal, NamedTuple

from ..models import Document

log = logging.getLogger(__name__)

ClaimKind = Literal["title", "alias", "stem"]


class TitleEntry(NamedTuple):
    """A title/alias/stem claimed by a document."""

    doc_id: str
    name: str
    kind: ClaimKind


def clean_name(name: str) -> str:
    """Canonical form for case-sensitive comparison (NFC, collapsed whitespace)."""
    return " ".join(unicodedata.normalize("NFC", name).split())


def fold_name(name: str) -> str:
    """Canonical form for case-insensitive comparison."""
    return clean_name(name).casefold()


def path_suffixes(path_key: str) -> list[str]:
    """All trailing component runs of a path: a/b/c -> [a/b/c, b/c, c]."""
    parts = path_key.split("/")
    return ["/".join(parts[i:]) for i in range(len(parts))]


def document_keys(doc: Document) -> set[str]:
    """Folded keys under which any reference could reach this document."""
    keys = {fold_name(name) for name, _ in _names_for(doc)}
    for path_key in {doc.path_key, doc.id}:
        keys.update(fold_name(suffix) for suffix in path_suffixes(path_key))
    return keys


def _names_for(doc: Document) -> list[tuple[str, ClaimKind]]:
    """Names a document claims, one claim per distinct name."""
    claimed: dict[str, ClaimKind] = {}
    candidates: list[tuple[str, ClaimKind]] = [(doc.title, "title")]
    candidates += [(alias, "alias") for alias in sorted(doc.aliases)]
    candidates.append((doc.stem, "stem"))
    for name, kind in candidates:
        cleaned = clean_name(name)
        if cleaned and cleaned not in claimed:
            claimed[cleaned] = kind
    return list(claimed.items())


class TitleIndex:
    """Mapping of names and paths to the documents claiming them.

    Invariant: every key present maps to at least one document, and every
    document's claims are removed together with it.
    """

    def __init__(self) -> None:
        self._names: dict[str, set[TitleEntry]] = {}
        self._folded_names: dict[str, set[TitleEntry]] = {}
        self._paths: dict[str, set[str]] = {}
        self._folded_suffixes: dict[str, set[str]] = {}
        self._doc_paths: dict[str, str] = {}  # doc id -> path key
        self._claims: dict[str, list[TitleEntry]] = {}
        self._path_keys: dict[str, set[str]] = {}

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._doc_paths

    def __len__(self) -> int:
        return len(self._doc_paths)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, doc: Document) -> None:
        """Register a document's title, aliases, stem and path keys."""
        if doc.id in self._doc_paths:
            self.remove(doc.id)

        self._doc_paths[doc.id] = doc.path_key

        claims = [TitleEntry(doc.id, name, kind) for name, kind in _names_for(doc)]
        self._claims[doc.id] = claims
        for claim in claims:
            self._names.setdefault(claim.name, set()).add(claim)
            self._folded_names.setdefault(claim.name.casefold(), set()).add(claim)

        path_keys = {doc.path_key, doc.id}
        self._path_keys[doc.id] = path_keys
        for key in path_keys:
            self._paths.setdefault(key, set()).add(doc.id)
            for suffix in path_suffixes(key):
                self._folded_suffixes.setdefault(fold_name(suffix), set()).add(doc.id)

    def remove(self, doc_id: str) -> None:
        """Drop every claim held by a document. Unknown ids are ignored."""
        if doc_id not in self._doc_paths:
            return

        for claim in self._claims.pop(doc_id, []):
            _discard(self._names, claim.name, claim)
            _discard(self._folded_names, claim.name.casefold(), claim)

        for key in self._path_keys.pop(doc_id, set()):
            _discard(self._paths, key, doc_id)
            for suffix in path_suffixes(key):
                _discard(self._folded_suffixes, fold_name(suffix), doc_id)

        del self._doc_paths[doc_id]

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def path_of(self, doc_id: str) -> str | None:
        return self._doc_paths.get(doc_id)

    def by_path(self, key: str) -> set[str]:
        """Documents whose path key (or id) equals key exactly."""
        return set(self._paths.get(key, ()))

    def by_path_suffix(self, key: str) -> set[str]:
        """Documents whose path ends with key on a component boundary, case-sensitive."""
        found = set()
        for doc_id in self._folded_suffixes.get(fold_name(key), ()):
            if any(
                path_key == key or path_key.endswith("/" + key)
                for path_key in self._path_keys.get(doc_id, ())
            ):
                found.add(doc_id)
        return found

    def by_folded_path(self, key: str) -> set[str]:
        """Documents whose path key or any trailing run of it matches key, ignoring case."""
        return set(self._folded_suffixes.get(fold_name(key), ()))

    def by_name(self, name: str) -> set[str]:
        """Documents claiming name exactly (case-sensitive)."""
        return {claim.doc_id for claim in self._names.get(clean_name(name), ())}

    def by_folded_name(self, name: str) -> set[str]:
        """Documents claiming name ignoring case."""
        return {claim.doc_id for claim in self._folded_names.get(fold_name(name), ())}

    def matches_exactly(self, doc_id: str, names: Iterable[str]) -> bool:
        """True if the document claims one of names (or has one as a path) with exact case."""
        wanted = {clean_name(name) for name in names}
        if any(claim.name in wanted for claim in self._claims.get(doc_id, ())):
            return True
        return any(key in wanted for key in self._path_keys.get(doc_id, ()))

    def collisions(self) -> dict[str, list[str]]:
        """Names claimed by more than one document, mapped to the sorted ids."""
        result: dict[str, list[str]] = {}
        for name, claims in self._folded_names.items():
            owners = {claim.doc_id for claim in claims}
            if len(owners) > 1:
                result[name] = sorted(owners)
        return result


def _discard(mapping: dict, key, value) -> None:
    bucket = mapping.get(key)
    if bucket is None:
        return
    bucket.discard(value)
    if not bucket:
        del mapping[key]


def build_title_index(documents: Iterable[Document]) -> TitleIndex:
    """Build a TitleIndex over a set of documents."""
    index = TitleIndex()
    for doc in documents:
        index.add(doc)
    log.debug("Built title index over %d documents", len(index))
    return index
