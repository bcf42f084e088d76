"""Link target resolution against the title index.

Resolution order per reference:
1. Exact path match (document path or id, then path suffix)
2. Exact title/alias/file-name match, case-sensitive
3. Case-insensitive match of the same names and paths
4. Dangling

When several documents match at the winning tier the resolution is ambiguous:
every candidate is kept and the winner is picked by a fixed tie-break
(exact case match first, then shortest path, then lexicographic path).
"""

from __future__ import annotations

import logging
import posixpath
from typing import Literal, NamedTuple

from .models import LinkReference
from .parser.title_index import TitleIndex, fold_name

log = logging.getLogger(__name__)

Tier = Literal["path", "name", "casefold"]


class Resolution(NamedTuple):
    """Outcome of resolving one reference."""

    target: str | None  # Winning document id, None when dangling
    tier: Tier | None
    candidates: tuple[str, ...] = ()  # Document ids, tie-break order

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1

    @property
    def dangling(self) -> bool:
        return self.target is None


DANGLING = Resolution(None, None, ())


def _source_dir(index: TitleIndex, source: str) -> str:
    path_key = index.path_of(source) or source
    return posixpath.dirname(path_key)


def _join(directory: str, target: str) -> str | None:
    joined = posixpath.normpath(posixpath.join(directory, target))
    if joined == ".." or joined.startswith("../"):
        return None
    return "" if joined == "." else joined


def path_variants(ref: LinkReference, source_dir: str) -> list[str]:
    """Candidate path keys for a reference, in preference order."""
    target = ref.target
    variants: list[str | None] = []

    if target.startswith("/"):
        variants.append(target.lstrip("/"))
    elif ref.kind == "mdlink":
        # Markdown links are relative to the linking file
        variants += [_join(source_dir, target), _join("", target)]
    elif target.startswith(("./", "../")):
        variants.append(_join(source_dir, target))
    else:
        variants.append(_join("", target))
        if "/" in target:
            variants.append(_join(source_dir, target))

    seen: list[str] = []
    for variant in variants:
        if variant and variant not in seen:
            seen.append(variant)
    return seen


def _stripped(target: str) -> str:
    """Target without a leading slash or leading ./ and ../ segments."""
    parts = target.lstrip("/").split("/")
    while parts and parts[0] in (".", ".."):
        parts.pop(0)
    return "/".join(parts)


def lookup_name(ref: LinkReference) -> str:
    """The name a reference is matched against titles, aliases and file names."""
    target = _stripped(ref.target)
    if ref.kind == "mdlink":
        return posixpath.basename(target)
    return target


def reference_keys(ref: LinkReference, index: TitleIndex) -> set[str]:
    """Folded keys this reference can match; used to find affected sources."""
    source_dir = _source_dir(index, ref.source)
    keys = {fold_name(variant) for variant in path_variants(ref, source_dir)}
    for key in (lookup_name(ref), _stripped(ref.target)):
        if key:
            keys.add(fold_name(key))
    return keys


def _ranked(index: TitleIndex, doc_ids: set[str], names: list[str]) -> tuple[str, ...]:
    def tie_break(doc_id: str) -> tuple[int, int, str]:
        path = index.path_of(doc_id) or doc_id
        exact = index.matches_exactly(doc_id, names)
        return (0 if exact else 1, len(path), path)

    return tuple(sorted(doc_ids, key=tie_break))


def resolve_reference(ref: LinkReference, index: TitleIndex) -> Resolution:
    """Resolve a reference to a document id.

    Pure function of the reference and the index; never mutates either.
    """
    variants = path_variants(ref, _source_dir(index, ref.source))
    name = lookup_name(ref)
    names = variants + ([name] if name else [])

    # 1. Exact path, first variant that matches wins
    for variant in variants:
        found = index.by_path(variant)
        if found:
            return _resolution(index, found, names, "path")

    suffix_key = _stripped(ref.target)
    if "/" in suffix_key:
        found = index.by_path_suffix(suffix_key)
        if found:
            return _resolution(index, found, names, "path")

    # 2. Title / alias / file name, case-sensitive
    if name:
        found = index.by_name(name)
        if found:
            return _resolution(index, found, names, "name")

    # 3. Case-insensitive names and paths
    found = set()
    for variant in variants:
        found |= index.by_folded_path(variant)
    if name:
        found |= index.by_folded_name(name)
    if "/" in suffix_key:
        found |= index.by_folded_path(suffix_key)
    if found:
        return _resolution(index, found, names, "casefold")

    log.debug("%s: unresolved link target %r", ref.source, ref.raw_target)
    return DANGLING


def _resolution(index: TitleIndex, found: set[str], names: list[str], tier: Tier) -> Resolution:
    candidates = _ranked(index, found, names)
    if len(candidates) > 1:
        log.debug("Ambiguous target %r at tier %s: %s", names, tier, candidates)
    return Resolution(candidates[0], tier, candidates)
