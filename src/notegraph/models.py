"""Pydantic models for the note graph."""

from __future__ import annotations

import posixpath
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

LinkKind = Literal["wikilink", "mdlink", "embed"]


class DocumentState(str, Enum):
    """Lifecycle of a single file inside the incremental indexer."""

    UNSEEN = "unseen"
    LOADED = "loaded"
    EXTRACTED = "extracted"
    RESOLVED = "resolved"
    INDEXED = "indexed"
    REMOVED = "removed"  # terminal
    FAILED = "failed"  # un-indexed until the file changes again


class Document(BaseModel):
    """A parsed note. Immutable; a changed file produces a new Document."""

    model_config = ConfigDict(frozen=True)

    id: str  # Relative path without extension, or explicit frontmatter uid
    path: str  # Relative POSIX path including extension
    title: str
    aliases: frozenset[str] = Field(default_factory=frozenset)
    tags: frozenset[str] = Field(default_factory=frozenset)
    raw_body: str = ""
    content_hash: str = ""  # sha256 of the raw file bytes
    properties: dict[str, Any] = Field(default_factory=dict)  # Remaining frontmatter keys

    @field_serializer("aliases", "tags")
    def _sorted(self, value: frozenset[str]) -> list[str]:
        return sorted(value)

    @property
    def path_key(self) -> str:
        """Relative path without its extension."""
        return posixpath.splitext(self.path)[0]

    @property
    def stem(self) -> str:
        """File name without directory or extension."""
        return self.path_key.rsplit("/", 1)[-1]


class LinkReference(BaseModel):
    """An unresolved cross reference found in a document body."""

    model_config = ConfigDict(frozen=True)

    source: str  # Document id the reference lives in
    raw_target: str  # Target text as written, without display text or anchor
    target: str  # Normalized target used for resolution
    anchor: str | None = None  # Heading or block anchor after '#'
    display_text: str | None = None
    kind: LinkKind = "wikilink"
    byte_offset: int = 0  # UTF-8 byte offset of the link in the body
    line: int = 1


class ResolvedEdge(BaseModel):
    """A directed edge between two existing documents."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    kind: LinkKind = "wikilink"


class DanglingLink(BaseModel):
    """A reference whose target matches no document."""

    model_config = ConfigDict(frozen=True)

    source: str
    raw_target: str
    target: str
    kind: LinkKind = "wikilink"


class Ambiguity(BaseModel):
    """A link target claimed by several documents at the same tier."""

    raw_target: str
    candidates: list[str]  # Candidate paths, tie-break winner first
    chosen: str  # Path the edge was resolved to
    sources: list[str] = Field(default_factory=list)  # Paths of documents carrying the link


class RankedResult(BaseModel):
    """A search result."""

    id: str
    path: str
    title: str
    score: float
    snippet: str = ""
    tags: list[str] = Field(default_factory=list)


class TagCount(BaseModel):
    """A tag and the number of documents carrying it."""

    tag: str
    count: int


class IndexStatus(BaseModel):
    """Status of the graph and search index."""

    documents: int
    edges: int
    dangling: int
    tags: int
    ambiguities: int
    failed: int
    version: int
    last_indexed: datetime | None = None
