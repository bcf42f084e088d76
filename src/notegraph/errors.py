"""Error taxonomy for notegraph.

Per-document failures (ParseError) are recovered and reported; corpus-wide
operations never abort because of a single bad file. IndexCorruptionError and
InvariantViolation are the only errors surfaced as fatal to the caller.
"""

from __future__ import annotations

from pathlib import Path


class NoteGraphError(Exception):
    """Base class for all notegraph errors."""


class ConfigurationError(NoteGraphError):
    """Raised when required configuration is missing or invalid."""


class ParseError(NoteGraphError):
    """Raised when a document cannot be loaded.

    Covers malformed frontmatter, undecodable bytes, parse timeouts and
    unreadable files. ``io`` is True when the underlying cause was an OSError.
    """

    def __init__(self, path: Path | str, reason: str, *, io: bool = False) -> None:
        self.path = Path(path)
        self.reason = reason
        self.io = io
        super().__init__(f"{path}: {reason}")


class AmbiguousLinkError(NoteGraphError):
    """A link target matched more than one document at the same tier."""

    def __init__(self, raw_target: str, candidates: list[str], chosen: str | None = None) -> None:
        self.raw_target = raw_target
        self.candidates = list(candidates)
        self.chosen = chosen
        listed = ", ".join(self.candidates)
        super().__init__(f"Ambiguous link target '{raw_target}'. Candidates: {listed}")


class DanglingLinkWarning(UserWarning):
    """A link target could not be resolved to any existing document."""

    def __init__(self, raw_target: str, source: str | None = None) -> None:
        self.raw_target = raw_target
        self.source = source
        where = f" (from {source})" if source else ""
        super().__init__(f"Unresolved link target '{raw_target}'{where}")


class IndexCorruptionError(NoteGraphError):
    """A persisted snapshot failed validation on load."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Corrupt snapshot {path}: {reason}")


class InvariantViolation(NoteGraphError):
    """Internal consistency check failed. Always fatal."""

    def __init__(self, doc_id: str | None, stage: str, cause: str) -> None:
        self.doc_id = doc_id
        self.stage = stage
        self.cause = cause
        super().__init__(f"Invariant violated during {stage} (document={doc_id!r}): {cause}")
