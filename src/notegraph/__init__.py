"""notegraph: link graph, tag index and full-text search for Markdown notes."""

from .core import NoteGraph
from .errors import (
    AmbiguousLinkError,
    ConfigurationError,
    DanglingLinkWarning,
    IndexCorruptionError,
    InvariantViolation,
    NoteGraphError,
    ParseError,
)

__version__ = "0.1.0"

__all__ = [
    "NoteGraph",
    "NoteGraphError",
    "ConfigurationError",
    "ParseError",
    "AmbiguousLinkError",
    "DanglingLinkWarning",
    "IndexCorruptionError",
    "InvariantViolation",
]
