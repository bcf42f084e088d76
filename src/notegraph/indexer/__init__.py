"""Incremental indexing into the graph store and Whoosh search index."""

from .incremental import IncrementalIndexer, IndexReport
from .watcher import FileWatcher
from .whoosh_index import WhooshIndex

__all__ = ["IncrementalIndexer", "IndexReport", "WhooshIndex", "FileWatcher"]
