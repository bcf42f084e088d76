"""File watcher for automatic re-indexing of changed markdown files."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config import DEBOUNCE_SECONDS, DEFAULT_EXTENSIONS
from ..errors import NoteGraphError

if TYPE_CHECKING:
    from .incremental import IncrementalIndexer, IndexReport

log = logging.getLogger(__name__)


class DebouncedHandler(FileSystemEventHandler):
    """File system event handler with per-path debouncing.

    Every event pushes back the deadline of its own path only. When a timer
    fires, all paths whose deadline has passed are handed to the callback as
    one batch; paths still receiving events keep waiting.
    """

    def __init__(
        self,
        callback: Callable[[set[Path]], None],
        debounce_seconds: float = DEBOUNCE_SECONDS,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ):
        """Initialize the debounced handler.

        Args:
            callback: Function to call with changed files after debounce.
            debounce_seconds: Quiet period per path, in seconds.
            extensions: File extensions to react to.
        """
        super().__init__()
        self._callback = callback
        self._debounce_seconds = debounce_seconds
        self._extensions = {ext.lower() for ext in extensions}
        self._deadlines: dict[Path, float] = {}
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> set[Path]:
        with self._lock:
            return set(self._deadlines)

    def _arm(self) -> None:
        """Schedule the timer for the earliest deadline. Caller holds the lock."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._deadlines:
            return

        delay = max(0.0, min(self._deadlines.values()) - time.monotonic())
        self._timer = threading.Timer(delay, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            now = time.monotonic()
            due = {path for path, deadline in self._deadlines.items() if deadline <= now}
            for path in due:
                del self._deadlines[path]
            self._arm()

        if due:
            self._callback(due)

    def flush(self) -> None:
        """Deliver every pending path now, ignoring remaining quiet periods."""
        with self._lock:
            due = set(self._deadlines)
            self._deadlines.clear()
            self._arm()
        if due:
            self._callback(due)

    def cancel(self) -> None:
        """Drop pending paths without delivering them."""
        with self._lock:
            self._deadlines.clear()
            self._arm()

    def _add(self, path: str | bytes) -> None:
        if isinstance(path, bytes):
            path = path.decode()
        src_path = Path(path)

        # Only handle note files
        if src_path.suffix.lower() not in self._extensions:
            return

        with self._lock:
            self._deadlines[src_path] = time.monotonic() + self._debounce_seconds
            self._arm()

    def _handle_event(self, event: FileSystemEvent) -> None:
        """Handle a file system event."""
        if event.is_directory:
            return
        self._add(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation."""
        self._handle_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification."""
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle file deletion."""
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle file move/rename: the old path is removed, the new one indexed."""
        if event.is_directory:
            return

        self._add(event.src_path)
        dest_path = getattr(event, "dest_path", None)
        if dest_path:
            self._add(dest_path)


class FileWatcher:
    """Watch a corpus directory and feed changed files to the indexer."""

    def __init__(
        self,
        indexer: "IncrementalIndexer",
        debounce_seconds: float = DEBOUNCE_SECONDS,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        on_refresh: Callable[["IndexReport"], None] | None = None,
    ):
        """Initialize the file watcher.

        Args:
            indexer: IncrementalIndexer to update on changes.
            debounce_seconds: Quiet period per path before re-indexing.
            extensions: File extensions to react to.
            on_refresh: Optional callback receiving each refresh report.
        """
        self._indexer = indexer
        self._root = indexer.root
        self._debounce_seconds = debounce_seconds
        self._extensions = tuple(extensions)
        self._on_refresh = on_refresh
        self._observer: Observer | None = None
        self._handler: DebouncedHandler | None = None
        self._running = False

    def _on_files_changed(self, files: set[Path]) -> None:
        """Handle changed files after debounce.

        Args:
            files: Set of changed file paths.
        """
        log.info("Re-indexing %d changed files", len(files))
        try:
            report = self._indexer.refresh(files)
        except NoteGraphError as e:
            log.error("Failed to refresh %d files: %s", len(files), e)
            return

        if self._on_refresh is not None:
            self._on_refresh(report)

    def start(self) -> None:
        """Start watching for file changes."""
        if self._running:
            return

        if not self._root.exists():
            log.warning("Corpus root does not exist: %s", self._root)
            return

        self._handler = DebouncedHandler(
            callback=self._on_files_changed,
            debounce_seconds=self._debounce_seconds,
            extensions=self._extensions,
        )
        self._observer = Observer()
        self._observer.schedule(self._handler, str(self._root), recursive=True)
        self._observer.start()
        self._running = True
        log.info("Started watching: %s", self._root)

    def stop(self) -> None:
        """Stop watching and deliver any pending changes."""
        if not self._running or self._observer is None:
            return

        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        if self._handler is not None:
            self._handler.flush()
            self._handler = None
        self._running = False
        log.info("Stopped file watcher")

    @property
    def is_running(self) -> bool:
        """Check if watcher is running."""
        return self._running

    def __enter__(self) -> "FileWatcher":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.stop()
