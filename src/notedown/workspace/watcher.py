"""Filesystem watcher feeding Markdown create/change/delete events to a callback.

Used by ``notedown serve --watch`` for editors that do not send
``workspace/didChangeWatchedFiles``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from enum import IntEnum
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config import WATCHER_DEBOUNCE_SECONDS
from .scanner import is_markdown_file

logger = logging.getLogger(__name__)


class FileChangeType(IntEnum):
    """Matches the editor protocol's FileChangeType numbering."""

    CREATED = 1
    CHANGED = 2
    DELETED = 3


class DebouncedHandler(FileSystemEventHandler):
    """File system event handler with debouncing.

    Events for the same path within the debounce window collapse to the last
    one, except that a create followed by changes stays a create.
    """

    def __init__(
        self,
        callback: Callable[[dict[Path, FileChangeType]], None],
        debounce_seconds: float = WATCHER_DEBOUNCE_SECONDS,
    ):
        super().__init__()
        self._callback = callback
        self._debounce_seconds = debounce_seconds
        self._pending: dict[Path, FileChangeType] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def _record(self, path: Path, change: FileChangeType) -> None:
        if not is_markdown_file(path):
            return
        with self._lock:
            previous = self._pending.get(path)
            if previous == FileChangeType.CREATED and change == FileChangeType.CHANGED:
                change = FileChangeType.CREATED
            self._pending[path] = change
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Deliver pending events now."""
        with self._lock:
            pending = self._pending
            self._pending = {}
            self._timer = None
        if pending:
            try:
                self._callback(pending)
            except Exception:
                logger.exception("File change callback failed")

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = {}

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(Path(event.src_path), FileChangeType.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(Path(event.src_path), FileChangeType.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(Path(event.src_path), FileChangeType.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        """A rename is a delete of the source and a create of the destination."""
        if event.is_directory:
            return
        self._record(Path(event.src_path), FileChangeType.DELETED)
        dest_path = getattr(event, "dest_path", None)
        if dest_path:
            self._record(Path(dest_path), FileChangeType.CREATED)


class FileWatcher:
    """Watch workspace roots and report Markdown file changes."""

    def __init__(
        self,
        roots: Iterable[Path],
        callback: Callable[[dict[Path, FileChangeType]], None],
        debounce_seconds: float = WATCHER_DEBOUNCE_SECONDS,
    ):
        self._roots = list(roots)
        self._handler = DebouncedHandler(callback, debounce_seconds)
        self._observer: Observer | None = None
        self._running = False

    def start(self) -> None:
        """Start watching for file changes."""
        if self._running:
            return

        observer = Observer()
        scheduled = 0
        for root in self._roots:
            if not root.is_dir():
                logger.warning("Cannot watch missing workspace root: %s", root)
                continue
            observer.schedule(self._handler, str(root), recursive=True)
            scheduled += 1

        if not scheduled:
            return

        observer.start()
        self._observer = observer
        self._running = True
        logger.info("Started watching %d root(s)", scheduled)

    def stop(self) -> None:
        """Stop watching for file changes."""
        if not self._running or self._observer is None:
            return

        self._handler.cancel()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        self._running = False
        logger.info("Stopped file watcher")

    @property
    def is_running(self) -> bool:
        return self._running

    def __enter__(self) -> "FileWatcher":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
