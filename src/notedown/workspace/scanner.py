"""Workspace scanning: discover Markdown files under one or more roots.

The scanner owns the FileSet, a mapping from canonical file URI to
``FileRecord``. Full scans build a private mapping and swap it in only when
the walk completes, so a cancelled scan leaves the previous FileSet intact.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NamedTuple

from ..config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_MAX_FILE_COUNT, MARKDOWN_EXTENSION
from ..models import FileRecord
from ..uris import is_file_uri, path_to_uri, posix_relative, to_root_path, uri_to_path

log = logging.getLogger(__name__)


class LimitExceeded(Exception):
    """The scanner reached its file-count ceiling."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"workspace file limit of {limit} reached; remaining files ignored")


class WorkspaceRoot(NamedTuple):
    """A directory whose Markdown files belong to the workspace."""

    uri: str
    path: Path
    name: str


class ScanTask:
    """Handle for a scan running on its own thread."""

    def __init__(self, thread: threading.Thread, cancel_event: threading.Event) -> None:
        self._thread = thread
        self._cancel_event = cancel_event
        self.completed = False

    def cancel(self) -> None:
        self._cancel_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the scan finishes. Returns False on timeout."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()


def is_markdown_file(path: Path | str) -> bool:
    return os.path.splitext(str(path))[1].lower() == MARKDOWN_EXTENSION


class Workspace:
    """Tracks workspace roots and the Markdown files beneath them."""

    def __init__(
        self,
        max_file_count: int = DEFAULT_MAX_FILE_COUNT,
        exclude_patterns: Sequence[str] = DEFAULT_EXCLUDE_PATTERNS,
        skip_hidden: bool = True,
    ) -> None:
        self.max_file_count = max_file_count
        self.exclude_patterns = frozenset(exclude_patterns)
        self.skip_hidden = skip_hidden
        self._lock = threading.RLock()
        self._roots: list[WorkspaceRoot] = []
        self._files: dict[str, FileRecord] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Roots
    # ─────────────────────────────────────────────────────────────────────────

    def initialize(self, roots: Iterable[str | Path]) -> list[WorkspaceRoot]:
        """Reset the FileSet and register roots.

        Accepts ``file://`` URIs and absolute paths. Anything else is logged and
        skipped.
        """
        accepted: list[WorkspaceRoot] = []
        for value in roots:
            root = self._make_root(str(value))
            if root is not None and root not in accepted:
                accepted.append(root)

        with self._lock:
            self._roots = accepted
            self._files = {}
        log.info("Workspace initialized with %d root(s)", len(accepted))
        return list(accepted)

    def initialize_from_params(self, params: dict[str, Any]) -> list[WorkspaceRoot]:
        """Pick roots from editor ``initialize`` params.

        ``workspaceFolders`` wins over ``rootUri``, which wins over ``rootPath``.
        """
        folders = params.get("workspaceFolders") or []
        if folders:
            return self.initialize([folder["uri"] for folder in folders if folder.get("uri")])
        if params.get("rootUri"):
            return self.initialize([params["rootUri"]])
        if params.get("rootPath"):
            return self.initialize([params["rootPath"]])
        log.warning("No workspace root in initialize params")
        return self.initialize([])

    def _make_root(self, value: str, name: str | None = None) -> WorkspaceRoot | None:
        if "://" in value and not is_file_uri(value):
            log.warning("Skipping non-file workspace root: %s", value)
            return None
        try:
            path = to_root_path(value)
        except ValueError as e:
            log.warning("Skipping workspace root %s: %s", value, e)
            return None
        return WorkspaceRoot(uri=path_to_uri(path), path=path, name=name or path.name)

    def add_root(self, value: str, name: str | None = None) -> WorkspaceRoot | None:
        root = self._make_root(value, name)
        if root is None:
            return None
        with self._lock:
            if all(existing.path != root.path for existing in self._roots):
                self._roots.append(root)
        return root

    def remove_root(self, value: str) -> bool:
        """Drop a root and every file beneath it."""
        try:
            path = to_root_path(value)
        except ValueError:
            return False
        with self._lock:
            before = len(self._roots)
            self._roots = [root for root in self._roots if root.path != path]
            if len(self._roots) == before:
                return False
            self._files = {
                uri: record for uri, record in self._files.items() if Path(record.root) != path
            }
        return True

    def roots(self) -> list[WorkspaceRoot]:
        with self._lock:
            return list(self._roots)

    def root_for(self, path: Path) -> WorkspaceRoot | None:
        """The most specific root containing ``path``."""
        best: WorkspaceRoot | None = None
        for root in self.roots():
            try:
                path.relative_to(root.path)
            except ValueError:
                continue
            if best is None or len(root.path.parts) > len(best.path.parts):
                best = root
        return best

    # ─────────────────────────────────────────────────────────────────────────
    # Exclusion policy
    # ─────────────────────────────────────────────────────────────────────────

    def is_excluded_dir(self, name: str) -> bool:
        if self.skip_hidden and name.startswith("."):
            return True
        return name in self.exclude_patterns

    def _is_excluded_relative(self, relative: Path) -> bool:
        return any(self.is_excluded_dir(part) for part in relative.parts[:-1])

    # ─────────────────────────────────────────────────────────────────────────
    # Scanning
    # ─────────────────────────────────────────────────────────────────────────

    def _record_for(self, path: Path, root: WorkspaceRoot) -> FileRecord:
        stat = path.stat()
        return FileRecord(
            uri=path_to_uri(path),
            relative_path=posix_relative(path, root.path),
            mod_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            size=stat.st_size,
            root=str(root.path),
        )

    def scan_all(self, cancel_event: threading.Event | None = None) -> bool:
        """Walk every root and replace the FileSet.

        Returns:
            True when the new FileSet was installed, False when cancelled.
        """
        found: dict[str, FileRecord] = {}
        limit_hit = False

        for root in self.roots():
            if limit_hit:
                break
            if not root.path.is_dir():
                log.warning("Workspace root is not a readable directory: %s", root.path)
                continue

            def on_error(error: OSError) -> None:
                log.warning("Failed to read %s: %s", error.filename, error)

            for dirpath, dirnames, filenames in os.walk(root.path, onerror=on_error):
                if cancel_event is not None and cancel_event.is_set():
                    log.info("Workspace scan cancelled; keeping previous file set")
                    return False

                dirnames[:] = sorted(d for d in dirnames if not self.is_excluded_dir(d))

                for filename in sorted(filenames):
                    if not is_markdown_file(filename):
                        continue
                    if len(found) >= self.max_file_count:
                        log.warning("%s", LimitExceeded(self.max_file_count))
                        limit_hit = True
                        break
                    path = Path(dirpath) / filename
                    try:
                        record = self._record_for(path, root)
                    except OSError as e:
                        log.warning("Failed to stat %s: %s", path, e)
                        continue
                    found[record.uri] = record

                if limit_hit:
                    break

        with self._lock:
            self._files = found
        log.info("Workspace scan found %d markdown file(s)", len(found))
        return True

    def start_scan(self, on_complete: Callable[[bool], None] | None = None) -> ScanTask:
        """Run :meth:`scan_all` on a daemon thread.

        Args:
            on_complete: Called on the scan thread with the result of ``scan_all``.
        """
        cancel_event = threading.Event()
        task: ScanTask

        def run() -> None:
            try:
                result = self.scan_all(cancel_event)
            except Exception:
                log.exception("Workspace scan failed")
                result = False
            task.completed = result
            if on_complete is not None:
                on_complete(result)

        thread = threading.Thread(target=run, name="notedown-scan", daemon=True)
        task = ScanTask(thread, cancel_event)
        thread.start()
        return task

    # ─────────────────────────────────────────────────────────────────────────
    # Single-file updates
    # ─────────────────────────────────────────────────────────────────────────

    def add_file(self, uri: str) -> FileRecord | None:
        """Add or refresh one file. Returns None if it does not belong to the workspace."""
        try:
            path = uri_to_path(uri)
        except ValueError:
            log.debug("Ignoring non-file URI: %s", uri)
            return None
        if not is_markdown_file(path):
            return None

        root = self.root_for(path)
        if root is None:
            log.debug("File outside workspace roots: %s", path)
            return None
        if self._is_excluded_relative(path.relative_to(root.path)):
            return None

        try:
            record = self._record_for(path, root)
        except OSError as e:
            log.warning("Failed to stat %s: %s", path, e)
            return None

        with self._lock:
            if record.uri not in self._files and len(self._files) >= self.max_file_count:
                log.warning("%s", LimitExceeded(self.max_file_count))
                return None
            self._files[record.uri] = record
        return record

    def remove_file(self, uri: str) -> bool:
        try:
            canonical = path_to_uri(uri_to_path(uri))
        except ValueError:
            return False
        with self._lock:
            return self._files.pop(canonical, None) is not None

    # ─────────────────────────────────────────────────────────────────────────
    # Snapshots
    # ─────────────────────────────────────────────────────────────────────────

    def list(self) -> list[FileRecord]:
        """Snapshot of the FileSet ordered by relative path."""
        with self._lock:
            records = list(self._files.values())
        return sorted(records, key=lambda record: (record.relative_path, record.uri))

    def snapshot(self) -> dict[str, FileRecord]:
        with self._lock:
            return dict(self._files)

    def get(self, uri: str) -> FileRecord | None:
        with self._lock:
            return self._files.get(uri)

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)
