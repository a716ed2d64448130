"""In-memory index from wikilink targets to referencing documents and matching files.

The index is keyed by target string exactly as written (trimmed). It is
rebuilt from editor buffers and the FileSet, never persisted. One coarse lock
guards the whole map because a document refresh touches many entries at once;
every reader gets deep copies.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone

from ..models import FileRecord, TargetInfo, Wikilink
from .resolver import resolve, suggested_uri

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WikilinkIndex:
    """Thread-safe target -> TargetInfo map."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._targets: dict[str, TargetInfo] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Mutation
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    def _apply_matches(info: TargetInfo, matching_files: list[str]) -> None:
        info.matching_files = list(matching_files)
        info.exists = bool(matching_files)
        info.is_ambiguous = len(matching_files) > 1
        info.suggested_uri = "" if info.exists else suggested_uri(info.target)

    def add_reference(
        self, target: str, source_uri: str, matching_files: list[str] | None = None
    ) -> None:
        """Record that ``source_uri`` links to ``target``.

        When ``matching_files`` is given it replaces the stored resolution;
        None keeps whatever the entry already knew.
        """
        with self._lock:
            info = self._targets.get(target)
            if info is None:
                info = TargetInfo(target=target, suggested_uri=suggested_uri(target))
                self._targets[target] = info
            if matching_files is not None:
                self._apply_matches(info, matching_files)
            info.referenced_by.add(source_uri)
            info.last_seen = _now()

    def remove_reference(self, target: str, source_uri: str) -> None:
        with self._lock:
            info = self._targets.get(target)
            if info is None:
                return
            info.referenced_by.discard(source_uri)
            if not info.referenced_by and not info.exists:
                del self._targets[target]

    def remove_document(self, source_uri: str) -> None:
        """Drop every reference attributed to ``source_uri``."""
        with self._lock:
            for target in self._targets_for(source_uri):
                self.remove_reference(target, source_uri)

    def refresh_document(
        self,
        source_uri: str,
        wikilinks: Iterable[Wikilink | str],
        files: Iterable[FileRecord],
    ) -> None:
        """Replace the references of ``source_uri`` with those in ``wikilinks``.

        Each target is resolved against ``files``. Runs entirely under the
        write lock, so readers never observe the document half-indexed.
        """
        targets: list[str] = []
        for link in wikilinks:
            target = link.target if isinstance(link, Wikilink) else link
            if target not in targets:
                targets.append(target)
        file_list = sorted(files, key=lambda f: f.relative_path)

        with self._lock:
            for target in self._targets_for(source_uri):
                self.remove_reference(target, source_uri)
            for target in targets:
                matches = resolve(target, file_list)
                self.add_reference(target, source_uri, matches if matches is not None else [])
        log.debug("Indexed %d target(s) for %s", len(targets), source_uri)

    def resolve_all(self, files: Iterable[FileRecord]) -> None:
        """Re-resolve every known target against a new FileSet."""
        file_list = sorted(files, key=lambda f: f.relative_path)
        with self._lock:
            for target, info in list(self._targets.items()):
                matches = resolve(target, file_list)
                self._apply_matches(info, matches if matches is not None else [])
                info.last_seen = _now()
                if not info.referenced_by and not info.exists:
                    del self._targets[target]

    def clear(self) -> None:
        with self._lock:
            self._targets.clear()

    # ─────────────────────────────────────────────────────────────────────────
    # Queries (all return copies)
    # ─────────────────────────────────────────────────────────────────────────

    def _targets_for(self, source_uri: str) -> list[str]:
        return [t for t, info in self._targets.items() if source_uri in info.referenced_by]

    def targets_for_document(self, source_uri: str) -> set[str]:
        with self._lock:
            return set(self._targets_for(source_uri))

    def get(self, target: str) -> TargetInfo | None:
        with self._lock:
            info = self._targets.get(target)
            return info.model_copy(deep=True) if info is not None else None

    def reference_count(self, target: str) -> int:
        with self._lock:
            info = self._targets.get(target)
            return len(info.referenced_by) if info is not None else 0

    def all_targets(self) -> dict[str, TargetInfo]:
        with self._lock:
            return {t: info.model_copy(deep=True) for t, info in self._targets.items()}

    def non_existent_targets(self) -> list[TargetInfo]:
        with self._lock:
            return [
                info.model_copy(deep=True)
                for _, info in sorted(self._targets.items())
                if not info.exists
            ]

    def ambiguous_targets_with_references(self) -> list[TargetInfo]:
        with self._lock:
            return [
                info.model_copy(deep=True)
                for _, info in sorted(self._targets.items())
                if info.is_ambiguous and info.referenced_by
            ]

    def by_prefix(self, prefix: str) -> list[TargetInfo]:
        """Targets starting with ``prefix``, compared case-insensitively."""
        lowered = prefix.lower()
        with self._lock:
            return [
                info.model_copy(deep=True)
                for target, info in sorted(self._targets.items())
                if target.lower().startswith(lowered)
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._targets)

    def __contains__(self, target: object) -> bool:
        with self._lock:
            return target in self._targets
