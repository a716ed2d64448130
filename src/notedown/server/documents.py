"""Open editor buffers, keyed by normalized URI."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from ..uris import normalize_uri

log = logging.getLogger(__name__)


@dataclass
class TrackedDocument:
    uri: str  # Normalized key
    content: str
    version: int = 0
    client_uri: str = ""  # Spelling the editor used, echoed back in notifications

    @property
    def lines(self) -> list[str]:
        return self.content.split("\n")


class DocumentStore:
    """Editor-authoritative content of every open document.

    A document enters on open, is replaced wholesale on each change (full
    sync) and leaves on close or when the file is deleted on disk.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, TrackedDocument] = {}

    def open(self, uri: str, content: str, version: int = 0) -> TrackedDocument:
        document = TrackedDocument(
            uri=normalize_uri(uri), content=content, version=version, client_uri=uri
        )
        with self._lock:
            self._documents[document.uri] = document
        log.debug("Opened %s (version %d)", document.uri, version)
        return document

    def update(self, uri: str, content: str, version: int | None = None) -> TrackedDocument | None:
        """Replace the content of a tracked document. Untracked URIs are ignored."""
        key = normalize_uri(uri)
        with self._lock:
            document = self._documents.get(key)
            if document is None:
                log.warning("Change for untracked document %s", key)
                return None
            document.content = content
            if version is not None:
                document.version = version
            return document

    def close(self, uri: str) -> TrackedDocument | None:
        """Stop tracking ``uri``. Returns the document that was removed, if any."""
        with self._lock:
            return self._documents.pop(normalize_uri(uri), None)

    def get(self, uri: str) -> TrackedDocument | None:
        with self._lock:
            return self._documents.get(normalize_uri(uri))

    def uris(self) -> list[str]:
        with self._lock:
            return sorted(self._documents)

    def __contains__(self, uri: object) -> bool:
        if not isinstance(uri, str):
            return False
        with self._lock:
            return normalize_uri(uri) in self._documents

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)
