"""Language server features built on the wikilink index and the workspace FileSet."""

from .documents import DocumentStore, TrackedDocument
from .server import NotedownServer

__all__ = ["DocumentStore", "NotedownServer", "TrackedDocument"]
