"""Pydantic models shared by the indexer, the language server and the query service."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileRecord(BaseModel):
    """A Markdown file known to the workspace scanner."""

    model_config = ConfigDict(frozen=True)

    uri: str  # Canonical absolute file:// URI
    relative_path: str  # Workspace-relative, forward slashes
    mod_time: datetime  # Last modification time (UTC)
    size: int  # Bytes on disk
    root: str = ""  # Absolute path of the containing workspace root


class Wikilink(BaseModel):
    """A ``[[target]]`` or ``[[target|display]]`` occurrence.

    Positions are 0-based; the start points at the first ``[`` and the end is
    exclusive, just past the closing ``]]``.
    """

    target: str  # Inner text before the first pipe, trimmed
    display: str | None = None  # Text after the first pipe
    line: int
    column: int
    end_line: int
    end_column: int


class TaskRef(BaseModel):
    """A list item whose marker is followed by a bracketed state."""

    state: str  # Bracket body, verbatim
    text: str  # Item text after the closing bracket, trimmed
    line: int
    column: int  # Column of the opening bracket


class ParsedDoc(BaseModel):
    """Result of parsing one Markdown buffer.

    A parse failure yields an empty document with ``error`` set; consumers treat
    that as no metadata, no links and no tasks.
    """

    frontmatter: dict[str, Any] = Field(default_factory=dict)
    wikilinks: list[Wikilink] = Field(default_factory=list)
    tasks: list[TaskRef] = Field(default_factory=list)
    error: str | None = None


class Document(BaseModel):
    """A parsed document as returned by the query service."""

    path: str  # Workspace-relative path
    checksum: str  # Lowercase hex SHA-256 of the raw bytes
    metadata: dict[str, Any] = Field(default_factory=dict)
    wikilinks: list[Wikilink] = Field(default_factory=list)
    tasks: list[TaskRef] = Field(default_factory=list)


class TargetInfo(BaseModel):
    """Index entry for one wikilink target string."""

    target: str
    exists: bool = False  # True iff matching_files was non-empty at the last resolution
    referenced_by: set[str] = Field(default_factory=set)  # Source document URIs
    matching_files: list[str] = Field(default_factory=list)  # Relative paths
    is_ambiguous: bool = False  # len(matching_files) > 1
    suggested_uri: str = ""  # Proposed relative path when the target does not exist
    last_seen: datetime = Field(default_factory=_utcnow)


class ListDocumentsResponse(BaseModel):
    """Result of a document query. ``error`` is set when the filter failed."""

    documents: list[Document] = Field(default_factory=list)
    error: str | None = None
