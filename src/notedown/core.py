"""Core business logic for notedown.

This module contains the workspace-level operations used by the CLI, the MCP
server and the HTTP API. The language server keeps its own long-lived state;
these functions scan the workspace afresh on every call.

Design principles:
- All functions are async for consistency
- The workspace root defaults to ``get_workspace_root()`` at call time
"""

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from . import config as _config
from .indexes import InvalidTarget, WikilinkIndex, normalize_target, resolve, suggested_uri
from .lsp.protocol import Diagnostic
from .models import Document, FileRecord, ListDocumentsResponse, ParsedDoc, TargetInfo
from .query import DocumentService
from .server.diagnostics import document_diagnostics
from .workspace import Workspace

log = logging.getLogger(__name__)


# Resolved at call time so tests can patch ``notedown.config.get_workspace_root``
def get_workspace_root() -> Path:
    return _config.get_workspace_root()


class FileDiagnostics(BaseModel):
    path: str
    diagnostics: list[Diagnostic] = Field(default_factory=list)


class WorkspaceReport(BaseModel):
    """Result of checking every Markdown file in a workspace."""

    root: str
    file_count: int = 0
    files: list[FileDiagnostics] = Field(default_factory=list)  # Only files with problems
    non_existent_targets: list[TargetInfo] = Field(default_factory=list)
    ambiguous_targets: list[TargetInfo] = Field(default_factory=list)

    @property
    def problem_count(self) -> int:
        return sum(len(f.diagnostics) for f in self.files)


def _root(root: Path | str | None) -> Path:
    if root is None:
        return get_workspace_root()
    path = Path(root).expanduser()
    if not path.is_dir():
        raise _config.ConfigurationError(f"workspace root {path} is not a directory")
    return path.resolve()


def _workspace(root: Path) -> Workspace:
    workspace = Workspace()
    workspace.initialize([str(root)])
    return workspace


async def _index_workspace(
    root: Path,
) -> tuple[list[FileRecord], list[Document], WikilinkIndex]:
    """Scan, parse every file and index all of their wikilinks."""
    service = DocumentService(_workspace(root))
    files = await service.discover()
    documents = [doc async for doc in service.parse_documents(files, ordered=True)]

    uris = {record.relative_path: record.uri for record in files}
    index = WikilinkIndex()
    for document in documents:
        index.refresh_document(uris[document.path], document.wikilinks, files)
    log.debug("Indexed %d document(s), %d target(s)", len(documents), len(index))
    return files, documents, index


async def list_documents(
    filter: Any = None,
    root: Path | str | None = None,
    ordered: bool = False,
) -> ListDocumentsResponse:
    """Return every document whose frontmatter matches ``filter``.

    Args:
        filter: A FilterExpression, its JSON-ready dict form, or None for all.
        root: Workspace root; defaults to the discovered workspace.
        ordered: Return documents in relative-path order.
    """
    service = DocumentService(_workspace(_root(root)))
    return await service.list_documents(filter, ordered=ordered)


async def check_workspace(root: Path | str | None = None) -> WorkspaceReport:
    """Diagnose every Markdown file against a fully built wikilink index.

    Raises:
        ConfigurationError: If the workspace settings file is invalid.
    """
    workspace_root = _root(root)
    tasks = _config.load_config(workspace_root).tasks
    files, documents, index = await _index_workspace(workspace_root)

    report = WorkspaceReport(root=str(workspace_root), file_count=len(files))
    for document in documents:
        parsed = ParsedDoc(
            frontmatter=document.metadata, wikilinks=document.wikilinks, tasks=document.tasks
        )
        diagnostics = document_diagnostics(parsed, index, tasks, files)
        if diagnostics:
            report.files.append(FileDiagnostics(path=document.path, diagnostics=diagnostics))

    report.non_existent_targets = index.non_existent_targets()
    report.ambiguous_targets = index.ambiguous_targets_with_references()
    return report


async def resolve_target(target: str, root: Path | str | None = None) -> TargetInfo | None:
    """Resolve one target against the workspace.

    Returns:
        The target's index entry (matches plus referencing documents), or None
        if the target is invalid (empty or climbing out of the workspace).
    """
    try:
        normalize_target(target)
    except InvalidTarget as e:
        log.debug("%s", e)
        return None

    files, _, index = await _index_workspace(_root(root))
    info = index.get(target.strip())
    if info is not None:
        return info

    matches = resolve(target, files) or []
    return TargetInfo(
        target=target.strip(),
        exists=bool(matches),
        matching_files=matches,
        is_ambiguous=len(matches) > 1,
        suggested_uri="" if matches else suggested_uri(target),
    )
