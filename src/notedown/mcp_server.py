"""FastMCP server for notedown.

This module provides MCP protocol wrappers around the core business logic.
All actual logic lives in core.py - this file just handles MCP serialization.
"""

from typing import Any

from fastmcp import FastMCP

from . import core
from .models import ListDocumentsResponse, TargetInfo

mcp = FastMCP(
    name="notedown",
    instructions=(
        "Markdown notes workspace. Use list_documents with a frontmatter filter to find notes, "
        "check_workspace to find broken or ambiguous [[wikilinks]] and invalid task states, "
        "and resolve_target to see which files a wikilink points at."
    ),
)


# ─────────────────────────────────────────────────────────────────────────────
# MCP Tool Wrappers
# ─────────────────────────────────────────────────────────────────────────────


@mcp.tool(
    name="list_documents",
    description=(
        "List workspace documents with frontmatter, wikilinks and tasks. "
        'Optional filter, e.g. {"type": "metadata", "field": "status", "operator": "equals", '
        '"value": "draft"}; combine with {"type": "and"|"or", "filters": [...]} or '
        '{"type": "not", "filter": {...}}. A malformed filter returns no documents and an error.'
    ),
)
async def list_documents_tool(
    filter: dict[str, Any] | None = None,
    ordered: bool = True,
) -> ListDocumentsResponse:
    """List documents matching a frontmatter filter."""
    return await core.list_documents(filter=filter, ordered=ordered)


@mcp.tool(
    name="check_workspace",
    description="Report unresolved and ambiguous wikilinks and invalid task states across the workspace.",
)
async def check_workspace_tool() -> core.WorkspaceReport:
    """Diagnose every document in the workspace."""
    return await core.check_workspace()


@mcp.tool(
    name="resolve_target",
    description=(
        "Resolve a wikilink target (the text inside [[...]]) to workspace files. "
        "Returns matching files, whether it is ambiguous, and the documents referencing it."
    ),
)
async def resolve_target_tool(target: str) -> TargetInfo | None:
    """Resolve a wikilink target."""
    return await core.resolve_target(target)


def main():
    """Run the MCP server."""
    import logging

    from ._logging import configure_logging

    configure_logging()
    log = logging.getLogger(__name__)
    log.info("Starting notedown MCP server")
    mcp.run()


if __name__ == "__main__":
    main()
