"""
notedown: CLI for Markdown note workspaces

Usage:
    notedown serve                      # Language server on stdio
    notedown query --filter '{...}'     # List documents by frontmatter
    notedown check                      # Broken/ambiguous links, bad task states
    notedown resolve "target"           # Which files a [[target]] points at
    notedown init                       # Write .notedown/settings.yaml
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click
from click.exceptions import ClickException

from . import __version__ as NOTEDOWN_VERSION


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}
    widths = {col: len(col) for col in columns}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        if len(val) > limit:
            val = val[: limit - 3] + "..."
        return val

    for row in rows:
        for col in columns:
            widths[col] = max(widths[col], len(cell(row, col)))

    header = "  ".join(col.upper().ljust(widths[col]) for col in columns)
    separator = "  ".join("-" * widths[col] for col in columns)
    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns))
    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


class WorkspaceNotFound(ClickException):
    """The workspace root does not exist or its settings are invalid."""

    exit_code = 1


def _load_filter(filter_json: str | None, filter_file: str | None) -> Any:
    if filter_json and filter_file:
        raise click.UsageError("use either --filter or --filter-file, not both")
    raw = filter_json
    if filter_file:
        raw = Path(filter_file).read_text(encoding="utf-8")
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"filter is not valid JSON: {e}", param_hint="--filter")


def _root(ctx: click.Context) -> Path | None:
    return ctx.obj.get("workspace")


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=NOTEDOWN_VERSION, prog_name="notedown")
@click.option(
    "--workspace",
    "-w",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="NOTEDOWN_WORKSPACE",
    help="Workspace root (default: nearest directory with .notedown/, else cwd)",
)
@click.pass_context
def cli(ctx: click.Context, workspace: Path | None):
    """notedown: wikilinks, tasks and frontmatter queries for Markdown notes.

    \b
    Editors:
      notedown serve                 # Language server over stdio
      notedown serve --watch         # Also watch the workspace for changes

    \b
    Queries:
      notedown query --filter '{"type":"metadata","field":"status","operator":"equals","value":"draft"}'
      notedown check                 # Workspace diagnostics
      notedown resolve daily         # Resolve [[daily]]

    \b
    Services:
      notedown api                   # HTTP API (POST /api/documents)
      notedown mcp                   # MCP server on stdio
    """
    ctx.ensure_object(dict)
    ctx.obj["workspace"] = workspace


# ─────────────────────────────────────────────────────────────────────────────
# Language Server
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--watch", is_flag=True, help="Watch workspace roots for file changes")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level (default: NOTEDOWN_LOG_LEVEL or WARNING)",
)
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also log to this file")
def serve(watch: bool, log_level: str | None, log_file: str | None):
    """Run the language server on stdin/stdout.

    Logs go to stderr; stdout carries protocol messages only.
    """
    from ._logging import configure_logging
    from .lsp import Mux
    from .server import NotedownServer

    configure_logging(level=log_level, log_file=log_file)

    mux = Mux(sys.stdin.buffer, sys.stdout.buffer)
    server = NotedownServer(watch=watch)
    server.bind(mux)
    try:
        code = mux.run()
    finally:
        server.close()
    sys.exit(code)


# ─────────────────────────────────────────────────────────────────────────────
# Query Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--filter", "filter_json", help="Filter expression as JSON")
@click.option("--filter-file", type=click.Path(exists=True, dir_okay=False), help="Read the filter from a file")
@click.option("--ordered", is_flag=True, help="Sort results by path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def query(ctx: click.Context, filter_json: str | None, filter_file: str | None, ordered: bool, as_json: bool):
    """List documents whose frontmatter matches a filter.

    \b
    Filter nodes:
      {"type": "metadata", "field": F, "operator": OP, "value": V}
      {"type": "and" | "or", "filters": [...]}
      {"type": "not", "filter": {...}}

    \b
    Operators: exists, not_exists, equals, not_equals, contains, starts_with,
    ends_with, greater_than, greater_than_or_equal, less_than,
    less_than_or_equal, in, not_in
    """
    from .config import ConfigurationError
    from .core import list_documents

    expression = _load_filter(filter_json, filter_file)
    try:
        response = run_async(list_documents(filter=expression, root=_root(ctx), ordered=ordered))
    except ConfigurationError as e:
        raise WorkspaceNotFound(str(e))

    if response.error:
        if as_json:
            output(response.model_dump(mode="json"), as_json=True)
            sys.exit(1)
        raise ClickException(response.error)

    if as_json:
        output(response.model_dump(mode="json"), as_json=True)
        return

    if not response.documents:
        click.echo("No matching documents.")
        return

    rows = [
        {
            "path": doc.path,
            "links": len(doc.wikilinks),
            "tasks": len(doc.tasks),
            "metadata": ", ".join(sorted(doc.metadata)),
        }
        for doc in response.documents
    ]
    click.echo(format_table(rows, ["path", "links", "tasks", "metadata"], {"path": 60}))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def check(ctx: click.Context, as_json: bool):
    """Report broken and ambiguous wikilinks and invalid task states.

    Exits with status 1 when any problem is found.
    """
    from .config import ConfigurationError
    from .core import check_workspace

    try:
        report = run_async(check_workspace(_root(ctx)))
    except ConfigurationError as e:
        raise WorkspaceNotFound(str(e))

    if as_json:
        output(report.model_dump(mode="json", by_alias=True, exclude_none=True), as_json=True)
    else:
        for entry in report.files:
            for diag in entry.diagnostics:
                start = diag.range.start
                click.echo(f"{entry.path}:{start.line + 1}:{start.character + 1}: [{diag.code}] {diag.message}")
        click.echo(
            f"\n{report.file_count} file(s) checked, {report.problem_count} problem(s) "
            f"in {len(report.files)} file(s)"
        )

    if report.problem_count:
        sys.exit(1)


@cli.command()
@click.argument("target")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def resolve(ctx: click.Context, target: str, as_json: bool):
    """Show which files the wikilink [[TARGET]] resolves to."""
    from .config import ConfigurationError
    from .core import resolve_target

    try:
        info = run_async(resolve_target(target, _root(ctx)))
    except ConfigurationError as e:
        raise WorkspaceNotFound(str(e))

    if info is None:
        raise ClickException(f"invalid wikilink target: {target!r}")

    if as_json:
        output(info.model_dump(mode="json"), as_json=True)
        return

    if not info.exists:
        click.echo(f"[[{info.target}]] does not exist (would create {info.suggested_uri})")
    elif info.is_ambiguous:
        click.echo(f"[[{info.target}]] is ambiguous:")
        for path in info.matching_files:
            click.echo(f"  - {path}")
    else:
        click.echo(f"[[{info.target}]] -> {info.matching_files[0]}")
    if info.referenced_by:
        click.echo(f"Referenced by {len(info.referenced_by)} document(s)")


# ─────────────────────────────────────────────────────────────────────────────
# Services
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address")
@click.option("--port", default=8080, show_default=True, type=int, help="Port")
@click.pass_context
def api(ctx: click.Context, host: str, port: int):
    """Serve the HTTP API (POST /api/documents, GET /api/health)."""
    import os

    import uvicorn

    from ._logging import configure_logging
    from .webapp.api import app

    configure_logging()
    if _root(ctx) is not None:
        os.environ["NOTEDOWN_WORKSPACE"] = str(_root(ctx))
    uvicorn.run(app, host=host, port=port)


@cli.command()
@click.pass_context
def mcp(ctx: click.Context):
    """Serve the MCP tools on stdio."""
    import os

    from .mcp_server import main

    if _root(ctx) is not None:
        os.environ["NOTEDOWN_WORKSPACE"] = str(_root(ctx))
    main()


# ─────────────────────────────────────────────────────────────────────────────
# Init Command
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite an existing settings file")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    show_default=True,
    help="Settings file format",
)
@click.pass_context
def init(ctx: click.Context, force: bool, fmt: str):
    """Create .notedown/settings with the default task states."""
    from .config import CONFIG_DIR_NAME, ConfigurationError, default_config, save_config

    root = _root(ctx) or Path.cwd()
    if not root.is_dir():
        raise WorkspaceNotFound(f"{root} is not a directory")

    settings = root / CONFIG_DIR_NAME / f"settings.{fmt}"
    if settings.exists() and not force:
        raise ClickException(f"{settings} already exists (use --force to overwrite)")

    try:
        save_config(default_config(), settings)
    except (ConfigurationError, OSError) as e:
        raise ClickException(str(e))
    click.echo(f"Created {settings}")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
