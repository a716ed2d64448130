"""Markdown parsing with YAML frontmatter, wikilinks and task items."""

from __future__ import annotations

import datetime as dt
import hashlib
import re
from pathlib import Path
from typing import Any

import frontmatter

from ..models import Document, ParsedDoc, TaskRef, Wikilink
from .links import (
    build_markdown_parser,
    code_line_ranges,
    extract_wikilinks_ast,
    extract_wikilinks_regex,
)

# Opening and closing --- fences; the block must start the document
FRONTMATTER_PATTERN = re.compile(r"\A---[ \t]*\r?\n(?:.*?\r?\n)?---[ \t]*(?:\r?\n|\Z)", re.DOTALL)

# A list marker, one blank, then a bracketed state followed by whitespace or EOL.
# The lookahead keeps [[wikilinks]] and [links](url) from reading as tasks.
TASK_PATTERN = re.compile(
    r"^(?P<marker>[ \t]*(?:[-*+]|\d+\.))[ \t](?P<bracket>\[(?P<state>[^\]\n]*)\])(?=[ \t\r]|$)(?P<text>.*)$",
    re.MULTILINE,
)

_md = build_markdown_parser()


class ParseError(Exception):
    """Raised when markdown parsing fails."""

    def __init__(self, path: Path | str | None, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}" if path else message)


def _normalize_value(value: Any) -> Any:
    """Map YAML scalars onto the JSON-compatible value variant."""
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize_value(v) for v in value]
    return value


def split_frontmatter(text: str) -> tuple[str, int]:
    """Return the body after any frontmatter block and its starting line."""
    match = FRONTMATTER_PATTERN.match(text)
    if match is None:
        return text, 0
    return text[match.end():], text.count("\n", 0, match.end())


def _parse_metadata(text: str, path: Path | str | None) -> dict[str, Any]:
    if FRONTMATTER_PATTERN.match(text) is None:
        return {}
    # frontmatter.loads drops non-mapping blocks silently; load the raw block instead
    handler = frontmatter.YAMLHandler()
    try:
        block, _ = handler.split(text)
        metadata = handler.load(block)
    except Exception as e:
        raise ParseError(path, f"Failed to parse frontmatter: {e}") from e
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise ParseError(path, "Frontmatter must be a mapping")
    return _normalize_value(metadata)


def _in_ranges(line: int, ranges: list[tuple[int, int]]) -> bool:
    return any(start <= line < end for start, end in ranges)


def extract_tasks(body: str, line_offset: int = 0, skip: list[tuple[int, int]] | None = None) -> list[TaskRef]:
    """Find list items carrying a bracketed task state.

    Args:
        body: Markdown body (frontmatter removed).
        line_offset: Added to every line number.
        skip: Body-relative line ranges to ignore (code blocks).
    """
    tasks: list[TaskRef] = []
    skip = skip or []
    line = 0
    last_end = 0
    for match in TASK_PATTERN.finditer(body):
        line += body.count("\n", last_end, match.start())
        last_end = match.start()
        if _in_ranges(line, skip):
            continue
        line_start = body.rfind("\n", 0, match.start("bracket")) + 1
        tasks.append(
            TaskRef(
                state=match.group("state"),
                text=match.group("text").strip(),
                line=line + line_offset,
                column=match.start("bracket") - line_start,
            )
        )
    return tasks


def parse_strict(content: bytes | str, path: Path | str | None = None, *, use_ast: bool = True) -> ParsedDoc:
    """Parse Markdown content, raising on failure.

    Args:
        content: Raw bytes (decoded as UTF-8) or text.
        path: Only used in error messages.
        use_ast: Extract wikilinks from the markdown-it token stream. When False
            the regex fallback is used and code blocks are not skipped.

    Raises:
        ParseError: If the content is not UTF-8 or the frontmatter is invalid.
    """
    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(path, f"Content is not valid UTF-8: {e}") from e
    else:
        text = content

    metadata = _parse_metadata(text, path)
    body, line_offset = split_frontmatter(text)

    wikilinks: list[Wikilink]
    if use_ast:
        try:
            tokens = _md.parse(body)
        except Exception as e:
            raise ParseError(path, f"Failed to parse markdown: {e}") from e
        wikilinks = extract_wikilinks_ast(tokens, body.split("\n"), line_offset)
        tasks = extract_tasks(body, line_offset, skip=code_line_ranges(tokens))
    else:
        wikilinks = extract_wikilinks_regex(body, line_offset)
        tasks = extract_tasks(body, line_offset)

    return ParsedDoc(frontmatter=metadata, wikilinks=wikilinks, tasks=tasks)


def parse(content: bytes | str, path: Path | str | None = None, *, use_ast: bool = True) -> ParsedDoc:
    """Parse Markdown content; failures produce an empty document with ``error`` set."""
    try:
        return parse_strict(content, path, use_ast=use_ast)
    except ParseError as e:
        return ParsedDoc(error=str(e))


def checksum(raw: bytes) -> str:
    """Lowercase hex SHA-256 of raw file bytes."""
    return hashlib.sha256(raw).hexdigest()


def parse_document(path: Path, relative_path: str) -> tuple[Document, str | None]:
    """Read and parse a file into a query-service ``Document``.

    Returns:
        The document and the parse error message, if any. A parse failure still
        yields a document (with checksum) carrying no metadata, links or tasks.

    Raises:
        OSError: If the file cannot be read.
    """
    raw = path.read_bytes()
    parsed = parse(raw, path)
    document = Document(
        path=relative_path,
        checksum=checksum(raw),
        metadata=parsed.frontmatter,
        wikilinks=parsed.wikilinks,
        tasks=parsed.tasks,
    )
    return document, parsed.error
