"""Wikilink extraction.

Two extractors produce identical ``Wikilink`` records for well-formed input:

- :func:`extract_wikilinks_ast` walks the markdown-it token stream, so links
  inside code spans and fenced blocks are ignored.
- :func:`extract_wikilinks_regex` is the plain-text fallback built on
  ``WIKILINK_PATTERN``.
"""

from __future__ import annotations

import bisect
import re

from markdown_it import MarkdownIt
from markdown_it.rules_inline import StateInline
from markdown_it.token import Token

from ..models import Wikilink

# [[target]] or [[target|display]]; first pipe splits target from display
WIKILINK_PATTERN = re.compile(r"\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")

# Same grammar for the inline rule, confined to one line
_INLINE_WIKILINK = re.compile(r"\[\[([^\]|\n]+)(?:\|([^\]\n]+))?\]\]")


class LineIndex:
    """Maps string offsets to 0-based (line, column) pairs.

    A ``\\n`` terminates a line; the character after it starts the next one.
    """

    def __init__(self, text: str) -> None:
        self._starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._starts.append(i + 1)

    def position(self, offset: int) -> tuple[int, int]:
        line = bisect.bisect_right(self._starts, offset) - 1
        return line, offset - self._starts[line]


def _split_target(raw_target: str, raw_display: str | None) -> tuple[str, str | None]:
    return raw_target.strip(), raw_display


def extract_wikilinks_regex(text: str, line_offset: int = 0) -> list[Wikilink]:
    """Extract wikilinks from plain text with ``WIKILINK_PATTERN``.

    Args:
        text: Markdown body.
        line_offset: Added to every line number (for bodies that follow frontmatter).
    """
    index = LineIndex(text)
    links: list[Wikilink] = []
    for match in WIKILINK_PATTERN.finditer(text):
        target, display = _split_target(match.group(1), match.group(2))
        if not target:
            continue
        line, column = index.position(match.start())
        end_line, end_column = index.position(match.end())
        links.append(
            Wikilink(
                target=target,
                display=display,
                line=line + line_offset,
                column=column,
                end_line=end_line + line_offset,
                end_column=end_column,
            )
        )
    return links


# ─────────────────────────────────────────────────────────────────────────────
# markdown-it integration
# ─────────────────────────────────────────────────────────────────────────────


def _wikilink_rule(state: StateInline, silent: bool) -> bool:
    """Inline rule turning ``[[...]]`` into a ``wikilink`` token."""
    if not state.src.startswith("[[", state.pos):
        return False

    match = _INLINE_WIKILINK.match(state.src, state.pos, state.posMax)
    if match is None:
        return False

    if not silent:
        token = state.push("wikilink", "", 0)
        token.content = match.group(0)
        token.meta = {
            "target": match.group(1),
            "display": match.group(2),
            "offset": state.pos,
        }

    state.pos = match.end()
    return True


def build_markdown_parser() -> MarkdownIt:
    """Create a CommonMark parser with tables and the wikilink rule."""
    md = MarkdownIt("commonmark")
    md.enable("table")
    md.inline.ruler.before("link", "wikilink", _wikilink_rule)
    return md


def _source_position(
    source_lines: list[str], block_line: int, content: str, offset: int, raw: str
) -> tuple[int, int]:
    """Locate a token found at ``offset`` of inline ``content`` in the source.

    Inline content drops block prefixes (indentation, list markers, ``>``,
    heading hashes), so the column is recovered by matching the n-th occurrence
    of the raw markup on the corresponding source line.
    """
    line = block_line + content.count("\n", 0, offset)
    line_start = content.rfind("\n", 0, offset) + 1
    occurrence = content[line_start:offset].count(raw)
    source_line = source_lines[line] if line < len(source_lines) else ""

    column = -1
    search_from = 0
    for _ in range(occurrence + 1):
        column = source_line.find(raw, search_from)
        if column == -1:
            break
        search_from = column + len(raw)

    if column == -1:
        column = offset - line_start
    return line, column


def _walk_inline(tokens: list[Token]):
    """Yield (inline token, block line) for every inline token in the stream."""
    last_line = 0
    for token in tokens:
        if token.map is not None:
            last_line = token.map[0]
        if token.type == "inline":
            yield token, token.map[0] if token.map is not None else last_line


def extract_wikilinks_ast(
    tokens: list[Token], source_lines: list[str], line_offset: int = 0
) -> list[Wikilink]:
    """Collect wikilinks from a token stream produced by :func:`build_markdown_parser`.

    Args:
        tokens: Output of ``md.parse(body)``.
        source_lines: ``body.split("\\n")``, used to recover source columns.
        line_offset: Added to every line number.
    """
    links: list[Wikilink] = []
    for inline, block_line in _walk_inline(tokens):
        for child in inline.children or []:
            if child.type != "wikilink":
                continue
            target, display = _split_target(child.meta["target"], child.meta["display"])
            if not target:
                continue

            line, column = _source_position(
                source_lines, block_line, inline.content, child.meta["offset"], child.content
            )
            links.append(
                Wikilink(
                    target=target,
                    display=display,
                    line=line + line_offset,
                    column=column,
                    end_line=line + line_offset,
                    end_column=column + len(child.content),
                )
            )

    links.sort(key=lambda link: (link.line, link.column))
    return links


def code_line_ranges(tokens: list[Token]) -> list[tuple[int, int]]:
    """Half-open line ranges covered by fenced or indented code blocks."""
    return [
        (token.map[0], token.map[1])
        for token in tokens
        if token.type in ("fence", "code_block") and token.map is not None
    ]
