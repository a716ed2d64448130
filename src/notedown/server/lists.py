"""List item structure, boundaries and sibling moves for editor commands.

A list item owns its own line, any following lines indented deeper than its
marker (continuations), and every nested item below it. Moving an item swaps
that whole block with the neighbouring sibling block.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..lsp.protocol import Position, Range, TextEdit, WorkspaceEdit

log = logging.getLogger(__name__)

TASK_ITEM_PATTERN = re.compile(r"^(\s*)(- \[[xX ]?\])(.*)$")
BULLET_ITEM_PATTERN = re.compile(r"^(\s*)([-*])(\s+.*)$")
NUMBERED_ITEM_PATTERN = re.compile(r"^(\s*)(\d+\.)(\s+.*)$")

_ITEM_PATTERNS = (TASK_ITEM_PATTERN, BULLET_ITEM_PATTERN, NUMBERED_ITEM_PATTERN)
_NUMBER_MARKER = re.compile(r"^(\s*)(\d+)\.")


class ListMoveError(Exception):
    """The requested move is impossible (no item there, or already at the edge)."""

    pass


@dataclass(eq=False)
class ListItem:
    start_line: int
    end_line: int  # Last line of the item itself, continuations included
    indent: int
    marker: str
    content: str
    children: list[ListItem] = field(default_factory=list)

    @property
    def last_line(self) -> int:
        """Last line of the item together with all of its descendants."""
        last = self.end_line
        for child in self.children:
            last = max(last, child.last_line)
        return last

    @property
    def number(self) -> str | None:
        """The digits of an ordered-list marker, None for other markers."""
        if self.marker.endswith(".") and self.marker[:-1].isdigit():
            return self.marker[:-1]
        return None

    def full_range(self) -> Range:
        return Range.of(self.start_line, 0, self.last_line + 1, 0)


@dataclass
class ListHierarchy:
    items: list[ListItem] = field(default_factory=list)
    by_line: dict[int, ListItem] = field(default_factory=dict)

    def walk(self):
        stack = list(reversed(self.items))
        while stack:
            item = stack.pop()
            yield item
            stack.extend(reversed(item.children))

    def item_at(self, line: int) -> ListItem | None:
        item = self.by_line.get(line)
        if item is not None:
            return item
        for candidate in self.walk():
            if candidate.start_line <= line <= candidate.end_line:
                return candidate
        return None

    def siblings_of(self, target: ListItem) -> tuple[list[ListItem], int] | None:
        if target in self.items:
            return self.items, self.items.index(target)
        for item in self.walk():
            for i, child in enumerate(item.children):
                if child is target:
                    return item.children, i
        return None


def parse_list_item(line: str, line_number: int) -> ListItem | None:
    for pattern in _ITEM_PATTERNS:
        match = pattern.match(line)
        if match:
            return ListItem(
                start_line=line_number,
                end_line=line_number,
                indent=len(match.group(1)),
                marker=match.group(2),
                content=match.group(3).strip(),
            )
    return None


def _indent_width(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def parse_list_hierarchy(text: str) -> ListHierarchy:
    hierarchy = ListHierarchy()
    stack: list[ListItem] = []

    for number, line in enumerate(text.split("\n")):
        item = parse_list_item(line, number)
        if item is None:
            if stack:
                last = stack[-1]
                if _indent_width(line) > last.indent and not line.strip().startswith("#"):
                    last.end_line = number
                    continue
            stack.clear()
            continue

        parent: ListItem | None = None
        while stack:
            if item.indent > stack[-1].indent:
                parent = stack[-1]
                break
            stack.pop()

        if parent is not None:
            parent.children.append(item)
        else:
            hierarchy.items.append(item)
        hierarchy.by_line[number] = item
        stack.append(item)

    return hierarchy


def item_boundaries(text: str, position: Position) -> dict:
    """Range of the item under the cursor plus its children, as a command result."""
    item = parse_list_hierarchy(text).item_at(position.line)
    if item is None:
        return {"found": False}
    span = item.full_range()
    return {
        "start": span.start.to_wire(),
        "end": span.end.to_wire(),
        "found": True,
    }


def _renumbered(lines: list[str], number: str) -> list[str]:
    if not lines:
        return lines
    first = _NUMBER_MARKER.sub(lambda m: f"{m.group(1)}{number}.", lines[0], count=1)
    return [first, *lines[1:]]


def move_item(text: str, uri: str, position: Position, up: bool) -> WorkspaceEdit:
    """Swap the item under the cursor with its previous or next sibling.

    Raises:
        ListMoveError: If there is no list item at ``position`` or it is
            already the first (up) or last (down) of its siblings.
    """
    lines = text.split("\n")
    hierarchy = parse_list_hierarchy(text)
    item = hierarchy.item_at(position.line)
    if item is None:
        raise ListMoveError(f"no list item found at position {position.line}:{position.character}")

    found = hierarchy.siblings_of(item)
    if found is None:
        raise ListMoveError("could not find item in hierarchy")
    siblings, index = found
    other_index = index - 1 if up else index + 1
    if other_index < 0 or other_index >= len(siblings):
        raise ListMoveError("cannot move list item: already at boundary")

    first, second = sorted((item, siblings[other_index]), key=lambda i: i.start_line)
    first_lines = lines[first.start_line : first.last_line + 1]
    second_lines = lines[second.start_line : second.last_line + 1]

    if first.number is not None and second.number is not None:
        first_lines = _renumbered(first_lines, second.number)
        second_lines = _renumbered(second_lines, first.number)

    edits = [
        TextEdit(range=first.full_range(), new_text="\n".join(second_lines) + "\n"),
        TextEdit(range=second.full_range(), new_text="\n".join(first_lines) + "\n"),
    ]
    log.debug(
        "Swapping lines %d-%d with %d-%d",
        first.start_line,
        first.last_line,
        second.start_line,
        second.last_line,
    )
    return WorkspaceEdit(changes={uri: edits})
