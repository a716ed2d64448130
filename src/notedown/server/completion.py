"""Completion for wikilink targets and task states."""

from __future__ import annotations

import logging
import posixpath
import re
from collections import Counter
from dataclasses import dataclass

from ..config import TasksConfig
from ..indexes import WikilinkIndex, strip_ext
from ..lsp.protocol import CompletionItem, CompletionItemKind, CompletionList, Position
from ..models import FileRecord
from ..uris import normalize_uri

log = logging.getLogger(__name__)

# Text before the cursor when it sits inside an unfinished task bracket
TASK_CONTEXT_PATTERN = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+\[[^\]]*$")


@dataclass
class WikilinkContext:
    prefix: str  # Target text typed so far
    is_complete: bool  # A closing ]] already follows the cursor


def _line_at(text: str, position: Position) -> str | None:
    lines = text.split("\n")
    if position.line < 0 or position.line >= len(lines):
        return None
    return lines[position.line]


def wikilink_context(text: str, position: Position) -> WikilinkContext | None:
    """Detect whether the cursor sits inside ``[[ ... ]]`` on one line."""
    line = _line_at(text, position)
    if line is None:
        return None
    cursor = min(max(position.character, 0), len(line))
    before = line[:cursor]

    start = before.rfind("[[")
    if start == -1:
        return None
    typed = before[start + 2 :]
    if "]]" in typed:
        return None

    prefix = typed.split("|", 1)[0]
    return WikilinkContext(prefix=prefix, is_complete="]]" in line[cursor:])


def task_context(text: str, position: Position) -> tuple[str, bool] | None:
    """Return the partial state and whether ``]`` follows, or None."""
    line = _line_at(text, position)
    if line is None:
        return None
    cursor = min(max(position.character, 0), len(line))
    before = line[:cursor]
    if not TASK_CONTEXT_PATTERN.match(before):
        return None
    partial = before[before.rfind("[") + 1 :]
    return partial, line[cursor:].startswith("]")


def _matches(label: str, prefix: str) -> bool:
    return label.lower().startswith(prefix.lower())


def wikilink_completions(
    context: WikilinkContext,
    files: list[FileRecord],
    index: WikilinkIndex,
    current_uri: str | None = None,
) -> list[CompletionItem]:
    """Rank file and referenced-target candidates for the typed prefix.

    Basenames sort first (``0_``), directory-qualified paths next (``1_``)
    and targets that do not exist yet last (``2_``).
    """
    current = normalize_uri(current_uri) if current_uri else None
    suffix = "" if context.is_complete else "]]"
    candidates = [f for f in files if f.uri != current]

    basenames = Counter(strip_ext(posixpath.basename(f.relative_path)) for f in files)
    items: dict[str, CompletionItem] = {}

    def add(label: str, insert: str, sort_key: str, kind: CompletionItemKind, detail: str) -> None:
        if label in items or not _matches(insert, context.prefix):
            return
        items[label] = CompletionItem(
            label=label,
            kind=kind,
            detail=detail,
            insert_text=insert + suffix,
            filter_text=insert,
            sort_text=sort_key,
        )

    for record in candidates:
        basename = strip_ext(posixpath.basename(record.relative_path))
        if basenames[basename] > 1:
            add(
                f"{basename} (ambiguous)",
                basename,
                f"0_{basename}",
                CompletionItemKind.FILE,
                f"Matches {basenames[basename]} files",
            )
        else:
            add(basename, basename, f"0_{basename}", CompletionItemKind.FILE, f"Link to {record.relative_path}")

        if "/" in record.relative_path:
            path = strip_ext(record.relative_path)
            add(path, path, f"1_{path}", CompletionItemKind.FILE, f"Link to {record.relative_path}")

    for info in index.non_existent_targets():
        if not info.referenced_by:
            continue
        add(
            info.target,
            info.target,
            f"2_{info.target}",
            CompletionItemKind.REFERENCE,
            "Create new file",
        )

    return sorted(items.values(), key=lambda item: item.sort_text or item.label)


def task_completions(partial: str, closed: bool, tasks: TasksConfig) -> list[CompletionItem]:
    """One item per configured state value and alias, in declaration order."""
    suffix = "" if closed else "]"
    items: list[CompletionItem] = []
    rank = 0
    for state in tasks.states:
        for value in [state.value, *state.aliases]:
            rank += 1
            if partial.strip() and not value.startswith(partial):
                continue
            items.append(
                CompletionItem(
                    label=value,
                    kind=CompletionItemKind.ENUM_MEMBER,
                    detail=state.name,
                    documentation=state.description,
                    insert_text=value + suffix,
                    filter_text=value,
                    sort_text=f"{rank:03d}_{value}",
                )
            )
    return items


def complete(
    text: str,
    position: Position,
    files: list[FileRecord],
    index: WikilinkIndex,
    tasks: TasksConfig,
    current_uri: str | None = None,
) -> CompletionList:
    context = wikilink_context(text, position)
    if context is not None:
        items = wikilink_completions(context, files, index, current_uri)
        log.debug("Wikilink completion for %r: %d item(s)", context.prefix, len(items))
        return CompletionList(items=items)

    task = task_context(text, position)
    if task is not None:
        return CompletionList(items=task_completions(task[0], task[1], tasks))

    return CompletionList(items=[])
