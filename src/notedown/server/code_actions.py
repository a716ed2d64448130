"""Quickfixes that disambiguate a wikilink by qualifying its target."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..config import CODE_AMBIGUOUS_WIKILINK
from ..indexes import WikilinkIndex, qualified_path, resolve
from ..lsp.protocol import CodeAction, CodeActionKind, Diagnostic, Range, TextEdit, WorkspaceEdit
from ..models import FileRecord
from .diagnostics import AMBIGUOUS_MESSAGE_PREFIX, target_from_message

log = logging.getLogger(__name__)


def ranges_overlap(a: Range, b: Range) -> bool:
    if a.end.line < b.start.line or b.end.line < a.start.line:
        return False
    single_line = a.start.line == a.end.line == b.start.line == b.end.line
    if single_line:
        return not (a.end.character < b.start.character or b.end.character < a.start.character)
    return True


def _is_ambiguity(diagnostic: Diagnostic) -> bool:
    return diagnostic.code == CODE_AMBIGUOUS_WIKILINK or diagnostic.message.startswith(
        AMBIGUOUS_MESSAGE_PREFIX
    )


def qualified_wikilink(relative_path: str, target: str) -> str:
    return f"[[{qualified_path(relative_path)}|{target}]]"


def ambiguity_actions(
    uri: str,
    requested: Range,
    diagnostics: Iterable[Diagnostic],
    index: WikilinkIndex,
    files: list[FileRecord],
) -> list[CodeAction]:
    """One ``Link to <path>`` quickfix per file an ambiguous target matches."""
    actions: list[CodeAction] = []
    for diagnostic in diagnostics:
        if not _is_ambiguity(diagnostic) or not ranges_overlap(diagnostic.range, requested):
            continue
        target = target_from_message(diagnostic.message)
        if not target:
            continue

        info = index.get(target)
        if info is not None and info.matching_files:
            matching = info.matching_files
        else:
            matching = resolve(target, files) or []
        if len(matching) < 2:
            log.debug("Target %r is no longer ambiguous", target)
            continue

        for path in matching:
            edit = TextEdit(range=diagnostic.range, new_text=qualified_wikilink(path, target))
            actions.append(
                CodeAction(
                    title=f"Link to {path}",
                    kind=CodeActionKind.QUICK_FIX,
                    diagnostics=[diagnostic],
                    edit=WorkspaceEdit(changes={uri: [edit]}),
                )
            )
    return actions
