"""Diagnostics for unresolved or ambiguous wikilinks and unknown task states."""

from __future__ import annotations

from collections.abc import Iterable

from ..config import (
    CODE_AMBIGUOUS_WIKILINK,
    CODE_INVALID_TASK_STATE,
    CODE_NON_EXISTENT_TARGET,
    TASK_DIAGNOSTIC_SOURCE,
    WIKILINK_DIAGNOSTIC_SOURCE,
    TasksConfig,
)
from ..indexes import WikilinkIndex
from ..lsp.protocol import (
    Diagnostic,
    DiagnosticRelatedInformation,
    DiagnosticSeverity,
    Location,
    Range,
)
from ..models import FileRecord, ParsedDoc, TaskRef, Wikilink

AMBIGUOUS_MESSAGE_PREFIX = "Ambiguous wikilink"


def wikilink_range(link: Wikilink) -> Range:
    return Range.of(link.line, link.column, link.end_line, link.end_column)


def task_range(task: TaskRef) -> Range:
    return Range.of(task.line, task.column, task.line, task.column + len(task.state) + 2)


def ambiguous_message(target: str, matching_files: Iterable[str]) -> str:
    return f"{AMBIGUOUS_MESSAGE_PREFIX} '{target}' matches multiple files: {', '.join(matching_files)}"


def target_from_message(message: str) -> str:
    """Recover the target quoted in a diagnostic message, or ``""``."""
    parts = message.split("'")
    if len(parts) >= 3:
        return parts[1]
    return ""


def wikilink_diagnostics(
    wikilinks: Iterable[Wikilink],
    index: WikilinkIndex,
    files: Iterable[FileRecord] = (),
) -> list[Diagnostic]:
    uris_by_path = {record.relative_path: record.uri for record in files}
    diagnostics: list[Diagnostic] = []

    for link in wikilinks:
        info = index.get(link.target)
        if info is None or not info.exists:
            diagnostics.append(
                Diagnostic(
                    range=wikilink_range(link),
                    severity=DiagnosticSeverity.WARNING,
                    code=CODE_NON_EXISTENT_TARGET,
                    source=WIKILINK_DIAGNOSTIC_SOURCE,
                    message=f"Wikilink target '{link.target}' does not exist",
                )
            )
        elif info.is_ambiguous:
            related = [
                DiagnosticRelatedInformation(
                    location=Location(uri=uris_by_path[path], range=Range.of(0, 0, 0, 0)),
                    message=f"Matches file: {path}",
                )
                for path in info.matching_files
                if path in uris_by_path
            ]
            diagnostics.append(
                Diagnostic(
                    range=wikilink_range(link),
                    severity=DiagnosticSeverity.WARNING,
                    code=CODE_AMBIGUOUS_WIKILINK,
                    source=WIKILINK_DIAGNOSTIC_SOURCE,
                    message=ambiguous_message(link.target, info.matching_files),
                    related_information=related or None,
                )
            )
    return diagnostics


def task_diagnostics(tasks: Iterable[TaskRef], config: TasksConfig) -> list[Diagnostic]:
    valid = config.valid_values()
    listed = ", ".join(f"'{value}'" for value in valid)
    return [
        Diagnostic(
            range=task_range(task),
            severity=DiagnosticSeverity.WARNING,
            code=CODE_INVALID_TASK_STATE,
            source=TASK_DIAGNOSTIC_SOURCE,
            message=f"Invalid task state '{task.state}'. Valid states: {listed}",
        )
        for task in tasks
        if task.state not in valid
    ]


def document_diagnostics(
    parsed: ParsedDoc,
    index: WikilinkIndex,
    tasks: TasksConfig,
    files: Iterable[FileRecord] = (),
) -> list[Diagnostic]:
    """All diagnostics for one parsed document, wikilinks first."""
    return wikilink_diagnostics(parsed.wikilinks, index, files) + task_diagnostics(parsed.tasks, tasks)
