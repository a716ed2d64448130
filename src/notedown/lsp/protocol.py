"""Editor-protocol message types used by the notedown language server.

Only the subset the server reads or writes is modelled. Field names are
snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProtocolModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ─────────────────────────────────────────────────────────────────────────────
# Basic structures
# ─────────────────────────────────────────────────────────────────────────────


class Position(ProtocolModel):
    line: int
    character: int


class Range(ProtocolModel):
    start: Position
    end: Position

    @classmethod
    def of(cls, start_line: int, start_char: int, end_line: int, end_char: int) -> Range:
        return cls(
            start=Position(line=start_line, character=start_char),
            end=Position(line=end_line, character=end_char),
        )


class Location(ProtocolModel):
    uri: str
    range: Range


class TextDocumentIdentifier(ProtocolModel):
    uri: str


class VersionedTextDocumentIdentifier(ProtocolModel):
    uri: str
    version: int | None = None


class TextDocumentItem(ProtocolModel):
    uri: str
    language_id: str = "markdown"
    version: int = 0
    text: str


class TextEdit(ProtocolModel):
    range: Range
    new_text: str


class WorkspaceEdit(ProtocolModel):
    changes: dict[str, list[TextEdit]] = Field(default_factory=dict)


# ─────────────────────────────────────────────────────────────────────────────
# Document synchronization
# ─────────────────────────────────────────────────────────────────────────────


class TextDocumentSyncKind(IntEnum):
    NONE = 0
    FULL = 1
    INCREMENTAL = 2


class DidOpenTextDocumentParams(ProtocolModel):
    text_document: TextDocumentItem


class TextDocumentContentChangeEvent(ProtocolModel):
    text: str
    range: Range | None = None  # Always None under full sync


class DidChangeTextDocumentParams(ProtocolModel):
    text_document: VersionedTextDocumentIdentifier
    content_changes: list[TextDocumentContentChangeEvent]


class DidCloseTextDocumentParams(ProtocolModel):
    text_document: TextDocumentIdentifier


class TextDocumentPositionParams(ProtocolModel):
    text_document: TextDocumentIdentifier
    position: Position


# ─────────────────────────────────────────────────────────────────────────────
# Completion
# ─────────────────────────────────────────────────────────────────────────────


class CompletionItemKind(IntEnum):
    TEXT = 1
    FILE = 17
    REFERENCE = 18
    FOLDER = 19
    ENUM_MEMBER = 20


class CompletionItem(ProtocolModel):
    label: str
    kind: CompletionItemKind | None = None
    detail: str | None = None
    documentation: str | None = None
    insert_text: str | None = None
    filter_text: str | None = None
    sort_text: str | None = None


class CompletionList(ProtocolModel):
    is_incomplete: bool = False
    items: list[CompletionItem] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# Diagnostics and code actions
# ─────────────────────────────────────────────────────────────────────────────


class DiagnosticSeverity(IntEnum):
    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


class DiagnosticRelatedInformation(ProtocolModel):
    location: Location
    message: str


class Diagnostic(ProtocolModel):
    range: Range
    severity: DiagnosticSeverity = DiagnosticSeverity.WARNING
    code: str | None = None
    source: str | None = None
    message: str
    related_information: list[DiagnosticRelatedInformation] | None = None


class PublishDiagnosticsParams(ProtocolModel):
    uri: str
    version: int | None = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)


class CodeActionContext(ProtocolModel):
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    only: list[str] | None = None


class CodeActionParams(ProtocolModel):
    text_document: TextDocumentIdentifier
    range: Range
    context: CodeActionContext = Field(default_factory=CodeActionContext)


class CodeActionKind:
    QUICK_FIX = "quickfix"


class CodeAction(ProtocolModel):
    title: str
    kind: str | None = None
    diagnostics: list[Diagnostic] | None = None
    is_preferred: bool | None = None
    edit: WorkspaceEdit | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Workspace
# ─────────────────────────────────────────────────────────────────────────────


class FileChangeKind(IntEnum):
    CREATED = 1
    CHANGED = 2
    DELETED = 3


class FileEvent(ProtocolModel):
    uri: str
    type: FileChangeKind


class DidChangeWatchedFilesParams(ProtocolModel):
    changes: list[FileEvent] = Field(default_factory=list)


class WorkspaceFolder(ProtocolModel):
    uri: str
    name: str = ""


class WorkspaceFoldersChangeEvent(ProtocolModel):
    added: list[WorkspaceFolder] = Field(default_factory=list)
    removed: list[WorkspaceFolder] = Field(default_factory=list)


class DidChangeWorkspaceFoldersParams(ProtocolModel):
    event: WorkspaceFoldersChangeEvent


class ExecuteCommandParams(ProtocolModel):
    command: str
    arguments: list[Any] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────────────────────────────


class InitializeParams(ProtocolModel):
    process_id: int | None = None
    root_uri: str | None = None
    root_path: str | None = None
    workspace_folders: list[WorkspaceFolder] | None = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    initialization_options: Any = None


class ServerInfo(ProtocolModel):
    name: str
    version: str | None = None


class InitializeResult(ProtocolModel):
    capabilities: dict[str, Any]
    server_info: ServerInfo | None = None
