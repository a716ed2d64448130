"""The notedown language server.

``NotedownServer`` owns the editor buffers, the workspace FileSet, the
wikilink index and the task configuration, and exposes one handler per
protocol method. ``bind`` attaches it to a :class:`~notedown.lsp.Mux`.

The index holds the references of open documents. Each open or change
re-parses the buffer, refreshes its references and republishes its
diagnostics; FileSet changes (scan completion, created or deleted files)
re-resolve every target and republish diagnostics for every open document.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from .. import __version__
from ..config import (
    COMMAND_GET_LIST_ITEM_BOUNDARIES,
    COMMAND_MOVE_LIST_ITEM_DOWN,
    COMMAND_MOVE_LIST_ITEM_UP,
    INDEX_WAIT_SECONDS,
    SUPPORTED_COMMANDS,
    ConfigurationError,
    NotedownConfig,
    default_config,
    load_config,
)
from ..indexes import InvalidTarget, WikilinkIndex, normalize_target
from ..lsp import jsonrpc
from ..lsp.jsonrpc import JsonRpcError
from ..lsp.mux import METHOD_INITIALIZE, Mux
from ..lsp.protocol import (
    CodeAction,
    CodeActionParams,
    CompletionList,
    Diagnostic,
    DidChangeTextDocumentParams,
    DidChangeWatchedFilesParams,
    DidChangeWorkspaceFoldersParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    ExecuteCommandParams,
    FileChangeKind,
    InitializeParams,
    InitializeResult,
    Location,
    Position,
    PublishDiagnosticsParams,
    ServerInfo,
    TextDocumentPositionParams,
    TextDocumentSyncKind,
    WorkspaceEdit,
)
from ..parser import parse
from ..uris import normalize_uri, path_to_uri
from ..workspace import FileChangeType, FileWatcher, ScanTask, Workspace
from .code_actions import ambiguity_actions
from .completion import complete
from .definition import (
    create_note,
    existing_location,
    location_for_path,
    new_note_path,
    note_title,
    target_at,
)
from .diagnostics import document_diagnostics
from .documents import DocumentStore, TrackedDocument
from .lists import ListMoveError, item_boundaries, move_item

log = logging.getLogger(__name__)

SERVER_NAME = "notedown"

Publisher = Callable[[PublishDiagnosticsParams], None]


class NotedownServer:
    """Language server state and protocol handlers."""

    def __init__(
        self,
        workspace: Workspace | None = None,
        index: WikilinkIndex | None = None,
        config: NotedownConfig | None = None,
        publisher: Publisher | None = None,
        watch: bool = False,
    ) -> None:
        self.workspace = workspace or Workspace()
        self.index = index or WikilinkIndex()
        self.documents = DocumentStore()
        self.config = config or default_config()
        self.publisher = publisher
        self.watch = watch
        self._mux: Mux | None = None
        self._scan: ScanTask | None = None
        self._scan_lock = threading.Lock()
        self._watcher: FileWatcher | None = None
        self.index_wait_timeout = INDEX_WAIT_SECONDS

    # ─────────────────────────────────────────────────────────────────────────
    # Wiring
    # ─────────────────────────────────────────────────────────────────────────

    def bind(self, mux: Mux) -> None:
        """Attach to ``mux``. Feature handlers are registered once initialize succeeds."""
        self._mux = mux
        if self.publisher is None:
            self.publisher = lambda params: mux.publish_notification(
                "textDocument/publishDiagnostics", params
            )

        def initialize(params: Any) -> InitializeResult:
            result = self.initialize(params)
            self._register_handlers(mux)
            return result

        mux.register_method(METHOD_INITIALIZE, initialize)

    def _register_handlers(self, mux: Mux) -> None:
        mux.register_notification("textDocument/didOpen", self.did_open)
        mux.register_notification("textDocument/didChange", self.did_change)
        mux.register_notification("textDocument/didClose", self.did_close)
        mux.register_notification("workspace/didChangeWatchedFiles", self.did_change_watched_files)
        mux.register_notification(
            "workspace/didChangeWorkspaceFolders", self.did_change_workspace_folders
        )
        mux.register_method("textDocument/completion", self.completion)
        mux.register_method("textDocument/definition", self.definition)
        mux.register_method("textDocument/codeAction", self.code_action)
        mux.register_method("workspace/executeCommand", self.execute_command)

    def close(self) -> None:
        """Stop background work (scan, watcher)."""
        with self._scan_lock:
            if self._scan is not None:
                self._scan.cancel()
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def capabilities(self) -> dict[str, Any]:
        return {
            "textDocumentSync": {"openClose": True, "change": int(TextDocumentSyncKind.FULL)},
            "completionProvider": {"triggerCharacters": ["["]},
            "codeActionProvider": True,
            "definitionProvider": True,
            "executeCommandProvider": {"commands": list(SUPPORTED_COMMANDS)},
            "workspace": {
                "workspaceFolders": {"supported": True, "changeNotifications": True},
            },
        }

    def initialize(self, params: Any) -> InitializeResult:
        raw = params or {}
        InitializeParams.model_validate(raw)
        roots = self.workspace.initialize_from_params(raw)
        self.index.clear()

        if roots:
            self.config = self._load_config(roots[0].path)
        self.start_scan()
        if self.watch:
            self._restart_watcher()

        log.info("Initialized with roots: %s", ", ".join(str(r.path) for r in roots) or "(none)")
        return InitializeResult(
            capabilities=self.capabilities(),
            server_info=ServerInfo(name=SERVER_NAME, version=__version__),
        )

    @staticmethod
    def _load_config(root: Path) -> NotedownConfig:
        try:
            return load_config(root)
        except ConfigurationError as e:
            log.warning("Using default task states: %s", e)
            return default_config()

    def start_scan(self) -> ScanTask:
        """Rescan every root in the background, cancelling any scan in flight."""
        with self._scan_lock:
            if self._scan is not None and self._scan.running:
                self._scan.cancel()
            self._scan = self.workspace.start_scan(self._on_scan_complete)
            return self._scan

    def _on_scan_complete(self, completed: bool) -> None:
        if not completed:
            return
        self.index.resolve_all(self.workspace.list())
        self.publish_all()

    def wait_until_indexed(self, timeout: float | None = None) -> bool:
        """Block until the current scan finishes. Returns False on timeout."""
        with self._scan_lock:
            scan = self._scan
        if scan is None:
            return True
        return scan.wait(timeout)

    # ─────────────────────────────────────────────────────────────────────────
    # Diagnostics
    # ─────────────────────────────────────────────────────────────────────────

    def diagnostics_for(self, document: TrackedDocument) -> list[Diagnostic]:
        parsed = parse(document.content, document.uri)
        if parsed.error:
            log.debug("Parse failed for %s: %s", document.uri, parsed.error)
        return document_diagnostics(parsed, self.index, self.config.tasks, self.workspace.list())

    def _publish(self, uri: str, diagnostics: list[Diagnostic], version: int | None = None) -> None:
        if self.publisher is None:
            return
        self.publisher(PublishDiagnosticsParams(uri=uri, version=version, diagnostics=diagnostics))

    def publish_document(self, document: TrackedDocument) -> None:
        self._publish(
            document.client_uri or document.uri,
            self.diagnostics_for(document),
            document.version,
        )

    def publish_all(self) -> None:
        for uri in self.documents.uris():
            document = self.documents.get(uri)
            if document is not None:
                self.publish_document(document)

    def _refresh(self, document: TrackedDocument) -> None:
        parsed = parse(document.content, document.uri)
        self.index.refresh_document(document.uri, parsed.wikilinks, self.workspace.list())
        self.publish_document(document)

    # ─────────────────────────────────────────────────────────────────────────
    # Document synchronization
    # ─────────────────────────────────────────────────────────────────────────

    def did_open(self, params: Any) -> None:
        p = DidOpenTextDocumentParams.model_validate(params)
        item = p.text_document
        document = self.documents.open(item.uri, item.text, item.version)
        self._refresh(document)

    def did_change(self, params: Any) -> None:
        p = DidChangeTextDocumentParams.model_validate(params)
        if not p.content_changes:
            return
        # Full sync: the last change carries the whole buffer
        document = self.documents.update(
            p.text_document.uri, p.content_changes[-1].text, p.text_document.version
        )
        if document is not None:
            self._refresh(document)

    def did_close(self, params: Any) -> None:
        p = DidCloseTextDocumentParams.model_validate(params)
        document = self.documents.close(p.text_document.uri)
        self.index.remove_document(normalize_uri(p.text_document.uri))
        self._publish(document.client_uri if document else p.text_document.uri, [])

    # ─────────────────────────────────────────────────────────────────────────
    # Language features
    # ─────────────────────────────────────────────────────────────────────────

    def completion(self, params: Any) -> CompletionList:
        p = TextDocumentPositionParams.model_validate(params)
        document = self.documents.get(p.text_document.uri)
        if document is None:
            return CompletionList(items=[])
        return complete(
            document.content,
            p.position,
            self.workspace.list(),
            self.index,
            self.config.tasks,
            current_uri=document.uri,
        )

    def definition(self, params: Any) -> Location | None:
        p = TextDocumentPositionParams.model_validate(params)
        document = self.documents.get(p.text_document.uri)
        if document is None:
            return None

        target = target_at(document.content, p.position)
        if target is None:
            return None
        try:
            normalize_target(target)
        except InvalidTarget as e:
            log.debug("No definition: %s", e)
            return None

        if not self.wait_until_indexed(self.index_wait_timeout):
            log.info("Workspace not yet indexed; no definition for %r", target)
            return None

        files = self.workspace.list()
        location = existing_location(target, files)
        if location is not None:
            return location
        return self._create_target(target)

    def _create_target(self, target: str) -> Location | None:
        roots = self.workspace.roots()
        if not roots:
            raise JsonRpcError(jsonrpc.REQUEST_FAILED, f"no workspace root to create {target!r} in")
        try:
            path = new_note_path(roots[0].path, target)
        except InvalidTarget as e:
            log.debug("No definition: %s", e)
            return None

        try:
            create_note(path, note_title(target))
        except OSError as e:
            raise JsonRpcError(jsonrpc.REQUEST_FAILED, f"failed to create {path}: {e}") from e

        self.workspace.add_file(path_to_uri(path))
        self.index.resolve_all(self.workspace.list())
        self.publish_all()
        return location_for_path(path)

    def code_action(self, params: Any) -> list[CodeAction]:
        p = CodeActionParams.model_validate(params)
        if p.text_document.uri not in self.documents:
            return []
        return ambiguity_actions(
            p.text_document.uri,
            p.range,
            p.context.diagnostics,
            self.index,
            self.workspace.list(),
        )

    def execute_command(self, params: Any) -> WorkspaceEdit | dict[str, Any]:
        p = ExecuteCommandParams.model_validate(params)
        if p.command not in SUPPORTED_COMMANDS:
            raise JsonRpcError(jsonrpc.INVALID_PARAMS, f"unknown command: {p.command}")
        if len(p.arguments) < 2 or not isinstance(p.arguments[0], str):
            raise JsonRpcError(
                jsonrpc.INVALID_PARAMS, f"{p.command} requires document URI and position arguments"
            )
        uri = p.arguments[0]
        position = Position.model_validate(p.arguments[1])
        document = self.documents.get(uri)

        if p.command == COMMAND_GET_LIST_ITEM_BOUNDARIES:
            if document is None:
                return {"found": False}
            return item_boundaries(document.content, position)

        if document is None:
            raise JsonRpcError(jsonrpc.REQUEST_FAILED, f"document not found: {uri}")
        try:
            return move_item(
                document.content, uri, position, up=p.command == COMMAND_MOVE_LIST_ITEM_UP
            )
        except ListMoveError as e:
            raise JsonRpcError(jsonrpc.REQUEST_FAILED, str(e)) from e

    # ─────────────────────────────────────────────────────────────────────────
    # Workspace events
    # ─────────────────────────────────────────────────────────────────────────

    def apply_file_changes(self, changes: Iterable[tuple[str, FileChangeKind]]) -> None:
        """Apply created, changed and deleted file events to the FileSet and index."""
        fileset_changed = False
        for uri, kind in changes:
            uri = normalize_uri(uri)
            if kind == FileChangeKind.CREATED:
                fileset_changed |= self.workspace.add_file(uri) is not None
            elif kind == FileChangeKind.DELETED:
                fileset_changed |= self.workspace.remove_file(uri)
                document = self.documents.close(uri)
                if document is not None:
                    self.index.remove_document(uri)
                    self._publish(document.client_uri or uri, [])
            elif kind == FileChangeKind.CHANGED and uri in self.documents:
                # The buffer stays authoritative; only the FileRecord is refreshed
                self.workspace.add_file(uri)
                fileset_changed = True

        if fileset_changed:
            self.index.resolve_all(self.workspace.list())
            self.publish_all()

    def did_change_watched_files(self, params: Any) -> None:
        p = DidChangeWatchedFilesParams.model_validate(params or {})
        self.apply_file_changes((change.uri, change.type) for change in p.changes)

    def did_change_workspace_folders(self, params: Any) -> None:
        p = DidChangeWorkspaceFoldersParams.model_validate(params)
        for folder in p.event.removed:
            self.workspace.remove_root(folder.uri)
        for folder in p.event.added:
            self.workspace.add_root(folder.uri, folder.name or None)
        log.info("Workspace folders now: %s", ", ".join(r.name for r in self.workspace.roots()))
        self.start_scan()
        if self._watcher is not None:
            self._restart_watcher()

    def _on_disk_changes(self, changes: dict[Path, FileChangeType]) -> None:
        self.apply_file_changes(
            (path_to_uri(path), FileChangeKind(int(change))) for path, change in changes.items()
        )

    def _restart_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
        self._watcher = FileWatcher([root.path for root in self.workspace.roots()], self._on_disk_changes)
        self._watcher.start()
