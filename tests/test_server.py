"""Tests for NotedownServer: document lifecycle, features and workspace events."""

import io
import threading
from pathlib import Path

import pytest

from notedown.config import (
    CODE_AMBIGUOUS_WIKILINK,
    CODE_INVALID_TASK_STATE,
    CODE_NON_EXISTENT_TARGET,
    COMMAND_GET_LIST_ITEM_BOUNDARIES,
    COMMAND_MOVE_LIST_ITEM_DOWN,
    COMMAND_MOVE_LIST_ITEM_UP,
)
from notedown.lsp import JsonRpcError, Mux, jsonrpc
from notedown.lsp.jsonrpc import encode_message, read_message
from notedown.lsp.protocol import FileChangeKind, PublishDiagnosticsParams
from notedown.server import NotedownServer
from notedown.uris import path_to_uri
from notedown.workspace import Workspace


class Published:
    """Collects publishDiagnostics params, latest per URI."""

    def __init__(self):
        self.calls: list[PublishDiagnosticsParams] = []

    def __call__(self, params: PublishDiagnosticsParams) -> None:
        self.calls.append(params)

    def latest(self, uri: str) -> PublishDiagnosticsParams:
        return [c for c in self.calls if c.uri == uri][-1]

    def codes(self, uri: str) -> list[str]:
        return [d.code for d in self.latest(uri).diagnostics]


@pytest.fixture
def published() -> Published:
    return Published()


@pytest.fixture
def server(sample_notes: Path, published: Published):
    """Initialized server over sample_notes with the first scan finished."""
    srv = NotedownServer(publisher=published)
    srv.initialize({"rootUri": path_to_uri(sample_notes), "capabilities": {}})
    assert srv.wait_until_indexed(timeout=10)
    yield srv
    srv.close()


def open_doc(server: NotedownServer, path: Path, text: str | None = None, version: int = 1) -> str:
    uri = path_to_uri(path)
    server.did_open(
        {
            "textDocument": {
                "uri": uri,
                "languageId": "markdown",
                "version": version,
                "text": path.read_text() if text is None else text,
            }
        }
    )
    return uri


def position_params(uri: str, line: int, character: int) -> dict:
    return {"textDocument": {"uri": uri}, "position": {"line": line, "character": character}}


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────────────────────────────


class TestInitialize:
    def test_capabilities(self, sample_notes):
        srv = NotedownServer()
        result = srv.initialize({"rootUri": path_to_uri(sample_notes)}).to_wire()
        srv.wait_until_indexed(timeout=10)
        srv.close()

        capabilities = result["capabilities"]
        assert capabilities["textDocumentSync"] == {"openClose": True, "change": 1}
        assert capabilities["completionProvider"] == {"triggerCharacters": ["["]}
        assert capabilities["codeActionProvider"] is True
        assert capabilities["definitionProvider"] is True
        assert capabilities["executeCommandProvider"]["commands"] == [
            "notedown.moveListItemUp",
            "notedown.moveListItemDown",
            "notedown.getListItemBoundaries",
        ]
        assert capabilities["workspace"]["workspaceFolders"] == {
            "supported": True,
            "changeNotifications": True,
        }
        assert result["serverInfo"]["name"] == "notedown"

    def test_scan_populates_fileset(self, server):
        assert [r.relative_path for r in server.workspace.list()] == [
            "api/config.md",
            "daily.md",
            "docs/config.md",
            "index.md",
            "notes/idea.md",
        ]

    def test_workspace_settings_loaded(self, workspace_dir, write_note):
        write_note(".notedown/settings.yaml", "tasks:\n  states:\n    - {value: wip, name: in-progress}\n")
        srv = NotedownServer()
        srv.initialize({"rootPath": str(workspace_dir)})
        srv.wait_until_indexed(timeout=10)
        srv.close()
        assert srv.config.tasks.valid_values() == ["wip"]

    def test_broken_settings_fall_back_to_defaults(self, workspace_dir, write_note):
        write_note(".notedown/settings.yaml", "tasks: [broken\n")
        srv = NotedownServer()
        srv.initialize({"rootPath": str(workspace_dir)})
        srv.wait_until_indexed(timeout=10)
        srv.close()
        assert "completed" in srv.config.tasks.valid_values()


# ─────────────────────────────────────────────────────────────────────────────
# Document lifecycle and diagnostics
# ─────────────────────────────────────────────────────────────────────────────


class TestDocumentLifecycle:
    def test_open_publishes_diagnostics(self, server, sample_notes, published):
        uri = open_doc(server, sample_notes / "index.md")
        assert published.codes(uri) == [CODE_AMBIGUOUS_WIKILINK, CODE_NON_EXISTENT_TARGET]
        assert published.latest(uri).version == 1

    def test_invalid_task_state(self, server, sample_notes, published):
        uri = open_doc(server, sample_notes / "daily.md")
        [diag] = published.latest(uri).diagnostics
        assert diag.code == CODE_INVALID_TASK_STATE
        assert (diag.range.start.character, diag.range.end.character) == (2, 7)

    def test_change_replaces_content(self, server, sample_notes, published):
        uri = open_doc(server, sample_notes / "index.md")
        server.did_change(
            {
                "textDocument": {"uri": uri, "version": 2},
                "contentChanges": [{"text": "old"}, {"text": "[[daily]] and [[idea]]\n"}],
            }
        )
        assert published.latest(uri).diagnostics == []
        assert published.latest(uri).version == 2
        assert server.index.targets_for_document(uri) == {"daily", "idea"}

    def test_close_removes_references(self, server, sample_notes, published):
        uri = open_doc(server, sample_notes / "index.md")
        server.did_close({"textDocument": {"uri": uri}})

        assert uri not in server.documents
        assert server.index.targets_for_document(uri) == set()
        assert "missing" not in server.index
        assert published.latest(uri).diagnostics == []

    def test_change_for_untracked_document_ignored(self, server, published):
        server.did_change(
            {"textDocument": {"uri": "file:///nowhere.md", "version": 1}, "contentChanges": [{"text": "x"}]}
        )
        assert published.calls == []

    def test_client_uri_spelling_echoed(self, server, write_note, published):
        path = write_note("with space.md", "[[missing]]\n")
        client_uri = path_to_uri(path).replace("%20", " ")
        server.did_open({"textDocument": {"uri": client_uri, "version": 1, "text": path.read_text()}})
        assert published.calls[-1].uri == client_uri


# ─────────────────────────────────────────────────────────────────────────────
# Language features
# ─────────────────────────────────────────────────────────────────────────────


class TestFeatures:
    def test_completion(self, server, sample_notes):
        uri = open_doc(server, sample_notes / "notes" / "idea.md", text="See [[id")
        result = server.completion(position_params(uri, 0, 8))
        assert [item.label for item in result.items] == []

        result = server.completion(position_params(uri, 0, 6))
        labels = [item.label for item in result.items]
        assert "config (ambiguous)" in labels
        assert "idea" not in labels

    def test_completion_unknown_document(self, server):
        assert server.completion(position_params("file:///x.md", 0, 0)).items == []

    def test_definition_existing(self, server, sample_notes):
        uri = open_doc(server, sample_notes / "index.md")
        # "Also [[daily|today]]." is line 6
        location = server.definition(position_params(uri, 6, 8))
        assert location.uri == path_to_uri(sample_notes / "daily.md")

    def test_definition_ambiguous_picks_first(self, server, sample_notes):
        uri = open_doc(server, sample_notes / "index.md")
        location = server.definition(position_params(uri, 5, 7))
        assert location.uri == path_to_uri(sample_notes / "api" / "config.md")

    def test_definition_creates_missing_note(self, server, sample_notes, published):
        uri = open_doc(server, sample_notes / "index.md", text="[[new-file]]\n")
        assert published.codes(uri) == [CODE_NON_EXISTENT_TARGET]

        location = server.definition(position_params(uri, 0, 3))

        created = sample_notes / "new-file.md"
        assert location.uri == path_to_uri(created)
        assert location.range.start.line == 0
        assert created.read_text() == "# new-file\n\n"
        assert published.latest(uri).diagnostics == []
        assert server.index.get("new-file").exists

    def test_definition_outside_link(self, server, sample_notes):
        uri = open_doc(server, sample_notes / "index.md")
        assert server.definition(position_params(uri, 0, 0)) is None

    def test_definition_traversal_target(self, server, sample_notes):
        uri = open_doc(server, sample_notes / "index.md", text="[[../escape]]\n")
        assert server.definition(position_params(uri, 0, 4)) is None
        assert not (sample_notes.parent / "escape.md").exists()

    def test_code_action_quickfixes(self, server, sample_notes, published):
        uri = open_doc(server, sample_notes / "index.md")
        ambiguous = [
            d for d in published.latest(uri).diagnostics if d.code == CODE_AMBIGUOUS_WIKILINK
        ]
        actions = server.code_action(
            {
                "textDocument": {"uri": uri},
                "range": ambiguous[0].range.to_wire(),
                "context": {"diagnostics": [d.to_wire() for d in ambiguous]},
            }
        )
        assert [a.edit.changes[uri][0].new_text for a in actions] == [
            "[[api/config|config]]",
            "[[docs/config|config]]",
        ]

    def test_code_action_untracked_document(self, server):
        params = {
            "textDocument": {"uri": "file:///x.md"},
            "range": {"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 0}},
        }
        assert server.code_action(params) == []


class GatedWorkspace(Workspace):
    """Workspace whose scans block until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def scan_all(self, cancel_event=None):
        self.release.wait(10)
        return super().scan_all(cancel_event)


class TestDefinitionDuringScan:
    @pytest.fixture
    def gated(self, tmp_path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "config.md").write_text("# Config\n")
        workspace = GatedWorkspace()
        srv = NotedownServer(workspace=workspace)
        srv.initialize({"rootUri": path_to_uri(tmp_path)})
        yield srv, workspace
        workspace.release.set()
        srv.wait_until_indexed(timeout=10)
        srv.close()

    def test_waits_for_first_scan(self, gated, tmp_path):
        srv, workspace = gated
        uri = open_doc(srv, tmp_path / "index.md", text="[[config]]\n")
        threading.Timer(0.2, workspace.release.set).start()

        location = srv.definition(position_params(uri, 0, 3))

        assert location.uri == path_to_uri(tmp_path / "docs" / "config.md")
        assert not (tmp_path / "config.md").exists()

    def test_not_yet_indexed_creates_nothing(self, gated, tmp_path):
        srv, _ = gated
        srv.index_wait_timeout = 0.05
        uri = open_doc(srv, tmp_path / "index.md", text="[[config]]\n")

        assert srv.definition(position_params(uri, 0, 3)) is None
        assert not (tmp_path / "config.md").exists()


class TestCommands:
    TEXT = "- one\n- two\n- three\n"

    def test_move_down(self, server, sample_notes):
        uri = open_doc(server, sample_notes / "notes" / "idea.md", text=self.TEXT)
        edit = server.execute_command(
            {"command": COMMAND_MOVE_LIST_ITEM_DOWN, "arguments": [uri, {"line": 0, "character": 0}]}
        )
        assert [e.new_text for e in edit.changes[uri]] == ["- two\n", "- one\n"]

    def test_move_at_boundary_fails(self, server, sample_notes):
        uri = open_doc(server, sample_notes / "notes" / "idea.md", text=self.TEXT)
        with pytest.raises(JsonRpcError) as excinfo:
            server.execute_command(
                {"command": COMMAND_MOVE_LIST_ITEM_UP, "arguments": [uri, {"line": 0, "character": 0}]}
            )
        assert excinfo.value.code == jsonrpc.REQUEST_FAILED

    def test_boundaries(self, server, sample_notes):
        uri = open_doc(server, sample_notes / "notes" / "idea.md", text=self.TEXT)
        result = server.execute_command(
            {"command": COMMAND_GET_LIST_ITEM_BOUNDARIES, "arguments": [uri, {"line": 1, "character": 0}]}
        )
        assert result == {"start": {"line": 1, "character": 0}, "end": {"line": 2, "character": 0}, "found": True}

    def test_boundaries_untracked(self, server):
        result = server.execute_command(
            {"command": COMMAND_GET_LIST_ITEM_BOUNDARIES, "arguments": ["file:///x.md", {"line": 0, "character": 0}]}
        )
        assert result == {"found": False}

    @pytest.mark.parametrize(
        "params",
        [
            {"command": "notedown.unknown", "arguments": []},
            {"command": COMMAND_MOVE_LIST_ITEM_UP, "arguments": []},
            {"command": COMMAND_MOVE_LIST_ITEM_UP, "arguments": [1, 2]},
        ],
    )
    def test_bad_arguments(self, server, params):
        with pytest.raises(JsonRpcError) as excinfo:
            server.execute_command(params)
        assert excinfo.value.code == jsonrpc.INVALID_PARAMS


# ─────────────────────────────────────────────────────────────────────────────
# Workspace events
# ─────────────────────────────────────────────────────────────────────────────


class TestWatchedFiles:
    def test_created_file_resolves_target(self, server, sample_notes, write_note, published):
        uri = open_doc(server, sample_notes / "index.md")
        path = write_note("missing.md", "# Missing\n")

        server.did_change_watched_files({"changes": [{"uri": path_to_uri(path), "type": 1}]})

        assert published.codes(uri) == [CODE_AMBIGUOUS_WIKILINK]

    def test_deleted_file_breaks_link(self, server, sample_notes, published):
        uri = open_doc(server, sample_notes / "index.md")
        path = sample_notes / "docs" / "config.md"
        path.unlink()

        server.did_change_watched_files({"changes": [{"uri": path_to_uri(path), "type": 3}]})

        assert published.codes(uri) == [CODE_NON_EXISTENT_TARGET]
        assert server.index.get("config").matching_files == ["api/config.md"]

    def test_deleting_tracked_document_closes_it(self, server, sample_notes, published):
        path = sample_notes / "index.md"
        uri = open_doc(server, path)
        path.unlink()

        server.apply_file_changes([(uri, FileChangeKind.DELETED)])

        assert uri not in server.documents
        assert server.index.targets_for_document(uri) == set()

    def test_change_to_tracked_file_keeps_buffer(self, server, sample_notes):
        path = sample_notes / "index.md"
        uri = open_doc(server, path, text="[[daily]]\n")
        path.write_text("[[something-else]]\n")

        server.apply_file_changes([(uri, FileChangeKind.CHANGED)])

        assert server.documents.get(uri).content == "[[daily]]\n"
        assert server.index.targets_for_document(uri) == {"daily"}

    def test_change_to_untracked_file_is_noop(self, server, sample_notes, published):
        server.apply_file_changes([(path_to_uri(sample_notes / "daily.md"), FileChangeKind.CHANGED)])
        assert published.calls == []

    def test_external_create_does_not_track(self, server, write_note):
        path = write_note("fresh.md", "# Fresh")
        server.apply_file_changes([(path_to_uri(path), FileChangeKind.CREATED)])
        assert path_to_uri(path) not in server.documents
        assert any(r.relative_path == "fresh.md" for r in server.workspace.list())


class TestWorkspaceFolders:
    def test_added_folder_is_scanned(self, server, tmp_path):
        extra = tmp_path / "extra"
        extra.mkdir()
        (extra / "extra-note.md").write_text("# Extra")

        server.did_change_workspace_folders(
            {"event": {"added": [{"uri": path_to_uri(extra), "name": "extra"}], "removed": []}}
        )
        assert server.wait_until_indexed(timeout=10)

        assert "extra-note.md" in [r.relative_path for r in server.workspace.list()]

    def test_removed_folder_drops_files(self, server, sample_notes):
        server.did_change_workspace_folders(
            {"event": {"added": [], "removed": [{"uri": path_to_uri(sample_notes), "name": "notes"}]}}
        )
        assert server.wait_until_indexed(timeout=10)
        assert server.workspace.list() == []


# ─────────────────────────────────────────────────────────────────────────────
# Over the wire
# ─────────────────────────────────────────────────────────────────────────────


def test_session_over_mux(sample_notes):
    messages = [
        jsonrpc.request(1, "textDocument/completion", {}),
        jsonrpc.request(2, "initialize", {"rootUri": path_to_uri(sample_notes), "capabilities": {}}),
        jsonrpc.notification("initialized", {}),
        jsonrpc.request(3, "shutdown"),
        jsonrpc.notification("exit"),
    ]
    out = io.BytesIO()
    mux = Mux(io.BytesIO(b"".join(encode_message(m) for m in messages)), out)
    server = NotedownServer()
    server.bind(mux)
    code = mux.run()
    server.wait_until_indexed(timeout=10)
    server.close()

    out.seek(0)
    replies = []
    while (message := read_message(out)) is not None:
        if "id" in message:
            replies.append(message)

    assert code == 0
    assert replies[0]["error"]["code"] == jsonrpc.SERVER_NOT_INITIALIZED
    assert replies[1]["result"]["capabilities"]["definitionProvider"] is True
    assert replies[2] == {"jsonrpc": "2.0", "id": 3, "result": None}
