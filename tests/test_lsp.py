"""Tests for Content-Length framing and the message loop."""

import io
import json

import pytest

from notedown.lsp import JsonRpcError, Mux
from notedown.lsp import jsonrpc
from notedown.lsp.jsonrpc import FramingError, encode_message, read_message


def frame(*messages: dict) -> io.BytesIO:
    return io.BytesIO(b"".join(encode_message(m) for m in messages))


def read_all(data: bytes) -> list[dict]:
    stream = io.BytesIO(data)
    messages = []
    while (message := read_message(stream)) is not None:
        messages.append(message)
    return messages


# ─────────────────────────────────────────────────────────────────────────────
# Framing
# ─────────────────────────────────────────────────────────────────────────────


class TestFraming:
    def test_encode_uses_byte_length(self):
        encoded = encode_message({"text": "é"})
        header, body = encoded.split(b"\r\n\r\n", 1)
        assert header == f"Content-Length: {len(body)}".encode()
        assert json.loads(body) == {"text": "é"}

    def test_read_sequence(self):
        stream = frame(jsonrpc.request(1, "a"), jsonrpc.notification("b", {"x": 1}))
        assert read_message(stream) == {"jsonrpc": "2.0", "method": "a", "id": 1}
        assert read_message(stream) == {"jsonrpc": "2.0", "method": "b", "params": {"x": 1}}
        assert read_message(stream) is None

    def test_extra_headers_and_case(self):
        body = b'{"jsonrpc":"2.0","method":"x"}'
        raw = (
            b"content-length: " + str(len(body)).encode() + b"\r\n"
            b"Content-Type: application/vscode-jsonrpc; charset=utf-8\r\n\r\n" + body
        )
        assert read_message(io.BytesIO(raw))["method"] == "x"

    def test_missing_length(self):
        with pytest.raises(FramingError):
            read_message(io.BytesIO(b"Content-Type: x\r\n\r\n{}"))

    def test_truncated_body(self):
        with pytest.raises(FramingError):
            read_message(io.BytesIO(b"Content-Length: 10\r\n\r\n{}"))

    def test_eof_inside_headers(self):
        with pytest.raises(FramingError):
            read_message(io.BytesIO(b"Content-Length: 10\r\n"))

    def test_invalid_json_is_parse_error(self):
        with pytest.raises(JsonRpcError) as excinfo:
            read_message(io.BytesIO(b"Content-Length: 3\r\n\r\n{x}"))
        assert excinfo.value.code == jsonrpc.PARSE_ERROR

    def test_non_object_is_invalid_request(self):
        with pytest.raises(JsonRpcError) as excinfo:
            read_message(io.BytesIO(b"Content-Length: 2\r\n\r\n[]"))
        assert excinfo.value.code == jsonrpc.INVALID_REQUEST

    def test_error_envelope(self):
        error = JsonRpcError(jsonrpc.INVALID_PARAMS, "bad", data={"field": "x"})
        assert jsonrpc.error_response(7, error) == {
            "jsonrpc": "2.0",
            "id": 7,
            "error": {"code": -32602, "message": "bad", "data": {"field": "x"}},
        }


# ─────────────────────────────────────────────────────────────────────────────
# Message loop
# ─────────────────────────────────────────────────────────────────────────────


def run_mux(*messages: dict, setup=None) -> tuple[int, list[dict], Mux]:
    out = io.BytesIO()
    mux = Mux(frame(*messages), out)
    mux.register_method("initialize", lambda params: {"capabilities": {}})
    if setup is not None:
        setup(mux)
    code = mux.run()
    return code, read_all(out.getvalue()), mux


class TestMux:
    def test_requests_before_initialize_rejected(self):
        code, replies, _ = run_mux(jsonrpc.request(1, "textDocument/completion", {}))
        assert replies[0]["error"]["code"] == jsonrpc.SERVER_NOT_INITIALIZED
        assert code == 1

    def test_lifecycle(self):
        code, replies, mux = run_mux(
            jsonrpc.request(1, "initialize", {}),
            jsonrpc.notification("initialized", {}),
            jsonrpc.request(2, "shutdown"),
            jsonrpc.notification("exit"),
        )
        assert replies == [
            {"jsonrpc": "2.0", "id": 1, "result": {"capabilities": {}}},
            {"jsonrpc": "2.0", "id": 2, "result": None},
        ]
        assert mux.initialized
        assert code == 0

    def test_exit_without_shutdown_is_error_code(self):
        code, _, _ = run_mux(jsonrpc.request(1, "initialize", {}), jsonrpc.notification("exit"))
        assert code == 1

    def test_method_not_found(self):
        _, replies, _ = run_mux(jsonrpc.request(1, "initialize", {}), jsonrpc.request(2, "nope"))
        assert replies[1]["error"]["code"] == jsonrpc.METHOD_NOT_FOUND

    def test_handler_errors_become_responses(self):
        def setup(mux):
            def fail(params):
                raise JsonRpcError(jsonrpc.REQUEST_FAILED, "could not create file")

            def crash(params):
                raise RuntimeError("boom")

            mux.register_method("fail", fail)
            mux.register_method("crash", crash)

        _, replies, _ = run_mux(
            jsonrpc.request(1, "initialize", {}),
            jsonrpc.request(2, "fail"),
            jsonrpc.request(3, "crash"),
            setup=setup,
        )
        assert replies[1]["error"] == {"code": jsonrpc.REQUEST_FAILED, "message": "could not create file"}
        assert replies[2]["error"] == {"code": jsonrpc.INTERNAL_ERROR, "message": "boom"}

    def test_notifications_in_order_and_failures_swallowed(self):
        seen = []

        def setup(mux):
            def record(params):
                seen.append(params["n"])
                if params["n"] == 2:
                    raise ValueError("ignored")

            mux.register_notification("note", record)

        _, replies, _ = run_mux(
            jsonrpc.notification("note", {"n": 1}),
            jsonrpc.notification("note", {"n": 2}),
            jsonrpc.notification("note", {"n": 3}),
            jsonrpc.notification("$/cancelRequest", {"id": 1}),
            setup=setup,
        )
        assert seen == [1, 2, 3]
        assert replies == []

    def test_unreadable_message_answered_and_skipped(self):
        out = io.BytesIO()
        good = encode_message(jsonrpc.request(1, "initialize", {}))
        mux = Mux(io.BytesIO(b"Content-Length: 3\r\n\r\n{x}" + good), out)
        mux.register_method("initialize", lambda params: {})
        mux.run()
        replies = read_all(out.getvalue())
        assert replies[0]["error"]["code"] == jsonrpc.PARSE_ERROR
        assert replies[1] == {"jsonrpc": "2.0", "id": 1, "result": {}}

    def test_client_responses_ignored(self):
        _, replies, _ = run_mux({"jsonrpc": "2.0", "id": 5, "result": None})
        assert replies == []

    def test_missing_method_is_invalid_request(self):
        _, replies, _ = run_mux({"jsonrpc": "2.0", "id": 5})
        assert replies[0]["error"]["code"] == jsonrpc.INVALID_REQUEST

    def test_server_push(self):
        out = io.BytesIO()
        mux = Mux(io.BytesIO(), out)
        mux.publish_notification("window/logMessage", {"type": 3, "message": "hi"})
        request_id = mux.send_request("client/registerCapability", {"registrations": []})
        messages = read_all(out.getvalue())
        assert messages[0]["method"] == "window/logMessage"
        assert messages[1]["id"] == request_id
