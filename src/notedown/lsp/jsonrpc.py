"""JSON-RPC 2.0 over Content-Length framed byte streams.

Each message is a header block terminated by ``\\r\\n\\r\\n`` followed by
exactly ``Content-Length`` bytes of UTF-8 JSON::

    Content-Length: 44\\r\\n
    \\r\\n
    {"jsonrpc":"2.0","id":1,"method":"shutdown"}
"""

from __future__ import annotations

import json
from typing import Any, BinaryIO

MAX_MESSAGE_SIZE = 64 * 1024 * 1024

# Standard error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_NOT_INITIALIZED = -32002
REQUEST_FAILED = -32803


class JsonRpcError(Exception):
    """An error to be returned in a response envelope."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class FramingError(Exception):
    """The byte stream does not follow Content-Length framing."""

    pass


def parse_headers(stream: BinaryIO) -> dict[str, str] | None:
    """Read one header block. Returns None on clean EOF before any header."""
    headers: dict[str, str] = {}
    saw_line = False
    while True:
        line = stream.readline()
        if not line:
            if saw_line:
                raise FramingError("unexpected end of stream inside headers")
            return None
        saw_line = True
        line = line.strip()
        if not line:
            if not headers:
                # Tolerate stray blank lines between messages
                saw_line = False
                continue
            return headers
        if b":" not in line:
            raise FramingError(f"malformed header line: {line!r}")
        key, value = line.split(b":", 1)
        headers[key.strip().lower().decode("ascii")] = value.strip().decode("ascii")


def read_message(stream: BinaryIO) -> dict[str, Any] | None:
    """Read one framed JSON message.

    Returns:
        The decoded message, or None at end of stream.

    Raises:
        FramingError: On bad headers or a truncated body.
        JsonRpcError: With PARSE_ERROR when the body is not a JSON object.
    """
    headers = parse_headers(stream)
    if headers is None:
        return None

    try:
        length = int(headers.get("content-length", ""))
    except ValueError as e:
        raise FramingError("missing or invalid Content-Length header") from e
    if length < 0 or length > MAX_MESSAGE_SIZE:
        raise FramingError(f"Content-Length out of range: {length}")

    body = stream.read(length)
    if len(body) != length:
        raise FramingError(f"expected {length} bytes, got {len(body)}")

    try:
        message = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise JsonRpcError(PARSE_ERROR, f"invalid JSON: {e}") from e
    if not isinstance(message, dict):
        raise JsonRpcError(INVALID_REQUEST, "message must be a JSON object")
    return message


def encode_message(message: dict[str, Any]) -> bytes:
    body = json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


def write_message(stream: BinaryIO, message: dict[str, Any]) -> None:
    stream.write(encode_message(message))
    stream.flush()


def is_notification(message: dict[str, Any]) -> bool:
    return "id" not in message


def response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(request_id: Any, error: JsonRpcError) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": error.to_dict()}


def notification(method: str, params: Any = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return message


def request(request_id: Any, method: str, params: Any = None) -> dict[str, Any]:
    message = notification(method, params)
    message["id"] = request_id
    return message
