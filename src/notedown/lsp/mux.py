"""Message loop dispatching JSON-RPC requests and notifications to handlers.

Messages are processed one at a time in arrival order, which keeps the
open -> change -> close sequence of each document intact. Writes are
serialized so handlers on other threads (scan completion, file watcher) can
push notifications safely.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, BinaryIO

from pydantic import BaseModel, ValidationError

from . import jsonrpc
from .jsonrpc import FramingError, JsonRpcError

log = logging.getLogger(__name__)

MethodHandler = Callable[[Any], Any]
NotificationHandler = Callable[[Any], None]

METHOD_INITIALIZE = "initialize"
METHOD_INITIALIZED = "initialized"
METHOD_SHUTDOWN = "shutdown"
METHOD_EXIT = "exit"


def to_wire(value: Any) -> Any:
    """Convert handler results (pydantic models, lists of them) to JSON-ready data."""
    if isinstance(value, BaseModel):
        if hasattr(value, "to_wire"):
            return value.to_wire()
        return value.model_dump(by_alias=True, exclude_none=True, mode="json")
    if isinstance(value, list):
        return [to_wire(item) for item in value]
    if isinstance(value, dict):
        return {key: to_wire(item) for key, item in value.items()}
    return value


class Mux:
    """Reads framed messages from ``reader`` and writes responses to ``writer``."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO) -> None:
        self._reader = reader
        self._writer = writer
        self._write_lock = threading.Lock()
        self._methods: dict[str, MethodHandler] = {}
        self._notifications: dict[str, NotificationHandler] = {}
        self.initialized = False
        self.shutdown_requested = False
        self._running = False

        self.register_method(METHOD_SHUTDOWN, self._handle_shutdown)
        self.register_notification(METHOD_INITIALIZED, lambda params: None)
        self.register_notification(METHOD_EXIT, self._handle_exit)

    # ─────────────────────────────────────────────────────────────────────────
    # Registration and output
    # ─────────────────────────────────────────────────────────────────────────

    def register_method(self, method: str, handler: MethodHandler) -> None:
        self._methods[method] = handler

    def register_notification(self, method: str, handler: NotificationHandler) -> None:
        self._notifications[method] = handler

    def write(self, message: dict[str, Any]) -> None:
        with self._write_lock:
            jsonrpc.write_message(self._writer, message)

    def publish_notification(self, method: str, params: Any = None) -> None:
        """Send a server-to-client notification."""
        self.write(jsonrpc.notification(method, to_wire(params)))

    # ─────────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────────

    def _handle_shutdown(self, params: Any) -> None:
        log.info("Shutdown requested")
        self.shutdown_requested = True
        return None

    def _handle_exit(self, params: Any) -> None:
        log.info("Exit received")
        self._running = False

    def _dispatch_notification(self, method: str, params: Any) -> None:
        handler = self._notifications.get(method)
        if handler is None:
            if method.startswith("$/"):
                log.debug("Ignoring optional notification %s", method)
            else:
                log.warning("No handler for notification %s", method)
            return
        try:
            handler(params)
        except Exception:
            log.exception("Notification handler for %s failed", method)

    def _dispatch_request(self, request_id: Any, method: str, params: Any) -> dict[str, Any]:
        if not self.initialized and method != METHOD_INITIALIZE:
            return jsonrpc.error_response(
                request_id,
                JsonRpcError(jsonrpc.SERVER_NOT_INITIALIZED, "server not initialized"),
            )

        handler = self._methods.get(method)
        if handler is None:
            log.warning("Method not found: %s (id=%s)", method, request_id)
            return jsonrpc.error_response(
                request_id, JsonRpcError(jsonrpc.METHOD_NOT_FOUND, f"method not found: {method}")
            )

        try:
            result = handler(params)
        except JsonRpcError as e:
            log.warning("Method %s failed: %s", method, e.message)
            return jsonrpc.error_response(request_id, e)
        except ValidationError as e:
            log.warning("Invalid params for %s: %s", method, e)
            return jsonrpc.error_response(
                request_id, JsonRpcError(jsonrpc.INVALID_PARAMS, f"invalid params: {e}")
            )
        except Exception as e:
            log.exception("Method handler for %s failed", method)
            return jsonrpc.error_response(
                request_id, JsonRpcError(jsonrpc.INTERNAL_ERROR, str(e) or type(e).__name__)
            )

        if method == METHOD_INITIALIZE:
            self.initialized = True
        log.debug("Method %s completed (id=%s)", method, request_id)
        return jsonrpc.response(request_id, to_wire(result))

    def process_message(self, message: dict[str, Any]) -> dict[str, Any] | None:
        """Handle one decoded message.

        Returns:
            The response envelope for requests, None for notifications and for
            responses to server-initiated requests.
        """
        method = message.get("method")
        if method is None:
            if "result" in message or "error" in message:
                log.debug("Received client response for id=%s", message.get("id"))
                return None
            return jsonrpc.error_response(
                message.get("id"), JsonRpcError(jsonrpc.INVALID_REQUEST, "missing method")
            )

        params = message.get("params")
        if jsonrpc.is_notification(message):
            log.debug("Processing notification %s", method)
            self._dispatch_notification(method, params)
            return None

        log.debug("Processing request %s (id=%s)", method, message["id"])
        return self._dispatch_request(message["id"], method, params)

    def run(self) -> int:
        """Serve until ``exit`` or end of input.

        Returns:
            Process exit code: 0 after a shutdown request, 1 otherwise.
        """
        self._running = True
        log.info("Starting message loop")
        while self._running:
            try:
                message = jsonrpc.read_message(self._reader)
            except FramingError as e:
                log.error("Fatal framing error: %s", e)
                break
            except JsonRpcError as e:
                log.warning("Discarding unreadable message: %s", e.message)
                self.write(jsonrpc.error_response(None, e))
                continue

            if message is None:
                log.info("Input closed")
                break

            reply = self.process_message(message)
            if reply is not None:
                self.write(reply)

        self._running = False
        return 0 if self.shutdown_requested else 1
