"""Editor protocol plumbing: JSON-RPC framing, message types and dispatch."""

from .jsonrpc import JsonRpcError
from .mux import Mux

__all__ = ["JsonRpcError", "Mux"]
