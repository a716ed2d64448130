"""Workspace roots, Markdown file discovery and filesystem watching."""

from .scanner import LimitExceeded, ScanTask, Workspace, WorkspaceRoot, is_markdown_file
from .watcher import DebouncedHandler, FileChangeType, FileWatcher

__all__ = [
    "Workspace",
    "WorkspaceRoot",
    "ScanTask",
    "LimitExceeded",
    "is_markdown_file",
    "FileWatcher",
    "DebouncedHandler",
    "FileChangeType",
]
