"""Conversion between ``file://`` URIs and filesystem paths.

Editors send percent-encoded URIs and may spell the same file differently
(``file:///a%20b.md`` vs ``file:///a b.md``). Everything that keys state by
URI goes through :func:`normalize_uri` so one file has one key.
"""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse


def is_file_uri(value: str) -> bool:
    return value.startswith("file://")


def uri_to_path(uri: str) -> Path:
    """Convert a ``file://`` URI to an absolute path.

    Raises:
        ValueError: If the URI uses another scheme.
    """
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"unsupported URI scheme: {parsed.scheme or '(none)'}")
    path = unquote(parsed.path)
    if parsed.netloc and parsed.netloc != "localhost":
        path = f"//{parsed.netloc}{path}"
    # file:///C:/notes -> /C:/notes on Windows hosts
    if os.name == "nt" and len(path) > 2 and path[0] == "/" and path[2] == ":":
        path = path[1:]
    return Path(os.path.normpath(path))


def path_to_uri(path: Path | str) -> str:
    """Convert a path to a canonical ``file://`` URI."""
    return Path(os.path.abspath(path)).as_uri()


def normalize_uri(uri: str) -> str:
    """Return the canonical spelling of a file URI. Other schemes pass through."""
    if not is_file_uri(uri):
        return uri
    try:
        return path_to_uri(uri_to_path(uri))
    except ValueError:
        return uri


def to_root_path(value: str) -> Path:
    """Accept either a ``file://`` URI or an absolute path and return a path.

    Raises:
        ValueError: For non-file URIs and relative paths.
    """
    if "://" in value:
        return uri_to_path(value)
    path = Path(value)
    if not path.is_absolute():
        raise ValueError(f"workspace root must be absolute: {value}")
    return Path(os.path.normpath(path))


def posix_relative(path: Path, root: Path) -> str:
    """Workspace-relative path with forward slashes regardless of host OS."""
    return PurePosixPath(*path.relative_to(root).parts).as_posix()
