"""Resolve wikilink targets to workspace files.

A target matches a file when it equals the file's workspace-relative path
without extension (``[[notes/daily]]``) or the file's basename without
extension (``[[daily]]``). A trailing ``.md`` on the target is ignored on both
paths. ``./name`` is anchored at the workspace root and only matches by path.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Iterable

from ..models import FileRecord

log = logging.getLogger(__name__)


class InvalidTarget(ValueError):
    """A wikilink target that can never resolve (empty or path traversal)."""

    pass


def strip_ext(path: str) -> str:
    return posixpath.splitext(path)[0]


def normalize_target(target: str) -> str:
    """Canonical form of a target: forward slashes, no surrounding blanks.

    Raises:
        InvalidTarget: If the target is empty or has a ``..`` path segment.
    """
    normalized = target.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if not normalized:
        raise InvalidTarget(f"empty wikilink target: {target!r}")
    if ".." in normalized.split("/"):
        raise InvalidTarget(f"wikilink target escapes the workspace: {target!r}")
    return normalized


def is_root_anchored(target: str) -> bool:
    return target.strip().replace("\\", "/").startswith("./")


def _comparison_key(normalized: str) -> str:
    if normalized.lower().endswith(".md"):
        return normalized[:-3]
    return normalized


def resolve(target: str, files: Iterable[FileRecord]) -> list[str] | None:
    """Return relative paths of every file the target resolves to.

    Files are visited in relative-path order so the result does not depend on
    the iteration order of the FileSet.

    Returns:
        Matching relative paths (possibly empty), or None for an invalid target.
    """
    try:
        key = _comparison_key(normalize_target(target))
    except InvalidTarget as e:
        log.debug("%s", e)
        return None
    anchored = is_root_anchored(target)

    matches: list[str] = []
    seen: set[str] = set()
    for record in sorted(files, key=lambda f: f.relative_path):
        path = record.relative_path
        if path in seen:
            continue
        if strip_ext(path) == key or (
            not anchored and strip_ext(posixpath.basename(path)) == key
        ):
            matches.append(path)
            seen.add(path)
    return matches


def suggested_uri(target: str) -> str:
    """Relative path a new file for ``target`` would get."""
    normalized = target.strip().replace("\\", "/")
    if posixpath.splitext(normalized)[1]:
        return normalized
    return normalized + ".md"


def qualified_path(relative_path: str) -> str:
    """Unambiguous wikilink target for a file: ``./name`` at the root, else ``dir/name``."""
    path = strip_ext(relative_path.replace("\\", "/"))
    if "/" not in path:
        return f"./{path}"
    return path
