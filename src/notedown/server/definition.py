"""Go-to-definition for wikilinks, creating the target note when it is missing."""

from __future__ import annotations

import logging
from pathlib import Path

from ..indexes import InvalidTarget, normalize_target, resolve
from ..lsp.protocol import Location, Position, Range
from ..models import FileRecord
from ..uris import path_to_uri

log = logging.getLogger(__name__)


def target_at(text: str, position: Position) -> str | None:
    """Full target of the wikilink enclosing the cursor.

    The cursor may sit anywhere from the opening ``[[`` to the closing
    ``]]``. Display text after ``|`` is dropped.
    """
    lines = text.split("\n")
    if position.line < 0 or position.line >= len(lines):
        return None
    line = lines[position.line]
    if position.character < 0 or position.character > len(line):
        return None

    start = line.rfind("[[", 0, position.character + 2)
    if start == -1:
        return None
    close = line.find("]]", start + 2)
    if close == -1 or position.character >= close + 2:
        return None

    target = line[start + 2 : close].split("|", 1)[0].strip()
    return target or None


def new_note_path(root: Path, target: str) -> Path:
    """Path of the file created for an unresolved target under ``root``.

    Raises:
        InvalidTarget: If the target is empty, climbs out of the root, or is absolute.
    """
    normalized = normalize_target(target).lstrip("/")
    if not normalized:
        raise InvalidTarget(f"empty wikilink target: {target!r}")
    if not normalized.lower().endswith(".md"):
        normalized += ".md"

    path = root / normalized
    if not path.resolve().is_relative_to(root.resolve()):
        raise InvalidTarget(f"wikilink target escapes the workspace: {target!r}")
    return path


def note_title(target: str) -> str:
    title = normalize_target(target)
    if title.lower().endswith(".md"):
        title = title[:-3]
    return title


def create_note(path: Path, title: str) -> bool:
    """Write ``# <title>`` to ``path`` unless it already exists.

    Returns:
        True when a file was written.

    Raises:
        OSError: If the directory or file cannot be created.
    """
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"# {title}\n\n", encoding="utf-8")
    log.info("Created %s", path)
    return True


def existing_location(target: str, files: list[FileRecord]) -> Location | None:
    """Location of the first file ``target`` resolves to, by relative path."""
    matches = resolve(target, files)
    if not matches:
        return None
    first = matches[0]
    for record in sorted(files, key=lambda f: (f.relative_path, f.uri)):
        if record.relative_path == first:
            return Location(uri=record.uri, range=Range.of(0, 0, 0, 0))
    return None


def location_for_path(path: Path) -> Location:
    return Location(uri=path_to_uri(path), range=Range.of(0, 0, 0, 0))
