"""Shared test fixtures for the notedown test suite.

Design:
- workspace_dir: isolated notes directory under tmp_path with NOTEDOWN_WORKSPACE set
- write_note: helper writing Markdown files (parents created)
- scanned: a Workspace already scanned over workspace_dir
- runner: CliRunner for CLI tests
- Async tests use pytest-asyncio with function scope
"""

from collections.abc import Callable
from pathlib import Path

import pytest
from click.testing import CliRunner

from notedown.workspace import Workspace


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def workspace_dir(tmp_path: Path, monkeypatch) -> Path:
    """Empty workspace root; NOTEDOWN_WORKSPACE points at it."""
    root = tmp_path / "notes"
    root.mkdir()
    monkeypatch.setenv("NOTEDOWN_WORKSPACE", str(root))
    return root


@pytest.fixture
def write_note(workspace_dir: Path) -> Callable[[str, str], Path]:
    """Write a file relative to the workspace root.

    Usage:
        def test_something(write_note):
            path = write_note("docs/api.md", "# API")
    """

    def _write(relative: str, content: str = "") -> Path:
        path = workspace_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_notes(workspace_dir: Path, write_note) -> Path:
    """Workspace with frontmatter, links, tasks and an ambiguous basename.

    Creates:
    - index.md         links to [[config]] (ambiguous) and [[missing]]
    - api/config.md    author: Alice, priority: 1
    - docs/config.md   author: Bob, priority: 2
    - daily.md         author: Alice, priority: 3, has an invalid task
    - notes/idea.md    author: Charlie, priority: 1
    """
    write_note(
        "index.md",
        "---\ntitle: Index\n---\n# Index\n\nSee [[config]] and [[missing]].\nAlso [[daily|today]].\n",
    )
    write_note("api/config.md", "---\nauthor: Alice\npriority: 1\n---\n# API config\n")
    write_note("docs/config.md", "---\nauthor: Bob\npriority: 2\n---\n# Docs config\n")
    write_note(
        "daily.md",
        "---\nauthor: Alice\npriority: 3\n---\n# Daily\n\n- [ ] todo\n- [wip] Work in progress\n",
    )
    write_note("notes/idea.md", "---\nauthor: Charlie\npriority: 1\n---\n# Idea\n")
    return workspace_dir


@pytest.fixture
def scanned(sample_notes: Path) -> Workspace:
    """Workspace over sample_notes with a completed scan."""
    workspace = Workspace()
    workspace.initialize([str(sample_notes)])
    workspace.scan_all()
    return workspace
