"""Configuration management for notedown.

This module contains all configurable constants plus the workspace settings
schema. Magic numbers are documented here rather than scattered throughout the
codebase.

Workspace settings live in ``.notedown/settings.yaml`` (or ``settings.json``)
at the workspace root. The only section today is ``tasks``, which declares the
task-state markers that may appear between the brackets of ``- [ ]`` items.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

log = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when workspace configuration is missing or invalid."""

    pass


# =============================================================================
# Workspace Scanning
# =============================================================================

# Upper bound on Markdown files indexed per workspace. Reaching it logs a
# warning and the partial file set is used.
DEFAULT_MAX_FILE_COUNT = 10000

# Directory basenames never descended into. Hidden directories are skipped
# separately, so the dotted entries here only matter for callers that disable
# hidden-directory skipping.
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    ".git",
    ".vscode",
    ".idea",
    "node_modules",
    ".next",
    ".nuxt",
    "dist",
    "build",
    "target",
    "__pycache__",
    ".pytest_cache",
    "coverage",
    ".coverage",
    "venv",
    ".venv",
    "env",
    ".env",
)

MARKDOWN_EXTENSION = ".md"

# Seconds to wait after the last filesystem event before notifying the server.
# Editors write files in bursts (temp file, rename, chmod).
WATCHER_DEBOUNCE_SECONDS = 0.5

# Seconds a request that needs the FileSet waits for the background scan.
# Past this the request answers as not yet indexed.
INDEX_WAIT_SECONDS = 5.0


# =============================================================================
# Diagnostics
# =============================================================================

WIKILINK_DIAGNOSTIC_SOURCE = "notedown-wikilink"
TASK_DIAGNOSTIC_SOURCE = "notedown-task"

CODE_NON_EXISTENT_TARGET = "non-existent-target"
CODE_AMBIGUOUS_WIKILINK = "ambiguous-wikilink"
CODE_INVALID_TASK_STATE = "invalid-task-state"


# =============================================================================
# Editor Commands
# =============================================================================

COMMAND_MOVE_LIST_ITEM_UP = "notedown.moveListItemUp"
COMMAND_MOVE_LIST_ITEM_DOWN = "notedown.moveListItemDown"
COMMAND_GET_LIST_ITEM_BOUNDARIES = "notedown.getListItemBoundaries"

SUPPORTED_COMMANDS = (
    COMMAND_MOVE_LIST_ITEM_UP,
    COMMAND_MOVE_LIST_ITEM_DOWN,
    COMMAND_GET_LIST_ITEM_BOUNDARIES,
)


# =============================================================================
# Workspace Settings
# =============================================================================

CONFIG_DIR_NAME = ".notedown"
CONFIG_FILE_NAMES = ("settings.yaml", "settings.json")


class TaskState(BaseModel):
    """A task marker accepted between the brackets of a list item."""

    value: str
    name: str
    description: str | None = None
    aliases: list[str] = Field(default_factory=list)
    conceal: str | None = None  # Replacement text for editors that conceal markers

    def has_value(self, value: str) -> bool:
        return value == self.value or value in self.aliases

    def conceal_text(self) -> str:
        if self.conceal is not None:
            return self.conceal
        return f"[{self.value}]"


class TasksConfig(BaseModel):
    states: list[TaskState] = Field(default_factory=list)

    def validate_states(self) -> None:
        """Check the state table for emptiness, reserved characters and clashes.

        Raises:
            ConfigurationError: Describing the first problem found.
        """
        if not self.states:
            raise ConfigurationError("at least one task state must be defined")

        owners: dict[str, str] = {}
        for i, state in enumerate(self.states):
            if state.value == "":
                raise ConfigurationError(f"state {i}: value cannot be empty")
            if state.name == "":
                raise ConfigurationError(f"state {i}: name cannot be empty")
            if "]" in state.value:
                raise ConfigurationError(
                    f"state {state.name!r}: value cannot contain ']' character"
                )
            if state.value in owners:
                raise ConfigurationError(
                    f"state {state.name!r}: value {state.value!r} conflicts with state "
                    f"{owners[state.value]!r}"
                )
            owners[state.value] = state.name

            for j, alias in enumerate(state.aliases):
                if alias == "":
                    raise ConfigurationError(f"state {state.name!r}: alias {j} cannot be empty")
                if "]" in alias:
                    raise ConfigurationError(
                        f"state {state.name!r}: alias {alias!r} cannot contain ']' character"
                    )
                if alias == state.value:
                    raise ConfigurationError(
                        f"state {state.name!r}: alias {alias!r} cannot be the same as the main value"
                    )
                if alias in owners:
                    raise ConfigurationError(
                        f"state {state.name!r}: alias {alias!r} conflicts with state {owners[alias]!r}"
                    )
                owners[alias] = state.name

    def valid_values(self) -> list[str]:
        """Every accepted marker, values first then aliases, in declaration order."""
        values: list[str] = []
        for state in self.states:
            values.append(state.value)
            values.extend(state.aliases)
        return values

    def state_for(self, value: str) -> TaskState | None:
        for state in self.states:
            if state.has_value(value):
                return state
        return None


class NotedownConfig(BaseModel):
    tasks: TasksConfig = Field(default_factory=TasksConfig)

    def validate_config(self) -> None:
        try:
            self.tasks.validate_states()
        except ConfigurationError as e:
            raise ConfigurationError(f"tasks configuration error: {e}") from e


def default_config() -> NotedownConfig:
    """Return the built-in configuration: a todo and a done state."""
    return NotedownConfig(
        tasks=TasksConfig(
            states=[
                TaskState(
                    value=" ",
                    name="todo",
                    description="A task that needs to be completed",
                ),
                TaskState(
                    value="x",
                    name="done",
                    description="A completed task",
                    aliases=["X", "completed"],
                ),
            ]
        )
    )


# =============================================================================
# Discovery
# =============================================================================


def find_workspace_root(start: Path | str) -> Path | None:
    """Walk up from ``start`` looking for a directory containing ``.notedown/``.

    Returns:
        The directory holding ``.notedown``, or None when no ancestor has one.
    """
    current = Path(start).resolve()
    if current.is_file():
        current = current.parent

    while True:
        if (current / CONFIG_DIR_NAME).is_dir():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent


def find_config_file(start: Path | str) -> Path | None:
    """Locate the settings file governing ``start``.

    ``settings.yaml`` wins over ``settings.json`` when both exist.
    """
    root = find_workspace_root(start)
    if root is None:
        return None

    for name in CONFIG_FILE_NAMES:
        candidate = root / CONFIG_DIR_NAME / name
        if candidate.is_file():
            return candidate
    return None


def load_config(start: Path | str) -> NotedownConfig:
    """Load the workspace configuration for ``start``.

    Falls back to :func:`default_config` when no settings file exists.

    Raises:
        ConfigurationError: If a settings file exists but is unreadable or invalid.
    """
    config_path = find_config_file(start)
    if config_path is None:
        log.debug("No settings file above %s, using defaults", start)
        return default_config()
    return load_config_from_file(config_path)


def load_config_from_file(config_path: Path | str) -> NotedownConfig:
    """Load and validate a settings file, dispatching on its extension."""
    config_path = Path(config_path)
    suffix = config_path.suffix.lower()

    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"failed to read config file {config_path}: {e}") from e

    try:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(raw)
        elif suffix == ".json":
            data = json.loads(raw)
        else:
            raise ConfigurationError(
                f"unsupported config file format: {suffix} (expected .yaml, .yml, or .json)"
            )
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"failed to parse config file {config_path}: {e}") from e

    try:
        config = NotedownConfig.model_validate(data or {})
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"invalid configuration in {config_path}: {errors}") from e

    try:
        config.validate_config()
    except ConfigurationError as e:
        raise ConfigurationError(f"invalid configuration in {config_path}: {e}") from e

    return config


def save_config(config: NotedownConfig, config_path: Path | str) -> None:
    """Validate ``config`` and write it, choosing YAML or JSON by extension."""
    config.validate_config()

    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(exclude_none=True)

    suffix = config_path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    elif suffix == ".json":
        text = json.dumps(data, indent=2) + "\n"
    else:
        raise ConfigurationError(
            f"unsupported config file format: {suffix} (expected .yaml, .yml, or .json)"
        )
    config_path.write_text(text, encoding="utf-8")


def get_workspace_root() -> Path:
    """Get the workspace root for the CLI, MCP and HTTP surfaces.

    Discovery order:
    1. NOTEDOWN_WORKSPACE environment variable (explicit override)
    2. Walk up from cwd looking for a ``.notedown/`` directory
    3. The current working directory

    Raises:
        ConfigurationError: If NOTEDOWN_WORKSPACE names a missing directory.
    """
    override = os.environ.get("NOTEDOWN_WORKSPACE")
    if override:
        root = Path(override).expanduser()
        if not root.is_dir():
            raise ConfigurationError(
                f"NOTEDOWN_WORKSPACE points to {root}, which is not a directory"
            )
        return root.resolve()

    discovered = find_workspace_root(Path.cwd())
    if discovered is not None:
        return discovered
    return Path.cwd().resolve()
