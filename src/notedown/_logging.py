"""Logging configuration for notedown.

This module provides consistent logging across the codebase.

Usage in other modules:
    import logging
    log = logging.getLogger(__name__)

The log level can be configured via the NOTEDOWN_LOG_LEVEL environment variable
(DEBUG, INFO, WARNING, ERROR). Output always goes to stderr because the language
server owns stdout for the editor protocol. NOTEDOWN_LOG_FILE additionally mirrors
records into a file.
"""

import logging
import os
import sys

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Configure logging for the notedown package.

    Call this once at application startup (cli.py does). Subsequent calls only
    adjust the level; handlers are never added twice.

    Args:
        level: Explicit level name. Overrides NOTEDOWN_LOG_LEVEL.
        log_file: Optional path for a mirrored log file. Overrides NOTEDOWN_LOG_FILE.
    """
    package_logger = logging.getLogger("notedown")

    level_name = (level or os.environ.get("NOTEDOWN_LOG_LEVEL", "WARNING")).upper()
    resolved = getattr(logging, level_name, logging.WARNING)
    package_logger.setLevel(resolved)

    if package_logger.handlers:
        for handler in package_logger.handlers:
            handler.setLevel(resolved)
        return

    formatter = logging.Formatter(fmt=LOG_FORMAT)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(formatter)
    package_logger.addHandler(handler)

    log_file = log_file or os.environ.get("NOTEDOWN_LOG_FILE")
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(resolved)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    # Prevent propagation to root logger (avoids duplicate messages)
    package_logger.propagate = False
