"""Logging configuration for notegraph.

This module provides consistent logging across the codebase.

Usage in other modules:
    import logging
    log = logging.getLogger(__name__)

    log.debug("Per-reference resolution detail")
    log.info("Corpus-level progress")
    log.warning("A file was skipped or a link was dropped")
    log.error("Error that prevented operation")

The log level can be configured via the NOTEGRAPH_LOG_LEVEL environment variable:
    - DEBUG: Detailed debugging information
    - INFO: General operational messages (default)
    - WARNING: Unexpected situations that were handled
    - ERROR: Errors that prevented an operation
"""

import logging
import os
import sys


def configure_logging(level_name: str | None = None) -> None:
    """Configure logging for the notegraph package.

    Call this once at application startup (e.g., in cli.py).
    Subsequent calls only adjust the level.

    Args:
        level_name: Explicit level name; falls back to NOTEGRAPH_LOG_LEVEL.
    """
    root_logger = logging.getLogger("notegraph")

    level_name = (level_name or os.environ.get("NOTEGRAPH_LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    if root_logger.handlers:
        root_logger.setLevel(level)
        for handler in root_logger.handlers:
            handler.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    # Use a clean format: [level] logger: message
    formatter = logging.Formatter(
        fmt="[%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Prevent propagation to root logger (avoids duplicate messages)
    root_logger.propagate = False
