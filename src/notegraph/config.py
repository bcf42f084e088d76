"""Configuration management for notegraph.

This module contains all configurable constants for the engine.
Magic numbers are documented here rather than scattered throughout the codebase.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

log = logging.getLogger(__name__)

CONFIG_FILENAME = ".notegraph.yaml"


def get_root() -> Path:
    """Get the corpus root directory.

    Discovery order:
    1. NOTEGRAPH_ROOT environment variable (explicit override)
    2. Walk up from cwd looking for .notegraph.yaml
    3. Error with helpful message

    Raises:
        ConfigurationError: If no corpus root can be found.
    """
    root = os.environ.get("NOTEGRAPH_ROOT")
    if root:
        return Path(root)

    discovered = _discover_config_dir()
    if discovered:
        return discovered

    raise ConfigurationError(
        "No note corpus found. Options:\n"
        "  1. Pass --root to the command\n"
        f"  2. Create {CONFIG_FILENAME} at the corpus root\n"
        "  3. Set NOTEGRAPH_ROOT to an existing directory"
    )


def get_index_root(root: Path | None = None) -> Path:
    """Get the directory holding persisted snapshots.

    Discovery order:
    1. NOTEGRAPH_INDEX_ROOT environment variable (explicit override)
    2. {root}/.notegraph/
    """
    override = os.environ.get("NOTEGRAPH_INDEX_ROOT")
    if override:
        return Path(override)
    return (root or get_root()) / ".notegraph"


def _discover_config_dir(start_dir: Path | None = None, max_depth: int = 10) -> Path | None:
    """Walk up from start_dir looking for a .notegraph.yaml file."""
    current = Path(start_dir or os.getcwd()).resolve()

    for _ in range(max_depth):
        if (current / CONFIG_FILENAME).exists():
            return current
        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None


# =============================================================================
# Corpus Discovery
# =============================================================================

# File extensions treated as notes.
DEFAULT_EXTENSIONS = (".md",)

# Directory names never descended into. Editor state and our own index dir.
IGNORED_DIRS = frozenset({".git", ".obsidian", ".notegraph", ".trash", "node_modules"})


# =============================================================================
# Loading
# =============================================================================

# Per-file parse timeout in seconds. A file that takes longer to read and
# extract is reported as a ParseError instead of blocking the scan.
PARSE_TIMEOUT_SECONDS = 10.0

# Worker threads for the initial full scan (load + extract per file).
DEFAULT_WORKERS = min(8, (os.cpu_count() or 2))


# =============================================================================
# Search
# =============================================================================

# Default number of results returned by search
DEFAULT_SEARCH_LIMIT = 10

# Maximum number of results allowed (prevents expensive queries)
MAX_SEARCH_LIMIT = 50

# Field weights for term-frequency scoring. A title hit counts as this many
# body hits, so title matches rank above body matches.
TITLE_FIELD_BOOST = 5.0
BODY_FIELD_BOOST = 1.0

# Characters of body text returned as a result snippet.
SNIPPET_LENGTH = 200


# =============================================================================
# Watching
# =============================================================================

# Quiet period before a burst of saves to the same path is reindexed.
DEBOUNCE_SECONDS = 1.0


# =============================================================================
# Persistence
# =============================================================================

SNAPSHOT_FILENAME = "snapshot.json"

# Bumped whenever the snapshot layout changes; older snapshots are rebuilt.
SNAPSHOT_SCHEMA_VERSION = 1


class Settings(BaseModel):
    """Per-corpus settings, optionally overridden by .notegraph.yaml."""

    extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    ignore: list[str] = Field(default_factory=list)  # fnmatch globs on relative paths
    parse_timeout: float = Field(default=PARSE_TIMEOUT_SECONDS, gt=0)
    workers: int = Field(default=DEFAULT_WORKERS, ge=1)
    debounce_seconds: float = Field(default=DEBOUNCE_SECONDS, ge=0)


def load_settings(root: Path) -> Settings:
    """Load settings for a corpus root.

    Missing config file yields defaults. An unreadable or invalid file is a
    configuration error rather than something to silently ignore.
    """
    config_file = root / CONFIG_FILENAME
    if not config_file.exists():
        return Settings()

    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_file} must contain a mapping")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {config_file}: {e}") from e

    log.debug("Loaded settings from %s", config_file)
    return settings
