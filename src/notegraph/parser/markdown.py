"""Markdown document loading with YAML frontmatter support."""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable

import frontmatter
import yaml

from ..config import DEFAULT_EXTENSIONS, IGNORED_DIRS
from ..errors import ParseError
from ..models import Document
from .links import extract_inline_tags, mask_code

log = logging.getLogger(__name__)

# Frontmatter keys with a dedicated Document field. Everything else lands in
# Document.properties.
RESERVED_KEYS = frozenset({"title", "aliases", "alias", "tags", "tag", "uid"})

H1_PATTERN = re.compile(r"^#[ \t]+(.+?)[ \t]*#*[ \t]*$", re.MULTILINE)
FRONTMATTER_OPEN = re.compile(r"\A---[ \t]*\r?\n")
FRONTMATTER_CLOSE = re.compile(r"^---[ \t]*\r?$", re.MULTILINE)


@dataclass
class LoadResult:
    """Documents loaded from a corpus plus the files that failed."""

    documents: list[Document] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)


def discover_files(
    root: Path,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ignore: Iterable[str] = (),
) -> list[Path]:
    """Enumerate note files under root, sorted by relative path.

    Hidden editor/VCS directories and our own index directory are skipped.

    Args:
        root: Corpus root directory.
        extensions: Recognized file extensions (with leading dot).
        ignore: fnmatch globs applied to the POSIX relative path.
    """
    if not root.exists() or not root.is_dir():
        return []

    suffixes = {ext.lower() for ext in extensions}
    patterns = list(ignore)
    files: list[Path] = []

    for path in root.rglob("*"):
        if path.suffix.lower() not in suffixes or not path.is_file():
            continue
        rel = path.relative_to(root)
        if any(part in IGNORED_DIRS for part in rel.parts[:-1]):
            continue
        if is_ignored(rel.as_posix(), patterns):
            continue
        files.append(path)

    return sorted(files, key=lambda p: p.relative_to(root).as_posix())


def is_ignored(rel_path: str, patterns: Iterable[str]) -> bool:
    """True if a POSIX relative path matches one of the fnmatch ignore globs."""
    return any(fnmatch.fnmatch(rel_path, pattern) for pattern in patterns)


def relative_id(root: Path, path: Path) -> str:
    """Document id derived from a file path: relative POSIX path, no extension."""
    return path.relative_to(root).with_suffix("").as_posix()


def parse_document(path: Path, root: Path) -> Document:
    """Parse a markdown file with optional YAML frontmatter.

    Args:
        path: Path to the markdown file.
        root: Corpus root the document id is relative to.

    Returns:
        The parsed Document.

    Raises:
        ParseError: If the file cannot be read or has malformed frontmatter.
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ParseError(path, f"Cannot read file: {e}", io=True) from e

    return parse_text(raw, path, root)


def parse_text(raw: bytes, path: Path, root: Path) -> Document:
    """Parse already-read file bytes. See parse_document."""
    content_hash = hashlib.sha256(raw).hexdigest()

    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(path, f"File is not valid UTF-8: {e}") from e

    _check_frontmatter_block(path, text)

    try:
        post = frontmatter.loads(text)
    except Exception as e:
        raise ParseError(path, f"Failed to parse frontmatter: {e}") from e

    metadata = dict(post.metadata)
    body = post.content

    rel_path = path.relative_to(root).as_posix()
    doc_id = relative_id(root, path)
    uid = metadata.get("uid")
    if uid is not None:
        if not isinstance(uid, (str, int)) or not str(uid).strip():
            raise ParseError(path, f"Invalid uid: {uid!r}")
        doc_id = str(uid).strip()

    tags = _string_set(metadata.get("tags", metadata.get("tag")), path, "tags", split=True)
    tags = {tag.lstrip("#") for tag in tags if tag.lstrip("#")}
    tags |= extract_inline_tags(body)

    aliases = _string_set(metadata.get("aliases", metadata.get("alias")), path, "aliases")

    properties = {
        str(key): _jsonable(value)
        for key, value in metadata.items()
        if str(key) not in RESERVED_KEYS
    }

    return Document(
        id=doc_id,
        path=rel_path,
        title=_extract_title(metadata, body, path),
        aliases=frozenset(aliases),
        tags=frozenset(tags),
        raw_body=body,
        content_hash=content_hash,
        properties=properties,
    )


def _check_frontmatter_block(path: Path, text: str) -> None:
    """Reject frontmatter python-frontmatter would silently ignore.

    An opening '---' line that is never closed is read as body-only, and a
    block holding a YAML list or scalar yields no metadata at all.
    """
    opening = FRONTMATTER_OPEN.match(text)
    if opening and not FRONTMATTER_CLOSE.search(text, opening.end()):
        raise ParseError(path, "Unterminated frontmatter block (missing closing '---')")

    handler = frontmatter.YAMLHandler()
    if not handler.detect(text):
        return
    block, _ = handler.split(text)
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as e:
        raise ParseError(path, f"Failed to parse frontmatter: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ParseError(path, f"Frontmatter must be a mapping, not {type(data).__name__}")


def _extract_title(metadata: dict[str, Any], body: str, path: Path) -> str:
    """Frontmatter title, else first H1 outside code, else the file stem."""
    title = metadata.get("title")
    if isinstance(title, (str, int, float)) and str(title).strip():
        return str(title).strip()

    match = H1_PATTERN.search(mask_code(body))
    if match:
        return match.group(1).strip()

    return path.stem


def _string_set(value: Any, path: Path, key: str, *, split: bool = False) -> set[str]:
    """Coerce a frontmatter list-or-string field into a set of strings."""
    if value is None:
        return set()

    if isinstance(value, str):
        items = re.split(r"[,\s]+", value) if split else [value]
    elif isinstance(value, (list, tuple, set)):
        items = []
        for item in value:
            if isinstance(item, (dict, list)):
                raise ParseError(path, f"Invalid {key} entry: {item!r}")
            if item is not None:
                items.append(str(item))
    elif isinstance(value, (int, float)):
        items = [str(value)]
    else:
        raise ParseError(path, f"Invalid {key}: expected a list or string, got {type(value).__name__}")

    return {item.strip() for item in items if item and item.strip()}


def _jsonable(value: Any) -> Any:
    """Convert YAML scalars (dates, sets) into JSON-safe values."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def load_corpus(
    root: Path,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ignore: Iterable[str] = (),
) -> LoadResult:
    """Load every note under root sequentially.

    A file that fails to parse is logged and reported in ``errors``; it never
    aborts the rest of the corpus.
    """
    result = LoadResult()
    for path in discover_files(root, extensions, ignore):
        try:
            result.documents.append(parse_document(path, root))
        except ParseError as e:
            log.warning("Skipping %s: %s", e.path, e.reason)
            result.errors.append(e)
    return result
