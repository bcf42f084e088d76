"""Persisted graph snapshots.

A snapshot stores documents and their extracted references, which is all
that is needed to rebuild the graph and search index without re-reading the
corpus. Resolved edges are derived and never stored.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .config import SNAPSHOT_FILENAME, SNAPSHOT_SCHEMA_VERSION, get_index_root
from .errors import IndexCorruptionError
from .graph import GraphStore
from .models import Document, LinkReference

log = logging.getLogger(__name__)


class SnapshotPayload(BaseModel):
    """Checksummed part of a snapshot file."""

    schema_version: int
    created: datetime
    documents: list[Document] = Field(default_factory=list)
    references: dict[str, list[LinkReference]] = Field(default_factory=dict)  # doc id -> refs


def default_snapshot_path(root: Path) -> Path:
    return get_index_root(root) / SNAPSHOT_FILENAME


def _checksum(payload: dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def save_snapshot(store: GraphStore, path: Path) -> Path:
    """Write the store's documents and references to path.

    The file is written next to its destination and renamed into place, so a
    crash never leaves a half-written snapshot behind.
    """
    snapshot = store.snapshot()
    payload = SnapshotPayload(
        schema_version=SNAPSHOT_SCHEMA_VERSION,
        created=datetime.now(timezone.utc),
        documents=[snapshot.documents[doc_id] for doc_id in sorted(snapshot.documents)],
        references={
            doc_id: list(snapshot.references.get(doc_id, ()))
            for doc_id in sorted(snapshot.documents)
        },
    ).model_dump(mode="json")

    data = {"checksum": _checksum(payload), "payload": payload}

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp_path, path)

    log.info("Saved snapshot of %d documents to %s", len(snapshot.documents), path)
    return path


def load_snapshot(path: Path) -> SnapshotPayload:
    """Read and validate a snapshot.

    Raises:
        IndexCorruptionError: If the file is unreadable, not JSON, from another
            schema version, fails its checksum, or does not validate.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise IndexCorruptionError(path, f"Cannot read snapshot: {e}") from e
    except json.JSONDecodeError as e:
        raise IndexCorruptionError(path, f"Invalid JSON: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("payload"), dict):
        raise IndexCorruptionError(path, "Missing snapshot payload")

    payload = data["payload"]
    version = payload.get("schema_version")
    if version != SNAPSHOT_SCHEMA_VERSION:
        raise IndexCorruptionError(
            path, f"Schema version {version!r} does not match {SNAPSHOT_SCHEMA_VERSION}"
        )

    if data.get("checksum") != _checksum(payload):
        raise IndexCorruptionError(path, "Checksum mismatch")

    try:
        snapshot = SnapshotPayload.model_validate(payload)
    except ValidationError as e:
        raise IndexCorruptionError(path, f"Validation failed: {e}") from e

    ids = [doc.id for doc in snapshot.documents]
    if len(ids) != len(set(ids)):
        raise IndexCorruptionError(path, "Duplicate document ids")
    for doc_id, refs in snapshot.references.items():
        if any(ref.source != doc_id for ref in refs):
            raise IndexCorruptionError(path, f"References of {doc_id!r} have a foreign source")
    unknown = set(snapshot.references) - set(ids)
    if unknown:
        raise IndexCorruptionError(path, f"References for unknown documents: {sorted(unknown)[:5]}")

    log.debug("Loaded snapshot from %s (%d documents)", path, len(snapshot.documents))
    return snapshot
