"""Shared test fixtures for the notegraph test suite.

Design:
- corpus: isolated note directory in tmp_path, NOTEGRAPH_* env cleared
- write_note: helper building a note with optional frontmatter
- graph / built_graph: NoteGraph over the corpus, empty or indexed
- runner: CliRunner for the CLI
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from notegraph.config import Settings
from notegraph.core import NoteGraph
from notegraph.graph import GraphStore
from notegraph.models import Document, LinkReference
from notegraph.parser.links import extract_references


# ─────────────────────────────────────────────────────────────────────────────
# Markers
# ─────────────────────────────────────────────────────────────────────────────


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions (for test code, not fixtures)
# ─────────────────────────────────────────────────────────────────────────────


def write_note(
    root: Path,
    rel_path: str,
    body: str = "",
    *,
    title: str | None = None,
    tags: list[str] | None = None,
    aliases: list[str] | None = None,
    **extra,
) -> Path:
    """Create a note, with frontmatter only when metadata is given.

    Usage in tests:
        from conftest import write_note
        write_note(corpus, "vue/reactivity.md", "See [[Computed]]", tags=["vue"])
    """
    metadata: dict = {}
    if title is not None:
        metadata["title"] = title
    if tags is not None:
        metadata["tags"] = tags
    if aliases is not None:
        metadata["aliases"] = aliases
    metadata.update(extra)

    text = body
    if metadata:
        text = "---\n" + yaml.safe_dump(metadata, sort_keys=False) + "---\n\n" + body

    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def make_doc(
    doc_id: str,
    *,
    title: str | None = None,
    aliases: list[str] | None = None,
    tags: list[str] | None = None,
    body: str = "",
) -> Document:
    """Build a Document directly, without touching disk."""
    return Document(
        id=doc_id,
        path=f"{doc_id}.md",
        title=title or doc_id.rsplit("/", 1)[-1],
        aliases=frozenset(aliases or ()),
        tags=frozenset(tags or ()),
        raw_body=body,
        content_hash=str(hash((doc_id, title, body))),
    )


def upsert(store: GraphStore, doc: Document) -> list[LinkReference]:
    """Upsert a document with the references found in its body."""
    refs = extract_references(doc.id, doc.raw_body)
    store.upsert(doc, refs)
    return refs


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's NOTEGRAPH_* settings out of the tests."""
    for name in ("NOTEGRAPH_ROOT", "NOTEGRAPH_INDEX_ROOT", "NOTEGRAPH_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    """Empty corpus directory."""
    root = tmp_path / "notes"
    root.mkdir()
    return root


@pytest.fixture
def settings() -> Settings:
    """Settings with few workers and a short debounce for fast tests."""
    return Settings(workers=2, debounce_seconds=0.05, parse_timeout=5.0)


@pytest.fixture
def sample_corpus(corpus: Path) -> Path:
    """Small linked corpus.

    Creates:
    - vue/reactivity.md (tags: vue, core) -> [[Computed Properties]], [[watchers]]
    - vue/computed.md  (title: Computed Properties, tags: vue) -> [[Reactivity]]
    - vue/watchers.md  (tags: vue)
    - react/hooks.md   (tags: react) -> [[Missing Note]]
    - misc/lonely.md   (no links)
    """
    write_note(
        corpus,
        "vue/reactivity.md",
        "# Reactivity\n\nVue tracks dependencies. See [[Computed Properties]] and [[watchers]].\n",
        tags=["vue", "core"],
    )
    write_note(
        corpus,
        "vue/computed.md",
        "Computed values are cached until a dependency changes. Back to [[Reactivity]].\n",
        title="Computed Properties",
        tags=["vue"],
    )
    write_note(corpus, "vue/watchers.md", "# Watchers\n\nRun side effects when data changes.\n", tags=["vue"])
    write_note(corpus, "react/hooks.md", "# Hooks\n\nState in function components. [[Missing Note]]\n", tags=["react"])
    write_note(corpus, "misc/lonely.md", "# Lonely\n\nNobody links here.\n")
    return corpus


@pytest.fixture
def graph(corpus: Path, settings: Settings) -> NoteGraph:
    """NoteGraph over the (initially empty) corpus, not yet built."""
    return NoteGraph(corpus, settings=settings)


@pytest.fixture
def built_graph(sample_corpus: Path, settings: Settings) -> NoteGraph:
    """NoteGraph over sample_corpus, fully indexed."""
    graph = NoteGraph(sample_corpus, settings=settings)
    graph.indexer.rebuild()
    return graph


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()
