"""Tests for the NoteGraph facade."""

from __future__ import annotations

import threading

import pytest

from conftest import write_note
from notegraph.core import NoteGraph
from notegraph.errors import AmbiguousLinkError, DanglingLinkWarning


class TestBuild:
    """Async indexing entry points."""

    @pytest.mark.asyncio
    async def test_build_and_status(self, sample_corpus, settings):
        graph = NoteGraph(sample_corpus, settings=settings)

        report = await graph.build()
        status = await graph.status()

        assert len(report.indexed) == 5
        assert status.documents == 5
        assert status.edges == 3
        assert status.dangling == 1
        assert status.tags == 3
        assert status.ambiguities == 0
        assert status.failed == 0
        assert status.last_indexed is not None

    @pytest.mark.asyncio
    async def test_build_cancelled(self, sample_corpus, settings):
        graph = NoteGraph(sample_corpus, settings=settings)
        cancel = threading.Event()
        cancel.set()

        report = await graph.build(cancel)

        assert report.cancelled
        assert (await graph.status()).documents == 0

    @pytest.mark.asyncio
    async def test_refresh_after_edit(self, built_graph, sample_corpus):
        write_note(sample_corpus, "misc/lonely.md", "# Lonely\n\nNow links [[Hooks]].")

        report = await built_graph.refresh([sample_corpus / "misc/lonely.md"])

        assert report.indexed == ["misc/lonely"]
        assert await built_graph.backlinks("react/hooks.md") == ["misc/lonely.md"]
        assert await built_graph.orphans() == []

    @pytest.mark.asyncio
    async def test_empty_corpus(self, graph):
        report = await graph.build()

        assert report.indexed == []
        assert await graph.search("anything") == []
        assert await graph.tags() == []

    def test_settings_read_from_config_file(self, corpus):
        (corpus / ".notegraph.yaml").write_text("workers: 3\nignore: ['drafts/*']\n")
        graph = NoteGraph(corpus)
        assert graph.settings.workers == 3
        assert graph.settings.ignore == ["drafts/*"]


class TestQueries:
    """Async query methods mirror the query engine."""

    @pytest.mark.asyncio
    async def test_search(self, built_graph):
        results = await built_graph.search("dependencies", tags=["vue"])
        assert [r.path for r in results] == ["vue/reactivity.md"]

    @pytest.mark.asyncio
    async def test_tag_queries(self, built_graph):
        tags = await built_graph.tags()
        assert tags[0].tag == "vue"
        assert tags[0].count == 3
        assert await built_graph.by_tag("react") == ["react/hooks.md"]

    @pytest.mark.asyncio
    async def test_link_queries(self, built_graph):
        assert await built_graph.forward_links("vue/computed.md") == ["vue/reactivity.md"]
        assert await built_graph.backlinks("vue/reactivity.md") == ["vue/computed.md"]
        assert [d.raw_target for d in await built_graph.dangling()] == ["Missing Note"]
        assert await built_graph.ambiguities() == []

    @pytest.mark.asyncio
    async def test_traversal(self, built_graph):
        assert await built_graph.shortest_path("vue/computed.md", "vue/watchers.md") == [
            "vue/computed.md",
            "vue/reactivity.md",
            "vue/watchers.md",
        ]
        assert await built_graph.neighbors("vue/reactivity.md") == [
            "vue/computed.md",
            "vue/watchers.md",
        ]
        (top,) = await built_graph.hubs(limit=1)
        assert top["path"] == "vue/reactivity.md"

    @pytest.mark.asyncio
    async def test_ambiguous_alias_reported(self, corpus, settings):
        write_note(corpus, "A.md", "first", aliases=["Foo"])
        write_note(corpus, "A2.md", "second", aliases=["Foo"])
        write_note(corpus, "C.md", "See [[Foo]].")
        graph = NoteGraph(corpus, settings=settings)
        await graph.build()

        (ambiguity,) = await graph.ambiguities()

        assert ambiguity.candidates == ["A.md", "A2.md"]
        assert ambiguity.chosen == "A.md"
        assert ambiguity.sources == ["C.md"]
        assert await graph.forward_links("C.md") == ["A.md"]


class TestResolve:
    """Resolving link text on demand."""

    def test_resolves_title(self, built_graph):
        assert built_graph.resolve("Computed Properties") == "vue/computed.md"
        assert built_graph.resolve("[[Computed Properties|label]]") == "vue/computed.md"

    def test_relative_to_source(self, built_graph):
        assert built_graph.resolve("../vue/watchers", source="react/hooks.md") == "vue/watchers.md"

    def test_dangling_warns(self, built_graph):
        with pytest.warns(DanglingLinkWarning, match="Nowhere"):
            assert built_graph.resolve("Nowhere") is None

    def test_ambiguous_picks_winner_unless_strict(self, corpus, settings):
        write_note(corpus, "x/Dup.md", "one")
        write_note(corpus, "y/Dup.md", "two")
        graph = NoteGraph(corpus, settings=settings)
        graph.indexer.rebuild()

        assert graph.resolve("Dup") == "x/Dup.md"

        with pytest.raises(AmbiguousLinkError) as exc_info:
            graph.resolve("Dup", strict=True)
        assert exc_info.value.candidates == ["x/Dup.md", "y/Dup.md"]
        assert exc_info.value.chosen == "x/Dup.md"
