"""Tests for IncrementalIndexer: rebuild, refresh, failures, cancellation."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from conftest import write_note
from notegraph.config import Settings
from notegraph.core import NoteGraph
from notegraph.errors import InvariantViolation
from notegraph.indexer import incremental
from notegraph.models import DocumentState


@pytest.fixture
def fresh(sample_corpus: Path, settings: Settings) -> NoteGraph:
    """Sample corpus graph that has not been indexed yet."""
    return NoteGraph(sample_corpus, settings=settings)


class TestRebuild:
    """Full corpus scans."""

    def test_indexes_everything(self, fresh):
        report = fresh.indexer.rebuild()

        assert sorted(report.indexed) == [
            "misc/lonely",
            "react/hooks",
            "vue/computed",
            "vue/reactivity",
            "vue/watchers",
        ]
        assert report.failed == []
        assert not report.cancelled
        assert len(fresh.store) == 5
        assert fresh.search_index.doc_count() == 5
        assert fresh.indexer.state("vue/computed.md") == DocumentState.INDEXED
        assert fresh.indexer.last_indexed is not None

    def test_second_rebuild_is_idempotent(self, fresh):
        fresh.indexer.rebuild()
        before = fresh.store.snapshot().state()

        report = fresh.indexer.rebuild()

        assert report.indexed == []
        assert len(report.unchanged) == 5
        assert fresh.store.snapshot().state() == before

    def test_deleted_files_removed_on_rebuild(self, fresh, sample_corpus):
        fresh.indexer.rebuild()
        (sample_corpus / "vue/watchers.md").unlink()

        report = fresh.indexer.rebuild()

        assert report.removed == ["vue/watchers"]
        assert "vue/watchers" not in fresh.store
        assert fresh.indexer.state("vue/watchers.md") == DocumentState.REMOVED

    def test_bad_file_does_not_abort(self, fresh, sample_corpus):
        (sample_corpus / "broken.md").write_text("---\ntitle: [oops\n---\nbody")

        report = fresh.indexer.rebuild()

        assert len(report.indexed) == 5
        assert [e.path.name for e in report.failed] == ["broken.md"]
        assert fresh.indexer.state("broken.md") == DocumentState.FAILED
        assert "broken.md" in fresh.indexer.failures

    def test_duplicate_uid_rejected(self, corpus, settings):
        write_note(corpus, "a.md", "first", uid="same")
        write_note(corpus, "b.md", "second", uid="same")
        graph = NoteGraph(corpus, settings=settings)

        report = graph.indexer.rebuild()

        assert report.indexed == ["same"]
        assert graph.store.get("same").path == "a.md"
        (error,) = report.failed
        assert error.path.name == "b.md"
        assert "Duplicate uid" in error.reason

    def test_search_index_follows_graph(self, fresh):
        fresh.indexer.rebuild()
        assert [r.id for r in fresh.query.search("Nobody")] == ["misc/lonely"]


class TestRefresh:
    """Targeted re-indexing of changed paths."""

    @pytest.fixture
    def graph(self, fresh):
        fresh.indexer.rebuild()
        return fresh

    def test_unchanged_file_short_circuits(self, graph, sample_corpus):
        version = graph.store.version
        report = graph.indexer.refresh([sample_corpus / "vue/computed.md"])

        assert report.unchanged == ["vue/computed"]
        assert report.indexed == []
        assert graph.store.version == version

    def test_modified_file(self, graph, sample_corpus):
        write_note(sample_corpus, "vue/computed.md", "No links any more.", title="Computed Properties")

        report = graph.indexer.refresh(["vue/computed.md"])

        assert report.indexed == ["vue/computed"]
        assert graph.query.backlinks("vue/reactivity.md") == []

    def test_deleted_file_leaves_dangling_links(self, graph, sample_corpus):
        (sample_corpus / "vue/watchers.md").unlink()

        report = graph.indexer.refresh([sample_corpus / "vue/watchers.md"])

        assert report.removed == ["vue/watchers"]
        assert graph.query.forward_links("vue/reactivity.md") == ["vue/computed.md"]
        assert ("vue/reactivity", "watchers") in {(d.source, d.raw_target) for d in graph.query.dangling()}
        assert graph.query.search("side effects") == []

    def test_new_file_resolves_dangling_link(self, graph, sample_corpus):
        write_note(sample_corpus, "react/Missing Note.md", "Now it exists.")

        report = graph.indexer.refresh([sample_corpus / "react/Missing Note.md"])

        assert report.indexed == ["react/Missing Note"]
        assert graph.query.backlinks("react/Missing Note.md") == ["react/hooks.md"]
        assert graph.query.dangling() == []

    def test_failed_reparse_retracts_previous_version(self, graph, sample_corpus):
        path = sample_corpus / "vue/computed.md"
        path.write_text("---\ntitle: [broken\n---\n")

        report = graph.indexer.refresh([path])

        assert len(report.failed) == 1
        assert "vue/computed" not in graph.store
        assert graph.indexer.state(path) == DocumentState.FAILED
        assert graph.query.search("cached") == []
        assert "Computed Properties" in {d.raw_target for d in graph.query.dangling()}

        write_note(sample_corpus, "vue/computed.md", "Fixed.", title="Computed Properties")
        report = graph.indexer.refresh([path])

        assert report.indexed == ["vue/computed"]
        assert graph.indexer.state(path) == DocumentState.INDEXED
        assert "vue/computed.md" not in graph.indexer.failures

    def test_uid_change_replaces_old_id(self, graph, sample_corpus):
        write_note(sample_corpus, "misc/lonely.md", "Still lonely.", uid="lonely-v2")

        graph.indexer.refresh(["misc/lonely.md"])

        assert "misc/lonely" not in graph.store
        assert graph.store.get("lonely-v2").path == "misc/lonely.md"
        graph.store.check_consistency()

    def test_untracked_paths_ignored(self, graph, sample_corpus, tmp_path):
        (sample_corpus / "notes.txt").write_text("not a note")
        outside = tmp_path / "elsewhere.md"
        outside.write_text("outside the corpus")

        report = graph.indexer.refresh(
            [sample_corpus / "notes.txt", outside, sample_corpus / ".obsidian/app.md"]
        )

        assert (report.indexed, report.removed, report.failed) == ([], [], [])

    def test_move_is_remove_plus_add(self, graph, sample_corpus):
        old = sample_corpus / "misc/lonely.md"
        new = sample_corpus / "archive/lonely.md"
        new.parent.mkdir()
        old.rename(new)

        report = graph.indexer.refresh([old, new])

        assert report.removed == ["misc/lonely"]
        assert report.indexed == ["archive/lonely"]


class TestCancellationAndTimeouts:
    """Cooperative cancellation and per-file timeouts."""

    def test_cancel_before_start(self, fresh):
        cancel = threading.Event()
        cancel.set()

        report = fresh.indexer.rebuild(cancel)

        assert report.cancelled
        assert report.indexed == []
        assert len(fresh.store) == 0

    def test_cancel_keeps_committed_documents(self, fresh, monkeypatch):
        cancel = threading.Event()
        original = fresh.store.upsert

        def upsert_then_cancel(doc, refs):
            change = original(doc, refs)
            cancel.set()
            return change

        monkeypatch.setattr(fresh.store, "upsert", upsert_then_cancel)
        report = fresh.indexer.rebuild(cancel)

        assert report.cancelled
        assert report.indexed == ["misc/lonely"]
        assert "misc/lonely" in fresh.store
        assert [r.id for r in fresh.query.search("Nobody")] == ["misc/lonely"]

        monkeypatch.undo()
        report = fresh.indexer.rebuild()
        assert report.unchanged == ["misc/lonely"]
        assert len(report.indexed) == 4

    def test_slow_file_reported_as_parse_error(self, corpus, monkeypatch):
        write_note(corpus, "a.md", "fast")
        write_note(corpus, "slow.md", "slow")
        write_note(corpus, "z.md", "fast")
        real_parse = incremental.parse_document

        def slow_parse(path, root):
            if path.name == "slow.md":
                time.sleep(1.0)
            return real_parse(path, root)

        monkeypatch.setattr(incremental, "parse_document", slow_parse)
        graph = NoteGraph(corpus, settings=Settings(workers=2, parse_timeout=0.2))

        report = graph.indexer.rebuild()

        assert sorted(report.indexed) == ["a", "z"]
        (error,) = report.failed
        assert error.path.name == "slow.md"
        assert "Timed out" in error.reason

    def test_queued_file_not_charged_for_slow_neighbour(self, corpus, monkeypatch):
        write_note(corpus, "a_slow.md", "slow")
        write_note(corpus, "b.md", "fast")
        graph = NoteGraph(corpus, settings=Settings(workers=1, parse_timeout=0.3))
        graph.indexer.rebuild()
        real_parse = incremental.parse_document

        def slow_parse(path, root):
            if path.name == "a_slow.md":
                time.sleep(1.0)
            return real_parse(path, root)

        monkeypatch.setattr(incremental, "parse_document", slow_parse)
        report = graph.indexer.rebuild()

        assert [e.path.name for e in report.failed] == ["a_slow.md"]
        assert report.unchanged == ["b"]
        assert "b" in graph.store
        assert graph.indexer.state("b.md") == DocumentState.INDEXED


class TestStateMachine:
    """Lifecycle bookkeeping."""

    def test_unknown_path_is_unseen(self, fresh):
        assert fresh.indexer.state("nope.md") == DocumentState.UNSEEN

    def test_illegal_transition_raises(self, fresh):
        with pytest.raises(InvariantViolation):
            fresh.indexer._transition("x.md", DocumentState.INDEXED)

    def test_report_to_dict(self, fresh, sample_corpus):
        (sample_corpus / "broken.md").write_text("---\ntitle: [oops\n---\n")
        summary = fresh.indexer.rebuild().to_dict()

        assert summary["indexed"] == 5
        assert summary["failed"][0]["path"].endswith("broken.md")
        assert summary["cancelled"] is False
