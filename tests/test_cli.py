"""Tests for the notegraph CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from conftest import write_note
from notegraph.cli import cli, format_table


@pytest.fixture
def invoke(runner: CliRunner, sample_corpus: Path):
    """Run a CLI command against the sample corpus with logging kept quiet."""

    def _invoke(*args: str):
        return runner.invoke(cli, ["--root", str(sample_corpus), "--log-level", "ERROR", *args])

    return _invoke


# ─────────────────────────────────────────────────────────────────────────────
# Formatting
# ─────────────────────────────────────────────────────────────────────────────


class TestFormatTable:
    """Tests for format_table helper."""

    def test_empty_rows(self):
        assert format_table([], ["a"]) == ""

    def test_header_and_truncation(self):
        table = format_table([{"path": "x" * 60, "n": 1}], ["path", "n"], {"path": 10})
        header, rule, row = table.splitlines()

        assert header.split() == ["PATH", "N"]
        assert set(rule.replace(" ", "")) == {"-"}
        assert row.startswith("xxxxxxx...")


# ─────────────────────────────────────────────────────────────────────────────
# Index Commands
# ─────────────────────────────────────────────────────────────────────────────


class TestIndex:
    """index and status."""

    def test_index_saves_snapshot(self, invoke, sample_corpus):
        result = invoke("index", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["indexed"] == 5
        assert data["failed"] == []
        assert Path(data["snapshot"]) == sample_corpus / ".notegraph" / "snapshot.json"
        assert Path(data["snapshot"]).exists()

    def test_second_index_restores_snapshot(self, invoke):
        invoke("index")
        result = invoke("index", "--json")

        data = json.loads(result.stdout)
        assert data["indexed"] == 0
        assert data["unchanged"] == 5

    def test_index_text_lists_failures(self, invoke, sample_corpus):
        (sample_corpus / "broken.md").write_text("---\ntitle: [oops\n---\n")

        result = invoke("index")

        assert result.exit_code == 0
        assert "Indexed 5" in result.stdout
        assert "failed 1" in result.stdout
        assert "broken.md" in result.stdout

    def test_status_json(self, invoke):
        result = invoke("status", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["documents"] == 5
        assert data["dangling"] == 1

    def test_missing_root(self, runner, tmp_path):
        result = runner.invoke(cli, ["--root", str(tmp_path / "nope"), "--log-level", "ERROR", "status"])
        assert result.exit_code == 1
        assert "not a directory" in result.output

    def test_no_root_configured(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(cli, ["--log-level", "ERROR", "status"])
        assert result.exit_code == 1
        assert "No note corpus found" in result.output

    def test_root_from_environment(self, runner, sample_corpus, monkeypatch):
        monkeypatch.setenv("NOTEGRAPH_ROOT", str(sample_corpus))
        result = runner.invoke(cli, ["--log-level", "ERROR", "tags", "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)[0] == {"tag": "vue", "count": 3}


# ─────────────────────────────────────────────────────────────────────────────
# Search Command
# ─────────────────────────────────────────────────────────────────────────────


class TestSearch:
    """search command."""

    def test_text_search_table(self, invoke):
        result = invoke("search", "dependencies")

        assert result.exit_code == 0, result.output
        assert "PATH" in result.stdout
        assert "vue/reactivity.md" in result.stdout

    def test_tag_only_json(self, invoke):
        result = invoke("search", "--tags", "vue,core", "--json")

        assert result.exit_code == 0, result.output
        assert [r["path"] for r in json.loads(result.stdout)] == ["vue/reactivity.md"]

    def test_limit_and_offset(self, invoke):
        result = invoke("search", "--tags", "vue", "--limit", "1", "--offset", "1", "--json")
        assert [r["id"] for r in json.loads(result.stdout)] == ["vue/reactivity"]

    def test_no_results(self, invoke):
        result = invoke("search", "xylophone")
        assert result.exit_code == 0
        assert "No results found." in result.stdout

    def test_requires_query_or_tags(self, invoke):
        result = invoke("search")
        assert result.exit_code == 1
        assert "Give a query" in result.output


# ─────────────────────────────────────────────────────────────────────────────
# Graph Commands
# ─────────────────────────────────────────────────────────────────────────────


class TestGraphCommands:
    """backlinks, links, tags, orphans, ambiguities, dangling, path, resolve."""

    def test_backlinks(self, invoke):
        result = invoke("backlinks", "vue/computed.md")
        assert result.stdout.splitlines() == ["vue/reactivity.md"]

    def test_backlinks_none(self, invoke):
        result = invoke("backlinks", "misc/lonely.md")
        assert "No backlinks." in result.stdout

    def test_links_json(self, invoke):
        result = invoke("links", "vue/reactivity.md", "--json")
        assert json.loads(result.stdout) == ["vue/computed.md", "vue/watchers.md"]

    def test_tags_text(self, invoke):
        result = invoke("tags")
        assert result.stdout.splitlines() == ["  vue: 3", "  core: 1", "  react: 1"]

    def test_orphans(self, invoke):
        assert invoke("orphans").stdout.strip() == "misc/lonely.md"

    def test_dangling_json(self, invoke):
        (link,) = json.loads(invoke("dangling", "--json").stdout)
        assert link["source"] == "react/hooks"
        assert link["raw_target"] == "Missing Note"

    def test_ambiguities(self, invoke, sample_corpus):
        assert "No ambiguous links." in invoke("ambiguities").stdout

        write_note(sample_corpus, "a/Dup.md", "one")
        write_note(sample_corpus, "b/Dup.md", "two")
        write_note(sample_corpus, "linker.md", "[[Dup]]")

        lines = invoke("ambiguities").stdout.splitlines()
        assert lines == ["[[Dup]] -> a/Dup.md", "    also: b/Dup.md"]

    def test_path(self, invoke):
        result = invoke("path", "vue/computed.md", "vue/watchers.md")
        assert result.stdout.strip() == "vue/computed.md -> vue/reactivity.md -> vue/watchers.md"

    def test_no_path(self, invoke):
        result = invoke("path", "misc/lonely.md", "vue/computed.md")
        assert result.exit_code == 1
        assert "No path" in result.stdout

    def test_resolve(self, invoke):
        result = invoke("resolve", "Computed Properties")
        assert result.stdout.strip() == "vue/computed.md"

    def test_resolve_unknown(self, invoke):
        result = invoke("resolve", "Nowhere")
        assert result.exit_code == 1
        assert "Unresolved" in result.output

    def test_resolve_strict_ambiguous(self, invoke, sample_corpus):
        write_note(sample_corpus, "a/Dup.md", "one")
        write_note(sample_corpus, "b/Dup.md", "two")

        assert invoke("resolve", "Dup").stdout.strip() == "a/Dup.md"

        result = invoke("resolve", "Dup", "--strict")
        assert result.exit_code == 1
        assert "Ambiguous" in result.output
