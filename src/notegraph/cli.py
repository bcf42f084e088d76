"""
notegraph: CLI for a linked Markdown note corpus

Thin wrapper around notegraph.core.NoteGraph.

Usage:
    notegraph index                    # Scan the corpus and save a snapshot
    notegraph search "query"           # Full-text search
    notegraph backlinks notes/a.md     # Who links here
    notegraph tags                     # Tag counts
    notegraph path a.md b.md           # Shortest link chain
"""

import asyncio
import json
import sys
import time
from pathlib import Path
from typing import Optional

import click


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def format_table(rows: list[dict], columns: list[str], max_widths: Optional[dict] = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        return val[: limit - 3] + "..." if len(val) > limit else val

    widths = {col: max([len(col)] + [len(cell(row, col)) for row in rows]) for col in columns}

    lines = [
        "  ".join(col.upper().ljust(widths[col]) for col in columns),
        "  ".join("-" * widths[col] for col in columns),
    ]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns).rstrip())

    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _open_graph(ctx: click.Context):
    """Open the corpus graph and bring it up to date with the files."""
    from .config import get_root
    from .core import NoteGraph
    from .errors import ConfigurationError

    root: Optional[Path] = ctx.obj.get("root")
    try:
        root = root or get_root()
        if not root.is_dir():
            raise ConfigurationError(f"Corpus root is not a directory: {root}")
        graph = NoteGraph.open(root)
    except ConfigurationError as e:
        fail(str(e))

    report = graph.last_report
    if report is None:
        report = run_async(graph.build())
    return graph, report


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version="0.1.0", prog_name="notegraph")
@click.option(
    "--root",
    "-r",
    type=click.Path(file_okay=False, path_type=Path),
    help="Corpus root (default: $NOTEGRAPH_ROOT or nearest .notegraph.yaml)",
)
@click.option("--log-level", help="Log level (default: $NOTEGRAPH_LOG_LEVEL or INFO)")
@click.pass_context
def cli(ctx: click.Context, root: Optional[Path], log_level: Optional[str]):
    """notegraph: link graph, tags and search for Markdown notes.

    \b
    Quick start:
      notegraph --root ~/notes index
      notegraph search "reactivity" --tags=vue
      notegraph backlinks vue/reactivity.md
      notegraph orphans
    """
    from ._logging import configure_logging

    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["root"] = root


# ─────────────────────────────────────────────────────────────────────────────
# Index Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def index(ctx: click.Context, as_json: bool):
    """Scan the corpus and save a snapshot."""
    graph, report = _open_graph(ctx)
    snapshot_path = graph.save()

    if as_json:
        output({**report.to_dict(), "snapshot": str(snapshot_path)}, as_json=True)
        return

    click.echo(
        f"Indexed {len(report.indexed)}, unchanged {len(report.unchanged)}, "
        f"removed {len(report.removed)}, failed {len(report.failed)}"
    )
    for error in report.failed:
        click.echo(f"  ! {error.path}: {error.reason}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool):
    """Show document, edge and tag counts."""
    graph, _ = _open_graph(ctx)
    result = run_async(graph.status())

    if as_json:
        output(result.model_dump(mode="json"), as_json=True)
        return

    for key, value in result.model_dump().items():
        click.echo(f"{key}: {value}")


@cli.command()
@click.pass_context
def watch(ctx: click.Context):
    """Re-index files as they change. Stop with Ctrl-C."""
    graph, _ = _open_graph(ctx)

    def report_refresh(report):
        click.echo(
            f"Re-indexed {len(report.indexed)}, removed {len(report.removed)}, failed {len(report.failed)}"
        )

    click.echo(f"Watching {graph.root} (Ctrl-C to stop)")
    with graph.watch(on_refresh=report_refresh):
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
    graph.save()


# ─────────────────────────────────────────────────────────────────────────────
# Search Command
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("query", required=False, default="")
@click.option("--tags", "-t", help="Filter by tags (comma-separated, all must match)")
@click.option("--limit", "-n", default=10, help="Max results")
@click.option("--offset", default=0, help="Skip this many results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search(ctx: click.Context, query: str, tags: Optional[str], limit: int, offset: int, as_json: bool):
    """Search notes by text and/or tags.

    \b
    Examples:
      notegraph search "computed properties"
      notegraph search "store" --tags=vue,state
      notegraph search --tags=draft
    """
    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    if not query.strip() and not tag_list:
        fail("Give a query, --tags, or both")

    graph, _ = _open_graph(ctx)
    results = run_async(graph.search(query, tags=tag_list, limit=limit, offset=offset))

    if as_json:
        output([r.model_dump() for r in results], as_json=True)
        return

    if not results:
        click.echo("No results found.")
        return

    rows = [{"path": r.path, "title": r.title, "score": f"{r.score:.2f}"} for r in results]
    click.echo(format_table(rows, ["path", "title", "score"], {"path": 40, "title": 35}))


# ─────────────────────────────────────────────────────────────────────────────
# Graph Commands
# ─────────────────────────────────────────────────────────────────────────────


def _list_output(items: list[str], as_json: bool, empty: str) -> None:
    if as_json:
        output(items, as_json=True)
    elif not items:
        click.echo(empty)
    else:
        click.echo("\n".join(items))


@cli.command()
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def backlinks(ctx: click.Context, path: str, as_json: bool):
    """List notes that link to PATH."""
    graph, _ = _open_graph(ctx)
    _list_output(run_async(graph.backlinks(path)), as_json, "No backlinks.")


@cli.command()
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def links(ctx: click.Context, path: str, as_json: bool):
    """List notes PATH links to."""
    graph, _ = _open_graph(ctx)
    _list_output(run_async(graph.forward_links(path)), as_json, "No links.")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def tags(ctx: click.Context, as_json: bool):
    """List tags with document counts."""
    graph, _ = _open_graph(ctx)
    counts = run_async(graph.tags())

    if as_json:
        output([tc.model_dump() for tc in counts], as_json=True)
        return

    if not counts:
        click.echo("No tags found.")
        return

    for tc in counts:
        click.echo(f"  {tc.tag}: {tc.count}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def orphans(ctx: click.Context, as_json: bool):
    """List notes with no links in or out."""
    graph, _ = _open_graph(ctx)
    _list_output(run_async(graph.orphans()), as_json, "No orphans.")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ambiguities(ctx: click.Context, as_json: bool):
    """List link targets that match more than one note."""
    graph, _ = _open_graph(ctx)
    found = run_async(graph.ambiguities())

    if as_json:
        output([a.model_dump() for a in found], as_json=True)
        return

    if not found:
        click.echo("No ambiguous links.")
        return

    for ambiguity in found:
        click.echo(f"[[{ambiguity.raw_target}]] -> {ambiguity.chosen}")
        for candidate in ambiguity.candidates[1:]:
            click.echo(f"    also: {candidate}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def dangling(ctx: click.Context, as_json: bool):
    """List links whose target matches no note."""
    graph, _ = _open_graph(ctx)
    found = run_async(graph.dangling())

    if as_json:
        output([d.model_dump() for d in found], as_json=True)
        return

    if not found:
        click.echo("No dangling links.")
        return

    rows = [{"source": d.source, "target": d.raw_target, "kind": d.kind} for d in found]
    click.echo(format_table(rows, ["source", "target", "kind"], {"source": 40, "target": 40}))


@cli.command("path")
@click.argument("start")
@click.argument("goal")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def shortest_path(ctx: click.Context, start: str, goal: str, as_json: bool):
    """Shortest chain of links from START to GOAL."""
    graph, _ = _open_graph(ctx)
    chain = run_async(graph.shortest_path(start, goal))

    if as_json:
        output(chain, as_json=True)
        return

    if chain is None:
        click.echo(f"No path from {start} to {goal}.")
        sys.exit(1)

    click.echo(" -> ".join(chain))


@cli.command()
@click.argument("target")
@click.option("--from", "source", help="Path of the linking note, for relative targets")
@click.option("--strict", is_flag=True, help="Fail when several notes match")
@click.pass_context
def resolve(ctx: click.Context, target: str, source: Optional[str], strict: bool):
    """Show which note a [[TARGET]] link points to."""
    import warnings

    from .errors import AmbiguousLinkError, DanglingLinkWarning

    graph, _ = _open_graph(ctx)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DanglingLinkWarning)
        try:
            path = graph.resolve(target, source=source, strict=strict)
        except AmbiguousLinkError as e:
            fail(str(e))

    if path is None:
        fail(f"Unresolved link target '{target}'")
    click.echo(path)


def main():
    """Entry point for the notegraph CLI."""
    cli()


if __name__ == "__main__":
    main()
