"""Wikilink and Markdown link extraction."""

from __future__ import annotations

import logging
import posixpath
import re
from urllib.parse import unquote

from markdown_it import MarkdownIt

from ..models import LinkKind, LinkReference

log = logging.getLogger(__name__)

# [[Target]], [[Target|Display]], [[Target#Heading]], ![[Embed]]
# The inner group may be empty so that [[]] can be reported instead of ignored.
WIKILINK_PATTERN = re.compile(r"(!?)\[\[([^\[\]\n]*)\]\]")

# [text](path), [text](<path with spaces>), [text](path "title"), ![alt](path)
MDLINK_PATTERN = re.compile(
    r"(!?)\[([^\[\]\n]*)\]\(\s*(<[^<>\n]*>|[^\s()<>]+)(?:\s+(?:\"[^\"\n]*\"|'[^'\n]*'))?\s*\)"
)

# Inline code spans: a run of backticks closed by a run of equal length.
INLINE_CODE_PATTERN = re.compile(r"(?<!`)(`+)(?!`)((?:(?!\n[ \t]*\n).)+?)(?<!`)\1(?!`)", re.DOTALL)

# Inline #tags. Must not follow a word character, '#' or '/', so anchors in
# URLs and '##' headings are skipped; must start with a letter.
INLINE_TAG_PATTERN = re.compile(r"(?<![\w#/&])#([A-Za-z_][\w/-]*)")

URL_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")

# Files an embed may point at that are never notes.
ATTACHMENT_EXTENSIONS = frozenset(
    {
        ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".bmp", ".ico",
        ".pdf", ".mp3", ".mp4", ".webm", ".wav", ".ogg", ".mov",
        ".zip", ".gz", ".tar", ".html", ".htm", ".css", ".js", ".ts",
        ".json", ".txt", ".csv", ".canvas", ".excalidraw",
    }
)

# Extensions a Markdown link may carry and still point at a note. Anything else
# (source files, images, archives) is an attachment.
NOTE_LINK_EXTENSIONS = frozenset({"", ".md"})

_md = MarkdownIt("commonmark")


def mask_code(body: str) -> str:
    """Blank out code blocks and inline code spans.

    Masked characters become spaces and newlines are kept, so offsets and
    line numbers in the returned string match the original body.
    """
    lines = body.split("\n")
    for token in _md.parse(body):
        if token.type in ("fence", "code_block") and token.map:
            start, end = token.map
            for i in range(start, min(end, len(lines))):
                lines[i] = _blank(lines[i])
    masked = "\n".join(lines)
    return INLINE_CODE_PATTERN.sub(lambda m: _blank(m.group(0)), masked)


def _blank(text: str) -> str:
    return re.sub(r"[^\n]", " ", text)


def _mask_links(text: str) -> str:
    text = WIKILINK_PATTERN.sub(lambda m: _blank(m.group(0)), text)
    return MDLINK_PATTERN.sub(lambda m: _blank(m.group(0)), text)


def is_external(target: str) -> bool:
    """Return True for URLs with a scheme (http:, mailto:, ...) or '//host'."""
    return bool(URL_SCHEME_PATTERN.match(target)) or target.startswith("//")


def normalize_target(target: str, *, keep_root: bool = False) -> str:
    """Normalize a link target.

    - Strips whitespace
    - Normalizes path separators
    - Removes .md extension
    - Removes trailing slashes (and the leading one unless ``keep_root``)
    """
    target = target.strip().replace("\\", "/")

    if target.lower().endswith(".md"):
        target = target[:-3]

    rooted = target.startswith("/")
    target = target.strip("/")
    if keep_root and rooted and target:
        return "/" + target
    return target


def _split_wikilink(inner: str) -> tuple[str, str | None, str | None]:
    """Split wikilink text into (target, anchor, display)."""
    # Obsidian escapes the pipe inside tables: [[Target\|Display]]
    inner = inner.replace("\\|", "|")
    target_part, pipe, display = inner.partition("|")
    target, hash_, anchor = target_part.partition("#")
    return (
        target.strip(),
        (anchor.strip() or None) if hash_ else None,
        (display.strip() or None) if pipe else None,
    )


def _split_mdlink(destination: str) -> tuple[str, str | None]:
    """Split a Markdown link destination into (path, anchor)."""
    if destination.startswith("<") and destination.endswith(">"):
        destination = destination[1:-1]
    path, hash_, anchor = destination.partition("#")
    return unquote(path).strip(), (unquote(anchor).strip() or None) if hash_ else None


def _is_note_path(path: str) -> bool:
    ext = posixpath.splitext(path)[1].lower()
    return ext == ".md" or ext not in ATTACHMENT_EXTENSIONS


def _is_note_link(path: str) -> bool:
    return posixpath.splitext(path)[1].lower() in NOTE_LINK_EXTENSIONS


class _Match:
    __slots__ = ("offset", "kind", "raw_target", "target", "anchor", "display")

    def __init__(
        self,
        offset: int,
        kind: LinkKind,
        raw_target: str,
        target: str,
        anchor: str | None,
        display: str | None,
    ) -> None:
        self.offset = offset
        self.kind = kind
        self.raw_target = raw_target
        self.target = target
        self.anchor = anchor
        self.display = display


def _wikilink_matches(source: str, masked: str) -> list[_Match]:
    matches: list[_Match] = []
    for m in WIKILINK_PATTERN.finditer(masked):
        bang, inner = m.group(1), m.group(2)
        raw_target, anchor, display = _split_wikilink(inner)

        if not raw_target:
            if anchor:
                # [[#Heading]] points inside the same document
                log.debug("%s: in-document anchor [[#%s]] skipped", source, anchor)
            else:
                log.warning("%s: empty link target %r dropped", source, m.group(0))
            continue

        kind: LinkKind = "embed" if bang else "wikilink"
        if kind == "embed" and not _is_note_path(raw_target):
            continue

        target = normalize_target(raw_target)
        if not target:
            log.warning("%s: empty link target %r dropped", source, m.group(0))
            continue

        matches.append(_Match(m.start(), kind, raw_target, target, anchor, display))
    return matches


def _mdlink_matches(source: str, masked: str) -> list[_Match]:
    matches: list[_Match] = []
    for m in MDLINK_PATTERN.finditer(masked):
        bang, text, destination = m.group(1), m.group(2), m.group(3)
        path, anchor = _split_mdlink(destination)

        if is_external(path):
            continue
        if not path:
            # [text](#anchor) stays inside the document
            continue
        if not _is_note_link(path):
            continue

        target = normalize_target(path, keep_root=True)
        if not target:
            continue

        kind: LinkKind = "embed" if bang else "mdlink"
        matches.append(_Match(m.start(), kind, path, target, anchor, text.strip() or None))
    return matches


def extract_references(source: str, body: str) -> list[LinkReference]:
    """Extract cross references from a document body.

    Args:
        source: Id of the document the body belongs to.
        body: Markdown body (frontmatter already removed).

    Returns:
        LinkReferences in document order. External URLs, attachments and
        anything inside code are excluded.
    """
    masked = mask_code(body)

    wikilinks = _wikilink_matches(source, masked)

    # Wikilink spans are blanked so '[[a]](b)' is not read twice
    without_wiki = WIKILINK_PATTERN.sub(lambda m: _blank(m.group(0)), masked)
    mdlinks = _mdlink_matches(source, without_wiki)

    found = sorted(wikilinks + mdlinks, key=lambda match: match.offset)

    references: list[LinkReference] = []
    byte_offset = 0
    line = 1
    cursor = 0
    for match in found:
        segment = body[cursor:match.offset]
        byte_offset += len(segment.encode("utf-8"))
        line += segment.count("\n")
        cursor = match.offset

        references.append(
            LinkReference(
                source=source,
                raw_target=match.raw_target,
                target=match.target,
                anchor=match.anchor,
                display_text=match.display,
                kind=match.kind,
                byte_offset=byte_offset,
                line=line,
            )
        )

    return references


def extract_links(body: str) -> list[str]:
    """Extract unique normalized link targets from markdown content.

    Args:
        body: Markdown content to extract links from.

    Returns:
        List of unique link targets, in first-seen order.
    """
    seen: set[str] = set()
    links: list[str] = []
    for ref in extract_references("", body):
        if ref.target not in seen:
            seen.add(ref.target)
            links.append(ref.target)
    return links


def extract_external_links(body: str) -> list[str]:
    """Return external URLs referenced by Markdown links, in document order."""
    masked = mask_code(body)
    urls: list[str] = []
    for m in MDLINK_PATTERN.finditer(masked):
        destination = m.group(3)
        if destination.startswith("<") and destination.endswith(">"):
            destination = destination[1:-1]
        if is_external(destination):
            urls.append(destination)
    return urls


def extract_inline_tags(body: str) -> set[str]:
    """Collect inline #tags outside code and headings."""
    masked = _mask_links(mask_code(body))
    return {m.group(1).rstrip("/") for m in INLINE_TAG_PATTERN.finditer(masked)}


def parse_link_text(source: str, text: str) -> LinkReference | None:
    """Build a reference from bare link text such as ``Target#Heading|Label``.

    Returns None when the text names no target.
    """
    inner = text.strip()
    if inner.startswith("[[") and inner.endswith("]]"):
        inner = inner[2:-2]
    raw_target, anchor, display = _split_wikilink(inner)
    target = normalize_target(raw_target)
    if not target:
        return None
    return LinkReference(
        source=source,
        raw_target=raw_target,
        target=target,
        anchor=anchor,
        display_text=display,
        kind="wikilink",
    )
