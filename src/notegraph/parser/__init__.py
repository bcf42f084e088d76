"""Markdown parsing with frontmatter and link extraction."""

from ..errors import ParseError
from .links import extract_external_links, extract_inline_tags, extract_links, extract_references, parse_link_text
from .markdown import LoadResult, discover_files, load_corpus, parse_document
from .title_index import TitleIndex, build_title_index

__all__ = [
    "parse_document",
    "load_corpus",
    "discover_files",
    "LoadResult",
    "ParseError",
    "extract_references",
    "extract_links",
    "extract_external_links",
    "extract_inline_tags",
    "parse_link_text",
    "TitleIndex",
    "build_title_index",
]
