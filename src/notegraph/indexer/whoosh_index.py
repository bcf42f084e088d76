"""Whoosh-based term-frequency search index."""

from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from whoosh import index, scoring
from whoosh.fields import ID, KEYWORD, TEXT, Schema
from whoosh.filedb.filestore import RamStorage
from whoosh.qparser import FieldsPlugin, MultifieldParser, OrGroup
from whoosh.query import NullQuery, Or, Term

from ..config import BODY_FIELD_BOOST, TITLE_FIELD_BOOST
from ..models import Document

log = logging.getLogger(__name__)


class WhooshIndex:
    """Keyword search over document titles and bodies.

    Scoring is plain term frequency; title postings carry TITLE_FIELD_BOOST so
    one title hit outweighs several body hits. Tag filtering happens outside
    the index against the graph snapshot, so tags are stored but never scored.
    """

    def __init__(self, index_dir: Path | None = None):
        """Initialize the Whoosh index.

        Args:
            index_dir: Directory for index storage. None keeps the index in memory.
        """
        self._index_dir = index_dir
        self._index: index.Index | None = None
        self._writer = None
        self._schema = Schema(
            id=ID(stored=True, unique=True),
            path=ID(stored=True),
            title=TEXT(stored=True, field_boost=TITLE_FIELD_BOOST),
            body=TEXT(field_boost=BODY_FIELD_BOOST),
            tags=KEYWORD(stored=True, commas=True),
        )

    def _ensure_index(self) -> index.Index:
        """Ensure index exists and return it."""
        if self._index is not None:
            return self._index

        if self._index_dir is None:
            self._index = RamStorage().create_index(self._schema)
            return self._index

        self._index_dir.mkdir(parents=True, exist_ok=True)

        if index.exists_in(str(self._index_dir)):
            self._index = index.open_dir(str(self._index_dir))
        else:
            self._index = index.create_in(str(self._index_dir), self._schema)

        return self._index

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Group index updates into one commit.

        Updates made inside the block become searchable together when it
        exits. An exception discards the whole batch.
        """
        if self._writer is not None:
            yield
            return

        writer = self._ensure_index().writer()
        self._writer = writer
        try:
            yield
        except BaseException:
            writer.cancel()
            raise
        else:
            writer.commit()
        finally:
            self._writer = None

    def _write(self, fn) -> None:
        if self._writer is not None:
            fn(self._writer)
            return
        writer = self._ensure_index().writer()
        try:
            fn(writer)
        except BaseException:
            writer.cancel()
            raise
        writer.commit()

    def _fields(self, doc: Document) -> dict:
        return {
            "id": doc.id,
            "path": doc.path,
            "title": doc.title,
            "body": doc.raw_body,
            "tags": ",".join(sorted(doc.tags)),
        }

    def index_document(self, doc: Document) -> None:
        """Add or replace a document."""
        self._write(lambda writer: writer.update_document(**self._fields(doc)))

    def index_documents(self, docs: Iterable[Document]) -> None:
        """Add or replace many documents in a single transaction."""
        docs = list(docs)
        if not docs:
            return

        def write_all(writer) -> None:
            for doc in docs:
                writer.update_document(**self._fields(doc))

        self._write(write_all)

    def delete_document(self, doc_id: str) -> None:
        """Delete a document by id. Unknown ids are ignored."""
        self._write(lambda writer: writer.delete_by_term("id", doc_id))

    def search(self, query: str) -> list[tuple[str, float]]:
        """Score every document matching query.

        Returns:
            (document id, score) pairs for all hits, unordered beyond Whoosh's own ranking.
        """
        if not query.strip():
            return []

        ix = self._ensure_index()
        with ix.searcher(weighting=scoring.Frequency()) as searcher:
            parser = MultifieldParser(["title", "body"], schema=self._schema, group=OrGroup)
            # Plain text only: tags and paths are never scored
            parser.remove_plugin_class(FieldsPlugin)

            try:
                parsed_query = parser.parse(query)
            except Exception:
                parsed_query = None

            if parsed_query is None or parsed_query is NullQuery:
                # Fall back to plain terms run through the body analyzer
                analyzer = self._schema["body"].analyzer
                terms = [token.text for token in analyzer(query)]
                if not terms:
                    return []
                parsed_query = Or(
                    [Term(field, term) for term in terms for field in ("title", "body")]
                )

            results = searcher.search(parsed_query, limit=None)
            return [(hit["id"], float(hit.score)) for hit in results]

    def clear(self) -> None:
        """Clear all documents from the index."""
        if self._index is not None:
            self._index.close()
            self._index = None

        if self._index_dir is None:
            self._ensure_index()
            return

        # Remove and recreate the index
        if self._index_dir.exists():
            shutil.rmtree(self._index_dir)

        self._index_dir.mkdir(parents=True, exist_ok=True)
        self._index = index.create_in(str(self._index_dir), self._schema)
        log.debug("Cleared search index at %s", self._index_dir)

    def doc_count(self) -> int:
        """Return the number of documents in the index."""
        ix = self._ensure_index()
        return ix.doc_count()
