"""Full-text search index for notes.

Each vault has its own index directory holding a SQLite database with an
FTS5 table (title, content, tags) ranked by BM25. SQLite builds without
FTS5 fall back to a plain table scanned with substring matching.
"""

import asyncio
import re
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from ..exceptions import SearchIndexError, ValidationError
from ..models import Note, SearchResult
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..vault.storage import FileStorage

logger = get_logger(__name__)

DB_FILENAME = "notes.db"

FTS_TABLE = "notes_fts"
PLAIN_TABLE = "notes_plain"

FTS_SCHEMA_SQL = f"""
CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
    note_id UNINDEXED,
    title,
    content,
    tags,
    tokenize='unicode61'
);
"""

PLAIN_SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {PLAIN_TABLE} (
    note_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    tags TEXT NOT NULL
);
"""

# BM25 column weights: note_id, title, content, tags
BM25_WEIGHTS = (0.0, 10.0, 1.0, 5.0)

HIGHLIGHT_OPEN = "<b>"
HIGHLIGHT_CLOSE = "</b>"
SNIPPET_ELLIPSIS = "..."
SNIPPET_CHARS = 120

_TERM_PATTERN = re.compile(r"\w+", re.UNICODE)


def query_terms(query: str) -> list[str]:
    """Split free text into search terms; punctuation is dropped."""
    return _TERM_PATTERN.findall(query or "")


def build_match_expression(terms: list[str]) -> str:
    """Quote each term and allow prefix matches; terms are ANDed."""
    return " ".join(f'"{term}"*' for term in terms)


class SearchIndex:
    """
    Per-vault search index.

    Index paths are relative to the storage root, e.g. "vaults/<id>/index".

    Usage:
        index = SearchIndex(storage)
        await index.index_note("vaults/v1/index", note)
        results = await index.search("vaults/v1/index", "meeting", limit=10)
    """

    def __init__(self, storage: "FileStorage"):
        self.storage = storage

    def _db_path(self, index_path: str, operation: str) -> Path:
        if not index_path or not index_path.strip():
            raise ValidationError("Index path cannot be empty", operation=operation)
        return self.storage.resolve(index_path) / DB_FILENAME

    # ===================
    # Synchronous core
    # ===================

    def _connect(self, db_path: Path) -> sqlite3.Connection:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> bool:
        """Create the schema if needed. Returns True when FTS5 is in use."""
        existing = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        if FTS_TABLE in existing:
            return True
        if PLAIN_TABLE in existing:
            return False
        try:
            conn.executescript(FTS_SCHEMA_SQL)
            return True
        except sqlite3.OperationalError as e:
            # Typical message: "no such module: fts5"
            logger.info("FTS5 not available, falling back to plain-table search: %s", e)
            conn.executescript(PLAIN_SCHEMA_SQL)
            return False

    @staticmethod
    def _row_values(note: Note) -> tuple[str, str, str, str]:
        return (note.id, note.title, note.content, " ".join(note.expanded_tags()))

    def _write_notes(self, conn: sqlite3.Connection, notes: Iterable[Note], fts: bool) -> int:
        table = FTS_TABLE if fts else PLAIN_TABLE
        count = 0
        for note in notes:
            conn.execute(f"DELETE FROM {table} WHERE note_id = ?", (note.id,))
            conn.execute(
                f"INSERT INTO {table} (note_id, title, content, tags) VALUES (?, ?, ?, ?)",
                self._row_values(note),
            )
            count += 1
        return count

    def _index_sync(self, db_path: Path, note: Note) -> None:
        with closing(self._connect(db_path)) as conn:
            fts = self._ensure_schema(conn)
            with conn:
                self._write_notes(conn, [note], fts)

    def _remove_sync(self, db_path: Path, note_id: str) -> bool:
        if not db_path.exists():
            return False
        with closing(self._connect(db_path)) as conn:
            fts = self._ensure_schema(conn)
            table = FTS_TABLE if fts else PLAIN_TABLE
            with conn:
                cursor = conn.execute(f"DELETE FROM {table} WHERE note_id = ?", (note_id,))
            return cursor.rowcount > 0

    def _rebuild_sync(self, db_path: Path, notes: list[Note]) -> int:
        with closing(self._connect(db_path)) as conn:
            fts = self._ensure_schema(conn)
            table = FTS_TABLE if fts else PLAIN_TABLE
            with conn:
                conn.execute(f"DELETE FROM {table}")
                return self._write_notes(conn, notes, fts)

    def _count_sync(self, db_path: Path) -> int:
        if not db_path.exists():
            return 0
        with closing(self._connect(db_path)) as conn:
            fts = self._ensure_schema(conn)
            table = FTS_TABLE if fts else PLAIN_TABLE
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def _search_sync(self, db_path: Path, terms: list[str], limit: int) -> list[SearchResult]:
        if not db_path.exists():
            return []
        with closing(self._connect(db_path)) as conn:
            if self._ensure_schema(conn):
                return self._search_fts(conn, terms, limit)
            return self._search_plain(conn, terms, limit)

    def _search_fts(self, conn: sqlite3.Connection, terms: list[str], limit: int) -> list[SearchResult]:
        weights = ", ".join(str(w) for w in BM25_WEIGHTS)
        rows = conn.execute(
            f"""
            SELECT note_id,
                   bm25({FTS_TABLE}, {weights}) AS rank,
                   snippet({FTS_TABLE}, 1, ?, ?, ?, 8) AS title_snippet,
                   snippet({FTS_TABLE}, 2, ?, ?, ?, 16) AS content_snippet
            FROM {FTS_TABLE}
            WHERE {FTS_TABLE} MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (
                HIGHLIGHT_OPEN, HIGHLIGHT_CLOSE, SNIPPET_ELLIPSIS,
                HIGHLIGHT_OPEN, HIGHLIGHT_CLOSE, SNIPPET_ELLIPSIS,
                build_match_expression(terms),
                limit,
            ),
        ).fetchall()
        # bm25() is lower-is-better; flip it so higher = more relevant
        return [
            SearchResult(
                note_id=row["note_id"],
                score=-float(row["rank"]),
                title_snippet=row["title_snippet"] or "",
                content_snippet=row["content_snippet"] or "",
            )
            for row in rows
        ]

    def _search_plain(self, conn: sqlite3.Connection, terms: list[str], limit: int) -> list[SearchResult]:
        lowered = [term.lower() for term in terms]
        scored = []
        for row in conn.execute(f"SELECT note_id, title, content, tags FROM {PLAIN_TABLE}"):
            title, content, tags = row["title"].lower(), row["content"].lower(), row["tags"].lower()
            score = 0.0
            for term in lowered:
                hits = (
                    BM25_WEIGHTS[1] * title.count(term)
                    + BM25_WEIGHTS[2] * content.count(term)
                    + BM25_WEIGHTS[3] * tags.count(term)
                )
                if hits == 0:
                    break
                score += hits
            else:
                scored.append(
                    SearchResult(
                        note_id=row["note_id"],
                        score=score,
                        title_snippet=_excerpt(row["title"], lowered),
                        content_snippet=_excerpt(row["content"], lowered),
                    )
                )
        scored.sort(key=lambda result: result.score, reverse=True)
        return scored[:limit]

    # ===================
    # Public async API
    # ===================

    async def initialize_index(self, index_path: str) -> None:
        """Create the index database and schema if they do not exist."""
        db_path = self._db_path(index_path, "initialize_index")

        def _init() -> None:
            with closing(self._connect(db_path)) as conn:
                self._ensure_schema(conn)

        try:
            await asyncio.to_thread(_init)
        except (sqlite3.Error, OSError) as e:
            raise SearchIndexError(
                f"Failed to initialize search index: {e}", operation="initialize_index", entity_id=index_path
            ) from e

    async def index_note(self, index_path: str, note: Note) -> None:
        """Add a note to the index, replacing any previous entry for its id."""
        db_path = self._db_path(index_path, "index_note")
        try:
            await asyncio.to_thread(self._index_sync, db_path, note)
        except (sqlite3.Error, OSError) as e:
            raise SearchIndexError(f"Failed to index note: {e}", operation="index_note", entity_id=note.id) from e

    async def remove_from_index(self, index_path: str, note_id: str) -> bool:
        """Remove a note from the index. Returns False if it was not indexed."""
        if not note_id or not note_id.strip():
            raise ValidationError("Note id cannot be empty", operation="remove_from_index")
        db_path = self._db_path(index_path, "remove_from_index")
        try:
            return await asyncio.to_thread(self._remove_sync, db_path, note_id)
        except (sqlite3.Error, OSError) as e:
            raise SearchIndexError(
                f"Failed to remove note from index: {e}", operation="remove_from_index", entity_id=note_id
            ) from e

    async def search(self, index_path: str, query: str, limit: int = 20) -> list[SearchResult]:
        """
        Search notes in the index.

        Returns:
            Results sorted by relevance (highest score first); empty for a
            blank query

        Raises:
            ValidationError: If the index path is blank or limit is not positive
            SearchIndexError: If the query fails
        """
        db_path = self._db_path(index_path, "search")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError("Limit must be positive", operation="search")

        terms = query_terms(query)
        if not terms:
            return []

        try:
            return await asyncio.to_thread(self._search_sync, db_path, terms, limit)
        except (sqlite3.Error, OSError) as e:
            raise SearchIndexError(f'Search failed for query "{query}": {e}', operation="search") from e

    async def rebuild_index(self, index_path: str, notes: list[Note]) -> int:
        """
        Clear the index and re-index every note in one transaction.

        Returns:
            Number of notes indexed
        """
        db_path = self._db_path(index_path, "rebuild_index")
        try:
            count = await asyncio.to_thread(self._rebuild_sync, db_path, list(notes))
        except (sqlite3.Error, OSError) as e:
            raise SearchIndexError(
                f"Failed to rebuild search index: {e}", operation="rebuild_index", entity_id=index_path
            ) from e
        logger.info("Rebuilt index %s with %d notes", index_path, count)
        return count

    async def count(self, index_path: str) -> int:
        """Number of indexed notes."""
        db_path = self._db_path(index_path, "count")
        try:
            return await asyncio.to_thread(self._count_sync, db_path)
        except (sqlite3.Error, OSError) as e:
            raise SearchIndexError(f"Failed to count index: {e}", operation="count", entity_id=index_path) from e


def _excerpt(text: str, terms: list[str]) -> str:
    """Short window of text around the first matching term, highlighted."""
    lowered = text.lower()
    positions = [pos for pos in (lowered.find(term) for term in terms) if pos >= 0]
    if not positions:
        return text[:SNIPPET_CHARS]

    start = max(min(positions) - SNIPPET_CHARS // 3, 0)
    window = text[start:start + SNIPPET_CHARS]
    for term in terms:
        window = re.sub(
            re.escape(term),
            lambda m: f"{HIGHLIGHT_OPEN}{m.group(0)}{HIGHLIGHT_CLOSE}",
            window,
            flags=re.IGNORECASE,
        )
    prefix = SNIPPET_ELLIPSIS if start > 0 else ""
    suffix = SNIPPET_ELLIPSIS if start + SNIPPET_CHARS < len(text) else ""
    return f"{prefix}{window}{suffix}"
