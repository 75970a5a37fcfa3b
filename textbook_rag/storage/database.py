"""SQLite document store for books, chunks, embeddings and chat history."""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import numpy as np

from textbook_rag.exceptions import PersistenceError
from textbook_rag.models.book import Book, BookStatus
from textbook_rag.models.chat import ChatMessage, ChatSession, Source
from textbook_rag.models.chunk import Chunk, Embedding
from textbook_rag.models.stats import DatabaseSnapshot, DatabaseStats
from textbook_rag.models.vector import VectorEntry, VectorMetadata

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    subject TEXT NOT NULL,
    page_count INTEGER DEFAULT 0,
    byte_size INTEGER DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending',
    error_message TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_books_subject ON books(subject);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    subject TEXT NOT NULL,
    page_start INTEGER NOT NULL,
    page_end INTEGER NOT NULL,
    section TEXT,
    text TEXT NOT NULL,
    token_count INTEGER DEFAULT 0,
    chunk_index INTEGER DEFAULT 0,
    embed_version TEXT DEFAULT '',
    created_at TEXT NOT NULL,
    CHECK (page_start <= page_end)
);
CREATE INDEX IF NOT EXISTS idx_chunks_book_id ON chunks(book_id);
CREATE INDEX IF NOT EXISTS idx_chunks_subject ON chunks(subject);

CREATE TABLE IF NOT EXISTS embeddings (
    id TEXT PRIMARY KEY REFERENCES chunks(id) ON DELETE CASCADE,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    subject TEXT NOT NULL,
    dim INTEGER NOT NULL,
    vector BLOB NOT NULL,
    embed_version TEXT DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_embeddings_book_id ON embeddings(book_id);
CREATE INDEX IF NOT EXISTS idx_embeddings_subject ON embeddings(subject);

CREATE TABLE IF NOT EXISTS chat_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    subject TEXT NOT NULL,
    book_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chat_sessions_user_id ON chat_sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_chat_sessions_subject ON chat_sessions(subject);

CREATE TABLE IF NOT EXISTS chat_messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    sources_json TEXT
);
CREATE INDEX IF NOT EXISTS idx_chat_messages_session_id ON chat_messages(session_id);
"""


def get_connection(db_path: str | Path) -> sqlite3.Connection:
    """Create a connection to the SQLite database.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        A sqlite3 Connection with row_factory set to Row.
    """
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def initialize_database(db_path: str | Path) -> None:
    """Create the database schema if it doesn't exist.

    Args:
        db_path: Path to the SQLite database file.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()


class DocumentStore:
    """Durable CRUD over the RAG records, keyed by id.

    Every public method runs in its own transaction: a bulk write either
    commits every row or none of them. ``sqlite3`` errors surface as
    ``PersistenceError``.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Create the schema if it does not exist yet.

        Raises:
            PersistenceError: If the database cannot be created.
        """
        try:
            initialize_database(self._db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"Failed to initialize database: {exc}", {"db_path": str(self._db_path)}
            ) from exc

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        conn: sqlite3.Connection | None = None
        try:
            conn = get_connection(self._db_path)
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("Document store %s failed: %s", operation, exc)
            raise PersistenceError(f"Failed to {operation}: {exc}", {"operation": operation}) from exc
        finally:
            if conn is not None:
                conn.close()

    # ── Books ───────────────────────────────────────────────────────────────

    def add_book(self, book: Book) -> None:
        """Insert a single book row.

        Args:
            book: The book to store. Its id must be new.

        Raises:
            PersistenceError: If the insert fails, e.g. on a duplicate id.
        """
        with self._transaction("add book") as conn:
            _insert_book(conn, book)

    def get_book(self, book_id: str) -> Book | None:
        """Fetch a book by id.

        Args:
            book_id: The book id.

        Returns:
            The book, or None if no such book exists.
        """
        with self._transaction("get book") as conn:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return _row_to_book(row) if row else None

    def list_books(self, subject: str | None = None) -> list[Book]:
        """List books in creation order.

        Args:
            subject: If given, only books tagged with this subject.

        Returns:
            Matching books, oldest first.
        """
        with self._transaction("list books") as conn:
            if subject is None:
                rows = conn.execute("SELECT * FROM books ORDER BY created_at, id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM books WHERE subject = ? ORDER BY created_at, id",
                    (subject,),
                ).fetchall()
        return [_row_to_book(row) for row in rows]

    def list_subjects(self) -> list[str]:
        """Distinct book subjects in alphabetical order."""
        with self._transaction("list subjects") as conn:
            rows = conn.execute("SELECT DISTINCT subject FROM books ORDER BY subject").fetchall()
        return [row["subject"] for row in rows]

    def update_book_status(
        self, book_id: str, status: BookStatus, error_message: str | None = None
    ) -> None:
        """Set a book's status and error message, bumping ``updated_at``."""
        with self._transaction("update book status") as conn:
            conn.execute(
                "UPDATE books SET status = ?, error_message = ?, updated_at = ? WHERE id = ?",
                (status, error_message, datetime.now().isoformat(), book_id),
            )

    def record_failed_book(self, book: Book, error_message: str) -> None:
        """Store a book as ``failed`` without any chunks or embeddings."""
        failed = book.model_copy(
            update={"status": "failed", "error_message": error_message, "updated_at": datetime.now()}
        )
        with self._transaction("record failed book") as conn:
            conn.execute("DELETE FROM books WHERE id = ?", (book.id,))
            _insert_book(conn, failed)

    def delete_book(self, book_id: str) -> bool:
        """Delete a book and every chunk and embedding that references it.

        Returns:
            True if the book existed.
        """
        with self._transaction("delete book") as conn:
            conn.execute("DELETE FROM embeddings WHERE book_id = ?", (book_id,))
            conn.execute("DELETE FROM chunks WHERE book_id = ?", (book_id,))
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            deleted = cursor.rowcount > 0
        logger.info("Deleted book %s (existed=%s)", book_id, deleted)
        return deleted

    # ── Chunks & embeddings ─────────────────────────────────────────────────

    def add_chunks(self, chunks: list[Chunk]) -> None:
        """Insert chunks in one transaction; all or none are stored."""
        with self._transaction("add chunks") as conn:
            _insert_chunks(conn, chunks)

    def get_chunks(self, book_id: str | None = None, subject: str | None = None) -> list[Chunk]:
        """Fetch chunks filtered by book and/or subject.

        Args:
            book_id: Restrict to one book.
            subject: Restrict to one subject.

        Returns:
            Chunks ordered by book, then ``chunk_index``.
        """
        query, params = _filtered("SELECT * FROM chunks", book_id, subject)
        with self._transaction("get chunks") as conn:
            rows = conn.execute(query + " ORDER BY book_id, chunk_index", params).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def add_embeddings(self, embeddings: list[Embedding]) -> None:
        """Insert embeddings in one transaction. Each must match an existing chunk id."""
        with self._transaction("add embeddings") as conn:
            _insert_embeddings(conn, embeddings)

    def get_embeddings(
        self, book_id: str | None = None, subject: str | None = None
    ) -> list[Embedding]:
        """Fetch embeddings filtered by book and/or subject, vectors decoded to floats."""
        query, params = _filtered("SELECT * FROM embeddings", book_id, subject)
        with self._transaction("get embeddings") as conn:
            rows = conn.execute(query + " ORDER BY book_id, id", params).fetchall()
        return [_row_to_embedding(row) for row in rows]

    def save_ingest(self, book: Book, chunks: list[Chunk], embeddings: list[Embedding]) -> Book:
        """Persist a book with all of its chunks and embeddings atomically.

        The book is written as ``processing`` and only flipped to
        ``completed`` after every child row is in; all of it commits
        together or not at all.

        Returns:
            The stored book with status ``completed``.
        """
        now = datetime.now()
        pending = book.model_copy(update={"status": "processing", "updated_at": now})
        with self._transaction("save ingest") as conn:
            conn.execute("DELETE FROM books WHERE id = ?", (book.id,))
            _insert_book(conn, pending)
            _insert_chunks(conn, chunks)
            _insert_embeddings(conn, embeddings)
            conn.execute(
                "UPDATE books SET status = 'completed', error_message = NULL, updated_at = ? "
                "WHERE id = ?",
                (now.isoformat(), book.id),
            )
        logger.info(
            "Persisted book %s with %d chunks and %d embeddings",
            book.id,
            len(chunks),
            len(embeddings),
        )
        return pending.model_copy(update={"status": "completed", "error_message": None})

    def load_index_entries(self) -> list[VectorEntry]:
        """Return index entries for every completed book, in insertion order."""
        with self._transaction("load index entries") as conn:
            rows = conn.execute(
                """
                SELECT c.id, c.text, c.book_id, b.title AS book_title, c.subject,
                       c.page_start, c.page_end, c.section, c.chunk_index, e.vector
                FROM embeddings e
                JOIN chunks c ON c.id = e.id
                JOIN books b ON b.id = c.book_id
                WHERE b.status = 'completed'
                ORDER BY b.created_at, b.id, c.chunk_index
                """
            ).fetchall()
        return [
            VectorEntry(
                id=row["id"],
                text=row["text"],
                vector=_decode_vector(row["vector"]),
                metadata=VectorMetadata(
                    book_id=row["book_id"],
                    book_title=row["book_title"],
                    subject=row["subject"],
                    page_start=row["page_start"],
                    page_end=row["page_end"],
                    section=row["section"],
                    chunk_index=row["chunk_index"],
                ),
            )
            for row in rows
        ]

    # ── Chat ────────────────────────────────────────────────────────────────

    def create_chat_session(self, session: ChatSession) -> ChatSession:
        """Store a new chat session and return it."""
        with self._transaction("create chat session") as conn:
            _insert_chat_session(conn, session)
        return session

    def get_chat_session(self, session_id: str) -> ChatSession | None:
        """Fetch one chat session, or None if it does not exist."""
        with self._transaction("get chat session") as conn:
            row = conn.execute(
                "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return ChatSession(**dict(row)) if row else None

    def get_chat_sessions(
        self, user_id: str | None = None, subject: str | None = None
    ) -> list[ChatSession]:
        """Sessions filtered by user and/or subject, most recent first."""
        clauses: list[str] = []
        params: list[str] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if subject is not None:
            clauses.append("subject = ?")
            params.append(subject)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._transaction("get chat sessions") as conn:
            rows = conn.execute(
                f"SELECT * FROM chat_sessions{where} ORDER BY updated_at DESC", params
            ).fetchall()
        return [ChatSession(**dict(row)) for row in rows]

    def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        """Append a message and bump the session's ``updated_at``."""
        with self._transaction("add chat message") as conn:
            _insert_chat_message(conn, message)
            conn.execute(
                "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
                (message.timestamp.isoformat(), message.session_id),
            )
        return message

    def get_chat_messages(self, session_id: str) -> list[ChatMessage]:
        """Messages of a session in the order they were added."""
        with self._transaction("get chat messages") as conn:
            rows = conn.execute(
                "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY timestamp, rowid",
                (session_id,),
            ).fetchall()
        return [_row_to_chat_message(row) for row in rows]

    # ── Maintenance ─────────────────────────────────────────────────────────

    def stats(self) -> DatabaseStats:
        """Record counts, distinct subjects and total uploaded bytes.

        ``vector_documents`` is left at 0; the index owner fills it in.
        """
        with self._transaction("read stats") as conn:

            def count(table: str) -> int:
                return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

            total_size = conn.execute("SELECT COALESCE(SUM(byte_size), 0) FROM books").fetchone()[0]
            subjects = [
                row["subject"]
                for row in conn.execute("SELECT DISTINCT subject FROM books ORDER BY subject")
            ]
            return DatabaseStats(
                total_books=count("books"),
                total_chunks=count("chunks"),
                total_embeddings=count("embeddings"),
                total_chat_sessions=count("chat_sessions"),
                subjects=subjects,
                total_size=total_size,
            )

    def export_all(self) -> DatabaseSnapshot:
        """Read every table into a snapshot, in one transaction."""
        with self._transaction("export database") as conn:
            return DatabaseSnapshot(
                books=[_row_to_book(r) for r in conn.execute("SELECT * FROM books ORDER BY created_at, id")],
                chunks=[_row_to_chunk(r) for r in conn.execute("SELECT * FROM chunks ORDER BY book_id, chunk_index")],
                embeddings=[_row_to_embedding(r) for r in conn.execute("SELECT * FROM embeddings ORDER BY book_id, id")],
                chat_sessions=[ChatSession(**dict(r)) for r in conn.execute("SELECT * FROM chat_sessions ORDER BY created_at")],
                chat_messages=[_row_to_chat_message(r) for r in conn.execute("SELECT * FROM chat_messages ORDER BY timestamp, rowid")],
            )

    def import_all(self, snapshot: DatabaseSnapshot) -> None:
        """Replace the entire store with ``snapshot`` in one transaction."""
        with self._transaction("import database") as conn:
            for table in ("chat_messages", "chat_sessions", "embeddings", "chunks", "books"):
                conn.execute(f"DELETE FROM {table}")
            for book in snapshot.books:
                _insert_book(conn, book)
            _insert_chunks(conn, snapshot.chunks)
            _insert_embeddings(conn, snapshot.embeddings)
            for session in snapshot.chat_sessions:
                _insert_chat_session(conn, session)
            for message in snapshot.chat_messages:
                _insert_chat_message(conn, message)
        logger.info(
            "Imported %d books, %d chunks, %d embeddings",
            len(snapshot.books),
            len(snapshot.chunks),
            len(snapshot.embeddings),
        )


# ── Row helpers ─────────────────────────────────────────────────────────────


def _filtered(base: str, book_id: str | None, subject: str | None) -> tuple[str, list[str]]:
    clauses: list[str] = []
    params: list[str] = []
    if book_id is not None:
        clauses.append("book_id = ?")
        params.append(book_id)
    if subject is not None:
        clauses.append("subject = ?")
        params.append(subject)
    if clauses:
        base += " WHERE " + " AND ".join(clauses)
    return base, params


def _encode_vector(values: list[float]) -> bytes:
    return np.asarray(values, dtype=np.float32).tobytes()


def _decode_vector(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype=np.float32).tolist()


def _insert_book(conn: sqlite3.Connection, book: Book) -> None:
    conn.execute(
        """
        INSERT INTO books (id, title, subject, page_count, byte_size, status,
                           error_message, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            book.id,
            book.title,
            book.subject,
            book.page_count,
            book.byte_size,
            book.status,
            book.error_message,
            book.created_at.isoformat(),
            book.updated_at.isoformat(),
        ),
    )


def _insert_chunks(conn: sqlite3.Connection, chunks: list[Chunk]) -> None:
    conn.executemany(
        """
        INSERT INTO chunks (id, book_id, subject, page_start, page_end, section, text,
                            token_count, chunk_index, embed_version, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                c.id,
                c.book_id,
                c.subject,
                c.page_start,
                c.page_end,
                c.section,
                c.text,
                c.token_count,
                c.chunk_index,
                c.embed_version,
                c.created_at.isoformat(),
            )
            for c in chunks
        ],
    )


def _insert_embeddings(conn: sqlite3.Connection, embeddings: list[Embedding]) -> None:
    conn.executemany(
        """
        INSERT INTO embeddings (id, book_id, subject, dim, vector, embed_version, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                e.id,
                e.book_id,
                e.subject,
                e.dim,
                _encode_vector(e.values),
                e.embed_version,
                e.created_at.isoformat(),
            )
            for e in embeddings
        ],
    )


def _insert_chat_session(conn: sqlite3.Connection, session: ChatSession) -> None:
    conn.execute(
        """
        INSERT INTO chat_sessions (id, user_id, subject, book_id, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            session.id,
            session.user_id,
            session.subject,
            session.book_id,
            session.created_at.isoformat(),
            session.updated_at.isoformat(),
        ),
    )


def _insert_chat_message(conn: sqlite3.Connection, message: ChatMessage) -> None:
    conn.execute(
        """
        INSERT INTO chat_messages (id, session_id, type, content, timestamp, sources_json)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            message.id,
            message.session_id,
            message.type,
            message.content,
            message.timestamp.isoformat(),
            json.dumps([s.model_dump() for s in message.sources]),
        ),
    )


def _row_to_book(row: sqlite3.Row) -> Book:
    return Book(**dict(row))


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(**dict(row))


def _row_to_embedding(row: sqlite3.Row) -> Embedding:
    data = dict(row)
    data["values"] = _decode_vector(data.pop("vector"))
    return Embedding(**data)


def _row_to_chat_message(row: sqlite3.Row) -> ChatMessage:
    data = dict(row)
    sources_json = data.pop("sources_json")
    data["sources"] = [Source(**s) for s in json.loads(sources_json)] if sources_json else []
    return ChatMessage(**data)
