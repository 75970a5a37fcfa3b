"""RAG orchestration: textbook ingest and grounded question answering.

Ingest runs ``validating → parsing → embedding → persisting → indexing``.
The document store is written first and the vector index second; an
index failure after a successful persist is logged and heals on the
next ``initialize()``.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import BinaryIO

from textbook_rag.config import AppConfig
from textbook_rag.embedding.embedder import Embedder
from textbook_rag.embedding.providers import CohereEmbeddingProvider
from textbook_rag.exceptions import (
    ConfigurationError,
    IngestError,
    ParseError,
    PersistenceError,
    QueryError,
    ValidationError,
)
from textbook_rag.generation.providers import GroqLLMProvider
from textbook_rag.generation.synthesizer import AnswerSynthesizer
from textbook_rag.ingestion.chunker import PageChunker
from textbook_rag.ingestion.parser import DocumentParser, detect_format
from textbook_rag.models.book import Book
from textbook_rag.models.chat import ChatMessage, ChatSession, Source
from textbook_rag.models.chunk import Chunk, Embedding
from textbook_rag.models.query_result import (
    IngestProgress,
    IngestResult,
    ProgressStage,
    QueryResult,
    SourceCitation,
    TokenUsage,
)
from textbook_rag.models.stats import DatabaseSnapshot, DatabaseStats
from textbook_rag.models.vector import SearchResult, VectorEntry, VectorMetadata
from textbook_rag.retrieval.rerank import apply_mmr, hybrid_rerank
from textbook_rag.retrieval.vector_index import VectorIndex
from textbook_rag.storage.database import DocumentStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IngestProgress], None]
DocumentInput = bytes | bytearray | str | Path | BinaryIO

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant information in the uploaded textbooks "
    "to answer your question."
)
DEFAULT_TITLE = "Untitled Textbook"
DEFAULT_SUBJECT = "General"


class RAGPipeline:
    """Composes parser, chunker, embedder, store, index and synthesizer.

    All collaborators are passed in; ``build_pipeline`` wires the
    production ones from an ``AppConfig``. The pipeline is the single
    owner of the vector index.

    Args:
        config: Application configuration.
        store: Durable document store.
        index: In-memory vector index.
        embedder: Batched embedder.
        synthesizer: Answer synthesizer.
        parser: Document parser, created if omitted.
        chunker: Page chunker, created from ``config.chunking`` if omitted.
    """

    def __init__(
        self,
        config: AppConfig,
        store: DocumentStore,
        index: VectorIndex,
        embedder: Embedder,
        synthesizer: AnswerSynthesizer,
        parser: DocumentParser | None = None,
        chunker: PageChunker | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._index = index
        self._embedder = embedder
        self._synthesizer = synthesizer
        self._parser = parser or DocumentParser()
        self._chunker = chunker or PageChunker(config.chunking)
        # Held across each store change the index has to mirror
        self._index_lock = asyncio.Lock()

    @property
    def index(self) -> VectorIndex:
        return self._index

    @property
    def store(self) -> DocumentStore:
        return self._store

    async def initialize(self) -> int:
        """Create the schema and load every persisted embedding into the index."""
        await asyncio.to_thread(self._store.initialize)
        return await self.reload_index()

    async def reload_index(self) -> int:
        """Upsert all persisted entries into the index.

        Safe to call repeatedly and while an ingest is running: entries
        are merged by id, nothing is dropped. The snapshot is read and
        applied under the index lock, so a book deleted meanwhile is not
        brought back.

        Returns:
            Number of entries loaded from the store.
        """
        async with self._index_lock:
            entries = await asyncio.to_thread(self._store.load_index_entries)
            self._index.add(entries)
        logger.info("Vector index loaded %d entries from the document store", len(entries))
        return len(entries)

    async def aclose(self) -> None:
        """Close the provider HTTP clients."""
        await self._embedder.aclose()
        await self._synthesizer.aclose()

    # ── Ingest ──────────────────────────────────────────────────────────────

    async def process_textbook(
        self,
        file: DocumentInput,
        title: str,
        subject: str,
        on_progress: ProgressCallback | None = None,
        filename: str | None = None,
    ) -> IngestResult:
        """Parse, chunk, embed, persist and index one textbook.

        Args:
            file: Raw bytes, a path, or a binary file object.
            title: Book title, defaults to "Untitled Textbook" when blank.
            subject: Subject tag, defaults to "General" when blank.
            on_progress: Receives an IngestProgress after each step.
            filename: Original filename, used for format detection.

        Returns:
            The completed book with chunk and embedding counts.

        Raises:
            IngestError: Naming the failed stage, raised from the cause.
        """
        started = time.perf_counter()

        def emit(stage: ProgressStage, current: int, total: int, message: str) -> None:
            if on_progress is not None:
                on_progress(
                    IngestProgress(stage=stage, current=current, total=total, message=message)
                )

        stage = "validating"
        book: Book | None = None
        try:
            data, filename = await self._read_input(file, filename)
            if not data:
                raise ValidationError("Invalid file: file is empty", {"filename": filename})
            detect_format(data, filename)

            book = Book(
                title=title.strip() or DEFAULT_TITLE,
                subject=subject.strip() or DEFAULT_SUBJECT,
                byte_size=len(data),
                status="processing",
            )
            logger.info(
                "Ingesting '%s' (%s, %d bytes) as book %s",
                book.title,
                book.subject,
                book.byte_size,
                book.id,
            )

            stage = "parsing"
            emit("parsing", 0, 1, "Parsing document...")
            document = await asyncio.to_thread(self._parser.parse_bytes, data, filename)
            chunks = self._chunker.chunk(
                document, book.id, subject=book.subject, embed_version=self._embedder.model
            )
            if not chunks:
                raise ParseError("Document produced no chunks", {"filename": filename})
            book.page_count = document.page_count
            emit(
                "parsing",
                1,
                1,
                f"Parsed {document.page_count} pages into {len(chunks)} chunks",
            )

            stage = "embedding"
            emit("embedding", 0, len(chunks), "Generating embeddings...")
            result = await self._embedder.embed_many(
                [chunk.text for chunk in chunks],
                on_progress=lambda done, total: emit(
                    "embedding", done, total, f"Embedded {done}/{total} chunks"
                ),
            )
            embeddings = [
                Embedding(
                    id=chunk.id,
                    book_id=book.id,
                    subject=book.subject,
                    dim=len(vector),
                    values=vector,
                    embed_version=result.model,
                )
                for chunk, vector in zip(chunks, result.vectors, strict=True)
            ]

            stage = "persisting"
            emit("persisting", 0, 1, "Saving to local database...")
            # persist and index as one step relative to reloads and deletes
            async with self._index_lock:
                book = await asyncio.to_thread(self._store.save_ingest, book, chunks, embeddings)
                emit("persisting", 1, 1, f"Saved {len(chunks)} chunks and embeddings")

                emit("indexing", 0, len(chunks), "Adding to vector index...")
                self._index_book(book, chunks, embeddings)
                emit("indexing", len(chunks), len(chunks), "Indexing complete")
        except Exception as exc:
            logger.error("Ingest failed during %s: %s", stage, exc)
            await self._record_failure(book, stage, exc)
            raise IngestError(stage, exc) from exc

        processing_time_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Completed '%s': %d chunks in %.0f ms", book.title, len(chunks), processing_time_ms
        )
        return IngestResult(
            book=book,
            total_chunks=len(chunks),
            total_embeddings=len(embeddings),
            processing_time_ms=processing_time_ms,
        )

    async def stream_textbook(
        self,
        file: DocumentInput,
        title: str,
        subject: str,
        filename: str | None = None,
    ) -> AsyncIterator[IngestProgress | IngestResult]:
        """Ingest a textbook, yielding progress events then the result.

        Closing the iterator early cancels the ingest. A persist that has
        already started still commits or rolls back as a whole.

        Raises:
            IngestError: If the ingest fails.
        """
        queue: asyncio.Queue[IngestProgress | IngestResult | Exception] = asyncio.Queue()

        async def run() -> None:
            try:
                result = await self.process_textbook(
                    file, title, subject, on_progress=queue.put_nowait, filename=filename
                )
            except Exception as exc:
                queue.put_nowait(exc)
            else:
                queue.put_nowait(result)

        task = asyncio.create_task(run())
        try:
            while True:
                item = await queue.get()
                if isinstance(item, Exception):
                    raise item
                yield item
                if isinstance(item, IngestResult):
                    return
        finally:
            if not task.done():
                task.cancel()

    async def _read_input(
        self, file: DocumentInput, filename: str | None
    ) -> tuple[bytes, str | None]:
        if isinstance(file, (bytes, bytearray)):
            return bytes(file), filename
        if isinstance(file, (str, Path)):
            path = Path(file)
            if not path.is_file():
                raise ValidationError(f"File not found: {path}", {"path": str(path)})
            return await asyncio.to_thread(path.read_bytes), filename or path.name
        if hasattr(file, "read"):
            data = await asyncio.to_thread(file.read)
            if not isinstance(data, (bytes, bytearray)):
                raise ValidationError("File object must be opened in binary mode")
            name = getattr(file, "name", None)
            return bytes(data), filename or (Path(name).name if isinstance(name, str) else None)
        raise ValidationError(f"Unsupported input type: {type(file).__name__}")

    async def _record_failure(self, book: Book | None, stage: str, exc: Exception) -> None:
        if book is None:
            return
        try:
            await asyncio.to_thread(
                self._store.record_failed_book, book, f"{stage}: {exc}"
            )
        except PersistenceError:
            logger.exception("Could not record failed status for book %s", book.id)

    def _index_book(self, book: Book, chunks: list[Chunk], embeddings: list[Embedding]) -> None:
        try:
            self._index.add(self._to_entries(book, chunks, embeddings))
        except Exception:
            logger.exception(
                "Indexing failed for book %s; entries will load on next startup", book.id
            )

    @staticmethod
    def _to_entries(
        book: Book, chunks: list[Chunk], embeddings: list[Embedding]
    ) -> list[VectorEntry]:
        return [
            VectorEntry(
                id=chunk.id,
                text=chunk.text,
                vector=embedding.values,
                metadata=VectorMetadata(
                    book_id=book.id,
                    book_title=book.title,
                    subject=chunk.subject,
                    page_start=chunk.page_start,
                    page_end=chunk.page_end,
                    section=chunk.section,
                    chunk_index=chunk.chunk_index,
                ),
            )
            for chunk, embedding in zip(chunks, embeddings, strict=True)
        ]

    # ── Query ───────────────────────────────────────────────────────────────

    async def query(
        self,
        question: str,
        subject: str | None = None,
        top_k: int | None = None,
        session_id: str | None = None,
    ) -> QueryResult:
        """Answer a question from the indexed textbooks.

        An empty retrieval is not an error: it returns a canned answer
        with no sources and does not call the LLM.
        With ``retrieval.rerank`` set, ``candidate_k`` cosine hits are
        re-scored by keyword overlap and thinned with MMR down to ``top_k``.

        Args:
            question: The user's question.
            subject: Restrict retrieval to this subject.
            top_k: Number of chunks to retrieve, defaults to ``retrieval.top_k``.
            session_id: Chat session to append the exchange to.

        Raises:
            QueryError: Naming the failed stage, raised from the cause.
        """
        top_k = top_k if top_k is not None else self._config.retrieval.top_k

        stage = "validating"
        try:
            if not question or not question.strip():
                raise ValidationError("Question must not be empty")
            if top_k < 1:
                raise ValidationError(f"top_k must be at least 1, got {top_k}", {"top_k": top_k})

            stage = "embedding"
            query_embedding = await self._embedder.embed_one(question)

            stage = "searching"
            results = self._search(question, query_embedding.vectors[0], subject, top_k)

            if not results:
                logger.info("No relevant chunks for query (subject=%s)", subject)
                result = QueryResult(
                    answer=NO_RESULTS_ANSWER,
                    sources=[],
                    model=self._synthesizer.model,
                    usage=TokenUsage(),
                )
            else:
                stage = "synthesizing"
                answer = await self._synthesizer.synthesize(question, results)
                result = QueryResult(
                    answer=answer.text,
                    sources=[self._format_source(r) for r in results],
                    model=answer.model,
                    usage=answer.usage,
                )
        except Exception as exc:
            logger.error("Query failed during %s: %s", stage, exc)
            raise QueryError(stage, exc) from exc

        if session_id is not None:
            await self._record_exchange(session_id, question, result)

        return result

    def _search(
        self, question: str, query_vector: list[float], subject: str | None, top_k: int
    ) -> list[SearchResult]:
        retrieval = self._config.retrieval
        if not retrieval.rerank:
            return self._index.search(query_vector, subject=subject, top_k=top_k)

        candidates, vectors = self._index.search_with_vectors(
            query_vector, subject=subject, top_k=max(top_k, retrieval.candidate_k)
        )
        by_id = dict(zip((c.id for c in candidates), vectors))
        ranked = hybrid_rerank(
            question, candidates, retrieval.cosine_weight, retrieval.keyword_weight
        )
        return apply_mmr(
            ranked, [by_id[r.id] for r in ranked], top_k=top_k, mmr_lambda=retrieval.mmr_lambda
        )

    def _format_source(self, result: SearchResult) -> SourceCitation:
        limit = self._config.retrieval.source_preview_chars
        text = result.text if len(result.text) <= limit else result.text[:limit] + "..."
        return SourceCitation(
            chunk_id=result.id,
            book_id=result.metadata.book_id,
            text=text,
            book_title=result.metadata.book_title,
            page_start=result.metadata.page_start,
            page_end=result.metadata.page_end,
            score=result.score,
        )

    async def _record_exchange(self, session_id: str, question: str, result: QueryResult) -> None:
        sources = [
            Source(
                chunk_id=s.chunk_id,
                book_id=s.book_id,
                book_title=s.book_title,
                page_start=s.page_start,
                page_end=s.page_end,
                relevance=s.score,
            )
            for s in result.sources
        ]
        try:
            await self.save_chat_message(session_id, "user", question)
            await self.save_chat_message(session_id, "ai", result.answer, sources)
        except PersistenceError:
            logger.exception("Could not record chat exchange for session %s", session_id)

    # ── Library management ──────────────────────────────────────────────────

    async def delete_book(self, book_id: str) -> bool:
        """Delete a book from the store, then drop its index entries.

        Args:
            book_id: Id of the book to delete.

        Returns:
            True if the book existed in the store.
        """
        async with self._index_lock:
            deleted = await asyncio.to_thread(self._store.delete_book, book_id)
            self._index.delete_by_book_id(book_id)
        return deleted

    async def get_book(self, book_id: str) -> Book | None:
        """Fetch one book by id, or None if it does not exist."""
        return await asyncio.to_thread(self._store.get_book, book_id)

    async def list_books(self, subject: str | None = None) -> list[Book]:
        """List books in upload order, optionally restricted to one subject."""
        return await asyncio.to_thread(self._store.list_books, subject)

    async def list_subjects(self) -> list[str]:
        """Distinct subjects of stored books, sorted."""
        return await asyncio.to_thread(self._store.list_subjects)

    async def get_database_stats(self) -> DatabaseStats:
        """Store record counts plus the number of vectors in the index."""
        stats = await asyncio.to_thread(self._store.stats)
        stats.vector_documents = len(self._index)
        return stats

    async def export_database(self) -> DatabaseSnapshot:
        """Dump every stored record for backup."""
        return await asyncio.to_thread(self._store.export_all)

    async def import_database(self, snapshot: DatabaseSnapshot) -> int:
        """Replace all stored data with ``snapshot`` and rebuild the index.

        Args:
            snapshot: A backup produced by ``export_database``.

        Returns:
            Number of entries in the rebuilt index.
        """
        async with self._index_lock:
            await asyncio.to_thread(self._store.import_all, snapshot)
            entries = await asyncio.to_thread(self._store.load_index_entries)
            return self._index.replace(entries)

    # ── Chat sessions ───────────────────────────────────────────────────────

    async def create_chat_session(
        self, user_id: str, subject: str, book_id: str | None = None
    ) -> ChatSession:
        """Start a chat session for a user, scoped to a subject and optionally one book."""
        session = ChatSession(user_id=user_id, subject=subject, book_id=book_id)
        return await asyncio.to_thread(self._store.create_chat_session, session)

    async def get_chat_sessions(
        self, user_id: str | None = None, subject: str | None = None
    ) -> list[ChatSession]:
        """Sessions filtered by user and/or subject, most recently active first."""
        return await asyncio.to_thread(self._store.get_chat_sessions, user_id, subject)

    async def get_chat_messages(self, session_id: str) -> list[ChatMessage]:
        """Messages of one session in the order they were sent."""
        return await asyncio.to_thread(self._store.get_chat_messages, session_id)

    async def save_chat_message(
        self,
        session_id: str,
        message_type: str,
        content: str,
        sources: list[Source] | None = None,
    ) -> ChatMessage:
        """Append a message to a session.

        Args:
            session_id: Target session id.
            message_type: "user" or "ai".
            content: Message text.
            sources: Citations attached to an "ai" message.

        Returns:
            The stored message.

        Raises:
            PersistenceError: If the session does not exist.
        """
        message = ChatMessage(
            session_id=session_id,
            type=message_type,
            content=content,
            sources=sources or [],
        )
        return await asyncio.to_thread(self._store.add_chat_message, message)


def build_pipeline(config: AppConfig) -> RAGPipeline:
    """Wire the production pipeline from configuration.

    Raises:
        ConfigurationError: If a configured provider is not supported.
    """
    if config.embedding.provider != "cohere":
        raise ConfigurationError(
            f"Unsupported embedding provider: {config.embedding.provider}",
            {"supported": ["cohere"]},
        )
    if config.generation.provider != "groq":
        raise ConfigurationError(
            f"Unsupported generation provider: {config.generation.provider}",
            {"supported": ["groq"]},
        )

    embedder = Embedder(
        CohereEmbeddingProvider(config.embedding, config.cohere_api_key), config.embedding
    )
    synthesizer = AnswerSynthesizer(GroqLLMProvider(config.generation, config.groq_api_key))
    return RAGPipeline(
        config=config,
        store=DocumentStore(config.storage.sqlite_path),
        index=VectorIndex(),
        embedder=embedder,
        synthesizer=synthesizer,
    )
