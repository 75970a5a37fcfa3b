"""Page-bounded text chunker for textbooks."""

import logging
import math
import re
from dataclasses import dataclass, field

from textbook_rag.config import ChunkingConfig
from textbook_rag.exceptions import ParseError
from textbook_rag.models.chunk import Chunk
from textbook_rag.models.parsed import ParsedDocument

logger = logging.getLogger(__name__)

DEFAULT_TOKENS_PER_WORD = 1.3

# Heading patterns checked against the first lines of a page.
SECTION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^(chapter|section|unit|part)\s*\d+\b.*$", re.IGNORECASE),
    re.compile(r"^\d+\.\d+\s+\S.*$"),
    re.compile(r"^[IVX]+\.\s+\S.*$"),
    re.compile(r"^[A-Z][A-Z\s\d:,'&-]{3,}$"),
]

HEADING_SCAN_LINES = 3
MAX_SECTION_LABEL = 80


def estimate_tokens(text: str, tokens_per_word: float = DEFAULT_TOKENS_PER_WORD) -> int:
    """Estimate token count for a text string.

    Uses whitespace word count scaled by ``tokens_per_word``
    (about 1.3 tokens per English word).

    Args:
        text: The text to estimate tokens for.
        tokens_per_word: Scaling factor from words to tokens.

    Returns:
        Estimated token count.
    """
    return _tokens_for_words(len(text.split()), tokens_per_word)


def _tokens_for_words(word_count: int, tokens_per_word: float) -> int:
    # round() first so that e.g. 10 * 1.3 does not become 14
    return math.ceil(round(word_count * tokens_per_word, 6))


def detect_section_heading(page_text: str) -> str | None:
    """Return the heading line that opens a page, if any."""
    lines = [line.strip() for line in page_text.split("\n") if line.strip()]
    for line in lines[:HEADING_SCAN_LINES]:
        if any(pattern.match(line) for pattern in SECTION_PATTERNS):
            return line[:MAX_SECTION_LABEL]
    return None


@dataclass
class _Draft:
    page_start: int
    page_end: int
    section: str | None
    texts: list[str] = field(default_factory=list)
    word_count: int = 0


class PageChunker:
    """Splits a parsed document into page-bounded chunks.

    Chunking strategy:
    1. Whole consecutive pages are packed together while the estimate
       stays within ``target_tokens``.
    2. A page that opens with a heading starts a new chunk; the heading
       becomes the section label until the next heading.
    3. A page above ``max_tokens`` is split into near-equal word windows,
       each bounded to that single page.
    4. Blank pages are absorbed into the neighbouring chunk's page range.

    Args:
        config: ChunkingConfig with target_tokens, max_tokens and
                tokens_per_word settings.
    """

    def __init__(self, config: ChunkingConfig) -> None:
        self._config = config
        self._max_words = self._words_within(config.max_tokens)
        if self._max_words < 1:
            raise ValueError(
                f"max_tokens={config.max_tokens} cannot hold a single word "
                f"at {config.tokens_per_word} tokens per word"
            )
        self._target_tokens = min(config.target_tokens, config.max_tokens)

    def chunk(
        self,
        document: ParsedDocument,
        book_id: str,
        subject: str = "",
        embed_version: str = "",
    ) -> list[Chunk]:
        """Split a parsed document into chunks.

        Args:
            document: The parsed document.
            book_id: The owning book's id.
            subject: Subject tag copied onto every chunk.
            embed_version: Embedding scheme tag copied onto every chunk.

        Returns:
            Chunks in document order with ``chunk_index`` assigned.

        Raises:
            ParseError: If the document has no text to chunk.
        """
        if not document.has_text:
            raise ParseError(
                "Document contains no extractable text",
                {"source": document.source_name},
            )

        drafts = self._build_drafts(document.pages)

        chunks = [
            Chunk(
                book_id=book_id,
                subject=subject,
                page_start=draft.page_start,
                page_end=draft.page_end,
                section=draft.section,
                text=" ".join(draft.texts),
                token_count=_tokens_for_words(draft.word_count, self._config.tokens_per_word),
                chunk_index=index,
                embed_version=embed_version,
            )
            for index, draft in enumerate(drafts)
        ]

        logger.info(
            "Chunked %d pages into %d chunks (book %s)",
            document.page_count,
            len(chunks),
            book_id,
        )
        return chunks

    def _build_drafts(self, pages: list[str]) -> list[_Draft]:
        drafts: list[_Draft] = []
        current: _Draft | None = None
        section: str | None = None
        leading_blank: int | None = None

        for page_number, raw_page in enumerate(pages, start=1):
            text = _normalize(raw_page)

            if not text:
                tail = current or (drafts[-1] if drafts else None)
                if tail is not None:
                    tail.page_end = page_number
                elif leading_blank is None:
                    leading_blank = page_number
                continue

            page_start = page_number
            if leading_blank is not None:
                page_start, leading_blank = leading_blank, None

            heading = detect_section_heading(raw_page)
            if heading:
                section = heading

            words = text.split()
            if len(words) > self._max_words:
                if current is not None:
                    drafts.append(current)
                    current = None
                drafts.extend(self._split_page(words, page_start, page_number, section))
                continue

            if current is not None and (
                heading or not self._fits(current.word_count + len(words))
            ):
                drafts.append(current)
                current = None

            if current is None:
                current = _Draft(page_start=page_start, page_end=page_number, section=section)

            current.texts.append(text)
            current.word_count += len(words)
            current.page_end = page_number

        if current is not None:
            drafts.append(current)

        return drafts

    def _split_page(
        self, words: list[str], page_start: int, page_number: int, section: str | None
    ) -> list[_Draft]:
        """Split an oversized page into the fewest near-equal windows."""
        pieces = math.ceil(len(words) / self._max_words)
        size = math.ceil(len(words) / pieces)

        logger.debug(
            "Page %d has %d words, splitting into %d pieces", page_number, len(words), pieces
        )

        drafts: list[_Draft] = []
        for offset in range(0, len(words), size):
            window = words[offset:offset + size]
            drafts.append(
                _Draft(
                    # leading blank pages attach to the first piece only
                    page_start=page_start if offset == 0 else page_number,
                    page_end=page_number,
                    section=section,
                    texts=[" ".join(window)],
                    word_count=len(window),
                )
            )
        return drafts

    def _fits(self, word_count: int) -> bool:
        return _tokens_for_words(word_count, self._config.tokens_per_word) <= self._target_tokens

    def _words_within(self, token_budget: int) -> int:
        words = int(token_budget / self._config.tokens_per_word)
        while words > 0 and _tokens_for_words(words, self._config.tokens_per_word) > token_budget:
            words -= 1
        return words


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()
