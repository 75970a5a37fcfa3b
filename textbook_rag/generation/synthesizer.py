"""Grounded answer synthesis over retrieved chunks."""

import logging

from textbook_rag.exceptions import ConfigurationError, SynthesisError
from textbook_rag.generation.providers import LLMProvider
from textbook_rag.models.query_result import SynthesizedAnswer
from textbook_rag.models.vector import SearchResult

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """Based on the following text chunks from textbooks, provide a comprehensive answer to the question.

Question: {question}

Text Chunks:
{context}

Instructions:
1. Answer using ONLY the information in the text chunks
2. Synthesize information from all relevant chunks
3. Provide a clear, structured answer
4. Include page references when citing specific information
5. If chunks contain conflicting information, note this
6. If the chunks do not contain enough information, say so

Answer:"""


def format_page_range(page_start: int, page_end: int) -> str:
    if page_start == page_end:
        return f"p. {page_start}"
    return f"pp. {page_start}-{page_end}"


def build_prompt(question: str, chunks: list[SearchResult]) -> str:
    """Build the grounding prompt: numbered chunks with provenance, then the question."""
    context = "\n".join(
        f"[{index}] {chunk.text}\n"
        f"Source: {chunk.metadata.book_title}, "
        f"{format_page_range(chunk.metadata.page_start, chunk.metadata.page_end)}\n"
        for index, chunk in enumerate(chunks, start=1)
    )
    return PROMPT_TEMPLATE.format(question=question, context=context)


class AnswerSynthesizer:
    """Asks an LLM to answer a question from retrieved chunks only."""

    def __init__(self, provider: LLMProvider) -> None:
        self._provider = provider

    @property
    def model(self) -> str:
        return self._provider.model

    async def aclose(self) -> None:
        await self._provider.aclose()

    async def synthesize(self, question: str, chunks: list[SearchResult]) -> SynthesizedAnswer:
        """Generate a grounded answer.

        Args:
            question: The user's question, included verbatim.
            chunks: Retrieved chunks, best first.

        Returns:
            The answer text with model identifier and token usage.

        Raises:
            ConfigurationError: If the provider has no credentials.
            SynthesisError: If the provider fails or returns no text.
        """
        prompt = build_prompt(question, chunks)

        try:
            response = await self._provider.complete(prompt)
        except (ConfigurationError, SynthesisError):
            raise
        except Exception as exc:
            raise SynthesisError(f"LLM provider error: {exc}") from exc

        if not response.text.strip():
            raise SynthesisError("LLM provider returned an empty completion", {"model": response.model})

        logger.info(
            "Generated answer with %s (%d chars, %d tokens)",
            response.model,
            len(response.text),
            response.usage.total_tokens,
        )
        return SynthesizedAnswer(text=response.text, model=response.model, usage=response.usage)
