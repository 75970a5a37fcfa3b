"""Tests for the LLM provider and answer synthesis."""

import json

import httpx
import pytest

from textbook_rag.config import GenerationConfig
from textbook_rag.exceptions import ConfigurationError, SynthesisError
from textbook_rag.generation.providers import GroqLLMProvider, LLMProvider
from textbook_rag.generation.synthesizer import (
    AnswerSynthesizer,
    build_prompt,
    format_page_range,
)
from textbook_rag.models.query_result import LLMResponse, TokenUsage
from textbook_rag.models.vector import SearchResult, VectorMetadata


class FakeLLMProvider(LLMProvider):
    def __init__(self, text: str = "Mitochondria produce ATP (p. 4).", error: Exception | None = None) -> None:
        self.prompts: list[str] = []
        self.text = text
        self.error = error

    @property
    def model(self) -> str:
        return "fake-llm"

    async def complete(self, prompt: str) -> LLMResponse:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return LLMResponse(
            text=self.text,
            model="fake-llm",
            usage=TokenUsage(prompt_tokens=50, completion_tokens=10, total_tokens=60),
        )


def _result(text: str, page_start: int, page_end: int, title: str = "Cell Biology") -> SearchResult:
    return SearchResult(
        id=f"c{page_start}",
        text=text,
        metadata=VectorMetadata(
            book_id="b1",
            book_title=title,
            subject="Biology",
            page_start=page_start,
            page_end=page_end,
        ),
        score=0.9,
    )


@pytest.fixture
def chunks() -> list[SearchResult]:
    return [
        _result("Mitochondria are the powerhouse of the cell.", 4, 4),
        _result("ATP synthase couples proton flow to ATP production.", 10, 12),
    ]


class TestBuildPrompt:
    def test_page_range_format(self) -> None:
        assert format_page_range(4, 4) == "p. 4"
        assert format_page_range(10, 12) == "pp. 10-12"

    def test_includes_question_and_numbered_chunks(self, chunks: list[SearchResult]) -> None:
        prompt = build_prompt("What do mitochondria do?", chunks)

        assert "Question: What do mitochondria do?" in prompt
        assert "[1] Mitochondria are the powerhouse of the cell." in prompt
        assert "Source: Cell Biology, p. 4" in prompt
        assert "[2] ATP synthase" in prompt
        assert "Source: Cell Biology, pp. 10-12" in prompt
        assert prompt.index("[1]") < prompt.index("[2]")

    def test_instructs_to_use_only_chunks(self, chunks: list[SearchResult]) -> None:
        assert "ONLY the information in the text chunks" in build_prompt("q", chunks)


class TestAnswerSynthesizer:
    @pytest.mark.asyncio
    async def test_returns_answer_with_usage(self, chunks: list[SearchResult]) -> None:
        provider = FakeLLMProvider()
        answer = await AnswerSynthesizer(provider).synthesize("What do mitochondria do?", chunks)

        assert answer.text == "Mitochondria produce ATP (p. 4)."
        assert answer.model == "fake-llm"
        assert answer.usage.total_tokens == 60
        assert len(provider.prompts) == 1

    @pytest.mark.asyncio
    async def test_empty_completion_raises(self, chunks: list[SearchResult]) -> None:
        synthesizer = AnswerSynthesizer(FakeLLMProvider(text="   "))

        with pytest.raises(SynthesisError, match="empty completion"):
            await synthesizer.synthesize("q", chunks)

    @pytest.mark.asyncio
    async def test_unexpected_provider_error_is_wrapped(self, chunks: list[SearchResult]) -> None:
        synthesizer = AnswerSynthesizer(FakeLLMProvider(error=RuntimeError("boom")))

        with pytest.raises(SynthesisError, match="boom"):
            await synthesizer.synthesize("q", chunks)

    @pytest.mark.asyncio
    async def test_configuration_error_passes_through(self, chunks: list[SearchResult]) -> None:
        synthesizer = AnswerSynthesizer(FakeLLMProvider(error=ConfigurationError("no key")))

        with pytest.raises(ConfigurationError):
            await synthesizer.synthesize("q", chunks)


class TestGroqLLMProvider:
    @pytest.mark.asyncio
    async def test_posts_chat_completion(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(
                200,
                json={
                    "model": "llama3-8b-8192",
                    "choices": [{"message": {"role": "assistant", "content": "An answer."}}],
                    "usage": {"prompt_tokens": 120, "completion_tokens": 30, "total_tokens": 150},
                },
            )

        provider = GroqLLMProvider(
            GenerationConfig(), api_key="gsk-test", transport=httpx.MockTransport(handler)
        )
        response = await provider.complete("prompt text")
        await provider.aclose()

        assert response.text == "An answer."
        assert response.usage == TokenUsage(
            prompt_tokens=120, completion_tokens=30, total_tokens=150
        )
        request = captured[0]
        assert request.url.path.endswith("/chat/completions")
        assert request.headers["Authorization"] == "Bearer gsk-test"
        payload = json.loads(request.content)
        assert payload["model"] == "llama3-8b-8192"
        assert payload["temperature"] == 0.1
        assert payload["max_tokens"] == 1000
        assert payload["messages"] == [{"role": "user", "content": "prompt text"}]

    @pytest.mark.asyncio
    async def test_missing_usage_defaults_to_zero(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                200, json={"choices": [{"message": {"content": "Answer"}}]}
            )
        )
        provider = GroqLLMProvider(GenerationConfig(), api_key="k", transport=transport)

        response = await provider.complete("p")
        assert response.usage == TokenUsage()
        assert response.model == "llama3-8b-8192"

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="oops"))
        provider = GroqLLMProvider(GenerationConfig(), api_key="k", transport=transport)

        with pytest.raises(SynthesisError) as exc_info:
            await provider.complete("p")
        assert exc_info.value.details["status_code"] == 500

    @pytest.mark.asyncio
    async def test_missing_api_key(self) -> None:
        provider = GroqLLMProvider(GenerationConfig(), api_key=None)

        with pytest.raises(ConfigurationError, match="GROQ_API_KEY"):
            await provider.complete("p")

    @pytest.mark.asyncio
    async def test_no_choices_yields_empty_text(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
        provider = GroqLLMProvider(GenerationConfig(), api_key="k", transport=transport)

        response = await provider.complete("p")
        assert response.text == ""
