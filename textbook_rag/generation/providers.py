"""LLM provider clients."""

import logging
from abc import ABC, abstractmethod

import httpx

from textbook_rag.config import GenerationConfig
from textbook_rag.exceptions import ConfigurationError, SynthesisError
from textbook_rag.models.query_result import LLMResponse, TokenUsage

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """External service that completes a prompt."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Identifier of the completion model."""

    @abstractmethod
    async def complete(self, prompt: str) -> LLMResponse:
        """Complete a single user prompt.

        Raises:
            ConfigurationError: If credentials are missing.
            SynthesisError: If the provider call fails.
        """

    async def aclose(self) -> None:
        """Release any network resources."""


class GroqLLMProvider(LLMProvider):
    """Groq chat completions client (OpenAI-compatible API)."""

    def __init__(
        self,
        config: GenerationConfig,
        api_key: str | None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._api_key = api_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        # Pre-build base API parameters
        self.base_params = {
            "model": config.model,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": False,
        }

    @property
    def model(self) -> str:
        return self._config.model

    def _get_auth_header(self) -> dict:
        if not self._api_key:
            raise ConfigurationError(
                "GROQ_API_KEY not configured", {"provider": self._config.provider}
            )
        return {"Authorization": f"Bearer {self._api_key}"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def complete(self, prompt: str) -> LLMResponse:
        headers = self._get_auth_header()
        payload = {**self.base_params, "messages": [{"role": "user", "content": prompt}]}

        logger.debug("Requesting completion from %s (%d prompt chars)", self.model, len(prompt))
        try:
            response = await self._get_client().post(
                "/chat/completions", json=payload, headers=headers
            )
        except httpx.HTTPError as exc:
            raise SynthesisError(f"LLM request failed: {exc}") from exc

        if response.status_code >= 300:
            logger.error(
                "LLM request failed with status %d: %s",
                response.status_code,
                response.text[:500],
            )
            raise SynthesisError(
                f"LLM request failed with status {response.status_code}",
                {"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise SynthesisError("LLM response is not valid JSON") from exc

        choices = body.get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}
        usage = body.get("usage") or {}

        return LLMResponse(
            text=message.get("content") or "",
            model=body.get("model") or self.model,
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens") or 0,
                completion_tokens=usage.get("completion_tokens") or 0,
                total_tokens=usage.get("total_tokens") or 0,
            ),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
