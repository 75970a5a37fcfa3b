"""Embedding provider clients.

A provider performs one HTTP call for one batch of texts and returns the
vectors in input order. Batching, pacing and progress live in
``textbook_rag.embedding.embedder``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from textbook_rag.config import EmbeddingConfig
from textbook_rag.exceptions import ConfigurationError, EmbeddingError

logger = logging.getLogger(__name__)


def extract_embeddings(response_data: Any) -> list[list[float]]:
    """Normalize an embedding response body to ``list[list[float]]``.

    Two response shapes are recognized:
    - flat: ``{"embeddings": [[...], [...]]}``
    - by type: ``{"embeddings": {"float": [[...], [...]]}}``

    Anything else is rejected rather than guessed at.

    Args:
        response_data: The parsed JSON response body.

    Returns:
        Embedding vectors in the same order as the input texts.

    Raises:
        EmbeddingError: If the shape is not recognized or holds no vectors.
    """
    if not isinstance(response_data, dict):
        raise EmbeddingError(
            f"Unrecognized embedding response: expected an object, got {type(response_data).__name__}"
        )

    embeddings = response_data.get("embeddings")
    if isinstance(embeddings, dict):
        embeddings = embeddings.get("float")

    if not isinstance(embeddings, list) or not embeddings:
        raise EmbeddingError(
            "Embedding response does not contain vectors",
            details={"keys": sorted(response_data.keys())},
        )

    vectors: list[list[float]] = []
    for position, vector in enumerate(embeddings):
        if (
            not isinstance(vector, list)
            or not vector
            or not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in vector)
        ):
            raise EmbeddingError(
                "Embedding response holds a malformed vector",
                details={"position": position},
            )
        vectors.append([float(v) for v in vector])
    return vectors


class EmbeddingProvider(ABC):
    """External service that turns a batch of texts into vectors."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Identifier of the embedding model, used as the scheme version."""

    @abstractmethod
    async def embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        """Embed one batch of texts.

        Raises:
            ConfigurationError: If credentials are missing.
            EmbeddingError: If the call fails or the response is malformed.
        """

    async def aclose(self) -> None:
        """Release any network resources."""


class CohereEmbeddingProvider(EmbeddingProvider):
    """Cohere ``/v1/embed`` client over ``httpx.AsyncClient``.

    The API key is checked at the first call, not at construction, so
    an unconfigured provider does not break application startup.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        api_key: str | None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._api_key = api_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._config.model

    def _get_auth_header(self) -> dict:
        if not self._api_key:
            raise ConfigurationError(
                "COHERE_API_KEY not configured", {"provider": self._config.provider}
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

    def get_embed_payload(self, texts: list[str], input_type: str) -> dict:
        return {"texts": texts, "model": self._config.model, "input_type": input_type}

    async def embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        headers = self._get_auth_header()
        client = self._get_client()

        try:
            response = await client.post(
                "/v1/embed",
                json=self.get_embed_payload(texts, input_type),
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        if response.status_code >= 300:
            logger.error(
                "Embedding request failed with status %d: %s",
                response.status_code,
                response.text[:500],
            )
            raise EmbeddingError(
                f"Embedding request failed with status {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise EmbeddingError("Embedding response is not valid JSON") from exc

        return extract_embeddings(body)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
