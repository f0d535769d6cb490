"""Query embeddings through the OpenAI embeddings API (LiteLLM-compatible base URL)."""

from __future__ import annotations

from typing import Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from app.config import Settings, get_settings
from app.exceptions import RetrievalError
from app.infra.logging_config import get_logger

logger = get_logger("embeddings")


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbedder:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = self._settings.embedding_model
        self._dimensions = self._settings.embedding_dimensions
        self._client = client
        logger.info("Embedding model=%s dimensions=%s", self._model, self._dimensions)

    def _get_client(self) -> AsyncOpenAI:
        # Created on first use: AsyncOpenAI refuses to start without an API key.
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._settings.litellm_api_key,
                base_url=self._settings.litellm_api_base,
            )
        return self._client

    async def embed(self, text: str) -> list[float]:
        if not text.strip():
            raise ValueError("Cannot embed empty text")
        try:
            response = await self._get_client().embeddings.create(
                model=self._model,
                input=text,
                dimensions=self._dimensions,
            )
        except OpenAIError as e:
            raise RetrievalError(f"Embedding failed: {e}") from e
        return list(response.data[0].embedding)
