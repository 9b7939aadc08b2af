"""Embedding service client (OpenAI-compatible `/embeddings` over httpx)."""
from __future__ import annotations

import logging
from typing import Protocol

import httpx

from nexus.config import settings
from nexus.core.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

MAX_INPUTS_PER_REQUEST = 96


class Embedder(Protocol):
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input, in input order."""
        ...


class OpenAIEmbedder:
    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-ada-002",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set. Document features require an embedding API key.")
        if not texts:
            return []

        vectors: list[list[float]] = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for offset in range(0, len(texts), MAX_INPUTS_PER_REQUEST):
                batch = texts[offset : offset + MAX_INPUTS_PER_REQUEST]
                vectors.extend(await self._embed_batch(client, batch))
        return vectors

    async def _embed_batch(self, client: httpx.AsyncClient, batch: list[str]) -> list[list[float]]:
        try:
            response = await client.post(
                f"{self.base_url}/embeddings",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"model": self.model, "input": batch},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Embedding request failed with %s", exc.response.status_code)
            raise UpstreamError(
                f"Embedding request failed ({exc.response.status_code})",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Embedding service unreachable: %s", exc)
            raise UpstreamError(f"Embedding service unreachable: {exc}") from exc

        data = sorted((response.json() or {}).get("data") or [], key=lambda item: item.get("index", 0))
        if len(data) != len(batch):
            raise UpstreamError(f"Embedding service returned {len(data)} vectors for {len(batch)} inputs")
        return [list(item["embedding"]) for item in data]


def get_embedder() -> Embedder:
    return OpenAIEmbedder(
        api_key=settings.openai_api_key.get_secret_value() if settings.openai_api_key else None,
        model=settings.embedding_model,
        base_url=str(settings.embedding_base_url),
    )
