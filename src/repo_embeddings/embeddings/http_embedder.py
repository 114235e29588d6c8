"""
OpenAI-compatible embeddings endpoint client.

Sends {"model": ..., "input": text} and reads data[0].embedding.
"""

import logging
from typing import List, Optional

import httpx

from .base import Embedder, EmbeddingConfig, EmbeddingError

logger = logging.getLogger(__name__)


class HTTPEmbedder(Embedder):
    """Embedder backed by an HTTP embeddings service."""

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or EmbeddingConfig()

        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        self._client = client or httpx.AsyncClient(headers=headers, timeout=self.config.timeout)
        logger.info(f"HTTPEmbedder initialized: {self.config.api_url} (model: {self.config.model_name})")

    async def embed(self, text: str, is_query: bool = False) -> List[float]:
        try:
            response = await self._client.post(
                self.config.api_url,
                json={"model": self.config.model_name, "input": text},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"Embedding service returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingError(f"Embedding service returned invalid JSON: {e}") from e

        try:
            return [float(x) for x in payload["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingError(f"Unexpected embedding response shape: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
