"""
Vertex AI embedding generation.

Uses Google Cloud Vertex AI text embedding models. The SDK is synchronous, so
each call runs in a worker thread.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from ..constants import EMBEDDING_MODEL_DEFAULTS
from .base import Embedder, EmbeddingConfig, EmbeddingError

logger = logging.getLogger(__name__)


class VertexAIEmbedder(Embedder):
    """
    Vertex AI embedder.

    Handles:
    - Lazy SDK initialization
    - Requests-per-minute rate limiting
    - Document vs. query task types
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize Vertex AI embedder.

        Args:
            config: Embedding configuration (uses defaults if not provided)
        """
        self.config = config or EmbeddingConfig(
            model_name=EMBEDDING_MODEL_DEFAULTS["vertex"][0],
            dimensions=EMBEDDING_MODEL_DEFAULTS["vertex"][1],
        )
        self._model = None
        self._text_embedding_input = None
        self._vertexai_initialized = False
        self._request_times: List[float] = []
        self._lock = threading.Lock()

    def _initialize_vertexai(self):
        """Initialize Vertex AI SDK (lazy loading)."""
        if self._vertexai_initialized:
            return

        try:
            import vertexai
            from vertexai.language_models import TextEmbeddingInput, TextEmbeddingModel
        except ImportError:
            raise EmbeddingError(
                "Vertex AI SDK not installed. Install with: pip install 'repo-embeddings[vertex]'"
            )

        try:
            vertexai.init(project=self.config.project_id, location=self.config.location)
            self._model = TextEmbeddingModel.from_pretrained(self.config.model_name)
        except Exception as e:
            raise EmbeddingError(f"Failed to initialize Vertex AI: {e}") from e

        self._text_embedding_input = TextEmbeddingInput
        self._vertexai_initialized = True
        logger.info(f"Vertex AI initialized with model: {self.config.model_name}")

    def _enforce_rate_limit(self):
        """Enforce rate limiting based on requests per minute."""
        if self.config.rate_limit_rpm <= 0:
            return

        window = 60.0
        with self._lock:
            now = time.time()
            self._request_times = [t for t in self._request_times if now - t < window]

            if len(self._request_times) >= self.config.rate_limit_rpm:
                sleep_time = window - (now - self._request_times[0]) + 0.1
                if sleep_time > 0:
                    logger.debug(f"Rate limit reached, sleeping {sleep_time:.2f}s")
                    time.sleep(sleep_time)

            self._request_times.append(time.time())

    def generate_embedding(self, text: str, task_type: Optional[str] = None) -> List[float]:
        """
        Generate embedding for a single text (blocking).

        Raises:
            EmbeddingError: If the SDK call fails
        """
        self._initialize_vertexai()
        self._enforce_rate_limit()

        try:
            text_input = self._text_embedding_input(
                text=text, task_type=task_type or self.config.task_type
            )
            embeddings = self._model.get_embeddings(
                [text_input], output_dimensionality=self.config.dimensions
            )
            return list(embeddings[0].values)
        except Exception as e:
            raise EmbeddingError(f"Vertex AI embedding failed: {e}") from e

    async def embed(self, text: str, is_query: bool = False) -> List[float]:
        task_type = self.config.query_task_type if is_query else self.config.task_type
        return await asyncio.to_thread(self.generate_embedding, text, task_type)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "model": self.config.model_name,
            "dimensions": self.config.dimensions,
            "rate_limit_rpm": self.config.rate_limit_rpm,
            "initialized": self._vertexai_initialized,
            "recent_requests": len(self._request_times),
        }
