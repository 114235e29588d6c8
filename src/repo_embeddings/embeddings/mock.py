"""
Mock embedder for local runs without an embedding service.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional

import numpy as np

from .base import Embedder, EmbeddingConfig

logger = logging.getLogger(__name__)


class MockEmbedder(Embedder):
    """
    Generates deterministic unit vectors with the configured dimensions.

    The same text always maps to the same vector, across processes.
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        logger.info("MockEmbedder initialized (no embedding service)")

    def generate_embedding(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        vector = np.random.default_rng(seed).standard_normal(self.config.dimensions)
        return (vector / np.linalg.norm(vector)).tolist()

    async def embed(self, text: str, is_query: bool = False) -> List[float]:
        return self.generate_embedding(text)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "model": f"{self.config.model_name} (MOCK)",
            "dimensions": self.config.dimensions,
            "mock": True,
        }
