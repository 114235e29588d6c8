"""
Embedding model interface and shared configuration.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class EmbeddingError(Exception):
    """Raised when the embedding service fails or returns an unusable response."""

    pass


@dataclass
class EmbeddingConfig:
    """
    Configuration for embedding generation.

    Attributes:
        model_name: Model to request (e.g., 'qodo-embed-1', 'text-embedding-004')
        dimensions: Expected vector dimension
        api_url: Endpoint for HTTP embedders
        api_key: Optional bearer token for HTTP embedders
        timeout: Per-request transport timeout in seconds
        task_type: Vertex AI task type for documents
        query_task_type: Vertex AI task type for search queries
        rate_limit_rpm: Requests per minute limit for Vertex AI (0 = no limit)
        project_id: GCP project ID (Vertex AI; uses default credentials if not set)
        location: GCP location (Vertex AI)
    """

    model_name: str = "qodo-embed-1"
    dimensions: int = 1536
    api_url: str = "http://localhost:8000/v1/embeddings"
    api_key: Optional[str] = None
    timeout: float = 60.0
    task_type: str = "RETRIEVAL_DOCUMENT"
    query_task_type: str = "RETRIEVAL_QUERY"
    rate_limit_rpm: int = 300
    project_id: Optional[str] = None
    location: str = "us-central1"


class Embedder(ABC):
    """A single-text embedding model."""

    config: EmbeddingConfig

    @abstractmethod
    async def embed(self, text: str, is_query: bool = False) -> List[float]:
        """
        Embed one text.

        Args:
            text: Text to embed
            is_query: True for search queries (models with asymmetric tasks)

        Raises:
            EmbeddingError: If the model call fails
        """
        pass

    async def close(self) -> None:
        return None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "model": self.config.model_name,
            "dimensions": self.config.dimensions,
        }
