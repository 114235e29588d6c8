"""
Embedding generation.
"""

from .base import Embedder, EmbeddingConfig, EmbeddingError
from .generator import EmbeddingGenerator
from .http_embedder import HTTPEmbedder
from .mock import MockEmbedder
from .vertex_ai import VertexAIEmbedder

__all__ = [
    "Embedder",
    "EmbeddingConfig",
    "EmbeddingError",
    "EmbeddingGenerator",
    "HTTPEmbedder",
    "MockEmbedder",
    "VertexAIEmbedder",
]
