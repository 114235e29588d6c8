"""
Ingestion: chunking, the shared embed → store pipeline and clone-based ingestion.
"""

from .chunker import CodeChunker, split_content
from .git_manager import GitManagerError, GitRepositoryManager, RepositoryIngestor
from .pipeline import IngestionPipeline, IngestionStats

__all__ = [
    "CodeChunker",
    "split_content",
    "GitManagerError",
    "GitRepositoryManager",
    "RepositoryIngestor",
    "IngestionPipeline",
    "IngestionStats",
]
