"""
Batched embedding generation.

Turns fetched CodeFiles into CodeEmbeddings: files are processed in fixed-size
batches with a pause between batches, ineligible content is skipped, and a
failure on one file never aborts the others.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from ..constants import (
    DEFAULT_MAX_CHUNK_SIZE,
    EMBEDDING_BATCH_DELAY_SECONDS,
    EMBEDDING_BATCH_SIZE,
)
from ..ingestion.chunker import CodeChunker
from ..models import CodeEmbedding, CodeFile
from ..utils.file_filter import ContentFilter, is_binary_content
from ..utils.language import detect_language
from .base import Embedder

logger = logging.getLogger(__name__)


class EmbeddingGenerator:
    """
    Embedding generator.

    Order of results follows the input order of the files that succeeded.
    Files are never retried.
    """

    def __init__(
        self,
        embedder: Embedder,
        content_filter: Optional[ContentFilter] = None,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        batch_delay: float = EMBEDDING_BATCH_DELAY_SECONDS,
        chunk_large_files: bool = False,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        expected_dimensions: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize embedding generator.

        Args:
            embedder: Model used for single-text embeddings
            content_filter: Eligibility check (size ceiling, binary detection)
            batch_size: Files embedded concurrently per batch
            batch_delay: Seconds to pause between batches
            chunk_large_files: Split files above max_chunk_size before embedding
            max_chunk_size: Chunk threshold in characters
            expected_dimensions: Drop vectors of any other length
            sleep: Coroutine used for the inter-batch pause
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.embedder = embedder
        self.content_filter = content_filter or ContentFilter()
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.chunker = CodeChunker(max_chunk_size) if chunk_large_files else None
        self.expected_dimensions = expected_dimensions
        self._sleep = sleep

    async def embed(self, text: str) -> List[float]:
        """Embed a single text (used for search queries)."""
        return await self.embedder.embed(text, is_query=True)

    async def embed_many(
        self,
        files: List[CodeFile],
        project_id: int,
        commit_id: str,
        branch: str,
        repository_url: str = "",
    ) -> List[CodeEmbedding]:
        """
        Embed a set of files for one commit.

        Args:
            files: Files to embed
            project_id: Source project
            commit_id: Commit the contents belong to
            branch: Branch the commit was observed on
            repository_url: Web URL of the project

        Returns:
            One embedding per eligible file (or chunk) that embedded successfully
        """
        files = self._prepare(files)
        embeddings: List[CodeEmbedding] = []
        total_batches = (len(files) + self.batch_size - 1) // self.batch_size

        for batch_number, start in enumerate(range(0, len(files), self.batch_size), 1):
            batch = files[start:start + self.batch_size]
            logger.info(f"[EMBED] Batch {batch_number}/{total_batches} ({len(batch)} files)")

            results = await asyncio.gather(
                *(self._embed_file(f, project_id, commit_id, branch, repository_url) for f in batch),
                return_exceptions=True,
            )
            for file, result in zip(batch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.error(f"[EMBED] Error generating embedding for {file.path}: {result}")
                    continue
                if result is not None:
                    embeddings.append(result)

            if batch_number < total_batches and self.batch_delay > 0:
                await self._sleep(self.batch_delay)

        logger.info(f"[EMBED] Generated {len(embeddings)} embeddings from {len(files)} files")
        return embeddings

    def _prepare(self, files: List[CodeFile]) -> List[CodeFile]:
        if self.chunker is None:
            return list(files)

        # A binary file is rejected whole rather than chunk by chunk
        text_files = []
        for f in files:
            if f.content and is_binary_content(f.content):
                logger.debug(f"[EMBED] Skipping {f.path}: binary")
                continue
            text_files.append(f)
        return self.chunker.chunk_files(text_files)

    async def _embed_file(
        self,
        file: CodeFile,
        project_id: int,
        commit_id: str,
        branch: str,
        repository_url: str,
    ) -> Optional[CodeEmbedding]:
        reason = self.content_filter.rejection_reason(file.content)
        if reason:
            logger.debug(f"[EMBED] Skipping {file.path}: {reason}")
            return None

        vector = await self.embedder.embed(file.content)

        if self.expected_dimensions and len(vector) != self.expected_dimensions:
            logger.error(
                f"[EMBED] Dropping {file.path}: got {len(vector)} dimensions, "
                f"expected {self.expected_dimensions}"
            )
            return None

        return CodeEmbedding(
            project_id=project_id,
            file_path=file.path,
            content=file.content,
            embedding=vector,
            language=file.language or detect_language(file.path),
            commit_id=commit_id,
            branch=branch,
            repository_url=repository_url,
        )
