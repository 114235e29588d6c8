"""
Ingestion pipeline for embeddings.

Orchestrates the embed → store workflow shared by webhook and clone-based
ingestion:
- Commit idempotency gate (skip a commit the project already recorded)
- Batched embedding generation
- Atomic upsert of the run's embeddings
- Batch provenance record
- Project metadata update (last processed commit)

The order of the storage steps is fixed: the project's last processed commit
is written only after its embeddings and batch record are stored, so a run
that dies midway leaves the gate pointing at the previous commit.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models import CodeFile, EmbeddingBatch, ProjectMetadata

logger = logging.getLogger(__name__)


@dataclass
class IngestionStats:
    """
    Statistics for an ingestion run.

    Attributes:
        project_id: Project the run belongs to
        commit_id: Commit the run processed
        files_fetched: Files handed to the embedding generator
        embeddings_generated: Embeddings produced (files or chunks)
        embeddings_saved: Embeddings upserted into storage
        start_time: Start timestamp
        end_time: End timestamp
    """

    project_id: int
    commit_id: str
    files_fetched: int = 0
    embeddings_generated: int = 0
    embeddings_saved: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def finish(self):
        """Mark ingestion as finished."""
        self.end_time = time.time()

    @property
    def files_skipped(self) -> int:
        return max(self.files_fetched - self.embeddings_generated, 0)

    @property
    def duration_seconds(self) -> float:
        """Get ingestion duration in seconds."""
        if self.end_time is None:
            return time.time() - self.start_time
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "commit_id": self.commit_id,
            "files_fetched": self.files_fetched,
            "embeddings_generated": self.embeddings_generated,
            "embeddings_saved": self.embeddings_saved,
            "files_skipped": self.files_skipped,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class IngestionPipeline:
    """
    Pipeline for storing a commit's files as embeddings.

    The storage engine is blocking; its calls run in worker threads.
    """

    def __init__(self, storage, generator):
        """
        Initialize ingestion pipeline.

        Args:
            storage: Storage engine (DatabaseService or a compatible object)
            generator: Embedding generator
        """
        self.storage = storage
        self.generator = generator

    async def get_project(self, project_id: int) -> Optional[ProjectMetadata]:
        return await asyncio.to_thread(self.storage.get_project_metadata, project_id)

    async def save_project(self, project: ProjectMetadata) -> None:
        await asyncio.to_thread(self.storage.save_project_metadata, project)

    @staticmethod
    def is_already_processed(project: Optional[ProjectMetadata], commit_id: str) -> bool:
        """Idempotency gate: True if the project already recorded this commit."""
        return (
            project is not None
            and project.last_processed_commit is not None
            and project.last_processed_commit == commit_id
        )

    async def ingest(
        self,
        project: ProjectMetadata,
        files: List[CodeFile],
        commit_id: str,
        branch: str,
        repository_url: str = "",
    ) -> IngestionStats:
        """
        Embed files and store them for a commit.

        Args:
            project: Project metadata (updated in place with the processed commit)
            files: Files fetched at the commit
            commit_id: Commit identifier
            branch: Branch name
            repository_url: Web URL recorded on each embedding

        Returns:
            IngestionStats for the run

        Raises:
            StorageError: If a storage write fails (the gate is left untouched)
        """
        stats = IngestionStats(project_id=project.project_id, commit_id=commit_id)
        stats.files_fetched = len(files)

        logger.info(
            f"[PIPELINE] Generating embeddings for {len(files)} files "
            f"(project {project.project_id}, commit {commit_id})"
        )
        embeddings = await self.generator.embed_many(
            files,
            project_id=project.project_id,
            commit_id=commit_id,
            branch=branch,
            repository_url=repository_url,
        )
        stats.embeddings_generated = len(embeddings)

        logger.info(f"[PIPELINE] Saving {len(embeddings)} embeddings")
        await asyncio.to_thread(self.storage.save_embeddings, embeddings)
        stats.embeddings_saved = len(embeddings)

        batch = EmbeddingBatch(
            project_id=project.project_id,
            commit_id=commit_id,
            branch=branch,
            files=files,
        )
        await asyncio.to_thread(self.storage.save_batch, batch)

        project.mark_processed(commit_id)
        await asyncio.to_thread(self.storage.update_project_metadata, project)

        stats.finish()
        logger.info(f"[PIPELINE] Run complete: {stats.to_dict()}")
        return stats
