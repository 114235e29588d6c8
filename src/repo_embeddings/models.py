"""
Data model for the embedding pipeline.

CodeFile is transient (produced by a repository provider, consumed by the
embedding generator). CodeEmbedding, ProjectMetadata and EmbeddingBatch mirror
the three persisted relations owned by the storage engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class CodeFile:
    """
    A source file fetched at a given reference.

    Attributes:
        path: Repository-relative path
        content: Raw text content (empty when the fetch failed)
        language: Language tag from the language classifier
        last_modified: Modification time (fetch time for provider files)
    """

    path: str
    content: str
    language: str
    last_modified: datetime = field(default_factory=utcnow)

    def manifest_entry(self) -> Dict[str, Any]:
        """Entry recorded in a batch's file set."""
        return {
            "path": self.path,
            "language": self.language,
            "size": len(self.content),
        }


@dataclass
class CodeEmbedding:
    """
    Latest embedded state of one (project, file path) pair.

    similarity is only populated on results of a ranked vector search.
    """

    project_id: int
    file_path: str
    content: str
    embedding: List[float]
    language: str
    commit_id: str
    branch: str
    repository_url: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    similarity: Optional[float] = None

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        """Convert to an API payload (vectors are excluded unless asked for)."""
        data = {
            "projectId": self.project_id,
            "repositoryUrl": self.repository_url,
            "filePath": self.file_path,
            "language": self.language,
            "content": self.content,
            "commitId": self.commit_id,
            "branch": self.branch,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
            "similarity": round(self.similarity, 4) if self.similarity is not None else None,
        }
        if include_embedding:
            data["embedding"] = list(self.embedding)
        return data


@dataclass
class ProjectMetadata:
    """One row per source project."""

    project_id: int
    name: str
    description: str = ""
    url: str = ""
    default_branch: str = "main"
    last_processed_commit: Optional[str] = None
    last_processed_at: Optional[datetime] = None

    def mark_processed(self, commit_id: str) -> None:
        """Record a fully stored commit."""
        self.last_processed_commit = commit_id
        self.last_processed_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "name": self.name,
            "description": self.description,
            "url": self.url,
            "defaultBranch": self.default_branch,
            "lastProcessedCommit": self.last_processed_commit,
            "lastProcessedAt": _isoformat(self.last_processed_at),
        }


@dataclass
class EmbeddingBatch:
    """Append-only provenance record of one processing run."""

    project_id: int
    commit_id: str
    branch: str
    files: List[CodeFile]
    created_at: datetime = field(default_factory=utcnow)

    def file_manifest(self) -> List[Dict[str, Any]]:
        return [f.manifest_entry() for f in self.files]


@dataclass
class SimilarityResults:
    """
    Result of a similarity query.

    ranked is False when the store has no native vector support and the rows
    are the most recently updated embeddings rather than nearest neighbours.
    """

    results: List[CodeEmbedding]
    ranked: bool

    @property
    def search_mode(self) -> str:
        return "vector" if self.ranked else "recency"

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)
