"""
Shared test doubles.

- InMemoryStorage: storage engine double with write counters and a switch
  for native vector support
- FakeProvider: repository provider serving files from a dict
- FixedEmbedder: deterministic embedder that records its calls
"""

import math
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from repo_embeddings.admin.webhook_handler import WebhookHandler
from repo_embeddings.embeddings.base import Embedder, EmbeddingConfig, EmbeddingError
from repo_embeddings.embeddings.generator import EmbeddingGenerator
from repo_embeddings.ingestion.pipeline import IngestionPipeline
from repo_embeddings.models import SimilarityResults
from repo_embeddings.providers.base import ProviderError, RepositoryProvider

COMMIT_C1 = "c1" * 20
COMMIT_C2 = "c2" * 20


class InMemoryStorage:
    """Storage engine double keyed like the real tables."""

    def __init__(self, ranked: bool = True):
        self.ranked = ranked
        self.projects: Dict[int, Any] = {}
        self.embeddings: Dict[tuple, Any] = {}
        self.batches: List[Any] = []
        self.write_count = 0
        self.connected = False
        self.fail_on_save_embeddings: Optional[Exception] = None

    def connect(self):
        self.connected = True

    def close(self):
        self.connected = False

    def get_project_metadata(self, project_id):
        project = self.projects.get(project_id)
        return replace(project) if project else None

    def save_project_metadata(self, metadata):
        self.write_count += 1
        self.projects[metadata.project_id] = replace(metadata)

    update_project_metadata = save_project_metadata

    def get_all_projects(self):
        return sorted(self.projects.values(), key=lambda p: p.name)

    def save_embeddings(self, embeddings):
        if self.fail_on_save_embeddings is not None:
            raise self.fail_on_save_embeddings
        self.write_count += 1
        for e in embeddings:
            self.embeddings[(e.project_id, e.file_path)] = e

    def save_embedding(self, embedding):
        self.save_embeddings([embedding])

    def save_batch(self, batch):
        self.write_count += 1
        self.batches.append(batch)

    def get_embeddings_by_project(self, project_id):
        return [e for (pid, _), e in self.embeddings.items() if pid == project_id]

    def search_similar_code(self, query_vector, project_id=None, limit=10):
        rows = [e for (pid, _), e in self.embeddings.items() if project_id is None or pid == project_id]
        if not self.ranked:
            rows.sort(key=lambda e: e.updated_at, reverse=True)
            return SimilarityResults(results=rows[:limit], ranked=False)

        scored = []
        for e in rows:
            scored.append(replace(e, similarity=_cosine(query_vector, e.embedding)))
        scored.sort(key=lambda e: e.similarity, reverse=True)
        return SimilarityResults(results=scored[:limit], ranked=True)


def _cosine(a, b) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeProvider(RepositoryProvider):
    """Provider serving a fixed tree; records every call."""

    def __init__(self, files: Optional[Dict[str, str]] = None, project: Optional[Dict[str, Any]] = None):
        self.files = dict(files or {})
        self.project = project or {
            "name": "demo",
            "description": "Demo project",
            "web_url": "https://gitlab.example.com/group/demo",
            "default_branch": "main",
        }
        self.unreadable = set()
        self.list_calls: List[tuple] = []
        self.fetch_calls: List[tuple] = []
        self.project_calls: List[Any] = []
        self.closed = False

    @property
    def total_calls(self) -> int:
        return len(self.list_calls) + len(self.fetch_calls) + len(self.project_calls)

    async def list_files(self, project_id, ref):
        self.list_calls.append((project_id, ref))
        return [{"path": path, "type": "blob"} for path in self.files]

    async def fetch_file_content(self, project_id, path, ref):
        self.fetch_calls.append((project_id, path, ref))
        if path in self.unreadable:
            raise ProviderError(f"cannot read {path}")
        return self.files[path]

    async def get_project(self, project_id):
        self.project_calls.append(project_id)
        return dict(self.project, id=project_id)

    async def get_commit(self, project_id, commit_sha):
        self.project_calls.append((project_id, commit_sha))
        return {"id": commit_sha, "project_id": project_id}

    async def get_merge_request(self, project_id, merge_request_iid):
        self.project_calls.append((project_id, merge_request_iid))
        return {"iid": merge_request_iid, "project_id": project_id}

    async def close(self):
        self.closed = True


class FixedEmbedder(Embedder):
    """Returns a small deterministic vector per text; can be told to fail."""

    def __init__(self, dimensions: int = 4):
        self.config = EmbeddingConfig(model_name="fixed", dimensions=dimensions)
        self.calls: List[str] = []
        self.failing_texts = set()

    async def embed(self, text, is_query=False):
        self.calls.append(text)
        if text in self.failing_texts:
            raise EmbeddingError("embedding service unavailable")
        base = float(len(text) % 7 + 1)
        return [base] + [1.0] * (self.config.dimensions - 1)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def embedder():
    return FixedEmbedder()


@pytest.fixture
def generator(embedder):
    return EmbeddingGenerator(embedder, batch_delay=0)


@pytest.fixture
def pipeline(storage, generator):
    return IngestionPipeline(storage, generator)


@pytest.fixture
def webhook_handler(provider, pipeline):
    return WebhookHandler(provider, pipeline)


@pytest.fixture
def push_payload():
    """Factory for GitLab push payloads."""

    def make(project_id=42, after=COMMIT_C1, ref="refs/heads/main"):
        return {
            "object_kind": "push",
            "before": "b" * 40,
            "after": after,
            "ref": ref,
            "project_id": project_id,
            "project": {
                "id": project_id,
                "name": "demo",
                "web_url": "https://gitlab.example.com/group/demo",
            },
            "commits": [{"id": after, "message": "Test commit"}],
        }

    return make


@pytest.fixture
def merge_request_payload():
    """Factory for GitLab merge request payloads."""

    def make(action="open", project_id=42, commit_id=COMMIT_C2, source_branch="feature/search"):
        return {
            "object_kind": "merge_request",
            "project": {
                "id": project_id,
                "name": "demo",
                "web_url": "https://gitlab.example.com/group/demo",
            },
            "object_attributes": {
                "iid": 7,
                "action": action,
                "source_branch": source_branch,
                "target_branch": "main",
                "last_commit": {"id": commit_id},
            },
        }

    return make
