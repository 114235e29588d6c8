"""
Unit tests for IngestionPipeline.

Tests:
- Idempotency gate
- Storage write ordering
- Run statistics
- Failure leaves project metadata untouched

Run with:
    pytest tests/ingestion/test_pipeline.py -v
"""

import pytest

from repo_embeddings.ingestion.pipeline import IngestionPipeline, IngestionStats
from repo_embeddings.models import CodeFile, ProjectMetadata
from repo_embeddings.storage.database import StorageError


class RecordingStorage:
    """Records the order of storage calls."""

    def __init__(self):
        self.calls = []
        self.fail_on = None

    def _record(self, name, value):
        if name == self.fail_on:
            raise StorageError(f"{name} failed")
        self.calls.append((name, value))

    def save_embeddings(self, embeddings):
        self._record("save_embeddings", list(embeddings))

    def save_batch(self, batch):
        self._record("save_batch", batch)

    def update_project_metadata(self, project):
        self._record("update_project_metadata", project.last_processed_commit)

    def get_project_metadata(self, project_id):
        return None

    def save_project_metadata(self, project):
        self._record("save_project_metadata", project.project_id)


@pytest.fixture
def files():
    return [
        CodeFile(path="a.py", content="print('a')\n", language="python"),
        CodeFile(path="logo.png", content="\x89PNG\0data", language="text"),
    ]


@pytest.fixture
def project():
    return ProjectMetadata(project_id=1, name="demo")


class TestGate:

    def test_unknown_project(self):
        assert not IngestionPipeline.is_already_processed(None, "abc")

    def test_project_without_commit(self, project):
        assert not IngestionPipeline.is_already_processed(project, "abc")

    def test_same_commit(self, project):
        project.last_processed_commit = "abc"
        assert IngestionPipeline.is_already_processed(project, "abc")

    def test_different_commit(self, project):
        project.last_processed_commit = "abc"
        assert not IngestionPipeline.is_already_processed(project, "def")


class TestIngest:

    @pytest.mark.asyncio
    async def test_write_order_and_stats(self, generator, files, project):
        storage = RecordingStorage()
        pipeline = IngestionPipeline(storage, generator)

        stats = await pipeline.ingest(project, files, commit_id="abc", branch="main")

        assert [name for name, _ in storage.calls] == [
            "save_embeddings",
            "save_batch",
            "update_project_metadata",
        ]
        saved = storage.calls[0][1]
        assert [e.file_path for e in saved] == ["a.py"]
        batch = storage.calls[1][1]
        assert [f["path"] for f in batch.file_manifest()] == ["a.py", "logo.png"]
        assert storage.calls[2][1] == "abc"

        assert stats.files_fetched == 2
        assert stats.embeddings_generated == 1
        assert stats.embeddings_saved == 1
        assert stats.files_skipped == 1
        assert stats.end_time is not None
        assert project.last_processed_commit == "abc"

    @pytest.mark.asyncio
    async def test_failed_embedding_write_stops_run(self, generator, files, project):
        storage = RecordingStorage()
        storage.fail_on = "save_embeddings"
        pipeline = IngestionPipeline(storage, generator)

        with pytest.raises(StorageError):
            await pipeline.ingest(project, files, commit_id="abc", branch="main")

        assert storage.calls == []
        assert project.last_processed_commit is None

    @pytest.mark.asyncio
    async def test_failed_batch_write_keeps_gate(self, generator, files, project):
        storage = RecordingStorage()
        storage.fail_on = "save_batch"
        pipeline = IngestionPipeline(storage, generator)

        with pytest.raises(StorageError):
            await pipeline.ingest(project, files, commit_id="abc", branch="main")

        assert [name for name, _ in storage.calls] == ["save_embeddings"]
        assert project.last_processed_commit is None


def test_stats_to_dict():
    stats = IngestionStats(project_id=3, commit_id="abc", files_fetched=4, embeddings_generated=3)
    stats.finish()

    data = stats.to_dict()

    assert data["project_id"] == 3
    assert data["files_skipped"] == 1
    assert data["duration_seconds"] >= 0
