"""
Unit tests for DatabaseService against a mocked connection pool.

An optional integration test runs against a real PostgreSQL when
TEST_DATABASE_URL is set.

Run with:
    pytest tests/storage/test_database.py -v
"""

import os
from datetime import datetime, timezone
from unittest.mock import MagicMock

import psycopg2
import pytest

from repo_embeddings.models import CodeEmbedding, CodeFile, EmbeddingBatch, ProjectMetadata
from repo_embeddings.storage.backends import JsonFallbackBackend, VectorBackend
from repo_embeddings.storage.database import DatabaseService, StorageError

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def mock_pool():
    """Pool whose connections all share one cursor mock."""
    pool = MagicMock()
    conn = MagicMock()
    cur = MagicMock()
    pool.getconn.return_value = conn
    conn.cursor.return_value.__enter__.return_value = cur
    return pool, conn, cur


@pytest.fixture
def service(mock_pool):
    pool, _, _ = mock_pool
    return DatabaseService("postgresql://test", dimensions=3, pool=pool)


def make_embedding(path="a.py", vector=(0.1, 0.2, 0.3)):
    return CodeEmbedding(
        project_id=1,
        file_path=path,
        content="x = 1\n",
        embedding=list(vector),
        language="python",
        commit_id="abc",
        branch="main",
    )


def embedding_row(**overrides):
    row = {
        "project_id": 1,
        "repository_url": None,
        "file_path": "a.py",
        "content": "x = 1\n",
        "embedding": "[0.1,0.2,0.3]",
        "language": "python",
        "commit_id": "abc",
        "branch": "main",
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


class TestConnection:

    def test_not_connected(self):
        service = DatabaseService("postgresql://test")

        with pytest.raises(StorageError, match="not connected"):
            service.get_all_projects()

    def test_commit_and_return_on_success(self, service, mock_pool):
        pool, conn, cur = mock_pool
        cur.fetchall.return_value = []

        service.get_all_projects()

        conn.commit.assert_called_once()
        pool.putconn.assert_called_once_with(conn)

    def test_database_error_rolls_back(self, service, mock_pool):
        pool, conn, cur = mock_pool
        cur.execute.side_effect = psycopg2.OperationalError("server closed the connection")

        with pytest.raises(StorageError, match="server closed"):
            service.save_project_metadata(ProjectMetadata(project_id=1, name="demo"))

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        pool.putconn.assert_called_once_with(conn)

    def test_close(self, service, mock_pool):
        pool, _, _ = mock_pool

        service.close()

        pool.closeall.assert_called_once()


class TestCapability:

    def test_vector_column(self, service, mock_pool):
        _, _, cur = mock_pool
        cur.fetchone.return_value = ("USER-DEFINED", "vector")

        backend = service.probe_capability()

        assert isinstance(backend, VectorBackend)
        assert backend.dimensions == 3

    @pytest.mark.parametrize("row", [("jsonb", "jsonb"), None])
    def test_json_or_missing_column(self, service, mock_pool, row):
        _, _, cur = mock_pool
        cur.fetchone.return_value = row

        assert isinstance(service.probe_capability(), JsonFallbackBackend)

    def test_failed_probe_uses_fallback(self, service, mock_pool):
        _, conn, cur = mock_pool
        cur.execute.side_effect = psycopg2.OperationalError("permission denied")

        assert isinstance(service.probe_capability(), JsonFallbackBackend)
        conn.rollback.assert_called_once()

    def test_capability_is_cached(self, service, mock_pool):
        _, _, cur = mock_pool
        cur.fetchone.return_value = ("USER-DEFINED", "vector")

        first = service.capability
        second = service.capability

        assert first is second
        assert cur.execute.call_count == 1

    def test_ensure_schema_creates_vector_table(self, service, mock_pool):
        _, _, cur = mock_pool
        # to_regclass -> table missing; pg_available_extensions -> vector available
        cur.fetchone.side_effect = [(False,), (1,)]

        backend = service.ensure_schema()

        assert isinstance(backend, VectorBackend)
        statements = [c[0][0] for c in cur.execute.call_args_list]
        assert "CREATE EXTENSION IF NOT EXISTS vector" in statements
        assert any("vector(3)" in s for s in statements)
        assert any("ivfflat" in s for s in statements)
        assert service.capability is backend

    def test_ensure_schema_without_extension(self, service, mock_pool):
        _, _, cur = mock_pool
        cur.fetchone.side_effect = [(False,), None]

        backend = service.ensure_schema()

        assert isinstance(backend, JsonFallbackBackend)
        statements = [c[0][0] for c in cur.execute.call_args_list]
        assert not any("CREATE EXTENSION" in s for s in statements)
        assert any("embedding JSONB" in s for s in statements)

    def test_ensure_schema_keeps_existing_table(self, service, mock_pool):
        _, _, cur = mock_pool
        cur.fetchone.side_effect = [(True,), ("jsonb", "jsonb")]

        backend = service.ensure_schema()

        assert isinstance(backend, JsonFallbackBackend)
        statements = [c[0][0] for c in cur.execute.call_args_list]
        assert not any("CREATE TABLE IF NOT EXISTS embeddings" in s for s in statements)


class TestEmbeddings:

    def test_save_embeddings_uses_vector_cast(self, service, mock_pool):
        _, conn, cur = mock_pool
        service._capability = VectorBackend(3)

        service.save_embeddings([make_embedding("a.py"), make_embedding("b.py")])

        assert cur.execute.call_count == 2
        sql, params = cur.execute.call_args_list[0][0]
        assert "%s::vector" in sql
        assert "ON CONFLICT (project_id, file_path)" in sql
        assert params[2] == "a.py"
        assert params[4] == "[0.1,0.2,0.3]"
        conn.commit.assert_called_once()

    def test_save_embeddings_is_all_or_nothing(self, service, mock_pool):
        _, conn, cur = mock_pool
        service._capability = JsonFallbackBackend()
        cur.execute.side_effect = [None, psycopg2.DataError("bad value")]

        with pytest.raises(StorageError):
            service.save_embeddings([make_embedding("a.py"), make_embedding("b.py")])

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_save_nothing(self, service, mock_pool):
        pool, _, _ = mock_pool

        service.save_embeddings([])

        pool.getconn.assert_not_called()

    def test_ranked_search(self, service, mock_pool):
        _, _, cur = mock_pool
        service._capability = VectorBackend(3)
        cur.fetchall.return_value = [embedding_row(similarity=0.87654)]

        results = service.search_similar_code([0.1, 0.2, 0.3], project_id=1, limit=5)

        assert results.ranked
        assert results.search_mode == "vector"
        assert len(results) == 1
        result = results.results[0]
        assert result.similarity == pytest.approx(0.87654)
        assert result.embedding == [0.1, 0.2, 0.3]
        assert result.repository_url == ""
        assert result.to_dict()["similarity"] == 0.8765

    def test_fallback_search_is_unranked(self, service, mock_pool):
        _, _, cur = mock_pool
        service._capability = JsonFallbackBackend()
        cur.fetchall.return_value = [embedding_row(embedding=[0.1, 0.2, 0.3])]

        results = service.search_similar_code([0.1, 0.2, 0.3])

        assert not results.ranked
        assert results.search_mode == "recency"
        assert results.results[0].similarity is None

    def test_get_embeddings_by_commit(self, service, mock_pool):
        _, _, cur = mock_pool
        service._capability = JsonFallbackBackend()
        cur.fetchall.return_value = [embedding_row(embedding=[1, 2, 3])]

        embeddings = service.get_embeddings_by_commit(1, "abc")

        assert [e.file_path for e in embeddings] == ["a.py"]
        assert cur.execute.call_args[0][1] == (1, "abc")


class TestProjectsAndBatches:

    def test_save_batch_records_manifest(self, service, mock_pool):
        _, _, cur = mock_pool
        batch = EmbeddingBatch(
            project_id=1,
            commit_id="abc",
            branch="main",
            files=[CodeFile(path="a.py", content="x = 1\n", language="python")],
        )

        service.save_batch(batch)

        params = cur.execute.call_args[0][1]
        assert params[:3] == (1, "abc", "main")
        assert params[3].adapted == [{"path": "a.py", "language": "python", "size": 6}]

    def test_project_round_trip_mapping(self, service, mock_pool):
        _, _, cur = mock_pool
        cur.fetchone.return_value = {
            "project_id": 1,
            "name": "demo",
            "description": None,
            "url": "https://gitlab.example.com/g/demo",
            "default_branch": None,
            "last_processed_commit": "abc",
            "last_processed_at": NOW,
        }

        project = service.get_project_metadata(1)

        assert project.name == "demo"
        assert project.description == ""
        assert project.default_branch == "main"
        assert project.last_processed_commit == "abc"

    def test_missing_project(self, service, mock_pool):
        _, _, cur = mock_pool
        cur.fetchone.return_value = None

        assert service.get_project_metadata(99) is None


@pytest.mark.integration
@pytest.mark.skipif(not os.environ.get("TEST_DATABASE_URL"), reason="TEST_DATABASE_URL not set")
class TestPostgresIntegration:

    @pytest.fixture
    def db(self):
        service = DatabaseService(os.environ["TEST_DATABASE_URL"], dimensions=3)
        service.connect()
        yield service
        with service._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM embeddings WHERE project_id = %s", (987654,))
                cur.execute("DELETE FROM batches WHERE project_id = %s", (987654,))
                cur.execute("DELETE FROM projects WHERE project_id = %s", (987654,))
        service.close()

    def test_upsert_keeps_latest_state(self, db):
        first = make_embedding("a.py", (1.0, 0.0, 0.0))
        first.project_id = 987654
        second = make_embedding("a.py", (0.0, 1.0, 0.0))
        second.project_id = 987654
        second.commit_id = "def"
        second.content = "x = 2\n"

        db.save_embeddings([first])
        db.save_embeddings([second])

        stored = db.get_embeddings_by_project(987654)
        assert len(stored) == 1
        assert stored[0].commit_id == "def"
        assert stored[0].content == "x = 2\n"

    def test_project_upsert(self, db):
        project = ProjectMetadata(project_id=987654, name="integration")
        db.save_project_metadata(project)
        project.mark_processed("abc")
        db.update_project_metadata(project)

        assert db.get_project_metadata(987654).last_processed_commit == "abc"
