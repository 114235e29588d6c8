"""
Tests for the query path.

Covers ranked search, degraded (recency) mode, empty results and the
optional LLM analysis step.
"""

from unittest.mock import AsyncMock

import pytest

from repo_embeddings.models import CodeEmbedding
from repo_embeddings.services.search_service import SearchService


def stored(path, vector, project_id=1):
    return CodeEmbedding(
        project_id=project_id,
        file_path=path,
        content=f"# {path}\n",
        embedding=vector,
        language="python",
        commit_id="abc",
        branch="main",
    )


@pytest.fixture
def populated(storage):
    storage.embeddings[(1, "auth.py")] = stored("auth.py", [1.0, 0.0, 0.0, 0.0])
    storage.embeddings[(1, "db.py")] = stored("db.py", [0.0, 1.0, 0.0, 0.0])
    storage.embeddings[(2, "other.py")] = stored("other.py", [1.0, 0.0, 0.0, 0.0], project_id=2)
    return storage


@pytest.fixture
def query_generator():
    generator = AsyncMock()
    generator.embed.return_value = [1.0, 0.1, 0.0, 0.0]
    return generator


@pytest.mark.asyncio
async def test_ranked_search_scoped_to_project(populated, query_generator):
    service = SearchService(populated, query_generator)

    response = await service.search("authentication", project_id=1, limit=5)

    assert [r.file_path for r in response.results] == ["auth.py", "db.py"]
    assert response.results.ranked
    data = response.to_dict()
    assert data["count"] == 2
    assert data["searchMode"] == "vector"
    assert data["results"][0]["similarity"] > data["results"][1]["similarity"]
    assert "embedding" not in data["results"][0]
    query_generator.embed.assert_awaited_once_with("authentication")


@pytest.mark.asyncio
async def test_global_search_respects_limit(populated, query_generator):
    service = SearchService(populated, query_generator)

    response = await service.search("authentication", limit=2)

    assert response.count == 2
    assert {r.project_id for r in response.results} == {1, 2}


@pytest.mark.asyncio
async def test_degraded_mode_is_flagged(populated, query_generator):
    populated.ranked = False
    service = SearchService(populated, query_generator)

    response = await service.search("authentication", project_id=1)

    assert not response.results.ranked
    assert response.to_dict()["searchMode"] == "recency"
    assert all(r.similarity is None for r in response.results)


@pytest.mark.asyncio
async def test_empty_store_returns_no_results(storage, query_generator):
    service = SearchService(storage, query_generator)

    response = await service.search("anything")

    assert response.count == 0
    assert response.analysis is None


@pytest.mark.asyncio
async def test_analysis_requested(populated, query_generator):
    llm = AsyncMock()
    llm.analyze_code.return_value = "Looks like auth code."
    service = SearchService(populated, query_generator, llm)

    response = await service.search("authentication", project_id=1, analyze=True)

    assert response.analysis == "Looks like auth code."
    query, snippets = llm.analyze_code.await_args[0]
    assert query == "authentication"
    assert [s.file_path for s in snippets] == ["auth.py", "db.py"]


@pytest.mark.asyncio
async def test_analysis_skipped_without_results(storage, query_generator):
    llm = AsyncMock()
    service = SearchService(storage, query_generator, llm)

    await service.search("anything", analyze=True)

    llm.analyze_code.assert_not_awaited()
