"""
Similarity search over stored embeddings.

Embeds the query with the same generator used for ingestion, then asks the
storage engine for nearest neighbours (or, in degraded mode, the most
recently updated rows).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..constants import DEFAULT_SEARCH_LIMIT
from ..models import SimilarityResults, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SearchResponse:
    """
    Outcome of a search request.

    Attributes:
        query: Original query text
        results: Matches and whether they are ranked by similarity
        analysis: Optional LLM review of the matches
    """

    query: str
    results: SimilarityResults
    analysis: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "results": [r.to_dict() for r in self.results],
            "analysis": self.analysis,
            "count": self.count,
            "timestamp": utcnow().isoformat(),
            "ranked": self.results.ranked,
            "searchMode": self.results.search_mode,
        }

    def __repr__(self) -> str:
        return f"SearchResponse(query={self.query!r}, count={self.count}, mode={self.results.search_mode})"


class SearchService:
    """Query path: embed → similarity search → optional analysis."""

    def __init__(self, storage, generator, llm_service=None):
        """
        Initialize search service.

        Args:
            storage: Storage engine
            generator: Embedding generator (its embed() is used for queries)
            llm_service: Optional LLMService for analysis
        """
        self.storage = storage
        self.generator = generator
        self.llm_service = llm_service

    async def search(
        self,
        query: str,
        project_id: Optional[int] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        analyze: bool = False,
    ) -> SearchResponse:
        """
        Search stored code.

        Args:
            query: Natural language or code query
            project_id: Restrict to one project (None searches all projects)
            limit: Maximum number of results
            analyze: Ask the LLM service to review the matches

        Raises:
            EmbeddingError: If the query cannot be embedded
            StorageError: If the search query fails
        """
        scope = f"project {project_id}" if project_id is not None else "all projects"
        logger.info(f"[SEARCH] Searching {scope} for: {query!r} (limit {limit})")

        query_vector = await self.generator.embed(query)
        results = await asyncio.to_thread(
            self.storage.search_similar_code, query_vector, project_id, limit
        )
        logger.info(f"[SEARCH] {len(results)} results ({results.search_mode})")

        analysis = None
        if analyze and len(results) > 0 and self.llm_service is not None:
            logger.info(f"[SEARCH] Analyzing {len(results)} code snippets with LLM")
            analysis = await self.llm_service.analyze_code(query, results.results)

        return SearchResponse(query=query, results=results, analysis=analysis)
