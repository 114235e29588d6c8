"""
Storage capability backends.

The embeddings table stores vectors either in a native pgvector column or,
when the extension is unavailable, as JSONB. Each representation is a
backend object; the storage engine probes once and routes every embedding
read, write and search through the selected backend.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2.extras import Json

logger = logging.getLogger(__name__)

EMBEDDING_COLUMNS = """
    project_id, repository_url, file_path, content, embedding,
    language, commit_id, branch, created_at, updated_at
"""

_EMBEDDINGS_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS embeddings (
        id SERIAL PRIMARY KEY,
        project_id INTEGER NOT NULL,
        repository_url TEXT,
        file_path TEXT NOT NULL,
        content TEXT,
        embedding {column_type},
        language TEXT,
        commit_id TEXT NOT NULL,
        branch TEXT,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        UNIQUE(project_id, file_path)
    )
"""

_RECENCY_SQL = """
    SELECT {columns}
    FROM embeddings
    {where}
    ORDER BY updated_at DESC
    LIMIT %(limit)s
"""


def _scope(project_id: Optional[int]) -> str:
    return "WHERE project_id = %(project_id)s" if project_id is not None else ""


class StorageCapability(ABC):
    """Vector representation used by the embeddings table."""

    name: str = ""
    ranked: bool = False

    @property
    @abstractmethod
    def column_type(self) -> str:
        pass

    @property
    def value_placeholder(self) -> str:
        """SQL placeholder for the embedding parameter of an INSERT."""
        return "%s"

    @abstractmethod
    def encode_vector(self, vector: Sequence[float]) -> Any:
        """Convert a vector to a query parameter."""
        pass

    def decode_vector(self, raw: Any) -> List[float]:
        """Convert a stored value back to a list of floats."""
        if raw is None:
            return []
        if isinstance(raw, str):
            raw = json.loads(raw)
        return [float(x) for x in raw]

    def table_ddl(self) -> str:
        return _EMBEDDINGS_TABLE_DDL.format(column_type=self.column_type)

    def index_ddl(self) -> List[str]:
        """Optional indexes created after the table."""
        return []

    def recency_search(self, cur, project_id: Optional[int], limit: int) -> List[Dict[str, Any]]:
        """Most recently updated rows for the scope, without similarity."""
        cur.execute(
            _RECENCY_SQL.format(columns=EMBEDDING_COLUMNS, where=_scope(project_id)),
            {"project_id": project_id, "limit": limit},
        )
        return list(cur.fetchall())

    @abstractmethod
    def search(
        self,
        conn,
        cur,
        query_vector: Sequence[float],
        project_id: Optional[int],
        limit: int,
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """
        Run a similarity query.

        Returns:
            (rows, ranked) where ranked is False if rows are recency-ordered
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class VectorBackend(StorageCapability):
    """Native pgvector column with cosine-distance ranking."""

    name = "vector"
    ranked = True

    def __init__(self, dimensions: int = 1536):
        self.dimensions = dimensions

    @property
    def column_type(self) -> str:
        return f"vector({self.dimensions})"

    @property
    def value_placeholder(self) -> str:
        return "%s::vector"

    def encode_vector(self, vector: Sequence[float]) -> str:
        return "[" + ",".join(str(float(x)) for x in vector) + "]"

    def index_ddl(self) -> List[str]:
        return [
            "CREATE INDEX IF NOT EXISTS idx_embeddings_embedding "
            "ON embeddings USING ivfflat (embedding vector_cosine_ops)"
        ]

    def search(self, conn, cur, query_vector, project_id, limit):
        try:
            cur.execute(
                f"""
                SELECT {EMBEDDING_COLUMNS},
                    1 - (embedding <=> %(embedding)s::vector) AS similarity
                FROM embeddings
                {_scope(project_id)}
                ORDER BY embedding <=> %(embedding)s::vector
                LIMIT %(limit)s
                """,
                {
                    "embedding": self.encode_vector(query_vector),
                    "project_id": project_id,
                    "limit": limit,
                },
            )
            return list(cur.fetchall()), True
        except psycopg2.ProgrammingError as e:
            logger.warning(f"[STORAGE] Vector similarity search failed, falling back to recency: {e}")
            conn.rollback()

        return self.recency_search(cur, project_id, limit), False

    def __repr__(self) -> str:
        return f"VectorBackend(dimensions={self.dimensions})"


class JsonFallbackBackend(StorageCapability):
    """JSONB column; searches degrade to recency ordering."""

    name = "jsonb"
    ranked = False

    @property
    def column_type(self) -> str:
        return "JSONB"

    def encode_vector(self, vector: Sequence[float]) -> Json:
        return Json([float(x) for x in vector])

    def search(self, conn, cur, query_vector, project_id, limit):
        return self.recency_search(cur, project_id, limit), False
