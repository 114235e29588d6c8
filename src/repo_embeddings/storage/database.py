"""
PostgreSQL storage engine.

Owns the three persisted relations (projects, embeddings, batches). The
embedding column type is decided by a capability probe and cached as a
StorageCapability backend; see backends.py.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..models import CodeEmbedding, EmbeddingBatch, ProjectMetadata, SimilarityResults
from .backends import EMBEDDING_COLUMNS, JsonFallbackBackend, StorageCapability, VectorBackend

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Connection or query failure in the storage engine."""

    pass


_PROJECTS_DDL = """
    CREATE TABLE IF NOT EXISTS projects (
        project_id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        url TEXT,
        default_branch TEXT,
        last_processed_commit TEXT,
        last_processed_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    )
"""

_BATCHES_DDL = """
    CREATE TABLE IF NOT EXISTS batches (
        id SERIAL PRIMARY KEY,
        project_id INTEGER NOT NULL,
        commit_id TEXT NOT NULL,
        branch TEXT,
        files JSONB,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    )
"""

_COMMON_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_embeddings_project_id ON embeddings(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_commit_id ON embeddings(commit_id)",
    "CREATE INDEX IF NOT EXISTS idx_batches_project_id_commit_id ON batches(project_id, commit_id)",
]

_EMBEDDING_COLUMN_TYPE_SQL = """
    SELECT data_type, udt_name
    FROM information_schema.columns
    WHERE table_schema = current_schema()
    AND table_name = 'embeddings'
    AND column_name = 'embedding'
"""

_PROJECT_COLUMNS = """
    project_id, name, description, url, default_branch,
    last_processed_commit, last_processed_at
"""

_UPSERT_PROJECT_SQL = f"""
    INSERT INTO projects ({_PROJECT_COLUMNS})
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (project_id)
    DO UPDATE SET
        name = EXCLUDED.name,
        description = EXCLUDED.description,
        url = EXCLUDED.url,
        default_branch = EXCLUDED.default_branch,
        last_processed_commit = EXCLUDED.last_processed_commit,
        last_processed_at = EXCLUDED.last_processed_at
"""


class DatabaseService:
    """
    Storage engine backed by PostgreSQL.

    Writes fail loudly with StorageError. Capability detection never fails:
    if the probe itself errors, the JSON fallback (degraded search) is used.

    All methods are blocking; async callers go through asyncio.to_thread.
    """

    def __init__(
        self,
        database_url: str,
        dimensions: int = 1536,
        pool: Optional[Any] = None,
        minconn: int = 1,
        maxconn: int = 10,
    ):
        """
        Initialize the storage engine.

        Args:
            database_url: PostgreSQL connection string
            dimensions: Vector dimension for a pgvector column
            pool: Pre-built connection pool (anything with getconn/putconn/closeall)
            minconn: Minimum pooled connections
            maxconn: Maximum pooled connections
        """
        self.database_url = database_url
        self.dimensions = dimensions
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool = pool
        self._capability: Optional[StorageCapability] = None

    # Connection management

    def connect(self) -> StorageCapability:
        """Open the pool, verify connectivity and ensure the schema exists."""
        if self._pool is None:
            try:
                self._pool = ThreadedConnectionPool(self.minconn, self.maxconn, dsn=self.database_url)
            except psycopg2.Error as e:
                logger.error(f"[STORAGE] Failed to connect to PostgreSQL: {e}")
                raise StorageError(f"Failed to connect to PostgreSQL: {e}") from e

        logger.info("[STORAGE] Connected to PostgreSQL")
        return self.ensure_schema()

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("[STORAGE] Disconnected from PostgreSQL")

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        """Borrow a pooled connection; commit on success, roll back on error."""
        if self._pool is None:
            raise StorageError("Storage engine is not connected")

        try:
            conn = self._pool.getconn()
        except psycopg2.Error as e:
            raise StorageError(f"Could not get a database connection: {e}") from e

        try:
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise StorageError(str(e).strip()) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    # Capability detection

    @property
    def capability(self) -> StorageCapability:
        """Cached storage capability (probed on first use)."""
        if self._capability is None:
            self._capability = self.probe_capability()
        return self._capability

    def probe_capability(self) -> StorageCapability:
        """
        Inspect the embeddings column type.

        A vector column selects VectorBackend; a JSONB column, a missing
        table or a failed probe selects JsonFallbackBackend.
        """
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_EMBEDDING_COLUMN_TYPE_SQL)
                    row = cur.fetchone()
        except StorageError as e:
            logger.warning(f"[STORAGE] Capability probe failed, using JSON fallback: {e}")
            return JsonFallbackBackend()

        if row and "vector" in (row[0], row[1]):
            backend = VectorBackend(self.dimensions)
        else:
            backend = JsonFallbackBackend()

        logger.info(f"[STORAGE] Embedding storage capability: {backend.name}")
        return backend

    def refresh_capability(self) -> StorageCapability:
        """Re-run the probe and replace the cached backend."""
        self._capability = self.probe_capability()
        return self._capability

    def ensure_schema(self) -> StorageCapability:
        """
        Create tables and indexes if they don't exist (idempotent).

        An existing embeddings table keeps its representation. Otherwise the
        vector extension is enabled when available, with JSONB as fallback.
        """
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_PROJECTS_DDL)
                cur.execute(_BATCHES_DDL)

        if self._embeddings_table_exists():
            backend = self.probe_capability()
        else:
            backend = self._create_embeddings_table()

        with self._connection() as conn:
            with conn.cursor() as cur:
                for statement in _COMMON_INDEXES:
                    cur.execute(statement)

        self._capability = backend
        logger.info(f"[STORAGE] Database schema ready ({backend.name})")
        return backend

    def _embeddings_table_exists(self) -> bool:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('embeddings') IS NOT NULL")
                return bool(cur.fetchone()[0])

    def _vector_extension_available(self) -> bool:
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1 FROM pg_available_extensions WHERE name = 'vector'")
                    available = cur.fetchone() is not None
        except StorageError as e:
            logger.warning(f"[STORAGE] Could not check for vector extension: {e}")
            return False

        if not available:
            logger.warning(
                "[STORAGE] Vector extension is not available; similarity search will "
                "fall back to recency ordering"
            )
        return available

    def _create_embeddings_table(self) -> StorageCapability:
        if self._vector_extension_available():
            backend = VectorBackend(self.dimensions)
            try:
                with self._connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
                        cur.execute(backend.table_ddl())
            except StorageError as e:
                logger.warning(f"[STORAGE] Could not create vector table, falling back to JSONB: {e}")
            else:
                for statement in backend.index_ddl():
                    try:
                        with self._connection() as conn:
                            with conn.cursor() as cur:
                                cur.execute(statement)
                    except StorageError as e:
                        logger.warning(f"[STORAGE] Could not create vector index, continuing: {e}")
                return backend

        backend = JsonFallbackBackend()
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(backend.table_ddl())
        return backend

    # Embeddings

    def save_embedding(self, embedding: CodeEmbedding) -> None:
        self.save_embeddings([embedding])

    def save_embeddings(self, embeddings: List[CodeEmbedding]) -> None:
        """
        Upsert embeddings keyed by (project_id, file_path) in one transaction.

        Raises:
            StorageError: If any row fails (nothing is committed)
        """
        if not embeddings:
            return

        backend = self.capability
        sql = f"""
            INSERT INTO embeddings ({EMBEDDING_COLUMNS})
            VALUES (%s, %s, %s, %s, {backend.value_placeholder}, %s, %s, %s, %s, %s)
            ON CONFLICT (project_id, file_path)
            DO UPDATE SET
                content = EXCLUDED.content,
                embedding = EXCLUDED.embedding,
                language = EXCLUDED.language,
                commit_id = EXCLUDED.commit_id,
                branch = EXCLUDED.branch,
                updated_at = EXCLUDED.updated_at
        """

        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    for e in embeddings:
                        cur.execute(
                            sql,
                            (
                                e.project_id,
                                e.repository_url,
                                e.file_path,
                                e.content,
                                backend.encode_vector(e.embedding),
                                e.language,
                                e.commit_id,
                                e.branch,
                                e.created_at,
                                e.updated_at,
                            ),
                        )
        except StorageError as e:
            logger.error(f"[STORAGE] Error saving {len(embeddings)} embeddings: {e}")
            raise

        logger.info(f"[STORAGE] Saved {len(embeddings)} embeddings")

    def get_embeddings_by_project(self, project_id: int) -> List[CodeEmbedding]:
        return self._select_embeddings("WHERE project_id = %s", (project_id,))

    def get_embeddings_by_commit(self, project_id: int, commit_id: str) -> List[CodeEmbedding]:
        return self._select_embeddings(
            "WHERE project_id = %s AND commit_id = %s", (project_id, commit_id)
        )

    def _select_embeddings(self, where: str, params: tuple) -> List[CodeEmbedding]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT {EMBEDDING_COLUMNS} FROM embeddings {where}", params)
                rows = cur.fetchall()
        return [self._row_to_embedding(row) for row in rows]

    def search_similar_code(
        self,
        query_vector: List[float],
        project_id: Optional[int] = None,
        limit: int = 10,
    ) -> SimilarityResults:
        """
        Nearest-neighbour search, scoped to a project or global.

        With the JSON fallback (or if the ranked query fails) rows are the
        most recently updated ones and results.ranked is False.
        """
        backend = self.capability
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                rows, ranked = backend.search(conn, cur, query_vector, project_id, limit)

        if not ranked:
            logger.warning("[STORAGE] Vector similarity search not available, returning most recent rows")

        return SimilarityResults(
            results=[self._row_to_embedding(row) for row in rows],
            ranked=ranked,
        )

    def _row_to_embedding(self, row: Dict[str, Any]) -> CodeEmbedding:
        similarity = row.get("similarity")
        return CodeEmbedding(
            project_id=row["project_id"],
            repository_url=row.get("repository_url") or "",
            file_path=row["file_path"],
            content=row.get("content") or "",
            embedding=self.capability.decode_vector(row.get("embedding")),
            language=row.get("language") or "",
            commit_id=row["commit_id"],
            branch=row.get("branch") or "",
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            similarity=float(similarity) if similarity is not None else None,
        )

    # Batches

    def save_batch(self, batch: EmbeddingBatch) -> None:
        """Append a provenance record."""
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO batches (project_id, commit_id, branch, files, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (
                        batch.project_id,
                        batch.commit_id,
                        batch.branch,
                        Json(batch.file_manifest()),
                        batch.created_at,
                    ),
                )

    # Projects

    def save_project_metadata(self, metadata: ProjectMetadata) -> None:
        """Upsert a project row by project_id."""
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    _UPSERT_PROJECT_SQL,
                    (
                        metadata.project_id,
                        metadata.name,
                        metadata.description,
                        metadata.url,
                        metadata.default_branch,
                        metadata.last_processed_commit,
                        metadata.last_processed_at,
                    ),
                )

    update_project_metadata = save_project_metadata

    def get_project_metadata(self, project_id: int) -> Optional[ProjectMetadata]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE project_id = %s",
                    (project_id,),
                )
                row = cur.fetchone()
        return self._row_to_project(row) if row else None

    def get_all_projects(self) -> List[ProjectMetadata]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT {_PROJECT_COLUMNS} FROM projects ORDER BY name")
                rows = cur.fetchall()
        return [self._row_to_project(row) for row in rows]

    @staticmethod
    def _row_to_project(row: Dict[str, Any]) -> ProjectMetadata:
        return ProjectMetadata(
            project_id=row["project_id"],
            name=row["name"],
            description=row.get("description") or "",
            url=row.get("url") or "",
            default_branch=row.get("default_branch") or "main",
            last_processed_commit=row.get("last_processed_commit"),
            last_processed_at=row.get("last_processed_at"),
        )
