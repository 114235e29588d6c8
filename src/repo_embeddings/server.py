"""
HTTP server for the repository embedding service.

Routes:
    GET  /health                                   liveness check with embedder stats
    POST /webhook                                  GitLab push / merge request events
    POST /api/repositories/embed                   clone-based ingestion of a repository URL
    GET  /api/repositories/status/{processing_id}  background job status
    POST /api/search                               similarity search (optional LLM analysis)
    GET  /api/projects                             known projects

Every collaborator is built once at startup (build_services) and injected, so
tests can run the app against in-memory doubles.
"""

import asyncio
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .admin.webhook_handler import WebhookHandler, setup_webhook_routes
from .config import Settings
from .constants import DEFAULT_SEARCH_LIMIT
from .embeddings import (
    Embedder,
    EmbeddingConfig,
    EmbeddingGenerator,
    HTTPEmbedder,
    MockEmbedder,
    VertexAIEmbedder,
)
from .ingestion.git_manager import GitRepositoryManager, RepositoryIngestor
from .ingestion.pipeline import IngestionPipeline
from .middleware.auth import api_key_auth, webhook_auth
from .models import utcnow
from .providers.gitlab import GitLabProvider
from .services.llm_service import LLMService
from .services.search_service import SearchService
from .services.task_runner import BackgroundTaskRunner
from .storage.database import DatabaseService
from .utils.error_handler import INTERNAL_ERROR_BODY, handle_api_errors

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 30.0


def setup_logging(level: str = "INFO"):
    """Setup logging (stdout at the configured level, stderr for ERROR+)."""

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    stdout_handler.setLevel(logging.DEBUG)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.setLevel(logging.ERROR)

    root_logger.addHandler(stdout_handler)
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


@dataclass
class AppServices:
    """Process-wide collaborators, constructed once and passed to the routes."""

    settings: Settings
    storage: Any
    provider: Any
    embedder: Embedder
    generator: EmbeddingGenerator
    pipeline: IngestionPipeline
    webhook_handler: WebhookHandler
    repository_ingestor: RepositoryIngestor
    search_service: SearchService
    llm_service: Optional[LLMService]
    task_runner: BackgroundTaskRunner

    async def start(self) -> None:
        await asyncio.to_thread(self.storage.connect)

    async def stop(self, timeout: float = SHUTDOWN_TIMEOUT_SECONDS) -> None:
        """Drain background jobs, then release clients and the pool."""
        await self.task_runner.shutdown(timeout)
        await self.provider.close()
        await self.embedder.close()
        if self.llm_service is not None:
            await self.llm_service.close()
        await asyncio.to_thread(self.storage.close)


def create_embedder(settings: Settings) -> Embedder:
    config = EmbeddingConfig(
        model_name=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        api_url=settings.embedding_api_url,
        api_key=settings.embedding_api_key,
    )
    if settings.embedding_provider == "mock":
        logger.info("Using MockEmbedder (no embedding service)")
        return MockEmbedder(config)
    if settings.embedding_provider == "vertex":
        return VertexAIEmbedder(config)
    return HTTPEmbedder(config)


def build_services(settings: Settings) -> AppServices:
    """Wire the production collaborators from settings."""
    storage = DatabaseService(settings.database_url, dimensions=settings.embedding_dimensions)
    provider = GitLabProvider(settings.gitlab_api_url, settings.gitlab_api_token)
    embedder = create_embedder(settings)
    generator = EmbeddingGenerator(
        embedder,
        chunk_large_files=settings.chunk_large_files,
        max_chunk_size=settings.max_chunk_size,
        expected_dimensions=settings.embedding_dimensions,
    )
    pipeline = IngestionPipeline(storage, generator)
    llm_service = LLMService(
        settings.openrouter_api_url,
        settings.openrouter_api_key,
        settings.llm_model,
        app_url=settings.app_url,
    )

    return AppServices(
        settings=settings,
        storage=storage,
        provider=provider,
        embedder=embedder,
        generator=generator,
        pipeline=pipeline,
        webhook_handler=WebhookHandler(provider, pipeline),
        repository_ingestor=RepositoryIngestor(
            GitRepositoryManager(settings.temp_dir, settings.gitlab_api_token), pipeline
        ),
        search_service=SearchService(storage, generator, llm_service),
        llm_service=llm_service,
        task_runner=BackgroundTaskRunner(),
    )


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "Invalid JSON body"})
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail={"error": "Request body must be a JSON object"})
    return body


def _optional_int(value: Any, name: str, minimum: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise HTTPException(status_code=400, detail={"error": f"{name} must be an integer"})
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail={"error": f"{name} must be an integer"})
    if minimum is not None and number < minimum:
        raise HTTPException(status_code=400, detail={"error": f"{name} must be at least {minimum}"})
    return number


def create_api_router(services: AppServices) -> APIRouter:
    auth = api_key_auth(services.settings.api_key)
    router = APIRouter(prefix="/api", dependencies=[Depends(auth.dependency())])

    @router.post("/repositories/embed", status_code=202)
    @handle_api_errors
    async def embed_repository(request: Request):
        body = await _read_json(request)
        repository_url = body.get("repositoryUrl")
        if not repository_url or not isinstance(repository_url, str):
            raise HTTPException(status_code=400, detail={"error": "Repository URL is required"})

        processing_id = str(uuid.uuid4())
        services.task_runner.submit(
            services.repository_ingestor.process(repository_url, processing_id),
            kind="repository",
            job_id=processing_id,
        )
        return JSONResponse(
            status_code=202,
            content={
                "message": "Repository processing started",
                "processingId": processing_id,
                "status": "processing",
            },
        )

    @router.get("/repositories/status/{processing_id}")
    @handle_api_errors
    async def repository_status(processing_id: str):
        job = services.task_runner.get_status(processing_id)
        if job is None:
            raise HTTPException(status_code=404, detail={"error": "Processing job not found"})
        return job.to_dict()

    @router.post("/search")
    @handle_api_errors
    async def search_code(request: Request):
        body = await _read_json(request)
        query = body.get("query")
        if not query or not isinstance(query, str):
            raise HTTPException(status_code=400, detail={"error": "Search query is required"})

        project_id = _optional_int(body.get("projectId"), "projectId")
        limit = _optional_int(body.get("limit"), "limit", minimum=1) or DEFAULT_SEARCH_LIMIT
        analyze = body.get("analyze")
        if analyze is None:
            analyze = False
        if not isinstance(analyze, bool):
            raise HTTPException(status_code=400, detail={"error": "analyze must be a boolean"})

        response = await services.search_service.search(
            query, project_id=project_id, limit=limit, analyze=analyze
        )
        if response.count == 0:
            return JSONResponse(
                status_code=404,
                content={
                    "message": "No matching code found",
                    "query": query,
                    "results": [],
                    "count": 0,
                    "ranked": response.results.ranked,
                    "searchMode": response.results.search_mode,
                },
            )
        return response.to_dict()

    @router.get("/projects")
    @handle_api_errors
    async def list_projects():
        projects = await asyncio.to_thread(services.storage.get_all_projects)
        return {
            "projects": [p.to_dict() for p in projects],
            "count": len(projects),
            "timestamp": utcnow().isoformat(),
        }

    return router


def create_app(settings: Optional[Settings] = None, services: Optional[AppServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Runtime settings (read from the environment if omitted)
        services: Pre-built collaborators (built from settings if omitted)
    """
    if services is None:
        services = build_services(settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting repository embedding service")
        await services.start()
        yield
        logger.info("Shutting down repository embedding service")
        await services.stop()

    app = FastAPI(title="Repository Embeddings", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": utcnow().isoformat(),
            "embedding": services.embedder.get_stats(),
        }

    setup_webhook_routes(
        app,
        services.webhook_handler,
        services.task_runner,
        webhook_auth(services.settings.webhook_secret),
    )
    app.include_router(create_api_router(services))

    return app


def main():
    """Entry point: read settings, configure logging and serve."""
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger.info(f"Server running on port {settings.port}")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
