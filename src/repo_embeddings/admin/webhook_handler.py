"""
Webhook handler for GitLab change events.

Classifies push and merge request events, extracts the (project, ref, commit)
triple and drives the ingestion pipeline:

    received -> classified -> skipped-* | processing -> completed | failed

Processing runs in the background after the delivery is acknowledged;
failures are logged, never reported to the sender.

Usage:
    handler = WebhookHandler(provider, pipeline)
    setup_webhook_routes(app, handler, task_runner, webhook_auth(secret))

Webhook URL:
    - GitLab: POST /webhook
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..constants import MERGE_REQUEST_ACTIONS, ZERO_SHA
from ..ingestion.pipeline import IngestionPipeline, IngestionStats
from ..models import ProjectMetadata
from ..providers.base import RepositoryProvider

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"


class WebhookError(Exception):
    """Raised when a webhook payload is missing fields the pipeline needs."""

    pass


class EventState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    SKIPPED_REF_DELETION = "skipped-duplicate-ref-deletion"
    SKIPPED_ALREADY_PROCESSED = "skipped-already-processed"
    SKIPPED_NO_FILES = "skipped-no-files"
    SKIPPED_UNSUPPORTED = "skipped-unsupported-action"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_skip(self) -> bool:
        return self.value.startswith("skipped-")


@dataclass
class ChangeEvent:
    """
    The fields of a change event the pipeline consumes.

    Attributes:
        kind: 'push' or 'merge_request'
        project_id: Provider project id
        ref: Reference files are fetched at (commit SHA for pushes, source branch for MRs)
        commit_id: Commit recorded as processed
        branch: Branch name stored on embeddings
        repository_url: Project web URL from the payload (may be empty)
        action: Merge request action
        merge_request_iid: Merge request number within the project
    """

    kind: str
    project_id: int
    ref: str
    commit_id: str
    branch: str
    repository_url: str = ""
    action: Optional[str] = None
    merge_request_iid: Optional[int] = None

    def describe(self) -> str:
        if self.kind == "merge_request":
            return f"project {self.project_id}, MR !{self.merge_request_iid}, commit {self.commit_id}"
        return f"project {self.project_id}, commit {self.commit_id}, branch {self.branch}"


@dataclass
class DispatchResult:
    """Terminal state of one event."""

    state: EventState
    event: Optional[ChangeEvent] = None
    reason: str = ""
    stats: Optional[IngestionStats] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.state == EventState.FAILED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"state": self.state.value}
        if self.event is not None:
            data["projectId"] = self.event.project_id
            data["commitId"] = self.event.commit_id
        if self.reason:
            data["reason"] = self.reason
        if self.stats is not None:
            data["stats"] = self.stats.to_dict()
        if self.error:
            data["error"] = self.error
        return data


def _require(mapping: Any, key: str, context: str) -> Any:
    if not isinstance(mapping, dict) or mapping.get(key) in (None, ""):
        raise WebhookError(f"{context} is missing '{key}'")
    return mapping[key]


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise WebhookError(f"{name} must be an integer, got {value!r}")


class WebhookHandler:
    """
    Event dispatcher for GitLab webhooks.

    Features:
    - Push and merge request events
    - Branch deletion and merge request action filtering
    - Commit idempotency gate before any repository fetch
    """

    def __init__(self, provider: RepositoryProvider, pipeline: IngestionPipeline):
        """
        Initialize webhook handler.

        Args:
            provider: Repository provider used to fetch files and project details
            pipeline: Shared embed → store pipeline
        """
        self.provider = provider
        self.pipeline = pipeline

    def classify_event(self, payload: Any) -> DispatchResult:
        """
        Classify a payload without doing any I/O.

        Returns:
            CLASSIFIED with the extracted event, or a skipped-* result

        Raises:
            WebhookError: If a supported event lacks a required field
        """
        if not isinstance(payload, dict):
            raise WebhookError("Webhook payload must be a JSON object")

        kind = payload.get("object_kind")
        logger.info(f"[WEBHOOK] Received webhook event: {kind}")

        if kind == "push":
            return self._classify_push(payload)
        if kind == "merge_request":
            return self._classify_merge_request(payload)

        logger.info(f"[WEBHOOK] Ignoring unsupported event type: {kind}")
        return DispatchResult(EventState.SKIPPED_UNSUPPORTED, reason=f"unsupported event type {kind!r}")

    def _classify_push(self, payload: Dict[str, Any]) -> DispatchResult:
        after = _require(payload, "after", "push event")
        if after == ZERO_SHA:
            logger.info("[WEBHOOK] Skipping branch deletion event")
            return DispatchResult(EventState.SKIPPED_REF_DELETION, reason="ref deleted")

        ref = str(_require(payload, "ref", "push event"))
        branch = ref[len(BRANCH_REF_PREFIX):] if ref.startswith(BRANCH_REF_PREFIX) else ref
        project = payload.get("project")
        if not isinstance(project, dict):
            project = {}

        event = ChangeEvent(
            kind="push",
            project_id=_as_int(_require(payload, "project_id", "push event"), "project_id"),
            ref=after,
            commit_id=after,
            branch=branch,
            repository_url=project.get("web_url") or "",
        )
        return DispatchResult(EventState.CLASSIFIED, event=event)

    def _classify_merge_request(self, payload: Dict[str, Any]) -> DispatchResult:
        attributes = _require(payload, "object_attributes", "merge request event")
        action = attributes.get("action") if isinstance(attributes, dict) else None

        if action not in MERGE_REQUEST_ACTIONS:
            logger.info(f"[WEBHOOK] Skipping merge request event with action: {action}")
            return DispatchResult(EventState.SKIPPED_UNSUPPORTED, reason=f"merge request action {action!r}")

        project = _require(payload, "project", "merge request event")
        last_commit = _require(attributes, "last_commit", "merge request attributes")
        source_branch = _require(attributes, "source_branch", "merge request attributes")

        event = ChangeEvent(
            kind="merge_request",
            project_id=_as_int(_require(project, "id", "merge request project"), "project.id"),
            ref=source_branch,
            commit_id=_require(last_commit, "id", "merge request last_commit"),
            branch=source_branch,
            repository_url=project.get("web_url") or "",
            action=action,
            merge_request_iid=attributes.get("iid"),
        )
        return DispatchResult(EventState.CLASSIFIED, event=event)

    async def process_event(self, event: ChangeEvent) -> DispatchResult:
        """Process a classified event; never raises."""
        try:
            if event.kind == "merge_request":
                return await self.process_merge_request_event(event)
            return await self.process_push_event(event)
        except Exception as e:
            logger.error(f"[WEBHOOK] Error processing {event.kind} event ({event.describe()}): {e}", exc_info=True)
            return DispatchResult(EventState.FAILED, event=event, error=str(e))

    async def process_push_event(self, event: ChangeEvent) -> DispatchResult:
        logger.info(f"[WEBHOOK] Processing push event for {event.describe()}")
        return await self._run(event)

    async def process_merge_request_event(self, event: ChangeEvent) -> DispatchResult:
        logger.info(f"[WEBHOOK] Processing merge request event for {event.describe()}")
        return await self._run(event)

    async def _resolve_project(self, project_id: int) -> ProjectMetadata:
        project = await self.pipeline.get_project(project_id)
        if project is not None:
            return project

        details = await self.provider.get_project(project_id)
        return ProjectMetadata(
            project_id=project_id,
            name=details.get("name") or str(project_id),
            description=details.get("description") or "",
            url=details.get("web_url") or "",
            default_branch=details.get("default_branch") or "main",
        )

    async def _run(self, event: ChangeEvent) -> DispatchResult:
        project = await self._resolve_project(event.project_id)

        if self.pipeline.is_already_processed(project, event.commit_id):
            logger.info(f"[WEBHOOK] Commit {event.commit_id} already processed, skipping")
            return DispatchResult(EventState.SKIPPED_ALREADY_PROCESSED, event=event)

        logger.info(f"[WEBHOOK] Fetching files for project {event.project_id} at {event.ref}")
        files = await self.provider.get_all_files(event.project_id, event.ref)
        if not files:
            logger.info("[WEBHOOK] No files found, skipping")
            return DispatchResult(EventState.SKIPPED_NO_FILES, event=event)

        stats = await self.pipeline.ingest(
            project,
            files,
            commit_id=event.commit_id,
            branch=event.branch,
            repository_url=event.repository_url or project.url,
        )
        logger.info(f"[WEBHOOK] Successfully processed {event.kind} event for {event.describe()}")
        return DispatchResult(EventState.COMPLETED, event=event, stats=stats)


def setup_webhook_routes(app, handler: WebhookHandler, task_runner, auth) -> None:
    """
    Register POST /webhook on a FastAPI app.

    The event is classified synchronously (malformed events get 400); any
    processing is submitted to the task runner and the delivery is
    acknowledged with 202.
    """

    @app.post("/webhook", status_code=202, dependencies=[Depends(auth.dependency())])
    async def gitlab_webhook(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail={"error": "Invalid JSON payload"})

        try:
            result = handler.classify_event(payload)
        except WebhookError as e:
            logger.warning(f"[WEBHOOK] Rejected webhook payload: {e}")
            raise HTTPException(status_code=400, detail={"error": str(e)})

        body: Dict[str, Any] = {"message": "Webhook received and processing started"}
        if result.state.is_skip:
            body = {"message": "Webhook received", "state": result.state.value, "reason": result.reason}
        else:
            body["processingId"] = task_runner.submit(
                handler.process_event(result.event), kind="webhook"
            )

        return JSONResponse(status_code=202, content=body)

    logger.info("Webhook routes registered: POST /webhook")
