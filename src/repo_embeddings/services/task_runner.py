"""
Background task runner.

HTTP handlers acknowledge a request and hand the work to this runner, which
keeps a reference to every in-flight task, records its outcome per job id,
and waits for running work on shutdown. Jobs live in process memory only and
are lost on restart.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Coroutine, Dict, Optional, Set

from ..models import utcnow

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

_MESSAGES = {
    STATUS_PROCESSING: "Processing started",
    STATUS_COMPLETED: "Processing completed successfully",
    STATUS_FAILED: "Processing failed",
}


@dataclass
class JobStatus:
    """Tracked state of one background job."""

    job_id: str
    kind: str
    status: str = STATUS_PROCESSING
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def done(self) -> bool:
        return self.status != STATUS_PROCESSING

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "processingId": self.job_id,
            "kind": self.kind,
            "status": self.status,
            "message": _MESSAGES[self.status],
            "createdAt": self.created_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "timestamp": utcnow().isoformat(),
        }
        if self.error:
            data["error"] = self.error
        if self.result is not None:
            data["result"] = self.result
        return data


class BackgroundTaskRunner:
    """
    Runs coroutines as tracked asyncio tasks.

    Failures are logged and recorded on the job; they never propagate to the
    code that submitted the job.
    """

    def __init__(self, max_tracked_jobs: int = 1000):
        """
        Initialize the runner.

        Args:
            max_tracked_jobs: Finished jobs beyond this count are forgotten, oldest first
        """
        self.max_tracked_jobs = max_tracked_jobs
        self._jobs: "OrderedDict[str, JobStatus]" = OrderedDict()
        self._tasks: Set[asyncio.Task] = set()
        self._accepting = True

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine, kind: str = "task", job_id: Optional[str] = None) -> str:
        """
        Schedule a coroutine on the running loop.

        Returns:
            The job id

        Raises:
            RuntimeError: If the runner is shutting down
        """
        if not self._accepting:
            coro.close()
            raise RuntimeError("Task runner is shutting down")

        job_id = job_id or str(uuid.uuid4())
        self._jobs[job_id] = JobStatus(job_id=job_id, kind=kind)
        self._evict()

        task = asyncio.get_running_loop().create_task(coro, name=f"{kind}-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(job_id, t))

        logger.debug(f"Submitted {kind} job {job_id}")
        return job_id

    def get_status(self, job_id: str) -> Optional[JobStatus]:
        return self._jobs.get(job_id)

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        job = self._jobs.get(job_id)
        if job is None:
            return

        job.finished_at = utcnow()
        if task.cancelled():
            job.status = STATUS_FAILED
            job.error = "cancelled"
            logger.warning(f"{job.kind} job {job_id} was cancelled")
            return

        exc = task.exception()
        if exc is not None:
            job.status = STATUS_FAILED
            job.error = str(exc) or type(exc).__name__
            logger.error(f"{job.kind} job {job_id} failed: {exc}", exc_info=exc)
            return

        result = task.result()
        if getattr(result, "failed", False):
            job.status = STATUS_FAILED
            job.error = getattr(result, "error", None) or "failed"
        else:
            job.status = STATUS_COMPLETED

        if hasattr(result, "to_dict"):
            job.result = result.to_dict()
        elif isinstance(result, dict):
            job.result = result

    def _evict(self) -> None:
        while len(self._jobs) > self.max_tracked_jobs:
            oldest = next((jid for jid, job in self._jobs.items() if job.done), None)
            if oldest is None:
                return
            del self._jobs[oldest]

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop accepting jobs and wait for running ones; cancel what is left after timeout."""
        self._accepting = False
        if not self._tasks:
            return

        logger.info(f"Waiting for {len(self._tasks)} background jobs to finish")
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)

        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} background jobs still running after {timeout}s")
            await asyncio.gather(*pending, return_exceptions=True)
