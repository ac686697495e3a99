"""In-process job runner using asyncio tasks.

Every submitted job gets its own detached task running the download pipeline.
Tasks interleave on the event loop; nothing awaits them on the request path,
so the runner keeps them in a task set and records a failure for any error
that escapes the pipeline.
"""

import asyncio
import logging
from typing import Optional, Set

from bundler.errors import BundlerError
from bundler.jobs.dispatcher import JobDispatcher
from bundler.jobs.models import Job, JobStatus
from bundler.jobs.pipeline import DownloadPipeline
from bundler.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)


class InProcessRunner(JobDispatcher):
    """Local job runner. One asyncio task per job, all on the current loop."""

    def __init__(
        self,
        registry: JobRegistry,
        pipeline: DownloadPipeline,
        shutdown_grace_seconds: float = 10.0,
    ):
        self._registry = registry
        self._pipeline = pipeline
        self._shutdown_grace_seconds = shutdown_grace_seconds
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def submit(self, job: Job) -> str:
        if not self._running:
            raise RuntimeError("Job runner is not running")
        self._registry.create(job)
        task = asyncio.create_task(self._run(job.id), name=f"download-job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Job {job.id} started with {job.total_files} file(s)")
        return job.id

    async def get_status(self, job_id: str) -> Optional[Job]:
        return self._registry.get(job_id)

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        if not self._tasks:
            return

        pending = set(self._tasks)
        logger.info(f"Waiting up to {self._shutdown_grace_seconds}s for {len(pending)} job(s)")
        _, still_running = await asyncio.wait(pending, timeout=self._shutdown_grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    async def _run(self, job_id: str) -> None:
        try:
            await self._pipeline.run(job_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Download] Job {job_id} failed outside the pipeline: {e}", exc_info=True)
            self._record_failure(job_id, e)

    def _record_failure(self, job_id: str, error: Exception) -> None:
        job = self._registry.get(job_id)
        if job is None or job.status.is_terminal:
            return
        try:
            self._registry.update(job_id, status=JobStatus.FAILED, error=f"{type(error).__name__}: {error}")
        except BundlerError as e:
            logger.error(f"[Download] Could not record failure for job {job_id}: {e}")
