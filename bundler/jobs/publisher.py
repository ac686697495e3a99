"""Per-job progress push channel.

A subscription yields a snapshot on attach, then a new event whenever the
job's status or progress changes, and ends after the terminal event. It wakes
on registry change notifications, with a fixed poll interval as a fallback.
Closing the subscription never affects the job itself.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict

from bundler.jobs.models import Job, JobStatus
from bundler.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)

PROGRESS = "progress"
COMPLETE = "complete"
ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    event: str
    data: Dict[str, Any]

    @property
    def is_final(self) -> bool:
        return self.event != PROGRESS

    def encode(self) -> str:
        """Server-Sent Events wire form."""
        return f"event: {self.event}\ndata: {json.dumps(self.data)}\n\n"


def event_for(job: Job) -> ProgressEvent:
    if job.status == JobStatus.COMPLETED:
        return ProgressEvent(COMPLETE, job.snapshot())
    if job.status == JobStatus.FAILED:
        return ProgressEvent(ERROR, job.snapshot())
    return ProgressEvent(PROGRESS, job.snapshot())


class ProgressPublisher:
    def __init__(self, registry: JobRegistry, poll_interval: float = 1.0):
        self._registry = registry
        self._poll_interval = poll_interval

    async def subscribe(self, job_id: str) -> AsyncIterator[ProgressEvent]:
        lookup = self._registry.lookup(job_id)
        if not lookup.found:
            yield ProgressEvent(ERROR, {"jobId": job_id, "error": "Job not found"})
            return

        changed = self._registry.watch(job_id)
        try:
            job = lookup.job
            first = event_for(job)
            yield first
            if first.is_final:
                return

            last = (job.status, job.progress)
            while True:
                try:
                    await asyncio.wait_for(changed.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass
                changed.clear()

                job = self._registry.get(job_id)
                if job is None:
                    return
                if (job.status, job.progress) == last:
                    continue

                last = (job.status, job.progress)
                event = event_for(job)
                yield event
                if event.is_final:
                    return
        finally:
            self._registry.unwatch(job_id, changed)
            logger.debug(f"Subscription for job {job_id} closed")
