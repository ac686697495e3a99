"""Seam between the HTTP layer and whatever runs download jobs."""

from abc import ABC, abstractmethod
from typing import Optional

from bundler.jobs.models import Job


class JobDispatcher(ABC):
    """Accepts queued download jobs and answers status polls for them."""

    @abstractmethod
    async def submit(self, job: Job) -> str:
        """Record a queued job and schedule its pipeline. Returns the job id."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> Optional[Job]:
        """Latest known record for a job, or None if no such job exists."""
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop accepting jobs and wind down the ones still running."""
        ...
