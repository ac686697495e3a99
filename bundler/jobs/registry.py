"""In-process job registry with a durable backing store.

The cached record is authoritative for the lifetime of the process. Every
mutation lands in the cache first and is then written to the durable store on
a best-effort basis; restart recovery only sees what made it to disk.

Each job id has exactly one writer (its pipeline task), so the registry takes
no locks. Subscribers register an asyncio.Event per job and are woken after
every cache mutation.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from bundler.db.job_store import JobStore
from bundler.errors import InvalidTransitionError, PersistenceError
from bundler.jobs.models import IMMUTABLE_FIELDS, TRANSITIONS, Job, JobStatus, utcnow

logger = logging.getLogger(__name__)

INTERRUPTED_ERROR = "Interrupted by service restart"


class LookupSource(str, Enum):
    CACHE = "cache"
    STORE = "store"
    ABSENT = "absent"


@dataclass(frozen=True)
class JobLookup:
    """Where a job was found, and the job itself when it was."""
    source: LookupSource
    job: Optional[Job] = None

    @property
    def found(self) -> bool:
        return self.source != LookupSource.ABSENT


class JobRegistry:
    """Owns the canonical view of every job in this process."""

    def __init__(self, store: JobStore):
        self._store = store
        self._jobs: Dict[str, Job] = {}
        self._watchers: Dict[str, Set[asyncio.Event]] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, job_id: str) -> JobLookup:
        job = self._jobs.get(job_id)
        if job is not None:
            return JobLookup(LookupSource.CACHE, job.model_copy(deep=True))

        job = self._store.fetch(job_id)
        if job is None:
            return JobLookup(LookupSource.ABSENT)

        self._jobs[job_id] = job
        return JobLookup(LookupSource.STORE, job.model_copy(deep=True))

    def get(self, job_id: str) -> Optional[Job]:
        return self.lookup(job_id).job

    def list(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        """Durable listing, newest first.

        Rows for jobs this process holds in memory are replaced by the cached
        record, which may be ahead of what was persisted. A cached record that
        has since left the requested status is dropped from the page.
        """
        jobs = []
        for job in self._store.list(status=status, limit=limit, offset=offset):
            cached = self._jobs.get(job.id)
            if cached is None:
                jobs.append(job)
            elif status is None or cached.status == status:
                jobs.append(cached.model_copy(deep=True))
        return jobs

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, job: Job) -> Job:
        if job.status != JobStatus.QUEUED:
            raise InvalidTransitionError(f"New job {job.id} must be queued, got {job.status.value}")
        if job.id in self._jobs:
            raise InvalidTransitionError(f"Job {job.id} already exists")

        self._jobs[job.id] = job.model_copy(deep=True)
        self._persist(self._jobs[job.id])
        return job.model_copy(deep=True)

    def update(self, job_id: str, **fields: Any) -> Job:
        """Merge ``fields`` into the job, bump updated_at, then persist."""
        current = self._jobs.get(job_id)
        if current is None:
            current = self.lookup(job_id).job
        if current is None:
            raise InvalidTransitionError(f"Job {job_id} not found")

        _check_update(current, fields)
        fields["updated_at"] = max(utcnow(), current.updated_at + timedelta(microseconds=1))
        merged = current.model_copy(update=fields)
        _check_outcome(merged)

        self._jobs[job_id] = merged
        self._notify(job_id)
        self._persist(merged)
        return merged.model_copy(deep=True)

    def fail_interrupted(self) -> List[str]:
        """Fail durable jobs left unfinished by a previous process."""
        ids = self._store.fail_unfinished(INTERRUPTED_ERROR)
        for job_id in ids:
            self._jobs.pop(job_id, None)
        if ids:
            logger.warning(f"Marked {len(ids)} interrupted job(s) as failed")
        return ids

    def _persist(self, job: Job) -> None:
        # Synchronous SQLite commit; blocks the event loop until it returns.
        try:
            self._store.save(job)
        except PersistenceError as e:
            logger.error(f"[Database] Failed to update job {job.id}: {e}")

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def watch(self, job_id: str) -> asyncio.Event:
        event = asyncio.Event()
        self._watchers.setdefault(job_id, set()).add(event)
        return event

    def unwatch(self, job_id: str, event: asyncio.Event) -> None:
        watchers = self._watchers.get(job_id)
        if not watchers:
            return
        watchers.discard(event)
        if not watchers:
            del self._watchers[job_id]

    def _notify(self, job_id: str) -> None:
        for event in self._watchers.get(job_id, ()):
            event.set()


def _check_update(current: Job, fields: Dict[str, Any]) -> None:
    if current.status.is_terminal:
        raise InvalidTransitionError(f"Job {current.id} is already {current.status.value}")

    unknown = set(fields) - set(Job.model_fields)
    if unknown:
        raise InvalidTransitionError(f"Unknown job fields: {sorted(unknown)}")
    fixed = IMMUTABLE_FIELDS.intersection(fields)
    if fixed:
        raise InvalidTransitionError(f"Fields fixed at creation: {sorted(fixed)}")

    status = fields.get("status")
    if status is not None:
        status = fields["status"] = JobStatus(status)
        if status != current.status and status not in TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Job {current.id} cannot move from {current.status.value} to {status.value}"
            )

    progress = fields.get("progress")
    if progress is not None and not current.progress <= progress <= 100:
        raise InvalidTransitionError(
            f"Job {current.id} progress must stay within {current.progress}..100, got {progress}"
        )

    files_completed = fields.get("files_completed")
    if files_completed is not None and not current.files_completed <= files_completed <= current.total_files:
        raise InvalidTransitionError(
            f"Job {current.id} files_completed must stay within "
            f"{current.files_completed}..{current.total_files}, got {files_completed}"
        )


def _check_outcome(job: Job) -> None:
    if job.status == JobStatus.COMPLETED:
        ok = job.result_url is not None and job.error is None
    elif job.status == JobStatus.FAILED:
        ok = job.error is not None and job.result_url is None
    else:
        ok = job.result_url is None and job.error is None
    if not ok:
        raise InvalidTransitionError(
            f"Job {job.id} in status {job.status.value} has result_url={job.result_url!r} error={job.error!r}"
        )
