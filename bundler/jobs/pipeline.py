"""Four-phase download pipeline: collect, verify & archive, upload, publish.

One pipeline run per job. Progress checkpoints are fixed:
collect 0-25 (per file), verified 30, archived 50, uploaded 75, published 100.
Any failure ends the job as failed; nothing is retried and no partial archive
is uploaded.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from bundler.config import Settings
from bundler.errors import IntegrityError, NotFoundError
from bundler.jobs.models import Job, JobStatus
from bundler.jobs.registry import JobRegistry
from bundler.storage.archive import build_zip, calculate_checksum
from bundler.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

COLLECT_BAND = 25
VERIFIED_PROGRESS = 30
ARCHIVED_PROGRESS = 50
UPLOADED_PROGRESS = 75
PUBLISHED_PROGRESS = 100

CANCELLED_ERROR = "Cancelled during shutdown"


@dataclass
class CollectedArtifact:
    key: str
    data: bytes
    checksum: str


def archive_key(job_id: str) -> str:
    return f"{job_id}.zip"


def collect_progress(completed: int, total: int) -> int:
    """round(completed / total * 25), halves rounded up."""
    return (2 * COLLECT_BAND * completed + total) // (2 * total)


class DownloadPipeline:
    """Runs one job to a terminal state, writing only through the registry."""

    def __init__(
        self,
        registry: JobRegistry,
        store: ObjectStore,
        source_bucket: str = "source",
        downloads_bucket: str = "downloads",
        presign_ttl_seconds: int = 3600,
        compression_level: int = 6,
    ):
        self._registry = registry
        self._store = store
        self._source_bucket = source_bucket
        self._downloads_bucket = downloads_bucket
        self._presign_ttl_seconds = presign_ttl_seconds
        self._compression_level = compression_level

    @classmethod
    def from_settings(cls, registry: JobRegistry, store: ObjectStore, settings: Settings) -> "DownloadPipeline":
        return cls(
            registry,
            store,
            source_bucket=settings.source_bucket,
            downloads_bucket=settings.downloads_bucket,
            presign_ttl_seconds=settings.presign_ttl_seconds,
            compression_level=settings.archive_compression_level,
        )

    async def run(self, job_id: str) -> Optional[Job]:
        job = self._registry.get(job_id)
        if job is None:
            logger.error(f"Job {job_id} not found in registry.")
            return None

        job = self._registry.update(job_id, status=JobStatus.PROCESSING)
        artifacts: List[CollectedArtifact] = []
        archive: Optional[bytes] = None
        try:
            logger.info(f"[Download] Job {job_id}: Phase 1 - Collecting {job.total_files} file(s)")
            await self._collect(job, artifacts)

            logger.info(f"[Download] Job {job_id}: Phase 2 - Verifying and archiving")
            archive = await self._archive(job, artifacts)

            logger.info(f"[Download] Job {job_id}: Phase 3 - Uploading {len(archive)} bytes")
            key = await self._upload(job, archive)

            logger.info(f"[Download] Job {job_id}: Phase 4 - Generating download URL")
            url = await self._store.presign_get(self._downloads_bucket, key, self._presign_ttl_seconds)
            job = self._registry.update(
                job_id,
                status=JobStatus.COMPLETED,
                progress=PUBLISHED_PROGRESS,
                result_url=url,
            )
            logger.info(f"[Download] Job {job_id} completed successfully.")
            return job
        except asyncio.CancelledError:
            logger.warning(f"[Download] Job {job_id} cancelled")
            self._registry.update(job_id, status=JobStatus.FAILED, error=CANCELLED_ERROR)
            raise
        except Exception as e:
            logger.error(f"[Download] Job {job_id} failed: {e}", exc_info=True)
            return self._registry.update(job_id, status=JobStatus.FAILED, error=str(e))
        finally:
            artifacts.clear()
            archive = None

    async def _collect(self, job: Job, artifacts: List[CollectedArtifact]) -> None:
        total = len(job.keys)
        for i, key in enumerate(job.keys, start=1):
            data = await self._store.get(self._source_bucket, key)
            if not data:
                raise NotFoundError(key, "is empty")

            artifacts.append(CollectedArtifact(key=key, data=data, checksum=calculate_checksum(data)))
            progress = collect_progress(i, total)
            self._registry.update(job.id, files_completed=i, progress=progress)
            logger.info(f"[Download] Job {job.id}: Collected {i}/{total} files ({progress}%)")

    async def _archive(self, job: Job, artifacts: List[CollectedArtifact]) -> bytes:
        for artifact in artifacts:
            if calculate_checksum(artifact.data) != artifact.checksum:
                raise IntegrityError(artifact.key)
        self._registry.update(job.id, progress=VERIFIED_PROGRESS)

        # Deflating runs off the event loop; the archive is complete once the future resolves.
        entries = [(artifact.key, artifact.data) for artifact in artifacts]
        loop = asyncio.get_running_loop()
        archive = await loop.run_in_executor(None, build_zip, entries, self._compression_level)

        self._registry.update(job.id, progress=ARCHIVED_PROGRESS)
        logger.info(f"[Download] Job {job.id}: Created archive ({len(archive)} bytes)")
        return archive

    async def _upload(self, job: Job, archive: bytes) -> str:
        key = archive_key(job.id)
        await self._store.put(
            self._downloads_bucket,
            key,
            archive,
            metadata={
                "jobId": job.id,
                "fileCount": str(len(job.keys)),
                "createdAt": job.created_at.isoformat(),
            },
            content_type="application/zip",
        )
        self._registry.update(job.id, progress=UPLOADED_PROGRESS)
        logger.info(f"[Download] Job {job.id}: Uploaded to {self._downloads_bucket}/{key}")
        return key
