"""Download job API: start a bundle, poll it, subscribe to it, fetch the archive."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from bundler.api.dependencies import get_publisher, get_registry, get_runner, get_settings, get_store
from bundler.config import Settings
from bundler.errors import NotFoundError, StoreError
from bundler.jobs.dispatcher import JobDispatcher
from bundler.jobs.models import Job, JobStatus
from bundler.jobs.pipeline import archive_key
from bundler.jobs.publisher import ProgressPublisher
from bundler.jobs.registry import JobRegistry
from bundler.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter()


class DownloadInitiateRequest(BaseModel):
    file_keys: List[str]


class DownloadInitiateResponse(BaseModel):
    jobId: str
    status: str
    totalFiles: int
    subscribeUrl: str
    statusUrl: str


@router.post("/downloads", response_model=DownloadInitiateResponse)
async def initiate_download(
    request: DownloadInitiateRequest,
    runner: JobDispatcher = Depends(get_runner),
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Start a bundling job for the given source keys. Returns immediately."""
    if not request.file_keys:
        raise HTTPException(status_code=400, detail="file_keys must not be empty")
    if len(request.file_keys) > settings.max_keys_per_job:
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.max_keys_per_job} file keys per job",
        )
    if any(not key for key in request.file_keys):
        raise HTTPException(status_code=400, detail="file keys must be non-empty strings")

    valid_keys = []
    for key in request.file_keys:
        try:
            await store.head(settings.source_bucket, key)
            valid_keys.append(key)
        except (NotFoundError, StoreError) as e:
            logger.warning(f"[Download] Skipping file key {key}: {e}")

    if not valid_keys:
        raise HTTPException(status_code=400, detail="No valid file keys found in source bucket")

    job = Job(keys=valid_keys)
    job_id = await runner.submit(job)
    return DownloadInitiateResponse(
        jobId=job_id,
        status=JobStatus.QUEUED.value,
        totalFiles=job.total_files,
        subscribeUrl=f"/api/v1/downloads/{job_id}/subscribe",
        statusUrl=f"/api/v1/downloads/{job_id}",
    )


@router.get("/downloads")
async def list_downloads(
    status: Optional[JobStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    registry: JobRegistry = Depends(get_registry),
):
    """List download jobs, newest first."""
    jobs = registry.list(status=status, limit=limit, offset=offset)
    return {"items": [job.to_status() for job in jobs], "count": len(jobs)}


@router.get("/downloads/{job_id}")
async def get_download_status(job_id: str, runner: JobDispatcher = Depends(get_runner)):
    job = await runner.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_status()


@router.get("/downloads/{job_id}/subscribe")
async def subscribe_download(job_id: str, publisher: ProgressPublisher = Depends(get_publisher)):
    """Server-Sent Events stream of progress for one job."""

    async def stream():
        async for event in publisher.subscribe(job_id):
            yield event.encode()

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/downloads/{job_id}/file")
async def download_archive(
    job_id: str,
    registry: JobRegistry = Depends(get_registry),
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Proxy the finished archive through the service."""
    job = registry.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    if job.status != JobStatus.COMPLETED:
        raise HTTPException(status_code=400, detail=f"Job {job_id} is not completed yet")

    key = archive_key(job_id)
    try:
        data = await store.get(settings.downloads_bucket, key)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Archive not found in storage")
    except StoreError as e:
        logger.error(f"[Download] Failed to stream file for job {job_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to download file")

    return Response(
        content=data,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{key}"',
            "Cache-Control": "no-cache",
        },
    )
