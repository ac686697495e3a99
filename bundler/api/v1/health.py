"""Health check endpoint."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from bundler.api.dependencies import get_runner, get_settings, get_store
from bundler.config import Settings
from bundler.errors import NotFoundError, StoreError
from bundler.jobs.in_process_runner import InProcessRunner
from bundler.storage.object_store import ObjectStore

router = APIRouter()

HEALTH_MARKER_KEY = "__health_check_marker__"


@router.get("/health")
async def health_check(
    store: ObjectStore = Depends(get_store),
    runner: InProcessRunner = Depends(get_runner),
    settings: Settings = Depends(get_settings),
):
    """Service health and object store reachability."""
    try:
        await store.head(settings.downloads_bucket, HEALTH_MARKER_KEY)
        storage_ok = True
    except NotFoundError:
        # The bucket answered; the marker just isn't there
        storage_ok = True
    except StoreError:
        storage_ok = False

    return JSONResponse(
        status_code=200 if storage_ok else 503,
        content={
            "status": "healthy" if storage_ok else "unhealthy",
            "checks": {"storage": "ok" if storage_ok else "error"},
            "active_jobs": runner.active_jobs,
        },
    )
