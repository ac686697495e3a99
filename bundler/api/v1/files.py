"""Source bucket browsing and direct presigned links to source objects."""

import logging
from typing import List
from urllib.parse import unquote

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from bundler.api.dependencies import get_settings, get_store
from bundler.config import Settings
from bundler.errors import NotFoundError, StoreError
from bundler.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_LINK_TTL_SECONDS = 60
MAX_LINK_TTL_SECONDS = 3600
MAX_BATCH_KEYS = 50


class FileCheckRequest(BaseModel):
    key: str


class BatchDownloadRequest(BaseModel):
    keys: List[str] = Field(min_length=1, max_length=MAX_BATCH_KEYS)
    expiresIn: int = Field(MAX_LINK_TTL_SECONDS, ge=MIN_LINK_TTL_SECONDS, le=MAX_LINK_TTL_SECONDS)


def clean_key(key: str) -> str:
    """Strip parent-directory markers and a leading slash from a client key."""
    key = unquote(key).replace("..", "")
    return key[1:] if key.startswith("/") else key


@router.get("/files")
async def list_source_files(
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """List every object in the source bucket, skipping folder markers."""
    try:
        objects = await store.list(settings.source_bucket)
    except StoreError as e:
        logger.error(f"Error listing files: {e}")
        raise HTTPException(status_code=502, detail="Failed to list files")

    return {
        "files": [
            {
                "key": obj.key,
                "size": obj.size,
                "lastModified": obj.last_modified.isoformat() if obj.last_modified else None,
            }
            for obj in objects
            if obj.key and not obj.key.endswith("/")
        ]
    }


@router.post("/files/check")
async def check_source_file(
    request: FileCheckRequest,
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Report whether a key exists in the source bucket, and its size."""
    try:
        size = await store.head(settings.source_bucket, request.key)
    except NotFoundError:
        return {"key": request.key, "available": False, "size": None}
    except StoreError as e:
        logger.error(f"Error checking {request.key}: {e}")
        raise HTTPException(status_code=502, detail="Failed to check file")
    return {"key": request.key, "available": True, "size": size}


@router.post("/files/batch-download")
async def presign_source_files(
    request: BatchDownloadRequest,
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Presigned GET links for up to 50 source keys, in request order."""
    urls = []
    try:
        for key in request.keys:
            url = await store.presign_get(settings.source_bucket, clean_key(key), request.expiresIn)
            urls.append({"key": key, "url": url})
    except StoreError as e:
        logger.error(f"Error generating batch URLs: {e}")
        raise HTTPException(status_code=502, detail="Failed to generate download URLs")
    return {"urls": urls}


@router.get("/files/{key:path}/download")
async def presign_source_file(
    key: str,
    expires_in: int = Query(
        MAX_LINK_TTL_SECONDS, alias="expiresIn", ge=MIN_LINK_TTL_SECONDS, le=MAX_LINK_TTL_SECONDS
    ),
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Presigned GET link for one source key. Existence is not checked."""
    try:
        url = await store.presign_get(settings.source_bucket, clean_key(key), expires_in)
    except StoreError as e:
        logger.error(f"Error generating presigned URL for {key}: {e}")
        raise HTTPException(status_code=502, detail="Failed to generate download URL")
    return {"url": url, "expiresIn": expires_in}
