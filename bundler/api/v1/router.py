"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from bundler.api.v1.downloads import router as downloads_router
from bundler.api.v1.files import router as files_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(downloads_router, tags=["downloads"])
v1_router.include_router(files_router, tags=["files"])
