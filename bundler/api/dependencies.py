"""Request dependencies. Components are built in the lifespan and kept on app.state."""

from fastapi import HTTPException, Request

from bundler.config import Settings
from bundler.jobs.in_process_runner import InProcessRunner
from bundler.jobs.publisher import ProgressPublisher
from bundler.jobs.registry import JobRegistry
from bundler.storage.object_store import ObjectStore


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return component


def get_settings(request: Request) -> Settings:
    return _component(request, "settings")


def get_registry(request: Request) -> JobRegistry:
    return _component(request, "registry")


def get_runner(request: Request) -> InProcessRunner:
    return _component(request, "runner")


def get_publisher(request: Request) -> ProgressPublisher:
    return _component(request, "publisher")


def get_store(request: Request) -> ObjectStore:
    return _component(request, "store")
