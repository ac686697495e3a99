"""Archive bundling service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from bundler.config import Settings, settings as default_settings
from bundler.api.v1.router import v1_router
from bundler.api.v1.health import router as health_root_router
from bundler.db.database import create_db_engine
from bundler.db.job_store import JobStore
from bundler.jobs.in_process_runner import InProcessRunner
from bundler.jobs.pipeline import DownloadPipeline
from bundler.jobs.publisher import ProgressPublisher
from bundler.jobs.registry import JobRegistry
from bundler.storage.object_store import ObjectStore, S3ObjectStore

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[ObjectStore] = None) -> FastAPI:
    """Build the application. ``store`` replaces the S3 client when given."""
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        logger.info(f"Starting archive bundling service on port {settings.port}")
        logger.info(f"Source bucket: {settings.source_bucket}, downloads bucket: {settings.downloads_bucket}")

        object_store = store or S3ObjectStore.from_settings(settings)

        engine = create_db_engine(settings.database_url)
        registry = JobRegistry(JobStore(engine))
        registry.fail_interrupted()

        pipeline = DownloadPipeline.from_settings(registry, object_store, settings)
        runner = InProcessRunner(
            registry,
            pipeline,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
        )
        await runner.start()
        logger.info("Job runner started")

        app.state.settings = settings
        app.state.store = object_store
        app.state.registry = registry
        app.state.runner = runner
        app.state.publisher = ProgressPublisher(
            registry, poll_interval=settings.progress_poll_interval_seconds
        )

        yield

        logger.info("Shutting down archive bundling service")
        await runner.stop()
        engine.dispose()

    app = FastAPI(
        title="Archive Bundling Service",
        description="Bundles object store keys into a ZIP archive and hands out a presigned download link",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=default_settings.port)
