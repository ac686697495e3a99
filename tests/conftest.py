import asyncio
from typing import Dict, List, Optional

import pytest

from bundler.config import Settings
from bundler.db.database import create_db_engine
from bundler.db.job_store import JobStore
from bundler.errors import NotFoundError, StoreError
from bundler.jobs.pipeline import DownloadPipeline
from bundler.jobs.registry import JobRegistry
from bundler.storage.object_store import ObjectInfo, ObjectStore


class FakeObjectStore(ObjectStore):
    """In-memory buckets. ``failures`` maps (operation, key) to the error to raise."""

    def __init__(self, objects: Optional[Dict[str, Dict[str, bytes]]] = None):
        self.buckets: Dict[str, Dict[str, bytes]] = {
            bucket: dict(items) for bucket, items in (objects or {}).items()
        }
        self.metadata: Dict[str, Dict[str, str]] = {}
        self.content_types: Dict[str, str] = {}
        self.failures: Dict[tuple, Exception] = {}
        self.calls: List[tuple] = []

    def _check(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        error = self.failures.get((operation, key))
        if error is not None:
            raise error

    async def head(self, bucket, key):
        await asyncio.sleep(0)
        self._check("head", key)
        try:
            return len(self.buckets[bucket][key])
        except KeyError:
            raise NotFoundError(key)

    async def get(self, bucket, key):
        await asyncio.sleep(0)
        self._check("get", key)
        try:
            return self.buckets[bucket][key]
        except KeyError:
            raise NotFoundError(key)

    async def put(self, bucket, key, data, metadata=None, content_type="application/octet-stream"):
        await asyncio.sleep(0)
        self._check("put", key)
        self.buckets.setdefault(bucket, {})[key] = data
        self.metadata[key] = dict(metadata or {})
        self.content_types[key] = content_type

    async def presign_get(self, bucket, key, ttl_seconds):
        await asyncio.sleep(0)
        self._check("presign", key)
        return f"https://public.example/{bucket}/{key}?X-Amz-Expires={ttl_seconds}"

    async def list(self, bucket):
        await asyncio.sleep(0)
        self._check("list", bucket)
        return [ObjectInfo(key=k, size=len(v)) for k, v in self.buckets.get(bucket, {}).items()]


class RecordingRegistry(JobRegistry):
    """Registry that remembers every progress value it stored, per job."""

    def __init__(self, store: JobStore):
        super().__init__(store)
        self.progress_history: Dict[str, List[int]] = {}

    def update(self, job_id, **fields):
        job = super().update(job_id, **fields)
        self.progress_history.setdefault(job_id, []).append(job.progress)
        return job


@pytest.fixture
def source_objects():
    return {
        "reports/a.txt": b"alpha " * 100,
        "reports/b.csv": b"id,value\n1,2\n3,4\n",
        "images/c.bin": bytes(range(256)) * 4,
    }


@pytest.fixture
def object_store(source_objects):
    return FakeObjectStore({"source": source_objects, "downloads": {}})


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def job_store(database_url):
    engine = create_db_engine(database_url)
    yield JobStore(engine)
    engine.dispose()


@pytest.fixture
def registry(job_store):
    return RecordingRegistry(job_store)


@pytest.fixture
def pipeline(registry, object_store):
    return DownloadPipeline(registry, object_store)


@pytest.fixture
def test_settings(database_url):
    return Settings(
        database_url=database_url,
        progress_poll_interval_seconds=0.05,
        shutdown_grace_seconds=1.0,
    )


@pytest.fixture
def store_error():
    def _make(operation: str, key: str) -> StoreError:
        return StoreError(operation, key, RuntimeError("connection reset"))
    return _make
