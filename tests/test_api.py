"""HTTP surface tests through FastAPI's TestClient."""

import io
import json
import time
import zipfile

import pytest
from fastapi.testclient import TestClient

from bundler.errors import NotFoundError
from bundler.main import create_app


@pytest.fixture
def client(test_settings, object_store):
    app = create_app(settings=test_settings, store=object_store)
    with TestClient(app) as client:
        yield client


def _wait_terminal(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/downloads/{job_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


def _sse_events(text):
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_initiate_skips_missing_keys(client):
    response = client.post(
        "/api/v1/downloads",
        json={"file_keys": ["reports/a.txt", "nope.txt", "reports/b.csv"]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "queued"
    assert body["totalFiles"] == 2
    assert body["statusUrl"] == f"/api/v1/downloads/{body['jobId']}"
    assert body["subscribeUrl"] == f"/api/v1/downloads/{body['jobId']}/subscribe"

    done = _wait_terminal(client, body["jobId"])
    assert done["status"] == "completed"
    assert done["progress"] == 100
    assert done["filesCompleted"] == 2
    assert done["resultUrl"].endswith(f"{body['jobId']}.zip?X-Amz-Expires=3600")
    assert done["error"] is None


@pytest.mark.parametrize(
    "payload",
    [
        {"file_keys": []},
        {"file_keys": ["nope.txt"]},
        {"file_keys": [""]},
        {"file_keys": [f"k{i}" for i in range(101)]},
    ],
)
def test_initiate_rejects_bad_requests(client, payload):
    assert client.post("/api/v1/downloads", json=payload).status_code == 400


def test_status_unknown_job(client):
    response = client.get("/api/v1/downloads/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"detail": "Job not found"}


def test_subscribe_after_completion(client):
    job_id = client.post("/api/v1/downloads", json={"file_keys": ["reports/a.txt"]}).json()["jobId"]
    status = _wait_terminal(client, job_id)

    response = client.get(f"/api/v1/downloads/{job_id}/subscribe")

    assert response.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(response.text)
    assert [name for name, _ in events] == ["complete"]
    assert events[0][1]["resultUrl"] == status["resultUrl"]


def test_subscribe_unknown_job(client):
    response = client.get("/api/v1/downloads/nope/subscribe")

    assert _sse_events(response.text) == [("error", {"jobId": "nope", "error": "Job not found"})]


def test_failed_job_reported_everywhere(client, object_store):
    # Key passes the intake check but is gone by collection time
    object_store.failures[("get", "reports/b.csv")] = NotFoundError("reports/b.csv")
    job_id = client.post(
        "/api/v1/downloads", json={"file_keys": ["reports/a.txt", "reports/b.csv"]}
    ).json()["jobId"]

    status = _wait_terminal(client, job_id)
    events = _sse_events(client.get(f"/api/v1/downloads/{job_id}/subscribe").text)

    assert status["status"] == "failed"
    assert "reports/b.csv" in status["error"]
    assert status["resultUrl"] is None
    assert f"{job_id}.zip" not in object_store.buckets["downloads"]
    assert events == [("error", {
        "jobId": job_id,
        "status": "failed",
        "progress": status["progress"],
        "filesCompleted": 1,
        "totalFiles": 2,
        "error": status["error"],
    })]


def test_archive_proxy(client, source_objects):
    job_id = client.post("/api/v1/downloads", json={"file_keys": ["reports/b.csv"]}).json()["jobId"]
    _wait_terminal(client, job_id)

    response = client.get(f"/api/v1/downloads/{job_id}/file")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert archive.read("reports/b.csv") == source_objects["reports/b.csv"]


def test_archive_proxy_unknown_job(client):
    assert client.get("/api/v1/downloads/nope/file").status_code == 404


def test_list_downloads(client):
    ids = [
        client.post("/api/v1/downloads", json={"file_keys": [key]}).json()["jobId"]
        for key in ("reports/a.txt", "images/c.bin")
    ]
    for job_id in ids:
        _wait_terminal(client, job_id)

    body = client.get("/api/v1/downloads", params={"status": "completed"}).json()

    assert body["count"] == 2
    assert {item["jobId"] for item in body["items"]} == set(ids)
    assert client.get("/api/v1/downloads", params={"status": "failed"}).json()["count"] == 0


def test_list_and_check_source_files(client, object_store):
    object_store.buckets["source"]["folder/"] = b""

    files = client.get("/api/v1/files").json()["files"]
    present = client.post("/api/v1/files/check", json={"key": "reports/a.txt"}).json()
    absent = client.post("/api/v1/files/check", json={"key": "nope"}).json()

    assert sorted(f["key"] for f in files) == ["images/c.bin", "reports/a.txt", "reports/b.csv"]
    assert present == {"key": "reports/a.txt", "available": True, "size": 600}
    assert absent == {"key": "nope", "available": False, "size": None}


def test_presign_source_file(client):
    default = client.get("/api/v1/files/reports/a.txt/download")
    short = client.get("/api/v1/files/reports/a.txt/download", params={"expiresIn": 60})

    assert default.status_code == 200
    assert default.json() == {
        "url": "https://public.example/source/reports/a.txt?X-Amz-Expires=3600",
        "expiresIn": 3600,
    }
    assert short.json()["url"].endswith("?X-Amz-Expires=60")


@pytest.mark.parametrize("ttl", [59, 3601, "soon"])
def test_presign_source_file_rejects_ttl_out_of_range(client, ttl):
    response = client.get("/api/v1/files/reports/a.txt/download", params={"expiresIn": ttl})
    assert response.status_code == 422


def test_presign_source_file_cleans_key(client, object_store):
    response = client.get("/api/v1/files/reports/..a.txt/download")

    assert response.json()["url"].startswith("https://public.example/source/reports/a.txt?")
    assert ("presign", "reports/a.txt") in object_store.calls


def test_presign_source_file_store_failure(client, object_store, store_error):
    object_store.failures[("presign", "reports/a.txt")] = store_error("presign", "reports/a.txt")

    response = client.get("/api/v1/files/reports/a.txt/download")

    assert response.status_code == 502


def test_batch_presign_keeps_request_keys_and_order(client, object_store):
    keys = ["reports/b.csv", "../reports/a.txt", "/images/c.bin"]

    response = client.post("/api/v1/files/batch-download", json={"keys": keys, "expiresIn": 120})

    assert response.status_code == 200
    assert response.json()["urls"] == [
        {"key": "reports/b.csv", "url": "https://public.example/source/reports/b.csv?X-Amz-Expires=120"},
        {"key": "../reports/a.txt", "url": "https://public.example/source/reports/a.txt?X-Amz-Expires=120"},
        {"key": "/images/c.bin", "url": "https://public.example/source/images/c.bin?X-Amz-Expires=120"},
    ]


@pytest.mark.parametrize(
    "payload",
    [
        {"keys": []},
        {"keys": [f"k{i}" for i in range(51)]},
        {"keys": ["a"], "expiresIn": 59},
        {"keys": ["a"], "expiresIn": 3601},
    ],
)
def test_batch_presign_rejects_bad_requests(client, payload):
    assert client.post("/api/v1/files/batch-download", json=payload).status_code == 422


def test_health(client, object_store, store_error):
    healthy = client.get("/health")
    object_store.failures[("head", "__health_check_marker__")] = store_error("head", "marker")
    unhealthy = client.get("/health")

    assert healthy.status_code == 200
    assert healthy.json()["checks"] == {"storage": "ok"}
    assert unhealthy.status_code == 503
    assert unhealthy.json()["status"] == "unhealthy"
