from __future__ import annotations

import collections
import json
import threading
import time

import httpx
import pytest

from repobench.benchmarks.config import RunConfig, RunContext
from repobench.benchmarks.retry import RetryPolicy
from repobench.client import StorageClient

ENDPOINT = "http://lakefs.test"

METRICS_TEXT = """\
# HELP api_request_duration_seconds request durations for the API
# TYPE api_request_duration_seconds histogram
api_request_duration_seconds_bucket{code="201",method="post",operation="uploadObject",le="0.1"} 7
api_request_duration_seconds_bucket{code="201",method="post",operation="uploadObject",le="+Inf"} 10
api_request_duration_seconds_sum{code="201",method="post",operation="uploadObject"} 1.5
api_request_duration_seconds_count{code="201",method="post",operation="uploadObject"} 10
api_request_duration_seconds_bucket{code="200",method="get",operation="getObject",le="0.1"} 9
api_request_duration_seconds_bucket{code="200",method="get",operation="getObject",le="+Inf"} 10
api_request_duration_seconds_sum{code="200",method="get",operation="getObject"} 0.4
api_request_duration_seconds_count{code="200",method="get",operation="getObject"} 10
api_request_duration_seconds_bucket{code="200",method="get",operation="listObjects",le="0.1"} 3
api_request_duration_seconds_bucket{code="200",method="get",operation="listObjects",le="+Inf"} 3
api_request_duration_seconds_sum{code="200",method="get",operation="listObjects"} 0.1
api_request_duration_seconds_count{code="200",method="get",operation="listObjects"} 3
# HELP go_goroutines Number of goroutines that currently exist.
# TYPE go_goroutines gauge
go_goroutines 42
"""


def _multipart_field(request: httpx.Request, field: str) -> bytes:
    boundary = request.headers["content-type"].split("boundary=", 1)[1].encode()
    for part in request.content.split(b"--" + boundary):
        if f'name="{field}"'.encode() in part:
            return part.split(b"\r\n\r\n", 1)[1].rstrip(b"\r\n")
    raise AssertionError(f"multipart field {field!r} missing")


class FakeStorageService:
    """In-memory stand-in for the repository storage HTTP API."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.repositories: dict[str, dict] = {}
        self.objects: dict[tuple[str, str, str], bytes] = {}
        self.calls: collections.Counter[tuple[str, str]] = collections.Counter()
        self.failing_paths: set[str] = set()
        self.create_status = 201
        self.create_delay_s = 0.0
        self.metrics_status = 200
        self.metrics_text = METRICS_TEXT

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/metrics":
            return httpx.Response(self.metrics_status, text=self.metrics_text)
        if path == "/api/v1/healthcheck":
            return httpx.Response(204)
        if path == "/api/v1/repositories" and request.method == "POST":
            return self._create_repository(request)

        parts = path.split("/")
        # /api/v1/repositories/{repo}/{branches|refs}/{ref}/objects
        if len(parts) == 8 and parts[7] == "objects":
            repo, ref = parts[4], parts[6]
            object_path = request.url.params["path"]
            with self.lock:
                self.calls[(request.method, object_path)] += 1
            if object_path in self.failing_paths:
                return httpx.Response(503, json={"message": "unavailable"})
            if request.method == "POST":
                content = _multipart_field(request, "content")
                with self.lock:
                    self.objects[(repo, ref, object_path)] = content
                return httpx.Response(201, json={"path": object_path})
            with self.lock:
                content = self.objects.get((repo, ref, object_path))
            if content is None:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, content=content)

        return httpx.Response(404, json={"message": f"no route {path}"})

    def _create_repository(self, request: httpx.Request) -> httpx.Response:
        if self.create_delay_s:
            time.sleep(self.create_delay_s)
        if self.create_status >= 400:
            return httpx.Response(self.create_status, json={"message": "conflict"})
        body = json.loads(request.content)
        with self.lock:
            self.repositories[body["name"]] = body
        return httpx.Response(self.create_status, json={"id": body["name"], **body})


@pytest.fixture
def fake_service() -> FakeStorageService:
    return FakeStorageService()


@pytest.fixture
def http_client(fake_service):
    client = httpx.Client(
        base_url=ENDPOINT, transport=httpx.MockTransport(fake_service.handler)
    )
    yield client
    client.close()


@pytest.fixture
def storage(http_client) -> StorageClient:
    return StorageClient(http_client)


@pytest.fixture
def run_config() -> RunConfig:
    return RunConfig(
        endpoint_url=ENDPOINT,
        storage_namespace="s3://benchmarks/ns",
        parallelism_level=4,
        files_amount=10,
        global_timeout=60.0,
        run_name="TestBenchmarkRepo",
        retry_delay=0.0,
    )


@pytest.fixture
def run_context(run_config, storage) -> RunContext:
    return RunContext(
        config=run_config, client=storage, retry_policy=RetryPolicy.immediate()
    )
