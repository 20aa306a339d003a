from __future__ import annotations

import logging
import time

import httpx

LOGGER = logging.getLogger("repobench.client")

API_PREFIX = "/api/v1"


class StorageServiceError(Exception):
    """Raised when the storage service rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def create_http_client(
    endpoint_url: str,
    credentials: tuple[str, str] | None = None,
    timeout_s: float = 30.0,
    max_connections: int = 100,
) -> httpx.Client:
    return httpx.Client(
        base_url=endpoint_url.rstrip("/"),
        auth=credentials,
        timeout=timeout_s,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
        ),
    )


class StorageClient:
    """Thin adapter over the repository storage HTTP API.

    The underlying ``httpx.Client`` is shared by every worker thread; calls are
    stateless so no locking is needed.
    """

    def __init__(self, http_client: httpx.Client) -> None:
        self._http = http_client

    @property
    def http(self) -> httpx.Client:
        return self._http

    def close(self) -> None:
        self._http.close()

    def healthcheck(self) -> None:
        self._request("GET", f"{API_PREFIX}/healthcheck")

    def wait_until_healthy(self, timeout_s: float = 60.0) -> None:
        backoff = 1.0
        max_backoff = 10.0
        deadline = time.time() + timeout_s

        while True:
            try:
                self.healthcheck()
                return
            except StorageServiceError as exc:
                if time.time() >= deadline:
                    raise StorageServiceError(
                        f"storage service not healthy within {timeout_s:.0f} seconds"
                    ) from exc
                LOGGER.info("Waiting for storage service: %s", exc)

            time.sleep(backoff)
            backoff = min(backoff * 1.5, max_backoff)

    def create_repository(
        self, name: str, storage_namespace: str, default_branch: str
    ) -> dict:
        response = self._request(
            "POST",
            f"{API_PREFIX}/repositories",
            json={
                "name": name,
                "storage_namespace": storage_namespace,
                "default_branch": default_branch,
            },
        )
        if not response.content:
            return {"id": name}
        return response.json()

    def upload_object(self, repository: str, branch: str, path: str, content: bytes) -> None:
        self._request(
            "POST",
            f"{API_PREFIX}/repositories/{repository}/branches/{branch}/objects",
            params={"path": path},
            files={"content": ("content", content, "application/octet-stream")},
        )

    def get_object(self, repository: str, ref: str, path: str) -> bytes:
        response = self._request(
            "GET",
            f"{API_PREFIX}/repositories/{repository}/refs/{ref}/objects",
            params={"path": path},
        )
        return response.content

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StorageServiceError(f"{method} {url} failed: {exc}") from exc

        if response.is_error:
            raise StorageServiceError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response
