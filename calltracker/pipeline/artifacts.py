"""
Call Tracker - Price History Artifact Store

Persists a call's price history as JSON under "<prefix>/<call_id>.json" and
returns the URL the call record should point at.

Backends:
- local: writes files under ARTIFACT_LOCAL_DIR (dev, tests, single host)
- http:  PUTs the JSON to ARTIFACT_UPLOAD_URL (object storage behind a
         presigned / token-authenticated endpoint)
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog

from calltracker.config import settings

logger = structlog.get_logger(__name__)


class ArtifactStoreError(Exception):
    """Artifact could not be stored."""


class ArtifactStore(Protocol):
    async def store(self, key: str, data: str) -> str: ...


def artifact_key(call_id: uuid.UUID | str, prefix: str | None = None) -> str:
    """Object key of a call's price-history artifact."""
    prefix = prefix if prefix is not None else settings.ARTIFACT_KEY_PREFIX
    return f"{prefix.rstrip('/')}/{call_id}.json"


def _public_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/{key}"


class LocalArtifactStore:
    """Writes artifacts to the local filesystem."""

    def __init__(self, root_dir: str | Path | None = None, public_base_url: str | None = None):
        self._root = Path(root_dir if root_dir is not None else settings.ARTIFACT_LOCAL_DIR)
        self._public_base_url = (
            public_base_url if public_base_url is not None else settings.ARTIFACT_PUBLIC_BASE_URL
        )

    async def __aenter__(self) -> LocalArtifactStore:
        return self

    async def __aexit__(self, *args: Any) -> None:
        return None

    def _write(self, path: Path, data: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(data, encoding="utf-8")

    async def store(self, key: str, data: str) -> str:
        path = self._root / key
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise ArtifactStoreError(f"Failed to write artifact {key}: {e}") from e

        url = _public_url(self._public_base_url, key) if self._public_base_url else path.resolve().as_uri()
        logger.info("artifact_stored", backend="local", key=key, bytes=len(data), url=url)
        return url


class HttpArtifactStore:
    """
    Uploads artifacts with an HTTP PUT.

    Usage:
        async with HttpArtifactStore() as store:
            url = await store.store("token-history/<id>.json", payload)
    """

    def __init__(
        self,
        upload_url: str | None = None,
        public_base_url: str | None = None,
        token: str | None = None,
        timeout: float = 30.0,
    ):
        self._upload_url = upload_url if upload_url is not None else settings.ARTIFACT_UPLOAD_URL
        self._public_base_url = (
            public_base_url if public_base_url is not None else settings.ARTIFACT_PUBLIC_BASE_URL
        ) or self._upload_url
        self._token = token if token is not None else settings.ARTIFACT_UPLOAD_TOKEN
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> HttpArtifactStore:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.AsyncClient(headers=headers, timeout=self._timeout)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def store(self, key: str, data: str) -> str:
        assert self._client is not None, "Store not initialized. Use 'async with'."
        if not self._upload_url:
            raise ArtifactStoreError("ARTIFACT_UPLOAD_URL is not configured")

        target = _public_url(self._upload_url, key)
        try:
            response = await self._client.put(target, content=data.encode("utf-8"))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "artifact_upload_http_error",
                key=key,
                status_code=e.response.status_code,
            )
            raise ArtifactStoreError(
                f"Upload of {key} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            logger.error("artifact_upload_request_error", key=key, error=str(e))
            raise ArtifactStoreError(f"Upload of {key} failed: {e}") from e

        url = _public_url(self._public_base_url, key)
        logger.info("artifact_stored", backend="http", key=key, bytes=len(data), url=url)
        return url


def build_artifact_store(backend: str | None = None) -> LocalArtifactStore | HttpArtifactStore:
    """Instantiate the configured backend. HttpArtifactStore must be entered with 'async with'."""
    backend = (backend or settings.ARTIFACT_STORE_BACKEND).lower()
    if backend == "local":
        return LocalArtifactStore()
    if backend == "http":
        return HttpArtifactStore()
    raise ValueError(f"Unknown artifact store backend: {backend!r}")
