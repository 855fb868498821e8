"""Object-storage blob store over HTTP using httpx.

Speaks the bucket/object REST layout used by Supabase Storage and similar
services::

    POST   {base_url}/object/{bucket}/{locator}         upload
    GET    {base_url}/object/{bucket}/{locator}         download
    DELETE {base_url}/object/{bucket}/{locator}         delete
           {public_base_url}/{locator}                  public read URL

When no ``public_base_url`` is configured, the public URL defaults to
``{base_url}/object/public/{bucket}/{locator}``.
"""

from __future__ import annotations

from urllib.parse import quote

import httpx
import structlog

from docmem.interfaces.blob_store import IBlobStore
from docmem.utils.errors import BlobStoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_TIMEOUT = 30.0


class HttpBlobStore(IBlobStore):
    """Blob store backed by an object storage REST endpoint."""

    def __init__(
        self,
        base_url: str,
        bucket: str,
        api_key: str = "",
        public_base_url: str = "",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        self._public_base_url = (
            public_base_url.rstrip("/")
            or f"{self._base_url}/object/public/{self._bucket}"
        )
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(_DEFAULT_TIMEOUT),
            headers=headers,
        )

    async def upload(self, locator: str, data: bytes, content_type: str) -> str:
        try:
            response = await self._client.post(
                self._object_url(locator),
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BlobStoreError(
                message=f"HTTP {exc.response.status_code} uploading {locator}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPError as exc:
            raise BlobStoreError(
                message=f"HTTP error uploading {locator}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("blob_uploaded", locator=locator, size=len(data), bucket=self._bucket)
        return locator

    async def download(self, locator: str) -> bytes:
        try:
            response = await self._client.get(self._object_url(locator))
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BlobStoreError(
                message=f"HTTP {exc.response.status_code} downloading {locator}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPError as exc:
            raise BlobStoreError(
                message=f"HTTP error downloading {locator}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return response.content

    async def delete(self, locator: str) -> None:
        try:
            response = await self._client.delete(self._object_url(locator))
        except httpx.HTTPError as exc:
            raise BlobStoreError(
                message=f"HTTP error deleting {locator}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        if response.status_code not in (200, 204, 404):
            raise BlobStoreError(
                message=f"HTTP {response.status_code} deleting {locator}",
                provider_name=self.get_provider_name(),
            )

    def public_url(self, locator: str) -> str | None:
        return f"{self._public_base_url}/{quote(locator)}"

    def get_provider_name(self) -> str:
        return "http_blob"

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _object_url(self, locator: str) -> str:
        return f"{self._base_url}/object/{self._bucket}/{quote(locator)}"
