"""Filesystem blob store.

Objects live under ``<root>/<locator>``.  Locators are relative POSIX paths
(``<user_id>/<document_id>/<filename>``); anything that would escape the
root is rejected.  When ``public_base_url`` is set (e.g. a static file
server or CDN in front of the root), :meth:`LocalBlobStore.public_url`
returns ``<public_base_url>/<locator>`` so the vision model can fetch
images.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from docmem.interfaces.blob_store import IBlobStore
from docmem.utils.errors import BlobStoreError

logger = structlog.get_logger(logger_name=__name__)


class LocalBlobStore(IBlobStore):
    """Stores raw document bytes on the local filesystem."""

    def __init__(self, root: str | Path, public_base_url: str = "") -> None:
        self._root = Path(root).resolve()
        self._public_base_url = public_base_url.rstrip("/")

    async def upload(self, locator: str, data: bytes, content_type: str) -> str:
        path = self._resolve(locator)
        try:
            await asyncio.to_thread(self._write_sync, path, data)
        except OSError as exc:
            raise BlobStoreError(
                message=f"Failed to write {locator}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("blob_uploaded", locator=locator, size=len(data), content_type=content_type)
        return locator

    async def download(self, locator: str) -> bytes:
        path = self._resolve(locator)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise BlobStoreError(
                message=f"Object not found: {locator}",
                provider_name=self.get_provider_name(),
            ) from exc
        except OSError as exc:
            raise BlobStoreError(
                message=f"Failed to read {locator}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def delete(self, locator: str) -> None:
        path = self._resolve(locator)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    def public_url(self, locator: str) -> str | None:
        if not self._public_base_url:
            return None
        return f"{self._public_base_url}/{locator}"

    def get_provider_name(self) -> str:
        return "local_blob"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve(self, locator: str) -> Path:
        path = (self._root / locator).resolve()
        if not path.is_relative_to(self._root):
            raise BlobStoreError(
                message=f"Locator escapes the storage root: {locator}",
                provider_name=self.get_provider_name(),
            )
        return path

    @staticmethod
    def _write_sync(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
