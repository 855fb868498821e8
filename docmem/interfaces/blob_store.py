"""Abstract base class for raw document byte storage.

The blob store is assumed durable and immediately consistent after
:meth:`IBlobStore.upload` returns.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   LocalBlobStore -- files under a root directory
#   HttpBlobStore  -- object storage REST endpoint via httpx
# Located in: docmem/providers/blob/
class IBlobStore(ABC):
    """Contract for uploading and downloading raw document bytes."""

    @abstractmethod
    async def upload(self, locator: str, data: bytes, content_type: str) -> str:
        """Store *data* under *locator* and return the locator actually used.

        Raises
        ------
        docmem.utils.errors.BlobStoreError
            If the write fails.
        """

    @abstractmethod
    async def download(self, locator: str) -> bytes:
        """Return the bytes stored under *locator*.

        Raises
        ------
        docmem.utils.errors.BlobStoreError
            If the object is missing or the read fails.
        """

    @abstractmethod
    async def delete(self, locator: str) -> None:
        """Remove the object; deleting a missing object is not an error."""

    @abstractmethod
    def public_url(self, locator: str) -> str | None:
        """Return a publicly reachable URL for *locator*, if the store has one.

        Image extraction needs this: the vision model fetches the image
        itself.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
