"""Raw document byte storage.

    LocalBlobStore -- files under a root directory (default for development).
    HttpBlobStore  -- bucket/object REST storage over httpx.
"""

from docmem.providers.blob.http_blob_store import HttpBlobStore
from docmem.providers.blob.local_blob_store import LocalBlobStore

__all__ = ["HttpBlobStore", "LocalBlobStore"]
