"""Blob storage for message attachments.

Blobs are grouped per message (``<message_id>/<name>``)::

    from cozmo_inbox.services.storage import storage

    url = storage.save("<message_id>/1f2e.pdf", data, "application/pdf")
    storage.remove("<message_id>/1f2e.pdf")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock

from cozmo_inbox.config import settings
from cozmo_inbox.logging import get_logger

logger = get_logger(__name__)


class BlobStore(ABC):
    @abstractmethod
    def save(self, key: str, data: bytes, content_type: str = "") -> str:
        """Store *data* under *key* and return its public URL."""

    @abstractmethod
    def read(self, key: str) -> bytes: ...

    @abstractmethod
    def remove(self, key: str) -> bool:
        """Delete *key*. Returns ``False`` when nothing was stored there."""

    @abstractmethod
    def public_url(self, key: str) -> str: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...


class LocalBlobStore(BlobStore):
    """Keeps blobs on the local filesystem, served under ``url_prefix``."""

    def __init__(self, root: str | None = None, url_prefix: str | None = None) -> None:
        self.root = Path(root or settings.storage_local_root).resolve()
        self.url_prefix = (url_prefix or settings.storage_local_url_prefix).rstrip("/")

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise ValueError(f"Storage key escapes the attachment root: {key!r}")
        return path

    def save(self, key: str, data: bytes, content_type: str = "") -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("blob_saved key=%s bytes=%s content_type=%s", key, len(data), content_type or "-")
        return self.public_url(key)

    def read(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise FileNotFoundError(f"No blob stored under {key!r}")
        return path.read_bytes()

    def remove(self, key: str) -> bool:
        path = self._path_for(key)
        if not path.is_file():
            return False
        path.unlink()
        # drop the per-message folder once its last blob is gone
        folder = path.parent
        if folder != self.root and not any(folder.iterdir()):
            folder.rmdir()
        return True

    def public_url(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()


class StoreProxy(BlobStore):
    """Resolves the configured store on first use. ``use`` swaps it (tests)."""

    def __init__(self) -> None:
        self._store: BlobStore | None = None
        self._lock = Lock()

    @property
    def current(self) -> BlobStore:
        if self._store is None:
            with self._lock:
                if self._store is None:
                    logger.info("attachment_store_local root=%s", settings.storage_local_root)
                    self._store = LocalBlobStore()
        return self._store

    def use(self, store: BlobStore | None) -> None:
        with self._lock:
            self._store = store

    def save(self, key: str, data: bytes, content_type: str = "") -> str:
        return self.current.save(key, data, content_type)

    def read(self, key: str) -> bytes:
        return self.current.read(key)

    def remove(self, key: str) -> bool:
        return self.current.remove(key)

    def public_url(self, key: str) -> str:
        return self.current.public_url(key)

    def exists(self, key: str) -> bool:
        return self.current.exists(key)


storage = StoreProxy()
