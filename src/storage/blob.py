"""Blob store interface and the local-filesystem implementation.

Keys are relative, slash-separated paths (e.g. "archives/2026/10/<id>.tar.gz").
Filesystem calls run in a worker thread. Any OSError surfaces as
ExternalIOError so callers can tell transient storage trouble from domain
failures.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from src.config import settings
from src.errors import ExternalIOError, NotFoundError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes) -> int: ...

    async def get(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> bool: ...

    async def exists(self, key: str) -> bool: ...


class LocalBlobStore:
    """Blobs as files under a root directory."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root or settings.archive.blob_root)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root.resolve()):
            raise ExternalIOError(f"Blob key escapes the store root: {key}", entity_id=key, operation="blob")
        return path

    async def put(self, key: str, data: bytes) -> int:
        path = self._path(key)

        def _write() -> int:
            path.parent.mkdir(parents=True, exist_ok=True)
            return path.write_bytes(data)

        try:
            return await asyncio.to_thread(_write)
        except OSError as exc:
            logger.error("Blob write failed for %s: %s", key, exc)
            raise ExternalIOError(f"Blob write failed: {exc}", entity_id=key, operation="blob_put") from exc

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Blob {key} not found", entity_id=key, operation="blob_get") from exc
        except OSError as exc:
            logger.error("Blob read failed for %s: %s", key, exc)
            raise ExternalIOError(f"Blob read failed: {exc}", entity_id=key, operation="blob_get") from exc

    async def delete(self, key: str) -> bool:
        path = self._path(key)

        def _unlink() -> bool:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            return True

        try:
            return await asyncio.to_thread(_unlink)
        except OSError as exc:
            logger.error("Blob delete failed for %s: %s", key, exc)
            raise ExternalIOError(f"Blob delete failed: {exc}", entity_id=key, operation="blob_delete") from exc

    async def exists(self, key: str) -> bool:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.is_file)
        except OSError as exc:
            raise ExternalIOError(f"Blob stat failed: {exc}", entity_id=key, operation="blob_exists") from exc
