"""In-memory object store backend."""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from storeledger.common.models import ObjectMeta
from storeledger.server.services.backends.interface import ObjectStoreBackend

logger = logging.getLogger("storeledger.server.objects")


@dataclass
class MemoryObject:
    """Object held in memory."""

    body: bytes
    content_type: str

    @property
    def etag(self) -> str:
        return hashlib.md5(self.body, usedforsecurity=False).hexdigest()


class MemoryObjectStore(ObjectStoreBackend):
    """In-memory object store.

    Suitable for:
    - Unit testing
    - Quick prototyping

    Presigned URLs use a ``memory://`` scheme and are never dereferenced;
    tests simulate the client upload with :meth:`put_object`.

    Usage:
        store = MemoryObjectStore()
        url = await store.presign_put("persistent", "users/u1/a.pdf", "application/pdf", 900)
        await store.put_object("persistent", "users/u1/a.pdf", b"...")
        meta = await store.head_object("persistent", "users/u1/a.pdf")
    """

    def __init__(self, default_bucket: str = "persistent") -> None:
        super().__init__(default_bucket)
        self._objects: dict[tuple[str, str], MemoryObject] = {}
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        logger.info("%s: Initialized (in-memory objects)", self.name)

    async def disconnect(self) -> None:
        self._objects.clear()

    def _url(self, method: str, bucket: str, key: str, expires_in_seconds: int) -> str:
        expires_at = int(time.time()) + expires_in_seconds
        return f"memory://{bucket}/{quote(key)}?method={method}&expires={expires_at}"

    async def presign_put(
        self,
        bucket: str,
        key: str,
        content_type: str,
        expires_in_seconds: int,
    ) -> str:
        return self._url("PUT", bucket, key, expires_in_seconds)

    async def presign_get(self, bucket: str, key: str, expires_in_seconds: int) -> str:
        return self._url("GET", bucket, key, expires_in_seconds)

    async def head_object(self, bucket: str, key: str) -> Optional[ObjectMeta]:
        async with self._lock:
            obj = self._objects.get((bucket, key))
            if obj is None:
                return None
            return ObjectMeta(size_bytes=len(obj.body), etag=obj.etag, content_type=obj.content_type)

    async def delete_object(self, key: str, bucket: Optional[str] = None) -> None:
        async with self._lock:
            self._objects.pop((bucket or self.default_bucket, key), None)

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        async with self._lock:
            self._objects[(bucket, key)] = MemoryObject(body=bytes(body), content_type=content_type)

    def get_stats(self) -> dict:
        """Get backend statistics."""
        return {
            "type": "memory",
            "objects": len(self._objects),
            "bytes": sum(len(o.body) for o in self._objects.values()),
        }
