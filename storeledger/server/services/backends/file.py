"""Local-directory object store backend with HMAC-signed URLs."""

import hashlib
import hmac
import logging
import secrets
import time
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]

from storeledger.common.errors import ObjectStoreError
from storeledger.common.models import ObjectMeta
from storeledger.server.services.backends.interface import ObjectStoreBackend

logger = logging.getLogger("storeledger.server.objects")


class FileObjectStore(ObjectStoreBackend):
    """Object store on the local filesystem.

    Objects live at ``{root}/{bucket}/{key}``.  Presigned URLs point at
    ``{base_url}/{bucket}/{key}`` and carry ``expires`` and an HMAC
    ``signature``; whatever serves ``base_url`` checks them with
    :meth:`verify_signature` and writes with :meth:`put_object`.

    Suitable for:
    - Development without an S3-compatible service
    - Single-host deployments

    Usage:
        store = FileObjectStore(Path("./data/objects"), "http://localhost:8787/objects", secret)
        await store.connect()
        url = await store.presign_put("persistent", key, "application/pdf", 900)
    """

    def __init__(
        self,
        root: Path,
        base_url: str,
        signing_secret: str = "",
        default_bucket: str = "persistent",
    ) -> None:
        super().__init__(default_bucket)
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        if not signing_secret:
            signing_secret = secrets.token_urlsafe(32)
            logger.warning("%s: No signing secret configured, presigned URLs will not survive restart", self.name)
        self._secret = signing_secret.encode()

    async def connect(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("%s: Initialized (objects at %s)", self.name, self.root)

    def object_path(self, bucket: str, key: str) -> Path:
        """Resolve the on-disk path of an object, refusing traversal."""
        bucket_root = (self.root / bucket).resolve()
        target = (bucket_root / key).resolve()
        try:
            target.relative_to(bucket_root)
        except ValueError as exc:
            raise ObjectStoreError(f"Object key escapes bucket: {key}") from exc
        return target

    # ── Signing ───────────────────────────────────────────────

    def _signature(self, method: str, bucket: str, key: str, expires_at: int, content_type: str) -> str:
        payload = f"{method}\n{bucket}/{key}\n{expires_at}\n{content_type}".encode()
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def _signed_url(self, method: str, bucket: str, key: str, expires_in_seconds: int, content_type: str) -> str:
        expires_at = int(time.time()) + expires_in_seconds
        signature = self._signature(method, bucket, key, expires_at, content_type)
        return f"{self.base_url}/{bucket}/{quote(key)}?method={method}&expires={expires_at}&signature={signature}"

    def verify_signature(
        self,
        method: str,
        bucket: str,
        key: str,
        expires_at: int,
        signature: str,
        content_type: str = "",
    ) -> bool:
        """Check a presigned URL's signature and expiry."""
        if expires_at < time.time():
            return False
        expected = self._signature(method, bucket, key, expires_at, content_type)
        return hmac.compare_digest(expected, signature)

    async def presign_put(
        self,
        bucket: str,
        key: str,
        content_type: str,
        expires_in_seconds: int,
    ) -> str:
        self.object_path(bucket, key)
        return self._signed_url("PUT", bucket, key, expires_in_seconds, content_type)

    async def presign_get(self, bucket: str, key: str, expires_in_seconds: int) -> str:
        self.object_path(bucket, key)
        return self._signed_url("GET", bucket, key, expires_in_seconds, "")

    # ── Objects ───────────────────────────────────────────────

    async def head_object(self, bucket: str, key: str) -> Optional[ObjectMeta]:
        path = self.object_path(bucket, key)
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return None
        etag = f"{stat.st_mtime_ns:x}-{stat.st_size:x}"
        return ObjectMeta(size_bytes=stat.st_size, etag=etag)

    async def delete_object(self, key: str, bucket: Optional[str] = None) -> None:
        path = self.object_path(bucket or self.default_bucket, key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        path = self.object_path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(body)
        await aiofiles.os.replace(tmp_path, path)

    async def ping(self) -> bool:
        """Check if backend is available."""
        return self.root.exists()

    def get_stats(self) -> dict:
        """Get backend statistics."""
        return {
            "type": "file",
            "root": str(self.root),
        }
