"""S3-compatible object store backend (AWS S3, Cloudflare R2, MinIO)."""

import asyncio
import functools
import logging
from typing import Any, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from storeledger.common.errors import ObjectStoreError
from storeledger.common.models import ObjectMeta
from storeledger.server.io_pool import io_pool
from storeledger.server.services.backends.interface import ObjectStoreBackend

logger = logging.getLogger("storeledger.server.objects")

_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class S3ObjectStore(ObjectStoreBackend):
    """Object store backed by an S3-compatible API.

    boto3 calls are blocking and run on the shared I/O pool.

    Usage:
        store = S3ObjectStore(
            endpoint_url="https://<account>.r2.cloudflarestorage.com",
            access_key_id="...",
            secret_access_key="...",
        )
        await store.connect()
        url = await store.presign_put("persistent", key, "application/pdf", 900)
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        access_key_id: str = "",
        secret_access_key: str = "",
        region: str = "auto",
        default_bucket: str = "persistent",
        client: Any = None,
    ) -> None:
        super().__init__(default_bucket)
        self.endpoint_url = endpoint_url
        self.region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client

    async def connect(self) -> None:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self._access_key_id or None,
                aws_secret_access_key=self._secret_access_key or None,
                region_name=self.region,
                config=Config(signature_version="s3v4"),
            )
        logger.info("%s: Using endpoint %s", self.name, self.endpoint_url or "aws-default")

    async def disconnect(self) -> None:
        self._client = None

    @property
    def client(self) -> Any:
        if self._client is None:
            raise RuntimeError("S3ObjectStore not connected. Call connect() first.")
        return self._client

    async def _run(self, fn: Callable[..., Any], **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(io_pool, functools.partial(fn, **kwargs))

    async def presign_put(
        self,
        bucket: str,
        key: str,
        content_type: str,
        expires_in_seconds: int,
    ) -> str:
        try:
            return await self._run(  # type: ignore[no-any-return]
                self.client.generate_presigned_url,
                ClientMethod="put_object",
                Params={"Bucket": bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=expires_in_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Failed to presign PUT {bucket}/{key}: {e}") from e

    async def presign_get(self, bucket: str, key: str, expires_in_seconds: int) -> str:
        try:
            return await self._run(  # type: ignore[no-any-return]
                self.client.generate_presigned_url,
                ClientMethod="get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Failed to presign GET {bucket}/{key}: {e}") from e

    async def head_object(self, bucket: str, key: str) -> Optional[ObjectMeta]:
        try:
            response = await self._run(self.client.head_object, Bucket=bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                return None
            raise ObjectStoreError(f"HEAD {bucket}/{key} failed: {e}") from e
        except BotoCoreError as e:
            raise ObjectStoreError(f"HEAD {bucket}/{key} failed: {e}") from e

        return ObjectMeta(
            size_bytes=int(response.get("ContentLength") or 0),
            etag=str(response.get("ETag") or "").strip('"'),
            content_type=response.get("ContentType"),
        )

    async def delete_object(self, key: str, bucket: Optional[str] = None) -> None:
        bucket = bucket or self.default_bucket
        try:
            await self._run(self.client.delete_object, Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"DELETE {bucket}/{key} failed: {e}") from e

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        try:
            await self._run(self.client.put_object, Bucket=bucket, Key=key, Body=body, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"PUT {bucket}/{key} failed: {e}") from e

    def get_stats(self) -> dict:
        """Get backend statistics."""
        return {
            "type": "s3",
            "endpoint": self.endpoint_url,
            "region": self.region,
        }
