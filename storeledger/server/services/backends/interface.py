"""Abstract interface for object store backends."""

from abc import ABC, abstractmethod
from typing import Optional

from storeledger.common.models import ObjectMeta


class ObjectStoreBackend(ABC):
    """Abstract base class for S3-like object stores.

    Implementations provide presigned URL issuance, a HEAD-equivalent size
    lookup and deletion.  Uploads never pass through the backend process:
    clients PUT directly to the presigned URL.

    Available implementations:
    - S3ObjectStore: S3-compatible store via boto3 (production)
    - FileObjectStore: local directory + HMAC-signed URLs (development)
    - MemoryObjectStore: in-memory store (unit testing)
    """

    def __init__(self, default_bucket: str = "persistent") -> None:
        self.default_bucket = default_bucket

    async def connect(self) -> None:
        """Initialize the backend."""

    async def disconnect(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def presign_put(
        self,
        bucket: str,
        key: str,
        content_type: str,
        expires_in_seconds: int,
    ) -> str:
        """Issue a presigned PUT URL.

        Args:
            bucket: Target bucket
            key: Object key
            content_type: Content type the client must send
            expires_in_seconds: URL lifetime

        Returns:
            The presigned URL
        """

    @abstractmethod
    async def presign_get(self, bucket: str, key: str, expires_in_seconds: int) -> str:
        """Issue a presigned GET URL."""

    @abstractmethod
    async def head_object(self, bucket: str, key: str) -> Optional[ObjectMeta]:
        """Return the object's metadata, or None if it does not exist."""

    @abstractmethod
    async def delete_object(self, key: str, bucket: Optional[str] = None) -> None:
        """Delete an object (missing objects are not an error).

        Args:
            key: Object key
            bucket: Bucket name (defaults to ``default_bucket``)
        """

    @abstractmethod
    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Write an object directly (server-generated artifacts)."""

    @property
    def name(self) -> str:
        """Get backend name for logging."""
        return self.__class__.__name__
