"""Upload guard: quota policy gate in front of presigned upload issuance.

No quota is debited here.  A persistent upload only registers a pending
ledger row; bytes are charged at confirmation, from the object's actual size,
so an upload the client never completes costs nothing.
"""

import logging
from typing import Callable, Optional

from storeledger.common.constants import DEFAULT_PRESIGN_EXPIRES_SECONDS, MAX_PRESIGN_EXPIRES_SECONDS, TIER_LIMITS
from storeledger.common.errors import UploadPolicyViolation
from storeledger.common.keys import owner_of
from storeledger.common.models import BucketClass, PresignedUpload, UploadPolicyResult
from storeledger.server.accounting.accounts import AccountStore
from storeledger.server.accounting.ledger import StorageLedger
from storeledger.server.services.backends.interface import ObjectStoreBackend

logger = logging.getLogger("storeledger.server.guard")


class UploadGuard:
    """Checks quota and registers upload intent before handing out a PUT URL.

    Args:
        accounts: Account store (usage + tier)
        ledger: Storage accounting ledger
        object_store: Backend that signs the upload URL
        tier_limit: Callable mapping a tier name to its byte ceiling
        persistent_bucket: Bucket used when the caller does not name one
        default_expires_seconds: URL lifetime used when the caller passes none
    """

    def __init__(
        self,
        accounts: AccountStore,
        ledger: StorageLedger,
        object_store: ObjectStoreBackend,
        tier_limit: Optional[Callable[[str], int]] = None,
        persistent_bucket: str = "persistent",
        temporal_bucket: str = "temporal",
        default_expires_seconds: int = DEFAULT_PRESIGN_EXPIRES_SECONDS,
    ) -> None:
        self._accounts = accounts
        self._ledger = ledger
        self._object_store = object_store
        self._tier_limit = tier_limit or TIER_LIMITS.__getitem__
        self.persistent_bucket = persistent_bucket
        self.temporal_bucket = temporal_bucket
        self.default_expires_seconds = default_expires_seconds

    def bucket_for(self, bucket_class: BucketClass) -> str:
        if bucket_class is BucketClass.TEMPORAL:
            return self.temporal_bucket
        return self.persistent_bucket

    def resolve_expiry(self, expires_in_seconds: Optional[int]) -> int:
        """Apply the default lifetime and bound it to 1..MAX_PRESIGN_EXPIRES_SECONDS."""
        if expires_in_seconds is None:
            expires_in_seconds = self.default_expires_seconds
        if expires_in_seconds <= 0 or expires_in_seconds > MAX_PRESIGN_EXPIRES_SECONDS:
            raise ValueError(f"expires_in_seconds must be in 1..{MAX_PRESIGN_EXPIRES_SECONDS}")
        return expires_in_seconds

    async def check_policy(self, user_id: str, size_bytes: int, bucket_class: BucketClass) -> UploadPolicyResult:
        """Pure quota check; no side effects."""
        if bucket_class is BucketClass.TEMPORAL:
            return UploadPolicyResult(allowed=True)

        usage = await self._accounts.get_usage(user_id)
        if usage is None:
            return UploadPolicyResult(allowed=False, reason="Storage account not found")

        limit = self._tier_limit(usage.tier.value)
        projected = usage.used_bytes + size_bytes
        if projected > limit:
            return UploadPolicyResult(
                allowed=False,
                reason=(
                    "Upload would exceed storage quota. "
                    f"Used: {usage.used_bytes}, Limit: {limit}, File size: {size_bytes}"
                ),
            )
        return UploadPolicyResult(allowed=True)

    async def issue_presigned_upload(
        self,
        user_id: str,
        object_key: str,
        mime_type: str,
        size_bytes: int,
        bucket_class: BucketClass,
        expires_in_seconds: Optional[int] = None,
        bucket: Optional[str] = None,
    ) -> PresignedUpload:
        """Check policy, register a pending row, and return a presigned PUT URL.

        Raises:
            UploadPolicyViolation: quota exceeded, account missing, or key owned by another user
            ObjectStoreError: the backend failed to sign the URL
            ValueError: negative size or expiry out of range
        """
        if size_bytes < 0:
            raise ValueError("size_bytes must be >= 0")
        expires_in_seconds = self.resolve_expiry(expires_in_seconds)

        if not await self._key_available_to(user_id, object_key):
            logger.warning("Upload refused for %s: key %s belongs to another user", user_id, object_key)
            raise UploadPolicyViolation("Object key does not belong to user")

        policy = await self.check_policy(user_id, size_bytes, bucket_class)
        if not policy.allowed:
            logger.info("Upload refused for %s (%s, %d bytes): %s", user_id, object_key, size_bytes, policy.reason)
            raise UploadPolicyViolation(policy.reason or "Upload not allowed")

        if bucket_class is BucketClass.PERSISTENT:
            await self._ledger.create_or_update_pending(
                user_id=user_id,
                object_key=object_key,
                size_bytes=size_bytes,
                bucket_class=bucket_class,
            )

        upload_url = await self._object_store.presign_put(
            bucket or self.bucket_for(bucket_class),
            object_key,
            mime_type,
            expires_in_seconds,
        )
        logger.debug("Issued %s upload URL for %s (%d bytes declared)", bucket_class.value, object_key, size_bytes)
        return PresignedUpload(upload_url=upload_url, object_key=object_key, expires_in_seconds=expires_in_seconds)

    async def issue_presigned_download(
        self,
        object_key: str,
        expires_in_seconds: Optional[int] = None,
        bucket_class: BucketClass = BucketClass.PERSISTENT,
        bucket: Optional[str] = None,
    ) -> str:
        """Presigned GET URL for an object; no accounting involved."""
        return await self._object_store.presign_get(
            bucket or self.bucket_for(bucket_class), object_key, self.resolve_expiry(expires_in_seconds)
        )

    async def _key_available_to(self, user_id: str, object_key: str) -> bool:
        owner = owner_of(object_key)
        if owner is not None and owner != user_id:
            return False
        existing = await self._ledger.get_by_key(object_key)
        return existing is None or existing.user_id == user_id
