"""Deletion cascade: reverse accounting for objects owned by a deleted entity.

Physical deletion and ledger tombstoning are best-effort per object: a
failure is logged and the cascade moves on.  Deltas are summed and applied
to the owner's usage once per cascade.  The owning record is deleted last,
whatever happened to its objects.
"""

import logging
from typing import Awaitable, Callable, Iterable, Optional

from storeledger.common.models import CascadeFailure, CascadeResult
from storeledger.server.accounting.accounts import AccountStore
from storeledger.server.accounting.ledger import StorageLedger
from storeledger.server.services.backends.interface import ObjectStoreBackend

logger = logging.getLogger("storeledger.server.cascade")


class DeletionCascade:
    """Deletes objects and reverses their accounting."""

    def __init__(
        self,
        ledger: StorageLedger,
        accounts: AccountStore,
        object_store: ObjectStoreBackend,
        bucket: Optional[str] = None,
    ) -> None:
        self._ledger = ledger
        self._accounts = accounts
        self._object_store = object_store
        self.bucket = bucket

    async def mark_deleted(self, user_id: str, object_key: str) -> int:
        """Tombstone one key without touching the store; applies and returns its delta."""
        transition = await self._ledger.mark_deleted(object_key)
        if transition.delta_bytes != 0:
            await self._accounts.apply_usage_delta(user_id, transition.delta_bytes)
        return transition.delta_bytes

    async def delete_objects(self, user_id: str, object_keys: Iterable[str]) -> CascadeResult:
        """Delete each object and tombstone its ledger row, then charge the total once."""
        keys = list(dict.fromkeys(object_keys))
        result = CascadeResult(user_id=user_id, object_keys=keys)

        for key in keys:
            try:
                await self._object_store.delete_object(key, self.bucket)
            except Exception as e:
                # Orphaned object; left for out-of-band cleanup
                logger.error("Failed to delete object %s for %s: %s", key, user_id, e)
                result.failures.append(CascadeFailure(object_key=key, step="delete_object", error=str(e)))

            try:
                transition = await self._ledger.mark_deleted(key)
                result.delta_bytes += transition.delta_bytes
            except Exception as e:
                logger.error("Failed to mark storage object %s deleted: %s", key, e)
                result.failures.append(CascadeFailure(object_key=key, step="mark_deleted", error=str(e)))

        if result.delta_bytes != 0:
            try:
                await self._accounts.apply_usage_delta(user_id, result.delta_bytes)
                result.usage_applied = True
            except Exception as e:
                logger.error("Failed to apply usage delta %+d for %s: %s", result.delta_bytes, user_id, e)

        if result.failures:
            logger.warning(
                "Cascade for %s finished with %d failure(s) over %d object(s); orphaned: %s",
                user_id,
                len(result.failures),
                len(keys),
                ", ".join(result.orphaned_keys) or "none",
            )
        else:
            logger.debug("Cascade for %s removed %d object(s), usage %+d", user_id, len(keys), result.delta_bytes)

        return result

    async def delete_owned_entity(
        self,
        user_id: str,
        object_keys: Iterable[str],
        delete_record: Callable[[], Awaitable[bool]],
    ) -> CascadeResult:
        """Run the cascade, then delete the owning record regardless of its outcome.

        Args:
            user_id: Owner of the objects
            object_keys: Keys of the entity's objects and derivatives
            delete_record: Coroutine factory deleting the entity itself

        Errors from *delete_record* propagate: that deletion is what the
        caller asked for.
        """
        result = await self.delete_objects(user_id, object_keys)
        result.record_deleted = await delete_record()
        return result
