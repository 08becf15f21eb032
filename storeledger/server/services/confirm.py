"""Confirm-upload coordinator.

Reconciles an uploaded object's actual size with the ledger and charges the
difference to the owner.  Safe to retry: a repeated confirmation of the same
object computes a zero delta and skips the account write.
"""

import logging

from storeledger.common.errors import ObjectNotFound
from storeledger.common.models import BucketClass, ConfirmUploadResult
from storeledger.server.accounting.accounts import AccountStore
from storeledger.server.accounting.ledger import StorageLedger
from storeledger.server.services.backends.interface import ObjectStoreBackend

logger = logging.getLogger("storeledger.server.confirm")


class ConfirmUploadCoordinator:
    """HEAD the object, confirm it in the ledger, apply the delta to usage."""

    def __init__(
        self,
        ledger: StorageLedger,
        accounts: AccountStore,
        object_store: ObjectStoreBackend,
    ) -> None:
        self._ledger = ledger
        self._accounts = accounts
        self._object_store = object_store

    async def confirm_upload(
        self,
        object_key: str,
        bucket_name: str,
        bucket_class: BucketClass,
        user_id: str,
    ) -> ConfirmUploadResult:
        """Confirm an upload and charge its actual size.

        Raises:
            ObjectNotFound: the object is not (yet) in the store
            LedgerEntryNotFound: the key was never registered by *user_id*
        """
        if bucket_class is BucketClass.TEMPORAL:
            return ConfirmUploadResult(confirmed=True, delta_bytes=0, actual_size_bytes=0)

        meta = await self._object_store.head_object(bucket_name, object_key)
        if meta is None:
            raise ObjectNotFound(bucket_name, object_key)

        transition = await self._ledger.confirm_upload(object_key, meta.size_bytes, user_id=user_id)

        if transition.delta_bytes != 0:
            # Ledger row and account counter are two independent steps; a
            # crash here leaves the row confirmed and usage uncharged until
            # reconcile_usage runs.
            await self._accounts.apply_usage_delta(transition.user_id, transition.delta_bytes)
            logger.info(
                "Confirmed %s for %s: %d bytes, usage %+d",
                object_key,
                transition.user_id,
                meta.size_bytes,
                transition.delta_bytes,
            )
        else:
            logger.debug("Confirmed %s again, no usage change", object_key)

        return ConfirmUploadResult(
            confirmed=True,
            delta_bytes=transition.delta_bytes,
            actual_size_bytes=meta.size_bytes,
        )
