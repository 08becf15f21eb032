"""Out-of-band reconciliation jobs.

Nothing here runs on the request path.  Operators (or a scheduler) use these
to close the gaps the hot path accepts: usage drift after a crash between the
ledger and account writes, and pending rows for uploads nobody confirmed.
"""

import logging
from datetime import timedelta

from storeledger.common.models import BucketClass, ReconcileReport, utcnow
from storeledger.server.accounting.accounts import AccountStore
from storeledger.server.accounting.ledger import StorageLedger
from storeledger.server.services.backends.interface import ObjectStoreBackend
from storeledger.server.services.confirm import ConfirmUploadCoordinator

logger = logging.getLogger("storeledger.server.reconcile")


async def reconcile_usage(ledger: StorageLedger, accounts: AccountStore, user_id: str) -> tuple[int, int]:
    """Recompute ``used_bytes`` of *user_id* from the ledger.

    Returns:
        ``(previous_used_bytes, recalculated_used_bytes)``
    """
    usage = await accounts.get_usage(user_id)
    previous = usage.used_bytes if usage else 0
    actual = await ledger.sum_committed_bytes(user_id)
    if usage is not None and previous != actual:
        await accounts.recalculate_usage(user_id, actual)
        logger.warning("Usage drift for %s: %d recorded, %d in ledger; corrected", user_id, previous, actual)
    return previous, actual


async def reap_stale_pending(
    ledger: StorageLedger,
    accounts: AccountStore,
    coordinator: ConfirmUploadCoordinator,
    object_store: ObjectStoreBackend,
    max_age: timedelta,
    bucket: str,
    limit: int = 500,
) -> ReconcileReport:
    """Settle pending rows older than *max_age*.

    Rows whose object reached the store are confirmed (and charged); rows
    whose object never arrived are tombstoned, releasing whatever they still
    carried from an earlier confirmation of the same key.
    """
    report = ReconcileReport()
    cutoff = utcnow() - max_age

    for row in await ledger.list_stale_pending(cutoff, limit=limit):
        report.checked += 1
        try:
            meta = await object_store.head_object(bucket, row.object_key)
            if meta is not None:
                result = await coordinator.confirm_upload(
                    row.object_key, bucket, BucketClass(row.bucket_class), row.user_id
                )
                report.confirmed += 1
                report.delta_bytes += result.delta_bytes
            else:
                transition = await ledger.mark_deleted(row.object_key)
                if transition.delta_bytes != 0:
                    await accounts.apply_usage_delta(row.user_id, transition.delta_bytes)
                report.tombstoned += 1
                report.delta_bytes += transition.delta_bytes
        except Exception as e:
            report.errors += 1
            logger.error("Failed to reap pending %s: %s", row.object_key, e)

    report.finished_at = utcnow()
    if report.checked:
        logger.info(
            "Reaped %d stale pending row(s): %d confirmed, %d tombstoned, %d error(s)",
            report.checked,
            report.confirmed,
            report.tombstoned,
            report.errors,
        )
    return report
