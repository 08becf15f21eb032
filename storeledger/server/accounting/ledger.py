"""Storage accounting ledger.

Owns the ``pending -> confirmed -> deleted`` lifecycle of stored objects and
computes the byte delta of every transition.  The ledger never touches
account usage; it returns the delta and the caller applies it.

Every transition is a compare-and-swap on ``(object_key, revision)``: the row
is read, the delta computed from what the row has already committed, and the
update only lands if nobody else moved the row in between.  A lost race
re-reads and recomputes, so two racing confirmations of one key produce one
non-zero delta and one zero delta.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Result, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from storeledger.common.constants import LEDGER_CAS_RETRIES
from storeledger.common.errors import LedgerConflict, LedgerEntryNotFound
from storeledger.common.models import BucketClass, LedgerTransition, ObjectStatus, utcnow
from storeledger.server.accounting.db import Database
from storeledger.server.accounting.models import StorageObjectTable

logger = logging.getLogger("storeledger.server.ledger")


class StorageLedger:
    """Ledger of tracked objects, one row per object key."""

    def __init__(self, db: Database, max_attempts: int = LEDGER_CAS_RETRIES) -> None:
        self._db = db
        self.max_attempts = max_attempts

    # ── Reads ─────────────────────────────────────────────────

    async def get_by_key(self, object_key: str) -> Optional[StorageObjectTable]:
        async with self._db.session() as session:
            result: Result[Any] = await session.execute(
                select(StorageObjectTable).where(col(StorageObjectTable.object_key) == object_key)
            )
            return result.scalars().first()

    async def list_confirmed_by_user(self, user_id: str) -> list[StorageObjectTable]:
        return await self.list_by_user(user_id, statuses=[ObjectStatus.CONFIRMED])

    async def list_by_user(
        self,
        user_id: str,
        statuses: Optional[list[ObjectStatus]] = None,
    ) -> list[StorageObjectTable]:
        statement = select(StorageObjectTable).where(col(StorageObjectTable.user_id) == user_id)
        if statuses:
            statement = statement.where(col(StorageObjectTable.status).in_([s.value for s in statuses]))
        statement = statement.order_by(col(StorageObjectTable.created_at).desc())
        async with self._db.session() as session:
            result: Result[Any] = await session.execute(statement)
            return list(result.scalars().all())

    async def list_stale_pending(self, older_than: datetime, limit: int = 500) -> list[StorageObjectTable]:
        """Pending rows not touched since *older_than*, oldest first."""
        async with self._db.session() as session:
            result: Result[Any] = await session.execute(
                select(StorageObjectTable)
                .where(
                    col(StorageObjectTable.status) == ObjectStatus.PENDING.value,
                    col(StorageObjectTable.updated_at) < older_than,
                )
                .order_by(col(StorageObjectTable.updated_at).asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def sum_committed_bytes(self, user_id: str) -> int:
        """Total bytes the ledger has charged to *user_id*."""
        async with self._db.session() as session:
            result: Result[Any] = await session.execute(
                select(func.coalesce(func.sum(StorageObjectTable.committed_bytes), 0)).where(
                    col(StorageObjectTable.user_id) == user_id
                )
            )
            return int(result.scalar_one())

    # ── Transitions ───────────────────────────────────────────

    async def create_or_update_pending(
        self,
        user_id: str,
        object_key: str,
        size_bytes: int,
        bucket_class: BucketClass = BucketClass.PERSISTENT,
    ) -> StorageObjectTable:
        """Register intent to upload *object_key* with its declared size.

        An existing row for the key is overwritten to ``pending`` with the new
        declared size, restarting its accounting cycle.  Bytes the row had
        already committed stay committed until it is confirmed or deleted.
        """
        if size_bytes < 0:
            raise ValueError("size_bytes must be >= 0")

        for attempt in range(1, self.max_attempts + 1):
            now = utcnow()
            existing = await self.get_by_key(object_key)

            if existing is None:
                row = StorageObjectTable(
                    user_id=user_id,
                    object_key=object_key,
                    bucket_class=bucket_class.value,
                    status=ObjectStatus.PENDING.value,
                    size_bytes=size_bytes,
                    committed_bytes=0,
                    revision=0,
                    created_at=now,
                    updated_at=now,
                )
                try:
                    async with self._db.session() as session:
                        session.add(row)
                        await session.commit()
                except IntegrityError:
                    logger.debug("Concurrent insert for %s (attempt %d), retrying as update", object_key, attempt)
                    continue
                logger.debug("Registered pending %s (%d bytes) for %s", object_key, size_bytes, user_id)
                return row

            if existing.user_id != user_id:
                logger.warning(
                    "Key %s re-registered by %s but owned by %s; keeping owner",
                    object_key,
                    user_id,
                    existing.user_id,
                )
            swapped = await self._swap(
                existing,
                status=ObjectStatus.PENDING.value,
                size_bytes=size_bytes,
                updated_at=now,
            )
            if swapped is not None:
                logger.debug("Reset %s to pending (%d bytes)", object_key, size_bytes)
                return swapped

        raise LedgerConflict(object_key, self.max_attempts)

    async def confirm_upload(
        self, object_key: str, actual_size_bytes: int, user_id: Optional[str] = None
    ) -> LedgerTransition:
        """Mark *object_key* confirmed at its actual size and return the delta.

        Idempotent: confirming an already-confirmed row with the same size
        yields ``delta_bytes == 0``.  When *user_id* is given the row must be
        owned by that user; a foreign row is reported as not found.

        Raises:
            LedgerEntryNotFound: the key was never registered (or not by *user_id*)
            LedgerConflict: the row kept changing under concurrent updates
        """
        if actual_size_bytes < 0:
            raise ValueError("actual_size_bytes must be >= 0")

        for attempt in range(1, self.max_attempts + 1):
            row = await self.get_by_key(object_key)
            if row is None:
                raise LedgerEntryNotFound(object_key)
            if user_id is not None and row.user_id != user_id:
                logger.warning("Refused confirm of %s by %s: owned by %s", object_key, user_id, row.user_id)
                raise LedgerEntryNotFound(object_key)

            previous_status = row.object_status
            delta = actual_size_bytes - row.committed_bytes
            now = utcnow()
            swapped = await self._swap(
                row,
                status=ObjectStatus.CONFIRMED.value,
                size_bytes=actual_size_bytes,
                committed_bytes=actual_size_bytes,
                confirmed_at=now,
                updated_at=now,
            )
            if swapped is not None:
                logger.debug(
                    "Confirmed %s: %s -> confirmed, %d bytes, delta %+d",
                    object_key,
                    previous_status.value,
                    actual_size_bytes,
                    delta,
                )
                return LedgerTransition(
                    object_key=object_key,
                    user_id=row.user_id,
                    delta_bytes=delta,
                    previous_status=previous_status,
                    status=ObjectStatus.CONFIRMED,
                )
            logger.debug("Lost confirm race on %s (attempt %d)", object_key, attempt)

        raise LedgerConflict(object_key, self.max_attempts)

    async def mark_deleted(self, object_key: str) -> LedgerTransition:
        """Tombstone *object_key* and return the (non-positive) delta.

        Only bytes the row had committed are reversed; untracked keys and
        pending or already-deleted rows yield ``delta_bytes == 0``.  The row
        keeps its last ``size_bytes`` for audit.
        """
        for attempt in range(1, self.max_attempts + 1):
            row = await self.get_by_key(object_key)
            if row is None:
                return LedgerTransition(object_key=object_key)

            previous_status = row.object_status
            if previous_status is ObjectStatus.DELETED:
                return LedgerTransition(
                    object_key=object_key,
                    user_id=row.user_id,
                    previous_status=previous_status,
                    status=ObjectStatus.DELETED,
                )

            delta = -row.committed_bytes
            swapped = await self._swap(
                row,
                status=ObjectStatus.DELETED.value,
                committed_bytes=0,
                updated_at=utcnow(),
            )
            if swapped is not None:
                logger.debug("Deleted %s: %s -> deleted, delta %+d", object_key, previous_status.value, delta)
                return LedgerTransition(
                    object_key=object_key,
                    user_id=row.user_id,
                    delta_bytes=delta,
                    previous_status=previous_status,
                    status=ObjectStatus.DELETED,
                )
            logger.debug("Lost delete race on %s (attempt %d)", object_key, attempt)

        raise LedgerConflict(object_key, self.max_attempts)

    async def _swap(self, row: StorageObjectTable, **values: Any) -> Optional[StorageObjectTable]:
        """Apply *values* only if the row still has the revision we read."""
        values["revision"] = row.revision + 1
        statement = (
            update(StorageObjectTable)
            .where(
                col(StorageObjectTable.object_key) == row.object_key,
                col(StorageObjectTable.revision) == row.revision,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result: Result[Any] = await session.execute(statement)
            await session.commit()

        if result.rowcount != 1:  # type: ignore[attr-defined]
            return None
        for name, value in values.items():
            setattr(row, name, value)
        return row
