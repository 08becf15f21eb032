"""Deletion cascade: best-effort per object, one aggregate usage update."""

from __future__ import annotations

import pytest

from storeledger.common.errors import ObjectStoreError
from storeledger.common.keys import attachment_keys, build_thumbnail_key
from storeledger.server.accounting.accounts import SqlAccountStore
from storeledger.server.accounting.ledger import StorageLedger
from storeledger.server.services.backends.memory import MemoryObjectStore
from storeledger.server.services.cascade import DeletionCascade

KEYS = [f"users/u1/chat_attachments/2026/10/{i}-file.bin" for i in range(3)]
SIZES = [100, 200, 300]


class _FailingDeleteStore(MemoryObjectStore):
    """Refuses to delete the keys it was told to."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing
        self.deleted: list[str] = []

    async def delete_object(self, key, bucket=None):
        if key in self.failing:
            raise ObjectStoreError(f"delete refused for {key}")
        self.deleted.append(key)
        await super().delete_object(key, bucket)


class _RecordingLedger(StorageLedger):
    def __init__(self, db) -> None:
        super().__init__(db)
        self.marked: list[str] = []

    async def mark_deleted(self, object_key):
        self.marked.append(object_key)
        return await super().mark_deleted(object_key)


class _RecordingAccounts(SqlAccountStore):
    def __init__(self, db) -> None:
        super().__init__(db)
        self.deltas: list[int] = []

    async def apply_usage_delta(self, user_id, delta_bytes):
        self.deltas.append(delta_bytes)
        await super().apply_usage_delta(user_id, delta_bytes)


async def _store_confirmed(accounts, ledger, objects, keys=KEYS, sizes=SIZES) -> None:
    await accounts.ensure_account("u1")
    for key, size in zip(keys, sizes):
        await ledger.create_or_update_pending("u1", key, size)
        await objects.put_object("persistent", key, b"x" * size)
        transition = await ledger.confirm_upload(key, size)
        await accounts.apply_usage_delta("u1", transition.delta_bytes)


@pytest.mark.asyncio
async def test_cascade_removes_all_objects(cascade, accounts, ledger, objects):
    await _store_confirmed(accounts, ledger, objects)
    assert (await accounts.get_usage("u1")).used_bytes == 600

    result = await cascade.delete_objects("u1", KEYS)
    assert result.delta_bytes == -600
    assert result.usage_applied is True
    assert result.failures == []
    assert (await accounts.get_usage("u1")).used_bytes == 0
    for key in KEYS:
        assert await objects.head_object("persistent", key) is None
        assert (await ledger.get_by_key(key)).status == "deleted"


@pytest.mark.asyncio
async def test_cascade_continues_past_store_failure(db):
    objects = _FailingDeleteStore(failing={KEYS[1]})
    ledger = _RecordingLedger(db)
    accounts = _RecordingAccounts(db)
    await _store_confirmed(accounts, ledger, objects)
    accounts.deltas.clear()

    deleted_records: list[str] = []

    async def delete_chat() -> bool:
        deleted_records.append("chat-1")
        return True

    cascade = DeletionCascade(ledger, accounts, objects, bucket="persistent")
    result = await cascade.delete_owned_entity("u1", KEYS, delete_chat)

    assert ledger.marked == KEYS
    assert objects.deleted == [KEYS[0], KEYS[2]]
    assert accounts.deltas == [-600]
    assert (await accounts.get_usage("u1")).used_bytes == 0

    assert len(result.failures) == 1
    assert result.failures[0].object_key == KEYS[1]
    assert result.failures[0].step == "delete_object"
    assert result.orphaned_keys == [KEYS[1]]
    assert result.record_deleted is True
    assert deleted_records == ["chat-1"]


@pytest.mark.asyncio
async def test_cascade_ledger_failure_is_recorded(db, objects):
    class _BrokenLedger(_RecordingLedger):
        async def mark_deleted(self, object_key):
            if object_key == KEYS[0]:
                raise RuntimeError("ledger down")
            return await super().mark_deleted(object_key)

    ledger = _BrokenLedger(db)
    accounts = _RecordingAccounts(db)
    await _store_confirmed(accounts, ledger, objects)
    accounts.deltas.clear()

    result = await DeletionCascade(ledger, accounts, objects).delete_objects("u1", KEYS)
    assert [f.step for f in result.failures] == ["mark_deleted"]
    assert result.orphaned_keys == []
    assert result.delta_bytes == -500
    assert (await accounts.get_usage("u1")).used_bytes == 100


@pytest.mark.asyncio
async def test_cascade_usage_failure_still_deletes_record(db, ledger, objects):
    class _DownAccounts(SqlAccountStore):
        async def apply_usage_delta(self, user_id, delta_bytes):
            raise RuntimeError("accounts down")

    healthy = SqlAccountStore(db)
    await _store_confirmed(healthy, ledger, objects)

    async def delete_chat() -> bool:
        return True

    cascade = DeletionCascade(ledger, _DownAccounts(db), objects, bucket="persistent")
    result = await cascade.delete_owned_entity("u1", KEYS, delete_chat)
    assert result.usage_applied is False
    assert result.delta_bytes == -600
    assert result.record_deleted is True


@pytest.mark.asyncio
async def test_cascade_record_failure_propagates(cascade, accounts, ledger, objects):
    await _store_confirmed(accounts, ledger, objects)

    async def delete_chat() -> bool:
        raise RuntimeError("chat table locked")

    with pytest.raises(RuntimeError, match="chat table locked"):
        await cascade.delete_owned_entity("u1", KEYS, delete_chat)
    # Objects were still reversed before the record failed
    assert (await accounts.get_usage("u1")).used_bytes == 0


@pytest.mark.asyncio
async def test_cascade_with_thumbnails_and_untracked_keys(cascade, accounts, ledger, objects):
    await _store_confirmed(accounts, ledger, objects, keys=KEYS[:2], sizes=SIZES[:2])
    pairs = [(KEYS[0], build_thumbnail_key(KEYS[0])), (KEYS[1], None)]
    keys = attachment_keys(pairs)
    assert keys == [KEYS[0], f"{KEYS[0]}.thumb.webp", KEYS[1]]

    result = await cascade.delete_objects("u1", keys + [KEYS[0]])
    assert result.object_keys == keys
    assert result.delta_bytes == -300
    assert result.failures == []


@pytest.mark.asyncio
async def test_cascade_nothing_tracked_skips_usage_update(db, ledger, objects):
    accounts = _RecordingAccounts(db)
    await accounts.ensure_account("u1")

    result = await DeletionCascade(ledger, accounts, objects).delete_objects("u1", ["users/u1/ghost"])
    assert result.delta_bytes == 0
    assert result.usage_applied is False
    assert accounts.deltas == []


@pytest.mark.asyncio
async def test_mark_deleted_single_key(cascade, accounts, ledger, objects):
    await _store_confirmed(accounts, ledger, objects, keys=KEYS[:1], sizes=SIZES[:1])
    assert await cascade.mark_deleted("u1", KEYS[0]) == -100
    assert await cascade.mark_deleted("u1", KEYS[0]) == 0
    assert (await accounts.get_usage("u1")).used_bytes == 0
    # Physical object untouched
    assert await objects.head_object("persistent", KEYS[0]) is not None
