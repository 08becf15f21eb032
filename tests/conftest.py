"""Shared fixtures: a temp SQLite ledger, SQL accounts and an in-memory object store."""

from __future__ import annotations

from pathlib import Path

import pytest_asyncio

from storeledger.server.accounting.accounts import SqlAccountStore
from storeledger.server.accounting.db import Database
from storeledger.server.accounting.ledger import StorageLedger
from storeledger.server.services.backends.memory import MemoryObjectStore
from storeledger.server.services.cascade import DeletionCascade
from storeledger.server.services.confirm import ConfirmUploadCoordinator
from storeledger.server.services.upload_guard import UploadGuard

PERSISTENT = "persistent"
TEMPORAL = "temporal"


@pytest_asyncio.fixture
async def db(tmp_path: Path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await database.connect()
    yield database
    await database.disconnect()


@pytest_asyncio.fixture
async def accounts(db: Database) -> SqlAccountStore:
    return SqlAccountStore(db)


@pytest_asyncio.fixture
async def ledger(db: Database) -> StorageLedger:
    return StorageLedger(db)


@pytest_asyncio.fixture
async def objects():
    store = MemoryObjectStore(default_bucket=PERSISTENT)
    await store.connect()
    yield store
    await store.disconnect()


@pytest_asyncio.fixture
async def guard(accounts, ledger, objects) -> UploadGuard:
    return UploadGuard(accounts, ledger, objects, persistent_bucket=PERSISTENT, temporal_bucket=TEMPORAL)


@pytest_asyncio.fixture
async def coordinator(accounts, ledger, objects) -> ConfirmUploadCoordinator:
    return ConfirmUploadCoordinator(ledger, accounts, objects)


@pytest_asyncio.fixture
async def cascade(accounts, ledger, objects) -> DeletionCascade:
    return DeletionCascade(ledger, accounts, objects, bucket=PERSISTENT)
