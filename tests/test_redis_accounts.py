"""Redis account store against an in-process fake Redis with Lua support."""

from __future__ import annotations

import asyncio
import uuid

import fakeredis
import pytest
import pytest_asyncio

from storeledger.common.constants import AccountFields, RedisKeys
from storeledger.common.models import StorageTier
from storeledger.server.accounting.accounts import RedisAccountStore


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def redis_accounts(redis_client):
    store = RedisAccountStore(client=redis_client)
    await store.connect()
    yield store
    await store.disconnect()


@pytest.fixture
def user_id() -> str:
    return f"test-{uuid.uuid4()}"


@pytest.mark.asyncio
async def test_redis_account_lifecycle(redis_accounts: RedisAccountStore, user_id: str):
    assert await redis_accounts.get_usage(user_id) is None

    created = await redis_accounts.ensure_account(user_id, StorageTier.PRO)
    assert created.tier is StorageTier.PRO
    assert created.used_bytes == 0

    await redis_accounts.apply_usage_delta(user_id, 1000)
    await redis_accounts.apply_usage_delta(user_id, -250)
    assert (await redis_accounts.get_usage(user_id)).used_bytes == 750

    await redis_accounts.apply_usage_delta(user_id, -10_000)
    assert (await redis_accounts.get_usage(user_id)).used_bytes == 0

    updated = await redis_accounts.set_tier(user_id, StorageTier.PREMIUM)
    assert updated.tier is StorageTier.PREMIUM

    await redis_accounts.recalculate_usage(user_id, 42)
    assert (await redis_accounts.get_usage(user_id)).used_bytes == 42

    await redis_accounts.recalculate_usage(user_id, -5)
    assert (await redis_accounts.get_usage(user_id)).used_bytes == 0


@pytest.mark.asyncio
async def test_redis_missing_account(redis_accounts: RedisAccountStore, redis_client, user_id: str):
    await redis_accounts.apply_usage_delta(user_id, 100)
    await redis_accounts.recalculate_usage(user_id, 100)
    assert await redis_accounts.get_usage(user_id) is None
    assert await redis_accounts.set_tier(user_id, StorageTier.PRO) is None
    assert not await redis_client.exists(f"{RedisKeys.ACCOUNT_PREFIX}{user_id}")


@pytest.mark.asyncio
async def test_redis_ensure_account_keeps_existing(redis_accounts: RedisAccountStore, user_id: str):
    await redis_accounts.ensure_account(user_id, StorageTier.PRO)
    await redis_accounts.apply_usage_delta(user_id, 4096)

    again = await redis_accounts.ensure_account(user_id, StorageTier.FREE)
    assert again.tier is StorageTier.PRO
    assert again.used_bytes == 4096


@pytest.mark.asyncio
async def test_redis_ensure_account_concurrent(redis_accounts: RedisAccountStore, user_id: str):
    results = await asyncio.gather(
        redis_accounts.ensure_account(user_id, StorageTier.PRO),
        redis_accounts.ensure_account(user_id, StorageTier.FREE),
    )
    # First writer wins the tier; both callers see the same stored account
    assert results[0].tier is results[1].tier
    assert all(r.used_bytes == 0 for r in results)


@pytest.mark.asyncio
async def test_redis_concurrent_deltas_across_zero(redis_accounts: RedisAccountStore, user_id: str):
    await redis_accounts.ensure_account(user_id)
    await redis_accounts.apply_usage_delta(user_id, 10)

    await asyncio.gather(
        redis_accounts.apply_usage_delta(user_id, -20),
        redis_accounts.apply_usage_delta(user_id, 500),
    )

    # -20 first floors to 0 then +500; +500 first gives 510 - 20
    assert (await redis_accounts.get_usage(user_id)).used_bytes in {490, 500}


@pytest.mark.asyncio
async def test_redis_many_concurrent_deltas(redis_accounts: RedisAccountStore, user_id: str):
    await redis_accounts.ensure_account(user_id)

    await asyncio.gather(*(redis_accounts.apply_usage_delta(user_id, 100) for _ in range(50)))
    assert (await redis_accounts.get_usage(user_id)).used_bytes == 5000

    await asyncio.gather(*(redis_accounts.apply_usage_delta(user_id, -300) for _ in range(20)))
    assert (await redis_accounts.get_usage(user_id)).used_bytes == 0


@pytest.mark.asyncio
async def test_redis_stored_hash_layout(redis_accounts: RedisAccountStore, redis_client, user_id: str):
    await redis_accounts.ensure_account(user_id, StorageTier.PREMIUM)
    await redis_accounts.apply_usage_delta(user_id, 7)

    data = await redis_client.hgetall(f"{RedisKeys.ACCOUNT_PREFIX}{user_id}")
    assert data == {AccountFields.TIER: StorageTier.PREMIUM.value, AccountFields.USED_BYTES: "7"}
