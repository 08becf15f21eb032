"""Account stores: per-user ``used_bytes`` aggregate and tier.

``used_bytes`` is only ever adjusted with a relative update
(``used_bytes = used_bytes + delta``), never read-modify-write, so
concurrent confirmations for different objects of one user compose.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy import Result, case, update
from sqlmodel import col

from storeledger.common.constants import AccountFields, RedisKeys
from storeledger.common.models import AccountUsage, StorageTier, utcnow
from storeledger.server.accounting.db import Database
from storeledger.server.accounting.models import AccountTable

logger = logging.getLogger("storeledger.server.accounts")


class AccountStore(ABC):
    """Abstract base class for account stores.

    Available implementations:
    - SqlAccountStore: column in the relational store (default)
    - RedisAccountStore: hash per user, HINCRBY for deltas
    """

    async def connect(self) -> None:
        """Initialize connection to the store."""

    async def disconnect(self) -> None:
        """Close connection to the store."""

    @abstractmethod
    async def get_usage(self, user_id: str) -> Optional[AccountUsage]:
        """Return usage and tier, or None if the account does not exist."""

    @abstractmethod
    async def apply_usage_delta(self, user_id: str, delta_bytes: int) -> None:
        """Atomically add *delta_bytes* to the account's ``used_bytes`` (floored at 0)."""

    @abstractmethod
    async def ensure_account(self, user_id: str, tier: StorageTier = StorageTier.FREE) -> AccountUsage:
        """Create the account if missing; existing accounts are returned untouched."""

    @abstractmethod
    async def set_tier(self, user_id: str, tier: StorageTier) -> Optional[AccountUsage]:
        """Change the account's tier."""

    @abstractmethod
    async def recalculate_usage(self, user_id: str, actual_bytes: int) -> None:
        """Overwrite ``used_bytes``.  Reserved for out-of-band reconciliation."""

    @property
    def name(self) -> str:
        """Get store name for logging."""
        return self.__class__.__name__


class SqlAccountStore(AccountStore):
    """Accounts stored in the ``storage_accounts`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_usage(self, user_id: str) -> Optional[AccountUsage]:
        async with self._db.session() as session:
            account = await session.get(AccountTable, user_id)
            if account is None:
                return None
            return AccountUsage(user_id=account.user_id, used_bytes=account.used_bytes, tier=account.tier)

    async def apply_usage_delta(self, user_id: str, delta_bytes: int) -> None:
        if delta_bytes == 0:
            return
        used = col(AccountTable.used_bytes)
        statement = (
            update(AccountTable)
            .where(col(AccountTable.user_id) == user_id)
            .values(
                used_bytes=case((used + delta_bytes < 0, 0), else_=used + delta_bytes),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result: Result[Any] = await session.execute(statement)
            await session.commit()
        if result.rowcount == 0:  # type: ignore[attr-defined]
            logger.warning("%s: No account %s, dropped usage delta %+d", self.name, user_id, delta_bytes)

    async def ensure_account(self, user_id: str, tier: StorageTier = StorageTier.FREE) -> AccountUsage:
        async with self._db.session() as session:
            account = await session.get(AccountTable, user_id)
            if account is None:
                now = utcnow()
                account = AccountTable(user_id=user_id, tier=tier.value, used_bytes=0, created_at=now, updated_at=now)
                session.add(account)
                await session.commit()
                await session.refresh(account)
            return AccountUsage(user_id=account.user_id, used_bytes=account.used_bytes, tier=account.tier)

    async def set_tier(self, user_id: str, tier: StorageTier) -> Optional[AccountUsage]:
        async with self._db.session() as session:
            account = await session.get(AccountTable, user_id)
            if account is None:
                return None
            account.tier = tier.value
            account.updated_at = utcnow()
            session.add(account)
            await session.commit()
            await session.refresh(account)
            return AccountUsage(user_id=account.user_id, used_bytes=account.used_bytes, tier=account.tier)

    async def recalculate_usage(self, user_id: str, actual_bytes: int) -> None:
        async with self._db.session() as session:
            account = await session.get(AccountTable, user_id)
            if account:
                account.used_bytes = max(0, actual_bytes)
                account.updated_at = utcnow()
                session.add(account)
                await session.commit()


# KEYS[1] = account hash; ARGV[1] = used_bytes field, ARGV[2] = delta.
# Returns the new value, or nil when the account does not exist.
_APPLY_DELTA_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return nil
end
local used = redis.call('HINCRBY', KEYS[1], ARGV[1], ARGV[2])
if used < 0 then
    redis.call('HSET', KEYS[1], ARGV[1], 0)
    used = 0
end
return used
"""

# KEYS[1] = account hash; ARGV[1] = tier field, ARGV[2] = tier, ARGV[3] = used_bytes field.
_ENSURE_ACCOUNT_LUA = """
redis.call('HSETNX', KEYS[1], ARGV[1], ARGV[2])
redis.call('HSETNX', KEYS[1], ARGV[3], 0)
return redis.call('HGETALL', KEYS[1])
"""

# KEYS[1] = account hash; ARGV[1] = field, ARGV[2] = value.  Only sets on existing accounts.
_SET_IF_EXISTS_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
return 1
"""


class RedisAccountStore(AccountStore):
    """Accounts stored as Redis hashes (``sl:account:{user_id}``).

    Suitable for multi-worker deployments where the relational store cannot
    take a hot counter.  Every mutation is a single server-side Lua script,
    so the increment and its floor at 0 cannot interleave with another
    worker's update.

    Usage:
        store = RedisAccountStore("redis://localhost:6379/0")
        await store.connect()
        await store.apply_usage_delta("user-1", 4096)
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", client: Any = None) -> None:
        self.redis_url = redis_url
        self._client = client
        self._pool: Any = None
        self._apply_delta: Any = None
        self._ensure: Any = None
        self._set_if_exists: Any = None

    async def connect(self) -> None:
        """Connect to Redis and register the account scripts."""
        if self._client is None:
            import redis.asyncio as redis

            self._pool = redis.ConnectionPool.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=20,
            )
            self._client = redis.Redis(connection_pool=self._pool)

        await self._client.ping()
        self._apply_delta = self._client.register_script(_APPLY_DELTA_LUA)
        self._ensure = self._client.register_script(_ENSURE_ACCOUNT_LUA)
        self._set_if_exists = self._client.register_script(_SET_IF_EXISTS_LUA)
        logger.info("%s: Connected to %s", self.name, self.redis_url)

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._pool is not None:
            await self._client.aclose()
            await self._pool.disconnect()
            self._pool = None
            self._client = None

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{RedisKeys.ACCOUNT_PREFIX}{user_id}"

    @staticmethod
    def _to_usage(user_id: str, data: dict) -> AccountUsage:
        return AccountUsage(
            user_id=user_id,
            used_bytes=int(data.get(AccountFields.USED_BYTES, 0)),
            tier=data.get(AccountFields.TIER, StorageTier.FREE.value),
        )

    async def get_usage(self, user_id: str) -> Optional[AccountUsage]:
        data = await self._client.hgetall(self._key(user_id))
        if not data:
            return None
        return self._to_usage(user_id, data)

    async def apply_usage_delta(self, user_id: str, delta_bytes: int) -> None:
        if delta_bytes == 0:
            return
        used = await self._apply_delta(keys=[self._key(user_id)], args=[AccountFields.USED_BYTES, delta_bytes])
        if used is None:
            logger.warning("%s: No account %s, dropped usage delta %+d", self.name, user_id, delta_bytes)

    async def ensure_account(self, user_id: str, tier: StorageTier = StorageTier.FREE) -> AccountUsage:
        flat = await self._ensure(
            keys=[self._key(user_id)],
            args=[AccountFields.TIER, tier.value, AccountFields.USED_BYTES],
        )
        # HGETALL comes back from Lua as a flat [field, value, ...] list
        data = dict(zip(flat[::2], flat[1::2]))
        return self._to_usage(user_id, data)

    async def set_tier(self, user_id: str, tier: StorageTier) -> Optional[AccountUsage]:
        updated = await self._set_if_exists(keys=[self._key(user_id)], args=[AccountFields.TIER, tier.value])
        if not updated:
            return None
        return await self.get_usage(user_id)

    async def recalculate_usage(self, user_id: str, actual_bytes: int) -> None:
        await self._set_if_exists(
            keys=[self._key(user_id)], args=[AccountFields.USED_BYTES, max(0, actual_bytes)]
        )
