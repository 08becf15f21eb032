"""Storage usage read model."""

from typing import Callable, Optional

from storeledger.common.constants import TIER_LIMITS
from storeledger.common.models import StorageUsage
from storeledger.server.accounting.accounts import AccountStore


async def get_storage_usage(
    accounts: AccountStore,
    user_id: str,
    tier_limit: Optional[Callable[[str], int]] = None,
) -> Optional[StorageUsage]:
    """Usage of *user_id* against its tier ceiling, or None without an account."""
    usage = await accounts.get_usage(user_id)
    if usage is None:
        return None

    limit_for = tier_limit or TIER_LIMITS.__getitem__
    total = limit_for(usage.tier.value)
    return StorageUsage(
        used_bytes=usage.used_bytes,
        total_bytes=total,
        tier=usage.tier,
        available_bytes=max(0, total - usage.used_bytes),
        usage_percent=round((usage.used_bytes / total) * 100, 2) if total > 0 else 0.0,
    )
