"""Constants for storeledger."""

# Byte units
KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB

# Storage ceiling per account tier (bytes)
TIER_LIMITS = {
    "free": 1 * GIB,
    "pro": 10 * GIB,
    "premium": 100 * GIB,
}

# Presigned URLs expire after 15 minutes unless the caller asks otherwise
DEFAULT_PRESIGN_EXPIRES_SECONDS = 15 * 60

# Longest expiry accepted by S3-compatible stores (7 days)
MAX_PRESIGN_EXPIRES_SECONDS = 7 * 24 * 60 * 60

# Pending rows older than this are candidates for the reaper
DEFAULT_STALE_PENDING_HOURS = 24

# Compare-and-swap attempts per ledger transition before giving up
LEDGER_CAS_RETRIES = 5

# Object key layout: users/{user_id}/{category}/{YYYY}/{MM}/{uuid}-{filename}
USER_KEY_PREFIX = "users"

OBJECT_CATEGORIES = (
    "user_uploads",
    "chat_attachments",
    "class_audio",
    "rubrics",
    "scribe_exports",
    "avatars",
    "temp",
)


# Redis key prefixes


class RedisKeys:
    ACCOUNT_PREFIX = "sl:account:"  # hash: used_bytes, tier


class AccountFields:
    USED_BYTES = "used_bytes"
    TIER = "tier"
