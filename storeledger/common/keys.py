"""Object key construction and ownership checks.

Keys follow ``users/{user_id}/{category}/{YYYY}/{MM}/{uuid}-{filename}`` so
the owner is recoverable from the key alone.
"""

import re
import uuid
from datetime import datetime
from typing import Iterable, Optional

from storeledger.common.constants import OBJECT_CATEGORIES, USER_KEY_PREFIX
from storeledger.common.models import utcnow

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(original: str) -> str:
    """Replace characters outside ``[a-zA-Z0-9._-]`` with underscores."""
    trimmed = original.strip()
    if not trimmed:
        return "file"
    return _UNSAFE_CHARS.sub("_", trimmed)


def build_user_object_key(
    user_id: str,
    category: str,
    filename: str,
    object_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Build the object key for a user-owned file.

    Args:
        user_id: Owning account
        category: One of ``OBJECT_CATEGORIES``
        filename: Original filename (sanitised here)
        object_id: UUID to embed (generated when omitted)
        now: Timestamp for the year/month partition (UTC now by default)
    """
    if category not in OBJECT_CATEGORIES:
        raise ValueError(f"Unknown object category: {category}")
    now = now or utcnow()
    object_id = object_id or str(uuid.uuid4())
    safe_name = sanitize_filename(filename)
    return f"{USER_KEY_PREFIX}/{user_id}/{category}/{now.year:04d}/{now.month:02d}/{object_id}-{safe_name}"


def build_thumbnail_key(object_key: str, extension: str = "webp") -> str:
    """Derivative key for a thumbnail of *object_key*."""
    return f"{object_key}.thumb.{extension}"


def key_belongs_to(user_id: str, object_key: str) -> bool:
    """Check that *object_key* lives under the user's prefix."""
    return object_key.startswith(f"{USER_KEY_PREFIX}/{user_id}/")


def owner_of(object_key: str) -> Optional[str]:
    """Extract the owning user id from a user object key."""
    parts = object_key.split("/", 2)
    if len(parts) < 3 or parts[0] != USER_KEY_PREFIX or not parts[1]:
        return None
    return parts[1]


def attachment_keys(pairs: Iterable[tuple[str, Optional[str]]]) -> list[str]:
    """Flatten ``(object_key, thumbnail_key)`` pairs, skipping empty keys."""
    keys: list[str] = []
    for object_key, thumbnail_key in pairs:
        for key in (object_key, thumbnail_key):
            if key:
                keys.append(key)
    return keys
