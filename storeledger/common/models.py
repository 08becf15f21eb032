"""Pydantic models for storeledger."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class BucketClass(str, Enum):
    """Which bucket an object lives in.

    Temporal objects (processing artifacts, scratch files) never count
    toward quota and never get a ledger row.
    """

    PERSISTENT = "persistent"
    TEMPORAL = "temporal"


class ObjectStatus(str, Enum):
    """Ledger lifecycle of a stored object."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELETED = "deleted"


class StorageTier(str, Enum):
    """Account tiers, each mapped to a fixed byte ceiling."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class ObjectMeta(BaseModel):
    """Result of a HEAD on the object store."""

    size_bytes: int = Field(..., ge=0, description="Actual object size")
    etag: str = Field("", description="Entity tag reported by the store")
    content_type: Optional[str] = Field(None, description="Stored content type")


class AccountUsage(BaseModel):
    """Raw usage counters of one account."""

    user_id: str
    used_bytes: int = 0
    tier: StorageTier = StorageTier.FREE


class StorageUsage(BaseModel):
    """Usage of an account relative to its tier ceiling."""

    used_bytes: int = Field(..., description="Bytes charged to the account")
    total_bytes: int = Field(..., description="Tier ceiling in bytes")
    tier: StorageTier
    available_bytes: int = Field(0, description="Bytes left before the ceiling")
    usage_percent: float = Field(0.0, description="used / total * 100")

    @property
    def is_full(self) -> bool:
        return self.used_bytes >= self.total_bytes


class UploadPolicyResult(BaseModel):
    """Outcome of a quota policy check."""

    allowed: bool
    reason: Optional[str] = None


class PresignedUpload(BaseModel):
    """A presigned PUT URL issued for one object key."""

    upload_url: str
    object_key: str
    expires_in_seconds: int


class ConfirmUploadResult(BaseModel):
    """Outcome of reconciling an uploaded object with the ledger."""

    confirmed: bool = True
    delta_bytes: int = 0
    actual_size_bytes: int = 0


class LedgerTransition(BaseModel):
    """Byte delta produced by a ledger transition.

    The ledger never touches account usage itself; the caller applies
    ``delta_bytes`` to the owner's ``used_bytes``.
    """

    object_key: str
    user_id: Optional[str] = None
    delta_bytes: int = 0
    previous_status: Optional[ObjectStatus] = None
    status: Optional[ObjectStatus] = None


class CascadeFailure(BaseModel):
    """One step of a deletion cascade that failed."""

    object_key: str
    step: str = Field(..., description="'delete_object' or 'mark_deleted'")
    error: str


class CascadeResult(BaseModel):
    """Summary of a deletion cascade."""

    user_id: str
    object_keys: list[str] = Field(default_factory=list)
    delta_bytes: int = 0
    usage_applied: bool = False
    failures: list[CascadeFailure] = Field(default_factory=list)
    record_deleted: Optional[bool] = None

    @property
    def orphaned_keys(self) -> list[str]:
        """Keys whose physical object may still exist in the store."""
        return [f.object_key for f in self.failures if f.step == "delete_object"]


class ReconcileReport(BaseModel):
    """Outcome of an out-of-band reconciliation run."""

    checked: int = 0
    confirmed: int = 0
    tombstoned: int = 0
    errors: int = 0
    delta_bytes: int = 0
    finished_at: datetime = Field(default_factory=utcnow)
