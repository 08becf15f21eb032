"""Table models for the accounting core.

SQLModel table models double as both SQLAlchemy ORM models and Pydantic models.
The same engine works with SQLite, MySQL, PostgreSQL, etc.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String
from sqlmodel import Field, SQLModel

from storeledger.common.models import BucketClass, ObjectStatus, StorageTier, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class StorageObjectTable(SQLModel, table=True):
    """Ledger row: one tracked object in the object store, keyed by object key."""

    __tablename__ = "storage_objects"
    __table_args__ = (
        Index("idx_storage_objects_user_status", "user_id", "status"),
        Index("idx_storage_objects_status_updated", "status", "updated_at"),
    )

    id: str = Field(default_factory=_new_id, sa_column=Column(String(36), primary_key=True))
    user_id: str = Field(sa_column=Column(String(255), nullable=False))
    object_key: str = Field(
        sa_column=Column(String(1024), unique=True, nullable=False, index=True),
        description="Key in the object store (natural key, one row per key)",
    )
    bucket_class: str = Field(
        default=BucketClass.PERSISTENT.value, sa_column=Column(String(16), nullable=False)
    )
    status: str = Field(default=ObjectStatus.PENDING.value, sa_column=Column(String(16), nullable=False))
    size_bytes: int = Field(
        default=0,
        sa_column=Column(BigInteger, nullable=False, default=0),
        description="Declared size while pending, actual size once confirmed",
    )
    committed_bytes: int = Field(
        default=0,
        sa_column=Column(BigInteger, nullable=False, default=0),
        description="Bytes of this row currently counted in the owner's used_bytes",
    )
    revision: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, default=0),
        description="Bumped on every transition; compare-and-swap token",
    )
    confirmed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def object_status(self) -> ObjectStatus:
        return ObjectStatus(self.status)


class AccountTable(SQLModel, table=True):
    """Per-user quota aggregate."""

    __tablename__ = "storage_accounts"

    user_id: str = Field(sa_column=Column(String(255), primary_key=True))
    tier: str = Field(default=StorageTier.FREE.value, sa_column=Column(String(16), nullable=False))
    used_bytes: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
