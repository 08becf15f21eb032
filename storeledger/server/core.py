"""Composition root: builds and wires the accounting core from settings."""

import logging
from datetime import timedelta
from typing import Optional

from storeledger.common.models import BucketClass, ConfirmUploadResult, ReconcileReport, StorageUsage
from storeledger.server.accounting.accounts import AccountStore, RedisAccountStore, SqlAccountStore
from storeledger.server.accounting.db import Database, build_database_url
from storeledger.server.accounting.ledger import StorageLedger
from storeledger.server.config import LedgerSettings, reload_hot_settings
from storeledger.server.services.backends.interface import ObjectStoreBackend
from storeledger.server.services.cascade import DeletionCascade
from storeledger.server.services.confirm import ConfirmUploadCoordinator
from storeledger.server.services.reconcile import reap_stale_pending, reconcile_usage
from storeledger.server.services.upload_guard import UploadGuard
from storeledger.server.services.usage import get_storage_usage

logger = logging.getLogger("storeledger.server")


def configure_logging(log_level: str = "INFO") -> None:
    """Set the storeledger log level; install a root handler if none exists."""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.getLogger("storeledger").setLevel(numeric_level)

    if not logging.getLogger().handlers:
        logging.basicConfig(level=numeric_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")


def create_object_store(settings: LedgerSettings) -> ObjectStoreBackend:
    """Create object store backend based on settings."""
    if settings.object_store == "memory":
        from storeledger.server.services.backends.memory import MemoryObjectStore

        return MemoryObjectStore(default_bucket=settings.persistent_bucket)

    elif settings.object_store == "file":
        from storeledger.server.services.backends.file import FileObjectStore

        return FileObjectStore(
            root=settings.file_store_root,
            base_url=settings.file_store_base_url,
            signing_secret=settings.signing_secret,
            default_bucket=settings.persistent_bucket,
        )

    elif settings.object_store == "s3":
        from storeledger.server.services.backends.s3 import S3ObjectStore

        return S3ObjectStore(
            endpoint_url=settings.s3_endpoint_url,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            region=settings.s3_region,
            default_bucket=settings.persistent_bucket,
        )

    else:
        raise ValueError(f"Unknown object store: {settings.object_store}")


def create_account_store(settings: LedgerSettings, db: Database) -> AccountStore:
    """Create account store based on settings."""
    if settings.account_store == "redis":
        return RedisAccountStore(settings.redis_url)
    return SqlAccountStore(db)


def resolve_database_url(settings: LedgerSettings) -> str:
    if settings.database_url:
        return settings.database_url
    return build_database_url(
        backend=settings.database_backend,
        sqlite_path=settings.sqlite_path,
        data_path=str(settings.data_path),
        host=settings.db_host,
        port=settings.db_port,
        user=settings.db_user,
        password=settings.db_password,
        database=settings.db_name,
    )


class StorageCore:
    """The wired accounting core.

    Usage:
        core = StorageCore(load_settings())
        await core.connect()
        upload = await core.guard.issue_presigned_upload(...)
        await core.coordinator.confirm_upload(...)
        await core.close()
    """

    def __init__(
        self,
        settings: LedgerSettings,
        db: Optional[Database] = None,
        object_store: Optional[ObjectStoreBackend] = None,
        accounts: Optional[AccountStore] = None,
    ) -> None:
        self.settings = settings
        self.db = db or Database(resolve_database_url(settings))
        self.object_store = object_store or create_object_store(settings)
        self.accounts = accounts or create_account_store(settings, self.db)
        self.ledger = StorageLedger(self.db)

        self.guard = UploadGuard(
            self.accounts,
            self.ledger,
            self.object_store,
            tier_limit=settings.tier_limit,
            persistent_bucket=settings.persistent_bucket,
            temporal_bucket=settings.temporal_bucket,
            default_expires_seconds=settings.presign_expires_seconds,
        )
        self.coordinator = ConfirmUploadCoordinator(self.ledger, self.accounts, self.object_store)
        self.cascade = DeletionCascade(
            self.ledger, self.accounts, self.object_store, bucket=settings.persistent_bucket
        )
        self._connected = False

    async def connect(self) -> None:
        if self._connected:
            return
        configure_logging(self.settings.log_level)
        await self.db.connect()
        await self.accounts.connect()
        await self.object_store.connect()
        self._connected = True
        logger.info(
            "Storage core ready (accounts=%s, objects=%s)",
            self.accounts.name,
            self.object_store.name,
        )

    async def close(self) -> None:
        if not self._connected:
            return
        await self.object_store.disconnect()
        await self.accounts.disconnect()
        await self.db.disconnect()
        self._connected = False

    async def __aenter__(self) -> "StorageCore":
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── Convenience entry points ──────────────────────────────

    async def confirm_persistent_upload(self, user_id: str, object_key: str) -> ConfirmUploadResult:
        """Confirm an upload to the persistent bucket."""
        return await self.coordinator.confirm_upload(
            object_key, self.settings.persistent_bucket, BucketClass.PERSISTENT, user_id
        )

    async def storage_usage(self, user_id: str) -> Optional[StorageUsage]:
        return await get_storage_usage(self.accounts, user_id, self.settings.tier_limit)

    async def reconcile_usage(self, user_id: str) -> tuple[int, int]:
        return await reconcile_usage(self.ledger, self.accounts, user_id)

    async def reap_stale_pending(self, max_age: Optional[timedelta] = None) -> ReconcileReport:
        return await reap_stale_pending(
            self.ledger,
            self.accounts,
            self.coordinator,
            self.object_store,
            max_age or timedelta(hours=self.settings.stale_pending_hours),
            bucket=self.settings.persistent_bucket,
        )

    def reload_settings(self) -> dict[str, tuple]:
        """Re-read hot-reloadable settings from the config file."""
        changes = reload_hot_settings(self.settings)
        if "log_level" in changes:
            configure_logging(self.settings.log_level)
        if "presign_expires_seconds" in changes:
            self.guard.default_expires_seconds = self.settings.presign_expires_seconds
        if changes:
            logger.info("Reloaded %d field(s): %s", len(changes), ", ".join(changes.keys()))
        return changes
