"""Error taxonomy for storeledger.

Every domain error carries an explicit :class:`ErrorKind` so callers branch
on ``err.kind`` (or :func:`classify`) instead of exception identity.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Discriminant for domain errors."""

    POLICY_VIOLATION = "policy_violation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.POLICY_VIOLATION: 402,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}

INTERNAL_ERROR_MESSAGE = "Internal server error"


class StoreLedgerError(Exception):
    """Base class for storeledger errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def http_status(self) -> int:
        return self.kind.http_status


class UploadPolicyViolation(StoreLedgerError):
    """Upload refused: quota exceeded, account missing, or key owned by another user."""

    kind = ErrorKind.POLICY_VIOLATION


class ObjectNotFound(StoreLedgerError):
    """Object is absent from the object store (confirm before upload)."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, bucket: str, object_key: str) -> None:
        super().__init__(f"Object not found in store: {bucket}/{object_key}")
        self.bucket = bucket
        self.object_key = object_key


class LedgerEntryNotFound(StoreLedgerError):
    """Confirm was called for a key that was never registered."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, object_key: str) -> None:
        super().__init__(f"Storage object not found for key: {object_key}")
        self.object_key = object_key


class LedgerConflict(StoreLedgerError):
    """A ledger row kept changing under concurrent transitions."""

    kind = ErrorKind.CONFLICT

    def __init__(self, object_key: str, attempts: int) -> None:
        super().__init__(f"Ledger row {object_key} changed concurrently ({attempts} attempts)")
        self.object_key = object_key
        self.attempts = attempts


class ObjectStoreError(StoreLedgerError):
    """Object store adapter failure (signing, HEAD, DELETE)."""

    kind = ErrorKind.INTERNAL


def classify(exc: BaseException) -> ErrorKind:
    """Map any exception to an :class:`ErrorKind`."""
    if isinstance(exc, StoreLedgerError):
        return exc.kind
    return ErrorKind.INTERNAL


def public_message(exc: BaseException) -> str:
    """Message safe to show an end user; internal errors are not leaked."""
    kind = classify(exc)
    if kind is ErrorKind.INTERNAL:
        return INTERNAL_ERROR_MESSAGE
    return str(exc)
