"""storeledger - per-user storage accounting for presigned object uploads."""

__version__ = "0.1.0"
