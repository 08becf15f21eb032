"""Accounting core: ledger, account stores, object stores and services."""
