"""Relational ledger and account stores."""
