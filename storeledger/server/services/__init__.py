"""Upload guard, confirmation, cascade and reconciliation services."""
