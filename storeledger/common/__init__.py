"""Shared constants, models and helpers."""
