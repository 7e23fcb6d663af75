"""Consultflow - concatenate stage worker."""
