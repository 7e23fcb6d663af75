"""Consultflow - download stage worker."""
