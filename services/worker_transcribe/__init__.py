"""Consultflow - transcribe stage worker."""
