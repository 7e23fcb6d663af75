"""Consultflow - cleanup stage worker."""
