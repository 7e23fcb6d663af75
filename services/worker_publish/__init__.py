"""Consultflow - publish stage worker."""
