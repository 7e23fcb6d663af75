"""Consultflow - documents stage worker."""
