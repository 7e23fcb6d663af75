"""Consultflow - Clients for external systems (object storage, providers)."""
