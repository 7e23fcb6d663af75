"""Consultflow - HTTP ingress and stage workers."""
