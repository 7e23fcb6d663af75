"""Consultflow - Core application modules.

Provides:
- SQLite models and job store primitives
- Pipeline orchestrator, deadline supervisor and startup recovery
- Storage, transcription and text generation adapters
"""

__version__ = "0.1.0"
