"""Consultflow - Canonical path utilities.

Object keys in storage and local ephemeral directories. Does NOT create
directories; that is the responsibility of the calling code.
"""

import logging
import shutil
import uuid
from pathlib import Path

from consultflow.config import MERGED_AUDIO_FILENAME, TEMP_DIR

logger = logging.getLogger(__name__)


def object_key(prefix: str, name: str) -> str:
    """Join a storage prefix and an object name.

    Returns:
        str: {prefix}/{name}, without doubled slashes.
    """
    prefix = prefix.strip("/")
    if not prefix:
        return name
    return f"{prefix}/{name}"


def merged_audio_key(prefix: str) -> str:
    """Get the canonical storage key for a session's merged audio.

    Returns:
        str: {prefix}/full.wav
    """
    return object_key(prefix, MERGED_AUDIO_FILENAME)


def new_work_dir(base_dir: str | Path | None = None) -> Path:
    """Get a fresh, unique ephemeral directory path.

    Returns:
        Path: {TEMP_DIR}/{uuid4 hex}
    """
    base = Path(base_dir) if base_dir is not None else TEMP_DIR
    return base / uuid.uuid4().hex


def remove_work_dir(work_dir: str | Path | None) -> None:
    """Remove an ephemeral directory (best-effort, never raises)."""
    if work_dir is None:
        return
    try:
        shutil.rmtree(work_dir, ignore_errors=False)
        logger.debug("Removed work dir %s", work_dir)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove work dir %s: %s", work_dir, e)


def cleanup_orphan_work_dirs(base_dir: str | Path | None = None) -> int:
    """Remove every ephemeral directory left under the base directory.

    Only called at process start, when no run can own a work dir yet.

    Returns:
        Number of directories removed.
    """
    base = Path(base_dir) if base_dir is not None else TEMP_DIR
    if not base.exists():
        return 0
    removed = 0
    for child in base.iterdir():
        if child.is_dir():
            remove_work_dir(child)
            if not child.exists():
                removed += 1
    return removed
