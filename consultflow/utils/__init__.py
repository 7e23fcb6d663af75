"""Consultflow - Utility modules."""

from consultflow.utils.failpoints import FaultPlan, check_fault
from consultflow.utils.paths import (
    cleanup_orphan_work_dirs,
    merged_audio_key,
    new_work_dir,
    object_key,
    remove_work_dir,
)

__all__ = [
    # failpoints
    "FaultPlan",
    "check_fault",
    # paths
    "object_key",
    "merged_audio_key",
    "new_work_dir",
    "remove_work_dir",
    "cleanup_orphan_work_dirs",
]
