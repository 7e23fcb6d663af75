"""Consultflow - Audio Publication Worker.

Uploads the merged WAV to its canonical storage key.

Stage: uploading (runs while the job status is still "concatenating")
Input: local merged file
Output: {prefix}/full.wav in the session's bucket

The caller persists the returned key onto RecordingSession.full_audio_path
in its own commit, which turns it into a resume checkpoint.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from consultflow.config import MERGED_AUDIO_CONTENT_TYPE
from consultflow.utils.paths import merged_audio_key

logger = logging.getLogger(__name__)


def publish_merged_audio(storage, bucket: str, prefix: str, local_path: Path) -> str:
    """Upload the merged audio, overwriting any earlier upload.

    Args:
        storage: Object storage client.
        bucket: Bucket name.
        prefix: Session storage prefix.
        local_path: Merged WAV on local disk.

    Returns:
        The storage key the audio was published to.

    Raises:
        StorageError: If the upload fails.
    """
    key = merged_audio_key(prefix)
    size = Path(local_path).stat().st_size
    logger.info("Publishing merged audio: %s -> %s/%s (%d bytes)", local_path, bucket, key, size)

    started = time.monotonic()
    storage.upload(bucket, key, Path(local_path), MERGED_AUDIO_CONTENT_TYPE)

    logger.info(
        "Published %s/%s in %dms", bucket, key, int((time.monotonic() - started) * 1000)
    )
    return key
