"""Consultflow - Storage cleanup for finalized sessions.

Deletes the original chunk objects once a job has produced its documents.
The merged audio is retained. Failures are reported to the caller, which
treats this step as best-effort.
"""

from __future__ import annotations

import logging

from consultflow.config import MERGED_AUDIO_FILENAME

logger = logging.getLogger(__name__)


def delete_session_chunks(storage, bucket: str, prefix: str) -> int:
    """Delete every object under `prefix` except the merged audio.

    Returns:
        Number of objects deleted.

    Raises:
        StorageError: If listing or deletion fails.
    """
    objects = storage.list_objects(bucket, prefix)
    keys = [o.key for o in objects if o.name != MERGED_AUDIO_FILENAME]

    if not keys:
        logger.info("No chunks to delete under %s/%s", bucket, prefix)
        return 0

    logger.info(
        "Deleting %d chunk objects under %s/%s (keeping %s)",
        len(keys), bucket, prefix, MERGED_AUDIO_FILENAME
    )
    storage.delete(bucket, keys)
    return len(keys)
