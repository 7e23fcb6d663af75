"""Consultflow - Chunk Retrieval Worker.

Downloads a session's recorded chunks into a fresh ephemeral directory.

Stage: downloading
Input: RecordingSession storage location + expected chunk count
Output: {TEMP_DIR}/{uuid}/<chunk names>, in ascending lexical name order

The merged audio (full.wav) left under the same prefix by an earlier
attempt is never treated as a chunk.

Error codes:
- NO_CHUNKS: nothing but the merged audio (or nothing at all) under the prefix
- STORAGE_ERROR: listing or download failed
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from consultflow.config import MERGED_AUDIO_FILENAME
from consultflow.errors import PipelineErrorCode, StageError
from consultflow.utils.paths import new_work_dir, remove_work_dir

logger = logging.getLogger(__name__)

# Log download progress every N chunks
PROGRESS_EVERY = 10


@dataclass
class DownloadResult:
    """Result of chunk retrieval."""

    chunk_paths: list[Path]
    temp_dir: Path
    total_bytes: int = 0
    warnings: list[str] = field(default_factory=list)


def download_chunks(
    storage,
    bucket: str,
    prefix: str,
    expected_count: int,
    base_dir: str | Path | None = None,
) -> DownloadResult:
    """Download every chunk under `prefix` into a new ephemeral directory.

    A count mismatch against `expected_count` is logged and tolerated; the
    chunks that exist are used. On failure the ephemeral directory is removed
    before the error propagates.

    Args:
        storage: Object storage client (list_objects / download).
        bucket: Bucket name.
        prefix: Storage prefix holding the chunks.
        expected_count: Chunk count recorded on the session.
        base_dir: Optional parent for the ephemeral directory (default TEMP_DIR).

    Returns:
        DownloadResult with local chunk paths in listing order.

    Raises:
        StageError: If no chunks are found.
        StorageError: If listing or downloading fails.
    """
    temp_dir = new_work_dir(base_dir)
    logger.info(
        "Downloading chunks: bucket=%s, prefix=%s, expected=%d, temp_dir=%s",
        bucket, prefix, expected_count, temp_dir
    )
    temp_dir.mkdir(parents=True, exist_ok=True)

    try:
        objects = storage.list_objects(bucket, prefix)
        chunks = [o for o in objects if o.name != MERGED_AUDIO_FILENAME]
        logger.info("Found %d objects under %s, %d are chunks", len(objects), prefix, len(chunks))

        warnings = []
        if len(chunks) != expected_count:
            message = f"Chunk count mismatch: expected {expected_count}, found {len(chunks)}"
            logger.warning(message)
            warnings.append(message)

        if not chunks:
            raise StageError(
                PipelineErrorCode.NO_CHUNKS,
                f"No audio chunks found in {bucket}/{prefix}",
            )

        started = time.monotonic()
        chunk_paths = []
        total_bytes = 0
        for i, obj in enumerate(chunks, start=1):
            local_path = temp_dir / Path(obj.name).name
            total_bytes += storage.download(bucket, obj.key, local_path)
            chunk_paths.append(local_path)
            if i % PROGRESS_EVERY == 0 or i == len(chunks):
                logger.info(
                    "Download progress: %d/%d chunks (%.1f MB)",
                    i, len(chunks), total_bytes / 1024 / 1024
                )
    except Exception:
        remove_work_dir(temp_dir)
        raise

    logger.info(
        "Download complete: %d chunks, %d bytes in %dms",
        len(chunk_paths), total_bytes, int((time.monotonic() - started) * 1000)
    )
    return DownloadResult(
        chunk_paths=chunk_paths,
        temp_dir=temp_dir,
        total_bytes=total_bytes,
        warnings=warnings,
    )
