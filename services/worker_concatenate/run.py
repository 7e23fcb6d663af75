"""Consultflow - Audio Concatenation Worker.

Merges ordered PCM WAV chunks into one WAV file by binary concatenation.

Stage: concatenating
Input: local chunk paths, in listing order
Output: {temp_dir}/full.wav

Every chunk is a canonical 44-byte-header PCM WAV with the same format. The
merged file reuses the first chunk's header with corrected RIFF and data
sizes, followed by each chunk's payload (header stripped) in input order.
No decoding, no resampling.

A single chunk is copied byte-for-byte without rewriting its header.

Error codes:
- INVALID_WAV: first chunk is not RIFF/WAVE, or no chunk carries a header
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from consultflow.config import MERGED_AUDIO_FILENAME, WAV_HEADER_SIZE
from consultflow.errors import PipelineErrorCode, StageError
from consultflow.utils.wav import (
    has_data_tag_at_canonical_offset,
    is_riff_wave,
    read_data_size,
    read_format,
    read_riff_size,
    rewrite_sizes,
)

logger = logging.getLogger(__name__)

# Log write progress every N chunks
PROGRESS_EVERY = 20

# Streaming buffer for payload copies
COPY_BUFFER_SIZE = 1024 * 1024


@dataclass
class ConcatResult:
    """Result of concatenation."""

    output_path: Path
    payload_size: int
    file_size: int
    chunks_used: int


def concatenate_wav_chunks(chunk_paths: list[Path], output_path: Path) -> ConcatResult:
    """Concatenate PCM WAV chunks into `output_path`.

    Args:
        chunk_paths: Local chunk files in the order they must be played.
        output_path: Destination file (overwritten).

    Returns:
        ConcatResult with sizes of the merged file.

    Raises:
        StageError: If there is nothing to concatenate or the first chunk is
            not a valid RIFF/WAVE file, or if the written header does not
            match the merged file.
    """
    if not chunk_paths:
        raise StageError(PipelineErrorCode.INVALID_WAV, "No chunks to concatenate")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if len(chunk_paths) == 1:
        shutil.copyfile(chunk_paths[0], output_path)
        file_size = output_path.stat().st_size
        logger.info("Single chunk copied directly (%d bytes)", file_size)
        return ConcatResult(
            output_path=output_path,
            payload_size=max(file_size - WAV_HEADER_SIZE, 0),
            file_size=file_size,
            chunks_used=1,
        )

    with open(chunk_paths[0], "rb") as f:
        first_header = f.read(WAV_HEADER_SIZE)

    if len(first_header) < WAV_HEADER_SIZE:
        raise StageError(
            PipelineErrorCode.INVALID_WAV,
            f"First chunk is too small ({len(first_header)} bytes), "
            f"expected at least {WAV_HEADER_SIZE} bytes",
        )
    if not is_riff_wave(first_header):
        raise StageError(
            PipelineErrorCode.INVALID_WAV,
            f"Invalid WAV header: RIFF={first_header[0:4]!r}, WAVE={first_header[8:12]!r}",
        )

    fmt = read_format(first_header)
    logger.info(
        "Audio format: channels=%d, sample_rate=%d, bits_per_sample=%d",
        fmt.channels, fmt.sample_rate, fmt.bits_per_sample
    )

    # Pass 1: total payload size, skipping chunks that cannot hold a header
    usable: list[Path] = []
    payload_size = 0
    for path in chunk_paths:
        size = Path(path).stat().st_size
        if size < WAV_HEADER_SIZE:
            logger.warning("Chunk %s is smaller than header (%d bytes), skipping", path, size)
            continue
        usable.append(Path(path))
        payload_size += size - WAV_HEADER_SIZE

    if not usable:
        raise StageError(
            PipelineErrorCode.INVALID_WAV,
            "No valid audio chunks: all chunks are smaller than the WAV header",
        )

    if not has_data_tag_at_canonical_offset(first_header):
        logger.warning(
            "Expected 'data' sub-chunk at offset 36, found %r; header may be incorrect",
            first_header[36:40],
        )

    header = rewrite_sizes(first_header, payload_size)

    # Pass 2: header once, then every payload in order
    with open(output_path, "wb") as out:
        out.write(header)
        write_offset = WAV_HEADER_SIZE
        for i, path in enumerate(usable, start=1):
            with open(path, "rb") as chunk:
                chunk.seek(WAV_HEADER_SIZE)
                while True:
                    buf = chunk.read(COPY_BUFFER_SIZE)
                    if not buf:
                        break
                    out.write(buf)
                    write_offset += len(buf)
            if i % PROGRESS_EVERY == 0 or i == len(usable):
                logger.info(
                    "Write progress: %d/%d chunks (%.1f MB written)",
                    i, len(usable), write_offset / 1024 / 1024
                )

    file_size = output_path.stat().st_size
    _verify_merged_header(output_path, payload_size, file_size)
    logger.info(
        "Concatenation complete: %s (%d bytes, payload %d, %d chunks)",
        output_path, file_size, payload_size, len(usable)
    )
    return ConcatResult(
        output_path=output_path,
        payload_size=payload_size,
        file_size=file_size,
        chunks_used=len(usable),
    )


def _verify_merged_header(output_path: Path, payload_size: int, file_size: int) -> None:
    """Re-read the written header and check its size fields against the file."""
    with open(output_path, "rb") as f:
        header = f.read(WAV_HEADER_SIZE)

    data_size = read_data_size(header)
    riff_size = read_riff_size(header)
    if data_size != payload_size or riff_size != file_size - 8:
        raise StageError(
            PipelineErrorCode.INVALID_WAV,
            f"Merged WAV header mismatch: data={data_size} (expected {payload_size}), "
            f"riff={riff_size} (expected {file_size - 8})",
        )


def merged_output_path(temp_dir: Path) -> Path:
    """Local path of the merged file inside a run's ephemeral directory."""
    return Path(temp_dir) / MERGED_AUDIO_FILENAME
