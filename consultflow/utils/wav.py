"""Consultflow - PCM WAV header helpers.

Chunks recorded by the client are canonical 44-byte-header PCM WAV files:

    0   "RIFF"
    4   uint32 LE  RIFF chunk size (file size - 8)
    8   "WAVE"
    12  "fmt " sub-chunk (channels @22, sample rate @24, bits/sample @34)
    36  "data"
    40  uint32 LE  data size (payload bytes)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from consultflow.config import WAV_HEADER_SIZE

RIFF_TAG = b"RIFF"
WAVE_TAG = b"WAVE"
DATA_TAG = b"data"

RIFF_SIZE_OFFSET = 4
DATA_TAG_OFFSET = 36
DATA_SIZE_OFFSET = 40


@dataclass(frozen=True)
class WavFormat:
    """Format fields read from a canonical header (for logging)."""

    channels: int
    sample_rate: int
    bits_per_sample: int


def is_riff_wave(header: bytes) -> bool:
    """True if the header carries RIFF at offset 0 and WAVE at offset 8."""
    return (
        len(header) >= WAV_HEADER_SIZE
        and header[0:4] == RIFF_TAG
        and header[8:12] == WAVE_TAG
    )


def has_data_tag_at_canonical_offset(header: bytes) -> bool:
    return header[DATA_TAG_OFFSET : DATA_TAG_OFFSET + 4] == DATA_TAG


def read_format(header: bytes) -> WavFormat:
    channels = struct.unpack_from("<H", header, 22)[0]
    sample_rate = struct.unpack_from("<I", header, 24)[0]
    bits_per_sample = struct.unpack_from("<H", header, 34)[0]
    return WavFormat(channels, sample_rate, bits_per_sample)


def rewrite_sizes(header: bytes, payload_size: int) -> bytes:
    """Return a copy of a 44-byte header with size fields set for `payload_size`.

    RIFF size = payload + (header - 8); data size = payload.
    """
    new_header = bytearray(header[:WAV_HEADER_SIZE])
    struct.pack_into("<I", new_header, RIFF_SIZE_OFFSET, payload_size + WAV_HEADER_SIZE - 8)
    struct.pack_into("<I", new_header, DATA_SIZE_OFFSET, payload_size)
    return bytes(new_header)


def read_data_size(header: bytes) -> int:
    return struct.unpack_from("<I", header, DATA_SIZE_OFFSET)[0]


def read_riff_size(header: bytes) -> int:
    return struct.unpack_from("<I", header, RIFF_SIZE_OFFSET)[0]
