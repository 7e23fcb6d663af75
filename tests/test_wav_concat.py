"""Tests for WAV header helpers and chunk concatenation."""

import struct

import pytest

from consultflow.config import WAV_HEADER_SIZE
from consultflow.errors import PipelineErrorCode, StageError
from consultflow.utils.wav import (
    has_data_tag_at_canonical_offset,
    is_riff_wave,
    read_data_size,
    read_format,
    read_riff_size,
    rewrite_sizes,
)
from services.worker_concatenate.run import concatenate_wav_chunks, merged_output_path


class TestWavHeader:
    """Tests for the 44-byte header helpers."""

    def test_canonical_header_is_recognized(self, wav_chunk_factory):
        """A wave-module file should be RIFF/WAVE with 'data' at offset 36."""
        header = wav_chunk_factory("a.wav", 100).read_bytes()[:WAV_HEADER_SIZE]

        assert is_riff_wave(header)
        assert has_data_tag_at_canonical_offset(header)

    def test_read_format(self, wav_chunk_factory):
        """Should read channels, sample rate and bit depth from the fmt chunk."""
        header = wav_chunk_factory("a.wav", 100).read_bytes()[:WAV_HEADER_SIZE]

        fmt = read_format(header)

        assert fmt.channels == 1
        assert fmt.sample_rate == 16000
        assert fmt.bits_per_sample == 16

    def test_rewrite_sizes(self, wav_chunk_factory):
        """RIFF size should be payload + 36 and data size should be payload."""
        header = wav_chunk_factory("a.wav", 100).read_bytes()[:WAV_HEADER_SIZE]

        rewritten = rewrite_sizes(header, 5000)

        assert len(rewritten) == WAV_HEADER_SIZE
        assert read_riff_size(rewritten) == 5036
        assert read_data_size(rewritten) == 5000
        assert struct.unpack_from("<I", rewritten, 40)[0] == 5000
        # Everything else is untouched
        assert rewritten[8:40] == header[8:40]

    def test_non_wav_rejected(self):
        """Arbitrary bytes should not pass the RIFF/WAVE check."""
        assert not is_riff_wave(b"ID3\x04" + b"\x00" * 40)


class TestConcatenation:
    """Tests for concatenate_wav_chunks."""

    def test_three_chunks_payload_and_file_size(self, wav_chunk_factory, tmp_path):
        """{1000, 1000, 1000} payloads should merge into 3000 payload / 3044 file."""
        chunks = [wav_chunk_factory(f"{i:03d}.wav", 1000) for i in range(3)]
        out = merged_output_path(tmp_path / "out")

        result = concatenate_wav_chunks(chunks, out)

        assert result.payload_size == 3000
        assert result.file_size == 3044
        assert result.chunks_used == 3
        assert out.stat().st_size == 3044

        data = out.read_bytes()
        assert read_data_size(data[:WAV_HEADER_SIZE]) == 3000
        assert read_riff_size(data[:WAV_HEADER_SIZE]) == 3036

    def test_payloads_written_in_input_order(self, wav_chunk_factory, tmp_path):
        """Each chunk's payload should follow the previous one, headers stripped."""
        chunks = [wav_chunk_factory("b.wav", 200), wav_chunk_factory("a.wav", 400)]
        out = tmp_path / "full.wav"

        concatenate_wav_chunks(chunks, out)

        expected = b"".join(c.read_bytes()[WAV_HEADER_SIZE:] for c in chunks)
        assert out.read_bytes()[WAV_HEADER_SIZE:] == expected

    def test_single_chunk_copied_byte_for_byte(self, wav_chunk_factory, tmp_path):
        """A single chunk should be copied without touching its header."""
        chunk = wav_chunk_factory("000.wav", 778)
        # Corrupt the size fields; a copy must keep them as-is
        raw = bytearray(chunk.read_bytes())
        raw[40:44] = b"\xff\xff\xff\xff"
        chunk.write_bytes(bytes(raw))
        out = tmp_path / "full.wav"

        result = concatenate_wav_chunks([chunk], out)

        assert out.read_bytes() == bytes(raw)
        assert result.chunks_used == 1

    def test_empty_input_rejected(self, tmp_path):
        """No chunks at all should raise."""
        with pytest.raises(StageError) as exc_info:
            concatenate_wav_chunks([], tmp_path / "full.wav")

        assert exc_info.value.error_code == PipelineErrorCode.INVALID_WAV

    def test_invalid_first_header_rejected(self, wav_chunk_factory, tmp_path):
        """A first chunk without RIFF/WAVE markers should raise INVALID_WAV."""
        bad = tmp_path / "chunks" / "000.wav"
        bad.write_bytes(b"NOTAWAVEFILE" + b"\x00" * 100)
        good = wav_chunk_factory("001.wav", 100)

        with pytest.raises(StageError) as exc_info:
            concatenate_wav_chunks([bad, good], tmp_path / "full.wav")

        assert exc_info.value.error_code == PipelineErrorCode.INVALID_WAV
        assert "Invalid WAV header" in exc_info.value.message

    def test_first_chunk_too_small_rejected(self, wav_chunk_factory, tmp_path):
        """A first chunk shorter than the header should raise."""
        tiny = tmp_path / "chunks" / "000.wav"
        tiny.write_bytes(b"RIFF")
        good = wav_chunk_factory("001.wav", 100)

        with pytest.raises(StageError, match="too small"):
            concatenate_wav_chunks([tiny, good], tmp_path / "full.wav")

    def test_small_later_chunk_skipped(self, wav_chunk_factory, tmp_path, caplog):
        """A later chunk smaller than the header should be skipped with a warning."""
        first = wav_chunk_factory("000.wav", 500)
        tiny = tmp_path / "chunks" / "001.wav"
        tiny.write_bytes(b"\x00" * 10)
        last = wav_chunk_factory("002.wav", 300)

        with caplog.at_level("WARNING"):
            result = concatenate_wav_chunks([first, tiny, last], tmp_path / "full.wav")

        assert result.payload_size == 800
        assert result.file_size == 844
        assert result.chunks_used == 2
        assert "smaller than header" in caplog.text

    def test_header_only_chunk_contributes_zero(self, wav_chunk_factory, tmp_path):
        """A chunk of exactly 44 bytes is valid and adds no payload."""
        first = wav_chunk_factory("000.wav", 600)
        empty = wav_chunk_factory("001.wav", 0)

        result = concatenate_wav_chunks([first, empty], tmp_path / "full.wav")

        assert empty.stat().st_size == WAV_HEADER_SIZE
        assert result.payload_size == 600
        assert result.chunks_used == 2

    def test_written_header_is_checked_against_file(self, wav_chunk_factory, tmp_path, monkeypatch):
        """A header whose size fields disagree with the merged file is rejected."""
        from services.worker_concatenate import run

        chunks = [wav_chunk_factory("000.wav", 400), wav_chunk_factory("001.wav", 400)]
        monkeypatch.setattr(
            run, "rewrite_sizes", lambda header, payload_size: rewrite_sizes(header, payload_size - 2)
        )

        with pytest.raises(StageError) as exc_info:
            concatenate_wav_chunks(chunks, tmp_path / "full.wav")

        assert exc_info.value.error_code == PipelineErrorCode.INVALID_WAV
        assert "data=798 (expected 800)" in exc_info.value.message

    def test_chunk_growing_during_write_is_rejected(self, wav_chunk_factory, tmp_path, monkeypatch):
        """Bytes appended to a chunk after sizing make the header disagree with the file."""
        from services.worker_concatenate import run

        first = wav_chunk_factory("000.wav", 400)
        second = wav_chunk_factory("001.wav", 400)
        real_check = run.has_data_tag_at_canonical_offset

        def check_then_grow(header):
            with open(second, "ab") as f:
                f.write(b"\x00" * 16)
            return real_check(header)

        monkeypatch.setattr(run, "has_data_tag_at_canonical_offset", check_then_grow)

        with pytest.raises(StageError, match="riff=836 \\(expected 852\\)"):
            concatenate_wav_chunks([first, second], tmp_path / "full.wav")
