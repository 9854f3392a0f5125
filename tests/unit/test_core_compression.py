import io

import pytest
import zstandard as zstd

from cryptocrate.core.compression import (
    DEFAULT_COMPRESSION_LEVEL,
    StreamDecompressor,
    compressing_reader,
    compression_ratio,
    validate_level,
)
from cryptocrate.core.exceptions import CompressionFailure, ErrorKind


def _read_all(reader) -> bytes:
    out = bytearray()
    while True:
        block = reader.read(4096)
        if not block:
            break
        out += block
    return bytes(out)


@pytest.mark.parametrize("level", [1, DEFAULT_COMPRESSION_LEVEL, 22])
def test_valid_levels(level):
    assert validate_level(level) == level


@pytest.mark.parametrize("level", [0, 23, -1, True, "3", 2.5])
def test_invalid_levels(level):
    with pytest.raises(ValueError):
        validate_level(level)


def test_compressing_reader_output_is_zstd():
    data = b"repetitive text " * 5000
    compressed = _read_all(compressing_reader(data))
    assert len(compressed) < len(data)
    assert zstd.ZstdDecompressor().decompress(compressed, max_output_size=len(data)) == data


def test_compressing_reader_accepts_streams():
    data = b"0123456789" * 1000
    compressed = _read_all(compressing_reader(io.BytesIO(data), level=5))
    dec = StreamDecompressor()
    assert dec.feed(compressed) == data


def test_stream_decompressor_in_pieces():
    data = bytes(range(256)) * 400
    compressed = _read_all(compressing_reader(data))
    dec = StreamDecompressor()
    out = b"".join(dec.feed(compressed[i:i + 100]) for i in range(0, len(compressed), 100))
    assert out == data
    assert dec.total_out == len(data)


def test_garbage_input_fails():
    with pytest.raises(CompressionFailure) as exc:
        StreamDecompressor().feed(b"definitely not zstd data")
    assert exc.value.kind is ErrorKind.COMPRESSION_FAILURE


def test_output_ceiling():
    compressed = _read_all(compressing_reader(b"\x00" * 100000))
    with pytest.raises(CompressionFailure, match="exceeds"):
        StreamDecompressor(max_output=1000).feed(compressed)


def test_compression_ratio():
    assert compression_ratio(0, 10) == 0.0
    assert compression_ratio(1000, 250) == pytest.approx(75.0)


def test_finish_accepts_complete_frame():
    compressed = _read_all(compressing_reader(b"complete" * 100))
    dec = StreamDecompressor()
    dec.feed(compressed)
    dec.finish()


def test_finish_rejects_partial_frame():
    compressed = zstd.ZstdCompressor().compress(bytes(range(256)) * 64)
    dec = StreamDecompressor()
    dec.feed(compressed[: len(compressed) // 2])
    with pytest.raises(CompressionFailure):
        dec.finish()


def test_finish_without_input():
    StreamDecompressor().finish()
