""" Optional zstd filter applied to plaintext before encryption / after decryption. """

import io
from typing import Optional

import zstandard as zstd

from .exceptions import CompressionFailure

DEFAULT_COMPRESSION_LEVEL = 3
MIN_COMPRESSION_LEVEL = 1
MAX_COMPRESSION_LEVEL = 22

# ceiling for in-memory decryption of compressed containers (1 GiB)
MAX_DECOMPRESSED_SIZE = 1024 * 1024 * 1024


def validate_level(level: int) -> int:
    if isinstance(level, bool) or not isinstance(level, int):
        raise ValueError(f"compression level must be an integer, got {level!r}")
    if not MIN_COMPRESSION_LEVEL <= level <= MAX_COMPRESSION_LEVEL:
        raise ValueError(
            f"compression level must be between {MIN_COMPRESSION_LEVEL} and {MAX_COMPRESSION_LEVEL}"
        )
    return level


def compressing_reader(source, level: int = DEFAULT_COMPRESSION_LEVEL):
    """ Wrap ``source`` (bytes-like or readable stream) in a reader yielding zstd output. """
    validate_level(level)
    if isinstance(source, (bytes, bytearray, memoryview)):
        source = io.BytesIO(source)
    return zstd.ZstdCompressor(level=level).stream_reader(source)


class StreamDecompressor:
    """ Incremental zstd decompression with an optional output ceiling. """

    def __init__(self, max_output: Optional[int] = None):
        self._obj = zstd.ZstdDecompressor().decompressobj()
        self._max_output = max_output
        self.total_out = 0
        self.total_in = 0

    def feed(self, data: bytes) -> bytes:
        self.total_in += len(data)
        try:
            out = self._obj.decompress(data)
        except zstd.ZstdError as e:
            raise CompressionFailure(f"decompression failed: {e}") from e
        self.total_out += len(out)
        if self._max_output is not None and self.total_out > self._max_output:
            raise CompressionFailure(
                f"decompressed data exceeds the limit of {self._max_output} bytes"
            )
        return out

    def finish(self) -> None:
        """ Fail if the input stopped before the end of the zstd frame. """
        if self.total_in and not self._obj.eof:
            raise CompressionFailure("compressed data ends before the end of the zstd frame")


def compression_ratio(original_size: int, compressed_size: int) -> float:
    """ Percentage saved by compression (0.0 when the original is empty). """
    if original_size == 0:
        return 0.0
    return (1.0 - (compressed_size / original_size)) * 100.0
