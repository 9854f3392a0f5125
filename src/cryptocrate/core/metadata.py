import struct
from dataclasses import dataclass
from pathlib import Path

from .exceptions import IOFailure, MalformedMetadata, TruncatedInput

_FILENAME_LEN = struct.Struct("<H")
_TRAILER = struct.Struct("<Qq?")  # original_size, modified_time, compressed

MIN_METADATA_LENGTH = _FILENAME_LEN.size + _TRAILER.size  # 19
MAX_FILENAME_BYTES = 0xFFFF


@dataclass(frozen=True)
class Metadata:
    """ File properties stored (unencrypted) in the container header. """

    filename: str
    original_size: int
    modified_time: int = 0
    compressed: bool = False

    @classmethod
    def from_path(cls, path, compressed: bool = False) -> "Metadata":
        """ Build metadata from a file on disk (name, size, mtime). """
        path = Path(path)
        try:
            st = path.stat()
        except OSError as e:
            raise IOFailure(f"cannot stat {path}: {e.strerror or e}") from e
        return cls(
            filename=path.name or "unknown",
            original_size=st.st_size,
            modified_time=int(st.st_mtime),
            compressed=compressed,
        )

    def to_bytes(self) -> bytes:
        name = self.filename.encode("utf-8")
        if len(name) > MAX_FILENAME_BYTES:
            raise ValueError(f"filename is {len(name)} bytes long, limit is {MAX_FILENAME_BYTES}")
        if self.original_size < 0:
            raise ValueError("original_size must be non-negative")
        return (
            _FILENAME_LEN.pack(len(name))
            + name
            + _TRAILER.pack(self.original_size, self.modified_time, bool(self.compressed))
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Metadata":
        if len(data) < MIN_METADATA_LENGTH:
            raise TruncatedInput(
                f"metadata record is {len(data)} bytes, at least {MIN_METADATA_LENGTH} required"
            )

        (name_len,) = _FILENAME_LEN.unpack_from(data, 0)
        offset = _FILENAME_LEN.size
        if offset + name_len + _TRAILER.size > len(data):
            raise TruncatedInput("metadata filename length runs past the end of the record")
        if offset + name_len + _TRAILER.size < len(data):
            raise MalformedMetadata("unexpected trailing bytes in metadata record")

        # invalid UTF-8 is replaced rather than rejected so the header can still be inspected
        filename = data[offset:offset + name_len].decode("utf-8", errors="replace")
        offset += name_len

        original_size, modified_time, compressed = _TRAILER.unpack_from(data, offset)
        return cls(
            filename=filename,
            original_size=original_size,
            modified_time=modified_time,
            compressed=compressed,
        )
