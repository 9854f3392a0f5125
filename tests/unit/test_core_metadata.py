import os
import struct

import pytest

from cryptocrate.core.exceptions import IOFailure, MalformedMetadata, TruncatedInput
from cryptocrate.core.metadata import MIN_METADATA_LENGTH, Metadata


def test_encoding_layout():
    meta = Metadata(filename="a.txt", original_size=5, modified_time=-1, compressed=True)
    data = meta.to_bytes()
    assert data == struct.pack("<H", 5) + b"a.txt" + struct.pack("<Qq?", 5, -1, True)
    assert len(data) == MIN_METADATA_LENGTH + 5


def test_roundtrip_unicode_filename():
    meta = Metadata(filename="résumé 📄.txt", original_size=42, modified_time=1700000000)
    assert Metadata.from_bytes(meta.to_bytes()) == meta


def test_empty_filename_allowed():
    meta = Metadata(filename="", original_size=0)
    assert Metadata.from_bytes(meta.to_bytes()) == meta


def test_filename_too_long():
    with pytest.raises(ValueError):
        Metadata(filename="x" * 70000, original_size=1).to_bytes()


def test_negative_size_rejected():
    with pytest.raises(ValueError):
        Metadata(filename="x", original_size=-1).to_bytes()


def test_record_shorter_than_minimum():
    with pytest.raises(TruncatedInput):
        Metadata.from_bytes(b"\x00" * (MIN_METADATA_LENGTH - 1))


def test_filename_length_past_end():
    data = struct.pack("<H", 100) + b"short" + struct.pack("<Qq?", 1, 0, False)
    with pytest.raises(TruncatedInput):
        Metadata.from_bytes(data)


def test_trailing_bytes():
    data = Metadata(filename="f", original_size=1).to_bytes() + b"junk"
    with pytest.raises(MalformedMetadata):
        Metadata.from_bytes(data)


def test_invalid_utf8_is_replaced():
    data = struct.pack("<H", 2) + b"\xff\xfe" + struct.pack("<Qq?", 1, 0, False)
    meta = Metadata.from_bytes(data)
    assert "�" in meta.filename


def test_from_path(tmp_path):
    path = tmp_path / "notes.md"
    path.write_bytes(b"hello world")
    os.utime(path, (1600000000, 1600000000))
    meta = Metadata.from_path(path, compressed=True)
    assert meta.filename == "notes.md"
    assert meta.original_size == 11
    assert meta.modified_time == 1600000000
    assert meta.compressed is True


def test_from_path_missing(tmp_path):
    with pytest.raises(IOFailure):
        Metadata.from_path(tmp_path / "nope.bin")
