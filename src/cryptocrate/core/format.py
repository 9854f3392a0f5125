"""Container codec: fixed header plus metadata record.

Header layout (binary, all little-endian):
- 4 bytes: magic b'CRAT'
- 1 byte: version (1)
- 1 byte: alg_id (1 = AES-256-GCM)
- 32 bytes: Argon2id salt
- 12 bytes: base nonce for chunk nonce derivation
- 4 bytes: metadata_length (unsigned)
- N bytes: metadata record (see :mod:`cryptocrate.core.metadata`)

Body: chunk stream, each chunk being ciphertext || 16-byte GCM tag.

The codec does no cryptography; it only frames and validates bytes.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Tuple

from .exceptions import (
    BadMagic,
    MalformedMetadata,
    TruncatedInput,
    UnsupportedAlgorithm,
    UnsupportedVersion,
)
from .metadata import Metadata

MAGIC = b"CRAT"
VERSION = 1
ALG_ID_AESGCM = 1

SALT_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16

MAX_METADATA_LENGTH = 1024 * 1024

ALGORITHM_NAMES = {ALG_ID_AESGCM: "AES-256-GCM"}

_FIXED = struct.Struct("<4sBB32s12sI")
HEADER_SIZE = _FIXED.size  # 54


@dataclass(frozen=True)
class Header:
    salt: bytes
    base_nonce: bytes
    metadata_length: int = 0
    version: int = VERSION
    algorithm_id: int = ALG_ID_AESGCM

    @property
    def algorithm_name(self) -> str:
        return ALGORITHM_NAMES.get(self.algorithm_id, "Unknown")

    def pack(self) -> bytes:
        if len(self.salt) != SALT_LENGTH:
            raise ValueError(f"salt must be {SALT_LENGTH} bytes")
        if len(self.base_nonce) != NONCE_LENGTH:
            raise ValueError(f"base_nonce must be {NONCE_LENGTH} bytes")
        return _FIXED.pack(
            MAGIC,
            self.version,
            self.algorithm_id,
            self.salt,
            self.base_nonce,
            self.metadata_length,
        )


def read_upto(inp: BinaryIO, n: int) -> bytes:
    """Read until ``n`` bytes or EOF; pipes and sockets may return short reads."""
    buf = bytearray()
    while len(buf) < n:
        part = inp.read(n - len(buf))
        if not part:
            break
        buf += part
    return bytes(buf)


def _read_exact(inp: BinaryIO, n: int, what: str) -> bytes:
    data = read_upto(inp, n)
    if len(data) != n:
        raise TruncatedInput(f"truncated {what}: expected {n} bytes, got {len(data)}")
    return data


def write_header(out: BinaryIO, header: Header, metadata: Metadata) -> int:
    """
    Serialize ``header`` and ``metadata`` to ``out``.

    ``header.metadata_length`` is recomputed from the encoded metadata so the
    two can never disagree. Returns the number of bytes written.
    """
    meta = metadata.to_bytes()
    if len(meta) > MAX_METADATA_LENGTH:
        raise MalformedMetadata(f"metadata record is {len(meta)} bytes, limit is {MAX_METADATA_LENGTH}")
    fixed = Header(
        salt=header.salt,
        base_nonce=header.base_nonce,
        metadata_length=len(meta),
        version=header.version,
        algorithm_id=header.algorithm_id,
    ).pack()
    out.write(fixed)
    out.write(meta)
    return len(fixed) + len(meta)


def read_header(inp: BinaryIO) -> Tuple[Header, Metadata]:
    """
    Parse and structurally validate a container header from ``inp``.

    On return ``inp`` is positioned at the first chunk.
    """
    magic = read_upto(inp, len(MAGIC))
    if magic != MAGIC:
        if len(magic) < len(MAGIC) and MAGIC.startswith(magic):
            raise TruncatedInput("truncated magic")
        raise BadMagic("not a CryptoCrate container (magic mismatch)")

    version = _read_exact(inp, 1, "version")[0]
    if version != VERSION:
        raise UnsupportedVersion(f"unsupported container version {version}", version)

    alg = _read_exact(inp, 1, "algorithm id")[0]
    if alg != ALG_ID_AESGCM:
        raise UnsupportedAlgorithm(f"unsupported algorithm id {alg}", version)

    salt = _read_exact(inp, SALT_LENGTH, "salt")
    base_nonce = _read_exact(inp, NONCE_LENGTH, "nonce")
    (metadata_length,) = struct.unpack("<I", _read_exact(inp, 4, "metadata length"))
    if metadata_length > MAX_METADATA_LENGTH:
        raise MalformedMetadata(
            f"metadata length {metadata_length} exceeds limit of {MAX_METADATA_LENGTH} bytes"
        )

    metadata = Metadata.from_bytes(_read_exact(inp, metadata_length, "metadata"))
    header = Header(
        salt=salt,
        base_nonce=base_nonce,
        metadata_length=metadata_length,
        version=version,
        algorithm_id=alg,
    )
    return header, metadata
