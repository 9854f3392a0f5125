"""Chunked AEAD (AES-256-GCM) engine for CryptoCrate containers.

Plaintext is cut into fixed-size chunks (1 MiB; the last one may be shorter).
Chunk ``i`` is sealed with

- nonce = base_nonce[:8] || uint32_be(i)
- associated data = b'CRAT' || uint32_be(i) || uint8(is_final)

so each tag binds the chunk to its position and to whether it ends the
stream. Dropping, duplicating or reordering chunks, or cutting the stream
short, makes authentication fail.

On the wire a chunk is ``ciphertext || tag`` with no length prefix; every
chunk except the last carries exactly ``chunk_size`` bytes of ciphertext,
which is how the reader finds the boundaries.
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Iterable, Iterator, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cryptocrate.core.exceptions import AuthenticationFailure
from cryptocrate.core.format import MAGIC, NONCE_LENGTH, TAG_LENGTH, read_upto
from .kdf import KEY_LENGTH, KeyMaterial

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024
# Inputs below this size are read into memory in one go; the chunking is unchanged.
STREAMING_THRESHOLD = 100 * 1024 * 1024
MAX_CHUNKS = 2 ** 32

KeyLike = Union[KeyMaterial, bytes, bytearray]
PlaintextSource = Union[bytes, bytearray, memoryview, BinaryIO]


class StreamState(Enum):
    READY = "ready"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass(frozen=True)
class Chunk:
    index: int
    ciphertext: bytes
    tag: bytes

    def to_bytes(self) -> bytes:
        return self.ciphertext + self.tag


def chunk_nonce(base_nonce: bytes, index: int) -> bytes:
    return bytes(base_nonce[: NONCE_LENGTH - 4]) + index.to_bytes(4, "big")


def chunk_associated_data(index: int, final: bool) -> bytes:
    return MAGIC + struct.pack(">IB", index, 1 if final else 0)


def _raw_key(key: KeyLike):
    raw = key.key if isinstance(key, KeyMaterial) else key
    if len(raw) != KEY_LENGTH:
        raise ValueError(f"key must be {KEY_LENGTH} bytes")
    return raw


class _ChunkCipher:
    """
    Shared state machine for sealing/opening a chunk sequence.

    READY -> STREAMING(index) -> FINALIZED, with FAILED reachable from any
    state. The index only ever advances by one, and FINALIZED is entered
    only through a chunk explicitly flagged as final; running out of input
    is never taken as the end of the stream.
    """

    def __init__(self, key: KeyLike, base_nonce: bytes):
        if len(base_nonce) != NONCE_LENGTH:
            raise ValueError(f"base_nonce must be {NONCE_LENGTH} bytes")
        self._aead = AESGCM(_raw_key(key))
        self._base_nonce = bytes(base_nonce)
        self.state = StreamState.READY
        self.next_index = 0

    @property
    def chunks_processed(self) -> int:
        return self.next_index

    def _advance(self, final: bool) -> None:
        self.next_index += 1
        self.state = StreamState.FINALIZED if final else StreamState.STREAMING


class ChunkEncryptor(_ChunkCipher):
    def seal(self, plaintext: bytes, final: bool) -> Chunk:
        if self.state in (StreamState.FINALIZED, StreamState.FAILED):
            raise RuntimeError(f"cannot seal a chunk in state {self.state.value}")
        index = self.next_index
        if index >= MAX_CHUNKS:
            self.state = StreamState.FAILED
            raise ValueError("input exceeds the maximum number of chunks for one container")

        sealed = self._aead.encrypt(
            chunk_nonce(self._base_nonce, index),
            bytes(plaintext),
            chunk_associated_data(index, final),
        )
        self._advance(final)
        return Chunk(index=index, ciphertext=sealed[:-TAG_LENGTH], tag=sealed[-TAG_LENGTH:])

    def finish(self) -> None:
        if self.state is not StreamState.FINALIZED:
            self.state = StreamState.FAILED
            raise RuntimeError("chunk stream ended without a final chunk")


class ChunkDecryptor(_ChunkCipher):
    def _fail(self) -> AuthenticationFailure:
        self.state = StreamState.FAILED
        return AuthenticationFailure()

    def open(self, chunk: Chunk, final: bool) -> bytes:
        # Every rejection below raises the same error so callers cannot tell
        # an ordering violation from a bad tag or a wrong key.
        if self.state in (StreamState.FINALIZED, StreamState.FAILED):
            raise self._fail()
        if chunk.index != self.next_index or chunk.index >= MAX_CHUNKS:
            raise self._fail()
        if len(chunk.tag) != TAG_LENGTH:
            raise self._fail()

        try:
            plaintext = self._aead.decrypt(
                chunk_nonce(self._base_nonce, chunk.index),
                chunk.ciphertext + chunk.tag,
                chunk_associated_data(chunk.index, final),
            )
        except InvalidTag:
            raise self._fail() from None
        self._advance(final)
        return plaintext

    def finish(self) -> None:
        if self.state is not StreamState.FINALIZED:
            raise self._fail()


def iter_buffer_blocks(data, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Tuple[bytes, bool]]:
    """Slice an in-memory plaintext into ``(block, is_final)`` pairs."""
    view = memoryview(data)
    if len(view) == 0:
        yield b"", True
        return
    for start in range(0, len(view), chunk_size):
        end = start + chunk_size
        yield view[start:end], end >= len(view)


def iter_source_blocks(source: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Tuple[bytes, bool]]:
    """Read ``(block, is_final)`` pairs from a stream, one block of look-ahead."""
    current = read_upto(source, chunk_size)
    while True:
        nxt = read_upto(source, chunk_size) if len(current) == chunk_size else b""
        final = not nxt
        yield current, final
        if final:
            return
        current = nxt


def encrypt_stream(
    key: KeyLike,
    base_nonce: bytes,
    source: PlaintextSource,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[Chunk]:
    """Yield sealed chunks for ``source`` (bytes-like or a readable binary stream)."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if isinstance(source, (bytes, bytearray, memoryview)):
        blocks = iter_buffer_blocks(source, chunk_size)
    else:
        blocks = iter_source_blocks(source, chunk_size)

    encryptor = ChunkEncryptor(key, base_nonce)
    for block, final in blocks:
        yield encryptor.seal(block, final)
    encryptor.finish()
    logger.debug("sealed %d chunk(s)", encryptor.chunks_processed)


def read_chunks(inp: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Chunk]:
    """Split a container body into chunks, numbering them in stream order."""
    block_size = chunk_size + TAG_LENGTH
    index = 0
    while True:
        block = read_upto(inp, block_size)
        if not block:
            return
        if len(block) < TAG_LENGTH:
            raise AuthenticationFailure()
        yield Chunk(index=index, ciphertext=block[:-TAG_LENGTH], tag=block[-TAG_LENGTH:])
        index += 1
        if len(block) < block_size:
            return


def decrypt_stream(
    key: KeyLike,
    base_nonce: bytes,
    chunks: Iterable[Chunk],
) -> Iterator[bytes]:
    """
    Verify and decrypt ``chunks`` in order, yielding plaintext per chunk.

    The last chunk of the sequence is opened as the final one. Raises
    AuthenticationFailure on the first chunk that does not verify, and when
    the sequence is empty.
    """
    decryptor = ChunkDecryptor(key, base_nonce)
    it = iter(chunks)
    current = next(it, None)
    while current is not None:
        # look ahead one chunk (ciphertext only) to know whether this one is final
        nxt = next(it, None)
        yield decryptor.open(current, final=nxt is None)
        current = nxt
    decryptor.finish()
    logger.debug("verified %d chunk(s)", decryptor.chunks_processed)


def write_chunks(out: BinaryIO, chunks: Iterable[Chunk]) -> int:
    """Write chunks in wire format; returns the number of chunks written."""
    count = 0
    for chunk in chunks:
        out.write(chunk.ciphertext)
        out.write(chunk.tag)
        count += 1
    return count
