"""
Container API for CryptoCrate.

This module wires the pieces together:

- :mod:`cryptocrate.security.kdf` derives the key from the user's secrets
- :mod:`cryptocrate.core.format` frames the header and metadata record
- :mod:`cryptocrate.security.crypto` seals/opens the chunk stream
- :mod:`cryptocrate.core.compression` optionally filters the plaintext

Two surfaces are offered: in-memory (``encrypt_container`` /
``decrypt_container`` / ``inspect_header``) and file-level
(``encrypt_file`` / ``decrypt_file``), which streams with bounded memory and
only moves the output into place once every chunk has verified.

Argon2 parameters are not recorded in the container; decryption must use
the same :class:`KdfParams` as encryption (the defaults unless configured
otherwise), or authentication fails.
"""

from __future__ import annotations

import contextlib
import io
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Callable, Iterator, Optional, Tuple

from .compression import (
    DEFAULT_COMPRESSION_LEVEL,
    MAX_DECOMPRESSED_SIZE,
    StreamDecompressor,
    compressing_reader,
)
from .exceptions import IOFailure
from .format import NONCE_LENGTH, Header, read_header, write_header
from .metadata import Metadata
from ..security.crypto import (
    DEFAULT_CHUNK_SIZE,
    STREAMING_THRESHOLD,
    decrypt_stream,
    encrypt_stream,
    read_chunks,
    write_chunks,
)
from ..security.kdf import KdfParams, SecretInputs, derive_key, generate_salt
from ..security.rng import RandomSource, resolve

logger = logging.getLogger(__name__)

CONTAINER_EXTENSION = ".crat"

_BYTES_LIKE = (bytes, bytearray, memoryview)


@dataclass(frozen=True)
class DecryptedFile:
    path: Path
    metadata: Metadata
    bytes_written: int
    size_mismatch: bool


class _CountingReader:
    """Pass-through reader that counts the plaintext bytes consumed."""

    def __init__(self, raw: BinaryIO):
        self._raw = raw
        self.count = 0

    def read(self, size: int = -1) -> bytes:
        data = self._raw.read(size)
        self.count += len(data)
        return data


@contextlib.contextmanager
def _io_errors(what: str) -> Iterator[None]:
    try:
        yield
    except OSError as e:
        raise IOFailure(f"{what}: {e.strerror or e}") from e


def _as_stream(source) -> BinaryIO:
    if isinstance(source, _BYTES_LIKE):
        return io.BytesIO(source)
    return source


def _remaining_size(stream: BinaryIO) -> Optional[int]:
    # size of what is left to read, or None for pipes and other unseekable streams
    try:
        if not stream.seekable():
            return None
        pos = stream.tell()
        end = stream.seek(0, os.SEEK_END)
        stream.seek(pos)
    except (AttributeError, OSError):
        return None
    return end - pos


def write_container(
    out: BinaryIO,
    source,
    secrets: SecretInputs,
    metadata: Metadata,
    kdf_params: Optional[KdfParams] = None,
    *,
    rng: Optional[RandomSource] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
) -> int:
    """
    Encrypt ``source`` into ``out`` as a complete container.

    ``source`` is either bytes-like (sliced in memory) or a readable binary
    stream. ``metadata.original_size`` must match the amount of plaintext
    actually read; a mismatch (e.g. the file grew while being read) raises
    IOFailure. Returns the number of chunks written.
    """
    rng = resolve(rng)
    salt = generate_salt(rng)
    base_nonce = rng.token_bytes(NONCE_LENGTH)
    header = Header(salt=salt, base_nonce=base_nonce)

    if isinstance(source, _BYTES_LIKE) and not metadata.compressed:
        counter = None
        body = source
        consumed = memoryview(source).nbytes
    else:
        counter = _CountingReader(_as_stream(source))
        body = compressing_reader(counter, compression_level) if metadata.compressed else counter

    with derive_key(secrets, salt, kdf_params) as key:
        write_header(out, header, metadata)
        count = write_chunks(out, encrypt_stream(key, base_nonce, body, chunk_size))

    if counter is not None:
        consumed = counter.count
    if consumed != metadata.original_size:
        raise IOFailure(
            f"source size changed during encryption: expected {metadata.original_size} bytes, read {consumed}"
        )
    logger.debug("wrote container for %r: %d chunk(s)", metadata.filename, count)
    return count


def encrypt_container(
    plaintext_source,
    secrets: SecretInputs,
    kdf_params: Optional[KdfParams] = None,
    filename: str = "",
    mtime: int = 0,
    compressed: bool = False,
    *,
    rng: Optional[RandomSource] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
) -> bytes:
    """
    Encrypt bytes (or a readable stream) and return the container bytes.

    Unseekable streams are read into memory first, since the plaintext size
    must be known before the header is written.
    """
    if not isinstance(plaintext_source, _BYTES_LIKE):
        size = _remaining_size(plaintext_source)
        if size is None:
            plaintext_source = plaintext_source.read()
    if isinstance(plaintext_source, _BYTES_LIKE):
        size = memoryview(plaintext_source).nbytes

    metadata = Metadata(
        filename=filename,
        original_size=size,
        modified_time=int(mtime),
        compressed=compressed,
    )
    out = io.BytesIO()
    write_container(
        out,
        plaintext_source,
        secrets,
        metadata,
        kdf_params,
        rng=rng,
        chunk_size=chunk_size,
        compression_level=compression_level,
    )
    return out.getvalue()


def _decrypt_body(
    inp: BinaryIO,
    header: Header,
    metadata: Metadata,
    secrets: SecretInputs,
    write: Callable[[bytes], object],
    kdf_params: Optional[KdfParams],
    chunk_size: int,
    max_output: Optional[int],
) -> Tuple[int, bool]:
    decompressor = StreamDecompressor(max_output) if metadata.compressed else None
    total = 0
    with derive_key(secrets, header.salt, kdf_params) as key:
        for block in decrypt_stream(key, header.base_nonce, read_chunks(inp, chunk_size)):
            if decompressor is not None:
                block = decompressor.feed(block)
            write(block)
            total += len(block)
    if decompressor is not None:
        decompressor.finish()

    size_mismatch = total != metadata.original_size
    if size_mismatch:
        # every tag verified, so this is an integrity warning, not an authentication error
        logger.warning(
            "decrypted size of %r is %d bytes but the header records %d",
            metadata.filename,
            total,
            metadata.original_size,
        )
    return total, size_mismatch


def decrypt_container(
    container,
    secrets: SecretInputs,
    kdf_params: Optional[KdfParams] = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_output: Optional[int] = MAX_DECOMPRESSED_SIZE,
) -> Tuple[bytes, Metadata]:
    """
    Decrypt container bytes (or a readable stream) fully in memory.

    Plaintext is only returned once every chunk has been authenticated; on
    any failure nothing is returned.
    """
    inp = _as_stream(container)
    header, metadata = read_header(inp)
    out = io.BytesIO()
    _decrypt_body(inp, header, metadata, secrets, out.write, kdf_params, chunk_size, max_output)
    return out.getvalue(), metadata


def inspect_header(container) -> Tuple[Header, Metadata]:
    """Parse the header and metadata only; no secrets, no ciphertext touched."""
    return read_header(_as_stream(container))


def default_encrypted_path(path: str | Path, output_dir: Optional[str | Path] = None) -> Path:
    path = Path(path)
    parent = Path(output_dir) if output_dir is not None else path.parent
    return parent / (path.name + CONTAINER_EXTENSION)


def safe_output_name(filename: str, fallback: str) -> str:
    """
    Reduce a stored filename to a bare name.

    The metadata record is not authenticated, so a crafted container could
    carry ``../../x``; only the final path component is ever used. The same
    goes for the other metadata fields: clearing the compressed flag makes
    decryption return the raw zstd frame, and the only signal is the size
    mismatch against ``original_size``.
    """
    name = PurePosixPath(filename.replace("\\", "/")).name
    if name in ("", ".", "..") or "\x00" in name:
        return fallback
    return name


def _temp_sibling(target: Path) -> Tuple[BinaryIO, Path]:
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        dir=target.parent, prefix=f".{target.name}.", suffix=".part", delete=False
    )
    return tmp, Path(tmp.name)


def _discard(tmp_path: Path) -> None:
    try:
        tmp_path.unlink()
    except FileNotFoundError:
        pass


def encrypt_file(
    in_path: str | Path,
    out_path: Optional[str | Path],
    secrets: SecretInputs,
    kdf_params: Optional[KdfParams] = None,
    *,
    compress: bool = False,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    overwrite: bool = False,
    rng: Optional[RandomSource] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Tuple[Path, Metadata]:
    """
    Encrypt ``in_path`` to ``out_path`` (default: ``<in_path>.crat``).

    Files under STREAMING_THRESHOLD are read into memory in one call; larger
    files (and compressed ones) are streamed chunk by chunk. The container is
    written to a temporary sibling and renamed into place on success.
    """
    in_path = Path(in_path)
    target = Path(out_path) if out_path is not None else default_encrypted_path(in_path)
    if target.exists() and not overwrite:
        raise IOFailure(f"output {target} already exists")

    metadata = Metadata.from_path(in_path, compressed=compress)
    logger.info("encrypting %s -> %s (%d bytes)", in_path, target, metadata.original_size)

    with _io_errors(f"cannot create {target}"):
        tmp, tmp_path = _temp_sibling(target)
    try:
        with tmp, _io_errors(f"encrypting {in_path} failed"):
            with open(in_path, "rb") as src:
                if not compress and metadata.original_size < STREAMING_THRESHOLD:
                    source = src.read()
                else:
                    source = src
                write_container(
                    tmp,
                    source,
                    secrets,
                    metadata,
                    kdf_params,
                    rng=rng,
                    chunk_size=chunk_size,
                    compression_level=compression_level,
                )
            tmp.flush()
            os.fsync(tmp.fileno())
        with _io_errors(f"cannot move container into place at {target}"):
            os.replace(tmp_path, target)
    except BaseException:
        _discard(tmp_path)
        raise
    return target, metadata


def decrypt_file(
    in_path: str | Path,
    secrets: SecretInputs,
    kdf_params: Optional[KdfParams] = None,
    *,
    output_dir: Optional[str | Path] = None,
    out_path: Optional[str | Path] = None,
    overwrite: bool = False,
    restore_mtime: bool = True,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> DecryptedFile:
    """
    Decrypt a container file, restoring its original name and mtime.

    The output lands in ``out_path`` if given, else in ``output_dir`` (default:
    next to the container) under the filename recorded in the metadata. The
    plaintext only appears at its final path after the last chunk verified.
    """
    in_path = Path(in_path)
    with _io_errors(f"decrypting {in_path} failed"), open(in_path, "rb") as inp:
        header, metadata = read_header(inp)

        if out_path is not None:
            target = Path(out_path)
        else:
            fallback = in_path.stem if in_path.suffix == CONTAINER_EXTENSION else in_path.name + ".out"
            parent = Path(output_dir) if output_dir is not None else in_path.parent
            target = parent / safe_output_name(metadata.filename, fallback)
        if target.exists() and not overwrite:
            raise IOFailure(f"output {target} already exists")

        logger.info("decrypting %s -> %s", in_path, target)
        with _io_errors(f"cannot create {target}"):
            tmp, tmp_path = _temp_sibling(target)
        try:
            with tmp:
                total, size_mismatch = _decrypt_body(
                    inp, header, metadata, secrets, tmp.write, kdf_params, chunk_size, None
                )
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            _discard(tmp_path)
            raise

    if restore_mtime and metadata.modified_time:
        with _io_errors(f"cannot restore modification time of {target}"):
            os.utime(target, (metadata.modified_time, metadata.modified_time))
    return DecryptedFile(path=target, metadata=metadata, bytes_written=total, size_mismatch=size_mismatch)
