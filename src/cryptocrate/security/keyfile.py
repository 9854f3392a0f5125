"""Keyfiles: opaque random blobs usable instead of, or together with, a password.

No internal format is imposed; only the size is bounded (1 byte to 10 MiB).
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from cryptocrate.core.exceptions import IOFailure, InvalidKeyFileSize
from .rng import RandomSource, resolve

logger = logging.getLogger(__name__)

DEFAULT_KEYFILE_SIZE = 4096
MIN_KEYFILE_SIZE = 1
MAX_KEYFILE_SIZE = 10 * 1024 * 1024


def validate_keyfile_size(size: int) -> None:
    if size < MIN_KEYFILE_SIZE or size > MAX_KEYFILE_SIZE:
        raise InvalidKeyFileSize(
            f"keyfile must be between {MIN_KEYFILE_SIZE} and {MAX_KEYFILE_SIZE} bytes, got {size}"
        )


def generate_keyfile(size: int = DEFAULT_KEYFILE_SIZE, rng: Optional[RandomSource] = None) -> bytes:
    """Return ``size`` random bytes suitable for use as a keyfile."""
    validate_keyfile_size(size)
    return resolve(rng).token_bytes(size)


def write_keyfile(
    path: str | Path,
    size: int = DEFAULT_KEYFILE_SIZE,
    rng: Optional[RandomSource] = None,
) -> Path:
    """
    Generate a keyfile and write it to ``path``.

    The file is created exclusively (an existing file is never replaced) with
    owner-only permissions, and synced to disk before returning.
    """
    data = generate_keyfile(size, rng)
    path = Path(path)
    try:
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        raise IOFailure(f"could not write keyfile {path}: {e.strerror or e}") from e
    logger.info("wrote %d-byte keyfile to %s", size, path)
    return path


def read_keyfile(path: str | Path) -> bytes:
    """Read a keyfile, enforcing the size bounds before loading it."""
    path = Path(path)
    try:
        size = path.stat().st_size
    except OSError as e:
        raise IOFailure(f"could not read keyfile {path}: {e.strerror or e}") from e
    validate_keyfile_size(size)

    try:
        with open(path, "rb") as f:
            data = f.read(MAX_KEYFILE_SIZE + 1)
    except OSError as e:
        raise IOFailure(f"could not read keyfile {path}: {e.strerror or e}") from e
    # the file may have changed between stat() and read()
    validate_keyfile_size(len(data))
    return data
