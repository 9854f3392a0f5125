"""Multi-pass overwrite of plaintext originals before unlinking them.

Limits worth knowing: on SSDs (wear levelling), copy-on-write or journaling
filesystems, and snapshotted or network storage, overwriting a file in place
does not guarantee the old blocks are gone. Full-disk encryption is the
reliable answer there; this is a best effort for conventional disks.
"""
from __future__ import annotations

import logging
import os
import stat
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Tuple

from cryptocrate.core.exceptions import IOFailure
from .rng import RandomSource, resolve

logger = logging.getLogger(__name__)

BUFFER_SIZE = 64 * 1024

RANDOM = "random"
ZEROS = "zeros"
ONES = "ones"
PATTERN_AA = "pattern_aa"
PATTERN_55 = "pattern_55"

_FILL_BYTES = {
    ZEROS: 0x00,
    ONES: 0xFF,
    PATTERN_AA: 0xAA,
    PATTERN_55: 0x55,
}


class EraseMode(Enum):
    QUICK = "quick"
    STANDARD = "standard"
    PARANOID = "paranoid"

    @classmethod
    def parse(cls, value: "str | EraseMode") -> "EraseMode":
        if isinstance(value, EraseMode):
            return value
        aliases = {"q": cls.QUICK, "s": cls.STANDARD, "p": cls.PARANOID}
        key = value.strip().lower()
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown erase mode {value!r} (expected quick, standard or paranoid)") from None

    @property
    def passes(self) -> Tuple[str, ...]:
        return _PASSES[self]


_PASSES = {
    EraseMode.QUICK: (RANDOM,),
    EraseMode.STANDARD: (RANDOM, ZEROS, RANDOM),
    # DoD 5220.22-M style: fixed bit patterns interleaved with random passes
    EraseMode.PARANOID: (RANDOM, ONES, RANDOM, PATTERN_AA, PATTERN_55, RANDOM, RANDOM),
}


def _overwrite(f, size: int, pattern: str, rng: RandomSource) -> None:
    fill = None if pattern == RANDOM else bytes([_FILL_BYTES[pattern]]) * BUFFER_SIZE
    remaining = size
    while remaining > 0:
        n = min(remaining, BUFFER_SIZE)
        f.write(rng.token_bytes(n) if fill is None else fill[:n])
        remaining -= n


def secure_erase(
    path: str | Path,
    mode: EraseMode | str = EraseMode.STANDARD,
    rng: Optional[RandomSource] = None,
    on_pass: Optional[Callable[[int, str], None]] = None,
) -> int:
    """
    Overwrite ``path`` in place once per pass of ``mode``, then unlink it.

    Each pass covers the whole file and is fsync'ed before the next begins.
    ``on_pass(index, pattern)`` is called after every durable pass. Returns
    the number of passes performed (0 for an empty file). Raises IOFailure
    for missing files, symlinks, non-regular files and any OS error; the file
    is only unlinked after the last pass succeeded.
    """
    path = Path(path)
    mode = EraseMode.parse(mode)
    rng = resolve(rng)

    try:
        st = os.lstat(path)
    except OSError as e:
        raise IOFailure(f"cannot erase {path}: {e.strerror or e}") from e
    if stat.S_ISLNK(st.st_mode):
        raise IOFailure(f"refusing to erase {path}: it is a symbolic link")
    if not stat.S_ISREG(st.st_mode):
        raise IOFailure(f"cannot erase {path}: not a regular file")

    size = st.st_size
    done = 0
    try:
        if size > 0:
            fd = os.open(str(path), os.O_RDWR | getattr(os, "O_NOFOLLOW", 0))
            with os.fdopen(fd, "r+b") as f:
                for index, pattern in enumerate(mode.passes):
                    f.seek(0)
                    _overwrite(f, size, pattern, rng)
                    f.flush()
                    os.fsync(f.fileno())
                    done += 1
                    logger.debug("erase %s: pass %d/%d (%s) done", path, done, len(mode.passes), pattern)
                    if on_pass is not None:
                        on_pass(index, pattern)
        path.unlink()
    except OSError as e:
        raise IOFailure(f"secure erase of {path} failed after {done} pass(es): {e.strerror or e}") from e

    logger.info("securely erased %s (%s, %d pass(es))", path, mode.value, done)
    return done
