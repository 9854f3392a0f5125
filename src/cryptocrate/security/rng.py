"""Randomness capability passed explicitly into derivation and container creation.

Production code uses :class:`SystemRandomSource` (``os.urandom``). Tests can
swap in :class:`SeededRandomSource` to get reproducible salts, nonces and
keyfiles without patching module globals.
"""
from __future__ import annotations

import hashlib
import os
from typing import Optional, Protocol


class RandomSource(Protocol):
    def token_bytes(self, n: int) -> bytes:
        ...


class SystemRandomSource:
    """Cryptographically secure randomness from the operating system."""

    def token_bytes(self, n: int) -> bytes:
        if n < 0:
            raise ValueError("n must be non-negative")
        return os.urandom(n)


class SeededRandomSource:
    """Deterministic byte stream (SHA-256 in counter mode) for tests only."""

    def __init__(self, seed: bytes | str = b"cryptocrate"):
        if isinstance(seed, str):
            seed = seed.encode("utf-8")
        self._seed = seed
        self._counter = 0

    def token_bytes(self, n: int) -> bytes:
        if n < 0:
            raise ValueError("n must be non-negative")
        out = bytearray()
        while len(out) < n:
            h = hashlib.sha256()
            h.update(self._seed)
            h.update(self._counter.to_bytes(8, "big"))
            out += h.digest()
            self._counter += 1
        return bytes(out[:n])


_default_source = SystemRandomSource()


def resolve(rng: Optional[RandomSource]) -> RandomSource:
    return rng if rng is not None else _default_source
