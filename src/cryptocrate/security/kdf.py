"""Key derivation for CryptoCrate containers."""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw

from cryptocrate.core.exceptions import KeyDerivationFailure
from .keyfile import read_keyfile, validate_keyfile_size
from .rng import RandomSource, resolve

logger = logging.getLogger(__name__)

SALT_LENGTH = 32
KEY_LENGTH = 32

DEFAULT_TIME_COST = 3
DEFAULT_MEMORY_COST = 65536  # KiB (64 MiB)
DEFAULT_PARALLELISM = 4
MIN_MEMORY_COST = 8192  # KiB (8 MiB)
# argon2 takes uint32 costs; lanes are capped at 2**24 - 1
MAX_COST = 2 ** 32 - 1
MAX_PARALLELISM = 2 ** 24 - 1


def generate_salt(rng: Optional[RandomSource] = None) -> bytes:
    """Return a fresh 32-byte salt from ``rng`` (OS randomness by default)."""
    return resolve(rng).token_bytes(SALT_LENGTH)


@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters. ``memory_cost`` is expressed in KiB."""

    time_cost: int = DEFAULT_TIME_COST
    memory_cost: int = DEFAULT_MEMORY_COST
    parallelism: int = DEFAULT_PARALLELISM

    def validate(self) -> None:
        for name in ("time_cost", "memory_cost", "parallelism"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise KeyDerivationFailure(f"{name} must be a positive integer, got {value!r}")
            if value > MAX_COST:
                raise KeyDerivationFailure(f"{name} must be at most {MAX_COST}, got {value}")
        if self.parallelism > MAX_PARALLELISM:
            raise KeyDerivationFailure(
                f"parallelism must be at most {MAX_PARALLELISM}, got {self.parallelism}"
            )
        if self.memory_cost < MIN_MEMORY_COST:
            raise KeyDerivationFailure(
                f"memory_cost must be at least {MIN_MEMORY_COST} KiB, got {self.memory_cost}"
            )

    def to_dict(self) -> Dict:
        return {
            "algo": "argon2id",
            "time": self.time_cost,
            "memory": self.memory_cost,
            "parallelism": self.parallelism,
        }


@dataclass(frozen=True)
class SecretInputs:
    """
    Password and/or keyfile supplied by the user.

    An empty password counts as no password, so a keyfile-only user can
    just press Enter at the prompt. When both are present the derived key
    depends on both of them.
    """

    password: Optional[str] = field(default=None, repr=False)
    keyfile: Optional[bytes] = field(default=None, repr=False)

    def __post_init__(self):
        password = self.password
        if isinstance(password, bytes):
            password = password.decode("utf-8")
        if password == "":
            password = None
        object.__setattr__(self, "password", password)

        if self.keyfile is not None:
            validate_keyfile_size(len(self.keyfile))

    @classmethod
    def from_sources(
        cls, password: Optional[str] = None, keyfile_path: Optional[str | Path] = None
    ) -> "SecretInputs":
        keyfile = read_keyfile(keyfile_path) if keyfile_path is not None else None
        return cls(password=password, keyfile=keyfile)

    @property
    def has_password(self) -> bool:
        return self.password is not None

    @property
    def has_keyfile(self) -> bool:
        return self.keyfile is not None

    def kdf_input(self) -> bytearray:
        """
        Build the Argon2 secret input.

        - password only: UTF-8 password
        - keyfile only: SHA-256(keyfile)
        - both: SHA-256(keyfile) || UTF-8 password
        """
        if not self.has_password and not self.has_keyfile:
            raise KeyDerivationFailure("a password or a keyfile is required")

        material = bytearray()
        if self.keyfile is not None:
            material += hashlib.sha256(self.keyfile).digest()
        if self.password is not None:
            material += self.password.encode("utf-8")
        return material


class KeyMaterial:
    """
    Owned buffer holding a derived key.

    Use it as a context manager; the buffer is overwritten with zeros when
    the block exits (normally or through an exception) and again, as a
    fallback, when the object is garbage collected.
    """

    __slots__ = ("_buf", "_released")

    def __init__(self, raw: bytes | bytearray):
        self._buf = bytearray(raw)
        self._released = False

    @property
    def key(self) -> bytearray:
        if self._released:
            raise RuntimeError("key material has already been zeroized")
        return self._buf

    @property
    def released(self) -> bool:
        return self._released

    def zeroize(self) -> None:
        buf = self._buf
        for i in range(len(buf)):
            buf[i] = 0
        self._released = True

    def __len__(self) -> int:
        return len(self._buf)

    def __enter__(self) -> "KeyMaterial":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.zeroize()

    def __del__(self):
        try:
            self.zeroize()
        except AttributeError:
            # __init__ never completed
            pass

    def __repr__(self) -> str:
        state = "zeroized" if self._released else "live"
        return f"<KeyMaterial {len(self._buf)} bytes, {state}>"


def derive_key(
    secrets: SecretInputs,
    salt: bytes,
    params: Optional[KdfParams] = None,
) -> KeyMaterial:
    """
    Derive a 32-byte key from ``secrets`` and ``salt`` using Argon2id.

    Raises KeyDerivationFailure when no secret is supplied, the salt has the
    wrong length, the parameters are invalid, or Argon2 cannot run with
    them on this host.
    """
    params = params or KdfParams()
    params.validate()
    if len(salt) != SALT_LENGTH:
        raise KeyDerivationFailure(f"salt must be {SALT_LENGTH} bytes, got {len(salt)}")

    material = secrets.kdf_input()
    logger.debug(
        "deriving key (password=%s, keyfile=%s, params=%s)",
        secrets.has_password,
        secrets.has_keyfile,
        params.to_dict(),
    )
    try:
        raw = hash_secret_raw(
            secret=bytes(material),
            salt=bytes(salt),
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=KEY_LENGTH,
            type=Type.ID,
        )
    except (HashingError, MemoryError, OverflowError) as e:
        raise KeyDerivationFailure(f"argon2id could not run with {params.to_dict()}: {e}") from e
    finally:
        for i in range(len(material)):
            material[i] = 0

    return KeyMaterial(raw)
