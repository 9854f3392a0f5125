"""
User configuration for CryptoCrate.

Looked up in ``./cryptocrate.toml`` then ``~/.config/cryptocrate/config.toml``;
defaults apply when neither exists. ``CRYPTOCRATE_ARGON2_*`` environment
variables override the Argon2 values from the file.
"""

from __future__ import annotations

import dataclasses
import json
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .compression import DEFAULT_COMPRESSION_LEVEL, validate_level
from .exceptions import KeyDerivationFailure
from ..security.erase import EraseMode
from ..security.kdf import (
    DEFAULT_MEMORY_COST,
    DEFAULT_PARALLELISM,
    DEFAULT_TIME_COST,
    KdfParams,
)

CONFIG_FILE_NAME = "cryptocrate.toml"

ENV_OVERRIDES = {
    "CRYPTOCRATE_ARGON2_MEMORY_KB": "argon2_memory_kb",
    "CRYPTOCRATE_ARGON2_TIME_COST": "argon2_time_cost",
    "CRYPTOCRATE_ARGON2_PARALLELISM": "argon2_parallelism",
}


class ConfigError(ValueError):
    pass


@dataclass
class Config:
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    compress_by_default: bool = False
    default_output_dir: Optional[str] = None
    confirm_overwrite: bool = True
    argon2_memory_kb: int = DEFAULT_MEMORY_COST
    argon2_time_cost: int = DEFAULT_TIME_COST
    argon2_parallelism: int = DEFAULT_PARALLELISM
    delete_mode: str = "standard"
    workers: int = 4

    # ------------------------------------------------------------------
    # Validation / conversion
    # ------------------------------------------------------------------

    def validate(self) -> "Config":
        try:
            validate_level(self.compression_level)
            EraseMode.parse(self.delete_mode)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        for name in ("argon2_memory_kb", "argon2_time_cost", "argon2_parallelism", "workers"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        try:
            self.kdf_params().validate()
        except KeyDerivationFailure as e:
            raise ConfigError(str(e)) from e
        for name in ("compress_by_default", "confirm_overwrite"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false")
        if self.default_output_dir is not None and not isinstance(self.default_output_dir, str):
            raise ConfigError("default_output_dir must be a string")
        return self

    def kdf_params(self) -> KdfParams:
        return KdfParams(
            time_cost=self.argon2_time_cost,
            memory_cost=self.argon2_memory_kb,
            parallelism=self.argon2_parallelism,
        )

    def erase_mode(self) -> EraseMode:
        return EraseMode.parse(self.delete_mode)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        # unknown keys are ignored so older builds can read newer files
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known}).validate()

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "Config":
        environ = os.environ if environ is None else environ
        overrides = {}
        for var, name in ENV_OVERRIDES.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            try:
                overrides[name] = int(raw)
            except ValueError:
                raise ConfigError(f"{var} must be an integer, got {raw!r}") from None
        return dataclasses.replace(self, **overrides).validate()

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path) -> "Config":
        path = Path(path)
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except OSError as e:
            raise ConfigError(f"cannot read config file {path}: {e.strerror or e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"invalid config file {path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def find(cls, cwd: Optional[Path] = None, home: Optional[Path] = None) -> Optional[Path]:
        local = (cwd or Path.cwd()) / CONFIG_FILE_NAME
        if local.exists():
            return local
        user = default_user_config_path(home)
        if user.exists():
            return user
        return None

    @classmethod
    def load_default(cls, cwd: Optional[Path] = None, home: Optional[Path] = None) -> "Config":
        path = cls.find(cwd, home)
        return cls.load(path) if path is not None else cls()

    def to_toml(self) -> str:
        lines = []
        for name, value in self.to_dict().items():
            if value is None:
                lines.append(f"# {name} = ")
            elif isinstance(value, bool):
                lines.append(f"{name} = {'true' if value else 'false'}")
            elif isinstance(value, int):
                lines.append(f"{name} = {value}")
            else:
                lines.append(f"{name} = {json.dumps(str(value))}")
        return "\n".join(lines) + "\n"

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_toml(), encoding="utf-8")
        return path

    @staticmethod
    def sample() -> str:
        return """# CryptoCrate configuration file

# zstd compression level (1-22, higher = smaller but slower)
compression_level = 3

# compress before encrypting unless --no-compress is given
compress_by_default = false

# where outputs go when --output is not given (default: next to the input)
# default_output_dir = "/path/to/encrypted"

# ask before overwriting existing files
confirm_overwrite = true

# Argon2id key derivation (advanced). Containers must be decrypted with the
# same values they were encrypted with.
argon2_memory_kb = 65536  # 64 MiB
argon2_time_cost = 3
argon2_parallelism = 4

# secure erase mode for --delete: quick, standard or paranoid
delete_mode = "standard"

# containers processed in parallel in batch mode
workers = 4
"""


def default_user_config_path(home: Optional[Path] = None) -> Path:
    return (home or Path.home()) / ".config" / "cryptocrate" / "config.toml"
