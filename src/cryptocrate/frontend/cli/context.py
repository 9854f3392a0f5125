"""Small helpers to build the CLI runtime context: config and secrets."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional
import getpass
import os

from cryptocrate.core.config import Config
from cryptocrate.security.kdf import SecretInputs
from cryptocrate.security.keyfile import read_keyfile

PASSWORD_ENV = "CRYPTOCRATE_PASSWORD"


class CliError(Exception):
    # user-facing problem with arguments or prompts
    pass


@dataclass
class CliContext:
    """Container for runtime objects the commands need."""

    config: Config
    config_path: Optional[Path] = None


def build_context(config_path: Optional[str | Path] = None) -> CliContext:
    """
    Load configuration for this invocation.

    An explicit ``--config`` path must exist; otherwise the default lookup
    (``./cryptocrate.toml``, then the user config) is used and a missing
    file simply means defaults. Environment overrides are applied last.
    """
    if config_path is not None:
        path = Path(config_path)
        config = Config.load(path)
    else:
        path = Config.find()
        config = Config.load(path) if path is not None else Config()
    return CliContext(config=config.with_env(), config_path=path)


def resolve_secrets(
    password: Optional[str],
    keyfile: Optional[str | Path],
    *,
    confirm: bool,
    interactive: bool = True,
    prompt: Optional[Callable[[str], str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SecretInputs:
    """
    Collect the password and/or keyfile for one command.

    Order of precedence for the password: ``--password``, then the
    ``CRYPTOCRATE_PASSWORD`` environment variable, then an interactive
    prompt. With a keyfile the password may be left empty (keyfile only);
    with both, decryption needs both.
    """
    environ = os.environ if environ is None else environ
    prompt = prompt or getpass.getpass
    keyfile_bytes = read_keyfile(keyfile) if keyfile is not None else None

    if password is None:
        password = environ.get(PASSWORD_ENV)

    if password is None and interactive:
        hint = " (or press Enter for keyfile only)" if keyfile_bytes is not None else ""
        password = prompt(f"Password{hint}: ")
        if confirm and password:
            again = prompt("Confirm password: ")
            if again != password:
                raise CliError("passwords do not match")

    secrets = SecretInputs(password=password, keyfile=keyfile_bytes)
    if not secrets.has_password and not secrets.has_keyfile:
        raise CliError("a password or a keyfile is required")
    return secrets


def confirm(question: str, assume_yes: bool = False, input_fn: Optional[Callable[[str], str]] = None) -> bool:
    if assume_yes:
        return True
    answer = (input_fn or input)(f"{question} [y/N] ").strip().lower()
    return answer in ("y", "yes")
