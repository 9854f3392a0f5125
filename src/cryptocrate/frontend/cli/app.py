"""CryptoCrate command line: encrypt, decrypt, inspect, keygen, config."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from tqdm import tqdm

from cryptocrate.core.batch import (
    DEFAULT_WORKERS,
    collect_files,
    plan_decrypt_outputs,
    plan_encrypt_outputs,
    run_batch,
)
from cryptocrate.core.compression import compression_ratio
from cryptocrate.core.config import Config, ConfigError, default_user_config_path, CONFIG_FILE_NAME
from cryptocrate.core.container import decrypt_file, encrypt_file
from cryptocrate.core.exceptions import AuthenticationFailure, CryptoCrateError, IOFailure
from cryptocrate.core.inspect import format_size, inspect_file
from cryptocrate.security.erase import EraseMode, secure_erase
from cryptocrate.security.keyfile import DEFAULT_KEYFILE_SIZE, write_keyfile

from .context import CliContext, CliError, build_context, confirm, resolve_secrets
from .logging_config import configure_logging, level_from_verbosity

logger = logging.getLogger(__name__)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cryptocrate",
        description="Encrypt files and folders into tamper-evident .crat containers.",
    )
    parser.add_argument("--config", default=None, help="path to a config file (default: auto-detect)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="more logging (-vv for debug)")
    sub = parser.add_subparsers(dest="command", required=True)

    enc = sub.add_parser("encrypt", help="encrypt files or folders")
    enc.add_argument("paths", nargs="+", type=Path, metavar="PATH")
    enc.add_argument("-c", "--compress", action="store_true", default=None, help="zstd-compress before encrypting")
    enc.add_argument("--no-compress", dest="compress", action="store_false")
    enc.set_defaults(compress=None)
    enc.add_argument("-o", "--output", type=Path, default=None, help="output directory")
    enc.add_argument("-p", "--password", default=None, help="password (prompted if omitted)")
    enc.add_argument("-k", "--keyfile", type=Path, default=None, help="keyfile, alone or with a password")
    enc.add_argument("--delete", action="store_true", help="securely erase originals after encryption")
    enc.add_argument("--delete-mode", default=None, help="quick, standard or paranoid")
    enc.add_argument("-w", "--workers", type=int, default=None, help="containers processed in parallel")
    enc.add_argument("-y", "--yes", action="store_true", help="do not ask before overwriting or deleting")

    dec = sub.add_parser("decrypt", help="decrypt .crat containers")
    dec.add_argument("paths", nargs="+", type=Path, metavar="PATH")
    dec.add_argument("-o", "--output", type=Path, default=None, help="output directory")
    dec.add_argument("-p", "--password", default=None, help="password (prompted if omitted)")
    dec.add_argument("-k", "--keyfile", type=Path, default=None, help="keyfile used at encryption")
    dec.add_argument("-w", "--workers", type=int, default=None)
    dec.add_argument("-y", "--yes", action="store_true", help="do not ask before overwriting")

    ins = sub.add_parser("inspect", help="show container metadata without decrypting")
    ins.add_argument("paths", nargs="+", type=Path, metavar="PATH")

    key = sub.add_parser("keygen", help="generate a random keyfile")
    key.add_argument("output", type=Path, metavar="PATH")
    key.add_argument("-s", "--size", type=int, default=DEFAULT_KEYFILE_SIZE, help="size in bytes (default 4096)")

    cfg = sub.add_parser("config", help="manage configuration")
    cfg_sub = cfg.add_subparsers(dest="action", required=True)
    cfg_sub.add_parser("show", help="print the effective configuration")
    init = cfg_sub.add_parser("init", help="write a sample config file")
    init.add_argument("-l", "--local", action="store_true", help=f"create ./{CONFIG_FILE_NAME} instead")
    init.add_argument("-f", "--force", action="store_true", help="replace an existing file")
    cfg_sub.add_parser("path", help="print where config is read from")

    return parser


def _output_dir(args, ctx: CliContext) -> Optional[Path]:
    if args.output is not None:
        return args.output
    if ctx.config.default_output_dir:
        return Path(ctx.config.default_output_dir).expanduser()
    return None


def _approved_overwrites(pairs, args, ctx: CliContext) -> List[tuple]:
    # prompts happen here, before any work is handed to the pool
    approved = []
    for source, target in pairs:
        if target is not None and target.exists():
            if ctx.config.confirm_overwrite and not confirm(f"{target} exists. Overwrite?", args.yes):
                print(f"skipped {source}: {target} exists")
                continue
        approved.append((source, target))
    return approved


def _progress(total: int, desc: str) -> tqdm:
    # overall bar on stderr; silent unless stderr is a terminal
    return tqdm(
        total=total,
        desc=desc,
        unit="file",
        file=sys.stderr,
        disable=not sys.stderr.isatty(),
        leave=False,
    )


def _advance(bar: tqdm):
    def on_done(result) -> None:
        bar.set_postfix_str(Path(result.item[0]).name, refresh=False)
        bar.update(1)

    return on_done


def _print_failures(report) -> None:
    for result in report.failed:
        source = result.item[0]
        if isinstance(result.error, AuthenticationFailure):
            print(f"failed {source}: wrong password/keyfile, or the file was modified", file=sys.stderr)
        else:
            print(f"failed {source}: {result.error}", file=sys.stderr)


def cmd_encrypt(args, ctx: CliContext) -> int:
    config = ctx.config
    compress = config.compress_by_default if args.compress is None else args.compress
    mode = EraseMode.parse(args.delete_mode or config.delete_mode)
    workers = args.workers or config.workers or DEFAULT_WORKERS

    entries = []
    for path in args.paths:
        entries.extend(collect_files(path))
    if not entries:
        raise CliError("no files to encrypt")
    pairs = _approved_overwrites(plan_encrypt_outputs(entries, _output_dir(args, ctx)), args, ctx)

    if args.delete and not confirm(
        f"Securely erase {len(pairs)} original file(s) ({mode.value}) after encryption?", args.yes
    ):
        raise CliError("aborted")

    secrets = resolve_secrets(args.password, args.keyfile, confirm=True)
    params = config.kdf_params()

    def work(pair):
        source, target = pair
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"cannot create {target.parent}: {e.strerror or e}") from e
        out, metadata = encrypt_file(
            source,
            target,
            secrets,
            params,
            compress=compress,
            compression_level=config.compression_level,
            overwrite=True,
        )
        if args.delete:
            secure_erase(source, mode)
        return out, metadata

    with _progress(len(pairs), "encrypting") as bar:
        report = run_batch(pairs, work, workers, on_done=_advance(bar))
    for result in report.succeeded:
        out, metadata = result.value
        line = f"encrypted {result.item[0]} -> {out}"
        if metadata.compressed and metadata.original_size:
            saved = compression_ratio(metadata.original_size, out.stat().st_size)
            line += f" ({saved:.1f}% smaller)"
        print(line)
    _print_failures(report)
    return 0 if report.all_ok else 1


def cmd_decrypt(args, ctx: CliContext) -> int:
    workers = args.workers or ctx.config.workers or DEFAULT_WORKERS
    output_dir = _output_dir(args, ctx)
    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)
    pairs = _approved_overwrites(plan_decrypt_outputs(args.paths, output_dir), args, ctx)

    secrets = resolve_secrets(args.password, args.keyfile, confirm=False)
    params = ctx.config.kdf_params()

    def work(pair):
        source, target = pair
        return decrypt_file(
            source,
            secrets,
            params,
            output_dir=output_dir,
            out_path=target,
            overwrite=True,
        )

    with _progress(len(pairs), "decrypting") as bar:
        report = run_batch(pairs, work, workers, on_done=_advance(bar))
    for result in report.succeeded:
        restored = result.value
        print(f"decrypted {result.item[0]} -> {restored.path} ({format_size(restored.bytes_written)})")
        if restored.size_mismatch:
            print(
                f"warning: {restored.path} is {restored.bytes_written} bytes, "
                f"header recorded {restored.metadata.original_size}",
                file=sys.stderr,
            )
    _print_failures(report)
    return 0 if report.all_ok else 1


def cmd_inspect(args, ctx: CliContext) -> int:
    status = 0
    for i, path in enumerate(args.paths):
        try:
            info = inspect_file(path)
        except CryptoCrateError as e:
            print(f"failed {path}: {e}", file=sys.stderr)
            status = 1
            continue
        if i:
            print()
        print(f"{path}:")
        print(info.describe())
    return status


def cmd_keygen(args, ctx: CliContext) -> int:
    path = write_keyfile(args.output, args.size)
    print(f"wrote {args.size}-byte keyfile to {path}")
    print("keep it safe: without it, containers encrypted with it cannot be opened")
    return 0


def cmd_config(args, ctx: CliContext) -> int:
    if args.action == "show":
        source = ctx.config_path or "built-in defaults"
        print(f"# source: {source}")
        print(ctx.config.to_toml(), end="")
        return 0
    if args.action == "path":
        print(ctx.config_path or f"(none) looked in ./{CONFIG_FILE_NAME} and {default_user_config_path()}")
        return 0

    target = Path(CONFIG_FILE_NAME) if args.local else default_user_config_path()
    if target.exists() and not args.force:
        raise CliError(f"{target} already exists (use --force to replace it)")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(Config.sample(), encoding="utf-8")
    print(f"wrote sample configuration to {target}")
    return 0


COMMANDS = {
    "encrypt": cmd_encrypt,
    "decrypt": cmd_decrypt,
    "inspect": cmd_inspect,
    "keygen": cmd_keygen,
    "config": cmd_config,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    configure_logging(level_from_verbosity(args.verbose))

    try:
        ctx = build_context(args.config)
        logger.debug("configuration loaded from %s", ctx.config_path or "defaults")
        return COMMANDS[args.command](args, ctx)
    except (CliError, ConfigError, CryptoCrateError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: {e.strerror or e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\ninterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
