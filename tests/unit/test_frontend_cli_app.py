"""Unit tests for the cryptocrate command line."""

import io

import pytest
from tqdm import tqdm

from cryptocrate.frontend.cli import app as app_mod
from cryptocrate.frontend.cli.app import _build_arg_parser, _progress, main
from cryptocrate.frontend.cli.context import PASSWORD_ENV
from cryptocrate.security.keyfile import read_keyfile


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run every command in an empty directory with cheap Argon2 settings."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("CRYPTOCRATE_ARGON2_MEMORY_KB", "8192")
    monkeypatch.setenv("CRYPTOCRATE_ARGON2_TIME_COST", "1")
    monkeypatch.setenv("CRYPTOCRATE_ARGON2_PARALLELISM", "1")
    monkeypatch.delenv(PASSWORD_ENV, raising=False)
    return tmp_path


def test_parser_compress_tristate():
    parser = _build_arg_parser()
    assert parser.parse_args(["encrypt", "f"]).compress is None
    assert parser.parse_args(["encrypt", "-c", "f"]).compress is True
    assert parser.parse_args(["encrypt", "--no-compress", "f"]).compress is False


def test_encrypt_then_decrypt(workdir, capsys):
    (workdir / "letter.txt").write_bytes(b"dear diary")

    assert main(["encrypt", "letter.txt", "-p", "pw"]) == 0
    assert (workdir / "letter.txt.crat").exists()
    assert "encrypted letter.txt" in capsys.readouterr().out

    assert main(["decrypt", "letter.txt.crat", "-p", "pw", "-o", "restored"]) == 0
    assert (workdir / "restored" / "letter.txt").read_bytes() == b"dear diary"


def test_wrong_password_exit_code(workdir, capsys):
    (workdir / "a.txt").write_bytes(b"alpha")
    main(["encrypt", "a.txt", "-p", "right"])
    capsys.readouterr()

    assert main(["decrypt", "a.txt.crat", "-p", "wrong", "-o", "out"]) == 1
    err = capsys.readouterr().err
    assert "wrong password/keyfile" in err
    assert not (workdir / "out" / "a.txt").exists()


def test_password_from_environment(workdir, monkeypatch):
    (workdir / "env.txt").write_bytes(b"x")
    monkeypatch.setenv(PASSWORD_ENV, "secret")
    assert main(["encrypt", "env.txt"]) == 0
    assert main(["decrypt", "env.txt.crat", "-o", "out"]) == 0
    assert (workdir / "out" / "env.txt").read_bytes() == b"x"


def test_encrypt_folder_with_compression_and_delete(workdir):
    folder = workdir / "photos"
    (folder / "2024").mkdir(parents=True)
    (folder / "one.txt").write_bytes(b"1" * 5000)
    (folder / "2024" / "two.txt").write_bytes(b"2" * 5000)

    rc = main(["encrypt", "photos", "-c", "-p", "pw", "-o", "vault", "--delete", "--delete-mode", "quick", "-y"])
    assert rc == 0
    assert (workdir / "vault" / "photos" / "one.txt.crat").exists()
    assert (workdir / "vault" / "photos" / "2024" / "two.txt.crat").exists()
    assert not (folder / "one.txt").exists()
    assert not (folder / "2024" / "two.txt").exists()

    rc = main(["decrypt", "vault/photos/2024/two.txt.crat", "-p", "pw", "-o", "back"])
    assert rc == 0
    assert (workdir / "back" / "two.txt").read_bytes() == b"2" * 5000


def test_encrypt_declined_overwrite_skips(workdir, monkeypatch, capsys):
    (workdir / "doc.txt").write_bytes(b"new")
    (workdir / "doc.txt.crat").write_bytes(b"old container")
    monkeypatch.setattr("builtins.input", lambda prompt: "n")

    assert main(["encrypt", "doc.txt", "-p", "pw"]) == 0
    assert "skipped" in capsys.readouterr().out
    assert (workdir / "doc.txt.crat").read_bytes() == b"old container"


def test_keygen_and_keyfile_only_roundtrip(workdir, monkeypatch):
    assert main(["keygen", "my.key", "-s", "64"]) == 0
    assert len(read_keyfile(workdir / "my.key")) == 64

    (workdir / "data.bin").write_bytes(b"\x00\x01\x02")
    monkeypatch.setattr("getpass.getpass", lambda prompt: "")
    assert main(["encrypt", "data.bin", "-k", "my.key"]) == 0
    assert main(["decrypt", "data.bin.crat", "-k", "my.key", "-o", "out"]) == 0
    assert (workdir / "out" / "data.bin").read_bytes() == b"\x00\x01\x02"


def test_keygen_refuses_existing(workdir, capsys):
    (workdir / "taken.key").write_bytes(b"k")
    assert main(["keygen", "taken.key"]) == 1
    assert "error:" in capsys.readouterr().err


def test_inspect(workdir, capsys):
    (workdir / "notes.md").write_bytes(b"# notes")
    main(["encrypt", "notes.md", "-p", "pw"])
    capsys.readouterr()

    assert main(["inspect", "notes.md.crat"]) == 0
    out = capsys.readouterr().out
    assert "Original filename: notes.md" in out
    assert "Original size: 7 bytes" in out


def test_inspect_not_a_container(workdir, capsys):
    (workdir / "plain.txt").write_bytes(b"hello")
    assert main(["inspect", "plain.txt"]) == 1
    assert "failed plain.txt" in capsys.readouterr().err


def test_encrypt_missing_input(workdir, capsys):
    assert main(["encrypt", "ghost.txt", "-p", "pw"]) == 1
    assert "error:" in capsys.readouterr().err


def test_config_init_show_path(workdir, capsys):
    assert main(["config", "path"]) == 0
    assert "(none)" in capsys.readouterr().out

    assert main(["config", "init", "--local"]) == 0
    assert (workdir / "cryptocrate.toml").exists()
    capsys.readouterr()

    assert main(["config", "init", "--local"]) == 1
    assert "already exists" in capsys.readouterr().err

    assert main(["config", "show"]) == 0
    out = capsys.readouterr().out
    assert "cryptocrate.toml" in out
    assert "compression_level = 3" in out
    # environment overrides show up in the effective configuration
    assert "argon2_memory_kb = 8192" in out


def test_progress_bar_silent_without_terminal(capsys):
    with _progress(3, "encrypting") as bar:
        bar.update(3)
    assert bar.disable
    assert capsys.readouterr().err == ""


def test_progress_bar_counts_batch_files(workdir, monkeypatch):
    for name in ("a.txt", "b.txt", "c.txt"):
        (workdir / name).write_bytes(name.encode())
    bars = []

    def recording_progress(total, desc):
        bar = tqdm(total=total, desc=desc, file=io.StringIO())
        bars.append(bar)
        return bar

    monkeypatch.setattr(app_mod, "_progress", recording_progress)
    assert main(["encrypt", "a.txt", "b.txt", "c.txt", "-p", "pw"]) == 0
    assert [(b.total, b.n) for b in bars] == [(3, 3)]


def test_argon2_cost_out_of_range_is_reported(workdir, monkeypatch, capsys):
    (workdir / "big.txt").write_bytes(b"x")
    monkeypatch.setenv("CRYPTOCRATE_ARGON2_TIME_COST", str(2**40))
    assert main(["encrypt", "big.txt", "-p", "pw"]) == 1
    assert "error:" in capsys.readouterr().err
    assert not (workdir / "big.txt.crat").exists()
