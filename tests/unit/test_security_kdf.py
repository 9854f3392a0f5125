"""Unit tests for the Key Derivation Function (KDF) module."""

import hashlib

import pytest
from argon2.low_level import Type, hash_secret_raw

from cryptocrate.core.exceptions import ErrorKind, InvalidKeyFileSize, KeyDerivationFailure
from cryptocrate.security import kdf as kdf_mod
from cryptocrate.security.kdf import (
    KdfParams,
    KeyMaterial,
    SecretInputs,
    derive_key,
    generate_salt,
)
from cryptocrate.security.rng import SeededRandomSource

# Cheapest parameters the validator accepts; keeps the suite fast.
FAST = KdfParams(time_cost=1, memory_cost=8192, parallelism=1)
SALT = b"\x11" * 32


def _derive(secrets, salt=SALT, params=FAST) -> bytes:
    with derive_key(secrets, salt, params) as key:
        return bytes(key.key)


# ==============================================================================
# Salt
# ==============================================================================

def test_generate_salt_defaults():
    """Salt is 32 random bytes."""
    salt = generate_salt()
    assert isinstance(salt, bytes)
    assert len(salt) == 32


def test_generate_salt_uses_injected_rng():
    """Two seeded sources with the same seed yield the same salt."""
    a = generate_salt(SeededRandomSource(b"seed"))
    b = generate_salt(SeededRandomSource(b"seed"))
    assert a == b
    assert a != generate_salt(SeededRandomSource(b"other"))


# ==============================================================================
# Parameters
# ==============================================================================

def test_default_params_match_documented_values():
    params = KdfParams()
    assert params.memory_cost == 65536
    assert params.time_cost == 3
    assert params.parallelism == 4


@pytest.mark.parametrize(
    "params",
    [
        KdfParams(time_cost=0, memory_cost=8192, parallelism=1),
        KdfParams(time_cost=1, memory_cost=8192, parallelism=0),
        KdfParams(time_cost=1, memory_cost=-1, parallelism=1),
        KdfParams(time_cost=1, memory_cost=8191, parallelism=1),
        KdfParams(time_cost=True, memory_cost=8192, parallelism=1),
    ],
)
def test_invalid_params_rejected(params):
    with pytest.raises(KeyDerivationFailure):
        params.validate()


def test_params_to_dict():
    assert FAST.to_dict() == {"algo": "argon2id", "time": 1, "memory": 8192, "parallelism": 1}


# ==============================================================================
# SecretInputs
# ==============================================================================

def test_empty_password_counts_as_absent():
    secrets = SecretInputs(password="", keyfile=b"k")
    assert not secrets.has_password
    assert secrets.has_keyfile


def test_bytes_password_is_decoded():
    assert SecretInputs(password=b"pw").password == "pw"


def test_secrets_repr_hides_values():
    text = repr(SecretInputs(password="hunter2", keyfile=b"topsecret"))
    assert "hunter2" not in text
    assert "topsecret" not in text


def test_empty_keyfile_rejected():
    with pytest.raises(InvalidKeyFileSize):
        SecretInputs(keyfile=b"")


def test_kdf_input_combines_keyfile_hash_and_password():
    secrets = SecretInputs(password="pw", keyfile=b"keyfile-bytes")
    expected = hashlib.sha256(b"keyfile-bytes").digest() + b"pw"
    assert bytes(secrets.kdf_input()) == expected


def test_from_sources_reads_keyfile(tmp_path):
    path = tmp_path / "my.key"
    path.write_bytes(b"\x01" * 64)
    secrets = SecretInputs.from_sources(password=None, keyfile_path=path)
    assert secrets.keyfile == b"\x01" * 64


# ==============================================================================
# Derivation
# ==============================================================================

def test_missing_secrets_raise():
    with pytest.raises(KeyDerivationFailure) as exc:
        derive_key(SecretInputs(), SALT, FAST)
    assert exc.value.kind is ErrorKind.KEY_DERIVATION_FAILURE


def test_wrong_salt_length_raises():
    with pytest.raises(KeyDerivationFailure):
        derive_key(SecretInputs(password="pw"), b"short", FAST)


def test_password_only_matches_plain_argon2id():
    """Password-only mode is Argon2id over the UTF-8 password and the salt."""
    expected = hash_secret_raw(
        secret=b"correct horse",
        salt=SALT,
        time_cost=1,
        memory_cost=8192,
        parallelism=1,
        hash_len=32,
        type=Type.ID,
    )
    assert _derive(SecretInputs(password="correct horse")) == expected


def test_keyfile_only_is_stretched():
    """Keyfile-only mode must not use the keyfile hash as the key directly."""
    keyfile = b"\x42" * 128
    key = _derive(SecretInputs(keyfile=keyfile))
    assert len(key) == 32
    assert key != hashlib.sha256(keyfile).digest()


def test_derivation_is_deterministic():
    secrets = SecretInputs(password="pw", keyfile=b"kf")
    assert _derive(secrets) == _derive(secrets)


def test_different_salts_give_different_keys():
    secrets = SecretInputs(password="pw")
    assert _derive(secrets, salt=b"\x01" * 32) != _derive(secrets, salt=b"\x02" * 32)


def test_both_secrets_required_for_two_factor_key():
    both = _derive(SecretInputs(password="pw", keyfile=b"kf"))
    assert both != _derive(SecretInputs(password="pw"))
    assert both != _derive(SecretInputs(keyfile=b"kf"))


def test_argon2_failure_is_wrapped(monkeypatch):
    from argon2.exceptions import HashingError

    def boom(**kwargs):
        raise HashingError("Memory allocation error")

    monkeypatch.setattr(kdf_mod, "hash_secret_raw", boom)
    with pytest.raises(KeyDerivationFailure, match="argon2id"):
        derive_key(SecretInputs(password="pw"), SALT, FAST)


@pytest.mark.parametrize(
    "params",
    [
        KdfParams(time_cost=2**40, memory_cost=8192, parallelism=1),
        KdfParams(time_cost=1, memory_cost=2**40, parallelism=1),
        KdfParams(time_cost=1, memory_cost=8192, parallelism=2**40),
        KdfParams(time_cost=1, memory_cost=8192, parallelism=2**24),
    ],
)
def test_out_of_range_params_rejected(params):
    """Costs that do not fit argon2's uint32 arguments raise KeyDerivationFailure."""
    with pytest.raises(KeyDerivationFailure):
        params.validate()
    with pytest.raises(KeyDerivationFailure):
        derive_key(SecretInputs(password="x"), SALT, params)


def test_argon2_overflow_is_wrapped(monkeypatch):
    def boom(**kwargs):
        raise OverflowError("integer does not fit '32-bit unsigned int'")

    monkeypatch.setattr(kdf_mod, "hash_secret_raw", boom)
    with pytest.raises(KeyDerivationFailure):
        derive_key(SecretInputs(password="pw"), SALT, FAST)


# ==============================================================================
# KeyMaterial lifecycle
# ==============================================================================

def test_key_material_zeroized_on_exit():
    with KeyMaterial(b"\xff" * 32) as key:
        buf = key.key
        assert bytes(buf) == b"\xff" * 32
    assert bytes(buf) == b"\x00" * 32
    assert key.released


def test_key_material_zeroized_on_exception():
    km = KeyMaterial(b"\xaa" * 32)
    buf = km.key
    with pytest.raises(RuntimeError):
        with km:
            raise RuntimeError("io error on chunk 5")
    assert bytes(buf) == b"\x00" * 32


def test_key_material_unusable_after_release():
    km = KeyMaterial(b"\x01" * 32)
    km.zeroize()
    with pytest.raises(RuntimeError):
        km.key


def test_key_material_repr_hides_bytes():
    km = KeyMaterial(b"\xab" * 32)
    assert repr(km) == "<KeyMaterial 32 bytes, live>"
    km.zeroize()
    assert repr(km) == "<KeyMaterial 32 bytes, zeroized>"
