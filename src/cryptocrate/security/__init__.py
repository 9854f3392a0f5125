"""Security helpers: key derivation, chunked AEAD, keyfiles and secure erase for CryptoCrate.

This package provides:
- Argon2id key derivation from a password, a keyfile, or both
- Streaming AES-256-GCM over position-bound 1 MiB chunks
- Keyfile generation and loading
- Multi-pass secure erase of plaintext originals
"""

from .kdf import KdfParams, KeyMaterial, SecretInputs, derive_key, generate_salt
from .crypto import (
    Chunk,
    StreamState,
    decrypt_stream,
    encrypt_stream,
    read_chunks,
    write_chunks,
)
from .keyfile import generate_keyfile, read_keyfile, write_keyfile
from .erase import EraseMode, secure_erase
from .rng import SeededRandomSource, SystemRandomSource

__all__ = [
    "KdfParams",
    "KeyMaterial",
    "SecretInputs",
    "derive_key",
    "generate_salt",
    "Chunk",
    "StreamState",
    "encrypt_stream",
    "decrypt_stream",
    "read_chunks",
    "write_chunks",
    "generate_keyfile",
    "read_keyfile",
    "write_keyfile",
    "EraseMode",
    "secure_erase",
    "SeededRandomSource",
    "SystemRandomSource",
]
