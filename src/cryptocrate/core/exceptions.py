"""
Exceptions for CryptoCrate
Every error raised by the engine derives from CryptoCrateError and carries
an ErrorKind tag, so callers can branch on ``err.kind`` instead of on
message text.
"""

from enum import Enum


class ErrorKind(Enum):
    BAD_MAGIC = "bad_magic"
    UNSUPPORTED_VERSION = "unsupported_version"
    TRUNCATED_INPUT = "truncated_input"
    MALFORMED_METADATA = "malformed_metadata"
    KEY_DERIVATION_FAILURE = "key_derivation_failure"
    AUTHENTICATION_FAILURE = "authentication_failure"
    IO_FAILURE = "io_failure"
    INVALID_KEYFILE_SIZE = "invalid_keyfile_size"
    COMPRESSION_FAILURE = "compression_failure"


class CryptoCrateError(Exception):
    # general container for errors
    kind: ErrorKind


class FormatError(CryptoCrateError):
    # raised by the codec before any key material is touched
    pass


class BadMagic(FormatError):
    # raised when the first four bytes are not "CRAT"
    kind = ErrorKind.BAD_MAGIC


class UnsupportedVersion(FormatError):
    # raised for a container version this build does not implement
    kind = ErrorKind.UNSUPPORTED_VERSION

    def __init__(self, message: str, version: int | None = None):
        super().__init__(message)
        self.version = version


class UnsupportedAlgorithm(UnsupportedVersion):
    # raised for an unknown algorithm_id
    pass


class TruncatedInput(FormatError):
    # raised when a header or metadata field is short
    kind = ErrorKind.TRUNCATED_INPUT


class MalformedMetadata(FormatError):
    # raised for an oversized or internally inconsistent metadata record
    kind = ErrorKind.MALFORMED_METADATA


class KeyDerivationFailure(CryptoCrateError):
    # raised on missing secrets or unsatisfiable Argon2 parameters
    kind = ErrorKind.KEY_DERIVATION_FAILURE


class AuthenticationFailure(CryptoCrateError):
    # wrong credentials, tampering and ordering violations all look the same
    kind = ErrorKind.AUTHENTICATION_FAILURE

    def __init__(self, message: str = "authentication failed: wrong password/keyfile or corrupted data"):
        super().__init__(message)


class IOFailure(CryptoCrateError):
    # raised when reading, writing or overwriting fails
    kind = ErrorKind.IO_FAILURE


class InvalidKeyFileSize(CryptoCrateError):
    # raised when a keyfile is outside 1 byte - 10 MiB
    kind = ErrorKind.INVALID_KEYFILE_SIZE


class CompressionFailure(CryptoCrateError):
    # raised when the compression filter rejects its input
    kind = ErrorKind.COMPRESSION_FAILURE
