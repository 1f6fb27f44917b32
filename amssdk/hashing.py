"""Salted scrypt hashing of secrets."""

from __future__ import annotations

import binascii
import hashlib
import hmac
import secrets

__all__ = ["hash_value", "validate_hash"]

_SALT_SIZE = 32
_KEY_SIZE = 64
_N = 1 << 14
_R = 8
_P = 1
_MAXMEM = 64 * 1024 * 1024


def _derive(value: str, salt: bytes) -> bytes:
    return hashlib.scrypt(
        value.encode("utf-8"),
        salt=salt,
        n=_N,
        r=_R,
        p=_P,
        maxmem=_MAXMEM,
        dklen=_KEY_SIZE,
    )


def hash_value(value: str) -> str:
    """Hash value with a random 32 byte salt; return salt and hash as 192 hex characters.

    An empty value is returned unchanged.
    """
    if not value:
        return value
    salt = secrets.token_bytes(_SALT_SIZE)
    return (salt + _derive(value, salt)).hex()


def validate_hash(hashed: str, value: str) -> None:
    """Check value against a hash made by hash_value; raise ValueError if it does not match."""
    if not hashed:
        raise ValueError("No password is set")

    try:
        raw = binascii.unhexlify(hashed)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid hash encoding: {exc}") from exc

    if len(raw) < _SALT_SIZE:
        raise ValueError("hash is too short")

    salt, expected = raw[:_SALT_SIZE], raw[_SALT_SIZE:]
    if not hmac.compare_digest(_derive(value, salt), expected):
        raise ValueError("Bad password provided")