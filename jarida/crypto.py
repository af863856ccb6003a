# -*- coding: utf-8 -*-
"""Crypto helpers and secret handling for Jarida.

This module encapsulates *stateless* cryptographic helpers (key derivation and
the per-entry AES-GCM codec) plus the scoped containers that hold credentials
and derived keys. It does **not** perform any filesystem I/O.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union
import logging
import secrets

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import DecryptionFailed, InvalidCredentials

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------

KEY_LEN = 32
NONCE_LEN = 12
TAG_LEN = 16

KDF_CONTEXT = b"jarida/kdf/v1"

TextOrBytes = Union[str, bytes, bytearray]


@dataclass(frozen=True)
class KdfParams:
    """argon2id cost parameters."""

    time_cost: int = 2
    memory_cost: int = 102_400
    parallelism: int = 8


DEFAULT_KDF = KdfParams()


# ---------------------------------------------------------------------
# Scoped secrets
# ---------------------------------------------------------------------

def _wipe(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


class SecretKey:
    """Derived key material held in a mutable buffer so it can be zeroed.

    Use as a context manager, or call :meth:`clear` when the session ends.
    """

    __slots__ = ("_buf", "_cleared")

    def __init__(self, material: Union[bytes, bytearray]) -> None:
        if len(material) != KEY_LEN:
            raise ValueError(f"key must be {KEY_LEN} bytes")
        self._buf = bytearray(material)
        self._cleared = False

    @property
    def cleared(self) -> bool:
        return self._cleared

    def material(self) -> bytearray:
        if self._cleared:
            raise ValueError("key has been cleared")
        return self._buf

    def clear(self) -> None:
        _wipe(self._buf)
        self._cleared = True

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecretKey):
            return NotImplemented
        return secrets.compare_digest(bytes(self.material()), bytes(other.material()))

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        return f"SecretKey(<{'cleared' if self._cleared else 'redacted'}>)"

    def __enter__(self) -> "SecretKey":
        return self

    def __exit__(self, *exc) -> None:
        self.clear()


class Credentials:
    """Username plus a password kept in a wipeable buffer."""

    __slots__ = ("username", "_password")

    def __init__(self, username: str, password: TextOrBytes) -> None:
        self.username = username
        if isinstance(password, str):
            self._password = bytearray(password.encode("utf-8"))
        elif isinstance(password, (bytes, bytearray)):
            self._password = bytearray(password)
        else:
            raise InvalidCredentials("password must be text")

    @property
    def cleared(self) -> bool:
        return not any(self._password)

    def derive(self, salt: bytes = b"", params: KdfParams = DEFAULT_KDF) -> SecretKey:
        """Derive the session key from these credentials."""
        return derive_key(self.username, self._password, salt=salt, params=params)

    def clear(self) -> None:
        _wipe(self._password)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password=<redacted>)"

    def __enter__(self) -> "Credentials":
        return self

    def __exit__(self, *exc) -> None:
        self.clear()


# ---------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------

def _check_credentials(username, password) -> bytes:
    """Validate inputs; return the UTF-8 username."""
    if not isinstance(username, str) or not username.strip():
        raise InvalidCredentials("username must be non-empty text")
    if "\x00" in username:
        raise InvalidCredentials("username contains NUL")
    if isinstance(password, str):
        pw_blank = not password.strip()
        pw_nul = "\x00" in password
    elif isinstance(password, (bytes, bytearray)):
        pw_blank = not bytes(password).strip()
        pw_nul = 0 in password
    else:
        raise InvalidCredentials("password must be text")
    if pw_blank:
        raise InvalidCredentials("password must be non-empty")
    if pw_nul:
        raise InvalidCredentials("password contains NUL")
    return username.encode("utf-8")


def kdf_salt(username: bytes, journal_salt: bytes = b"") -> bytes:
    """Fixed-length argon2 salt bound to the username and optional journal salt."""
    h = hashes.Hash(hashes.SHA256())
    h.update(KDF_CONTEXT)
    h.update(len(journal_salt).to_bytes(4, "big"))
    h.update(journal_salt)
    h.update(username)
    return h.finalize()


def derive_key(
    username: str,
    password: TextOrBytes,
    salt: bytes = b"",
    params: KdfParams = DEFAULT_KDF,
) -> SecretKey:
    """Derive a 256-bit key from credentials using argon2id.

    Deterministic for identical inputs. A wrong password is not detected here;
    it simply yields a different key that later fails authentication.
    """
    user_bytes = _check_credentials(username, password)
    if isinstance(password, str):
        secret = bytearray(password.encode("utf-8"))
    else:
        secret = bytearray(password)
    try:
        raw = hash_secret_raw(
            secret=bytes(secret),
            salt=kdf_salt(user_bytes, salt),
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=KEY_LEN,
            type=Type.ID,
        )
    finally:
        _wipe(secret)
    logger.debug("derived key for user %r (journal salt: %s)", username, bool(salt))
    return SecretKey(raw)


# ---------------------------------------------------------------------
# Entry codec (AES-256-GCM)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class EncryptedEntry:
    """On-disk form of one entry: nonce followed by ciphertext with its tag."""

    nonce: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.nonce + self.ciphertext

    @classmethod
    def from_bytes(cls, blob: bytes) -> "EncryptedEntry":
        if len(blob) < NONCE_LEN + TAG_LEN:
            raise DecryptionFailed()
        return cls(nonce=bytes(blob[:NONCE_LEN]), ciphertext=bytes(blob[NONCE_LEN:]))


def aesgcm_encrypt(key: SecretKey, plaintext: bytes, aad: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    """Encrypt *plaintext* with AES-GCM; return (nonce, ciphertext)."""
    nonce = secrets.token_bytes(NONCE_LEN)
    ct = AESGCM(bytes(key.material())).encrypt(nonce, plaintext, aad)
    return nonce, ct


def aesgcm_decrypt(key: SecretKey, nonce: bytes, ciphertext: bytes, aad: Optional[bytes] = None) -> bytes:
    """Decrypt AES-GCM *ciphertext* with *nonce*; return plaintext."""
    return AESGCM(bytes(key.material())).decrypt(nonce, ciphertext, aad)


def encrypt_entry(plaintext: bytes, key: SecretKey, aad: Optional[bytes] = None) -> EncryptedEntry:
    """Seal *plaintext* under a fresh random nonce."""
    nonce, ct = aesgcm_encrypt(key, bytes(plaintext), aad)
    return EncryptedEntry(nonce=nonce, ciphertext=ct)


def decrypt_entry(entry: Union[EncryptedEntry, bytes], key: SecretKey, aad: Optional[bytes] = None) -> bytes:
    """Open *entry*; any authentication problem raises ``DecryptionFailed``."""
    if not isinstance(entry, EncryptedEntry):
        entry = EncryptedEntry.from_bytes(entry)
    if len(entry.nonce) != NONCE_LEN or len(entry.ciphertext) < TAG_LEN:
        raise DecryptionFailed()
    try:
        return aesgcm_decrypt(key, entry.nonce, entry.ciphertext, aad)
    except InvalidTag:
        raise DecryptionFailed() from None
