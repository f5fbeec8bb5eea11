"""padvault - Whole-container encryption.

Encrypted container layout (big-endian):

    magic "PVBX" | version u8 | time_cost u32 | memory_kib u32 | parallelism u8
    | salt 16B | nonce 12B | key_check 16B | AES-256-GCM ciphertext+tag

Argon2id turns the password into 64 bytes: the first half is the AES key, the
second half keys an HMAC-SHA256 over the header prefix whose first 16 bytes
are stored as key_check. quick_match() therefore tells a wrong password from a
right one by reading the header only, without touching the ciphertext. The
full header is bound to the ciphertext as GCM associated data.

KDF parameters are read back from the header, so containers stay readable
after the configured cost changes.
"""

from __future__ import annotations

import hmac
import logging
import os
import struct
from dataclasses import dataclass
from functools import lru_cache

from argon2.low_level import Type as Argon2Type
from argon2.low_level import hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from padvault.config import KDF_MEMORY_KIB, KDF_PARALLELISM, KDF_TIME_COST
from padvault.errors import DecryptionError

logger = logging.getLogger(__name__)

MAGIC = b"PVBX"
FORMAT_VERSION = 1
SALT_LEN = 16
NONCE_LEN = 12
KEY_CHECK_LEN = 16

_PREFIX = struct.Struct(f">4sBIIB{SALT_LEN}s{NONCE_LEN}s")
HEADER_LEN = _PREFIX.size + KEY_CHECK_LEN

# Refuse headers asking for more than 1 GiB of KDF memory
_MAX_MEMORY_KIB = 1024 * 1024
_MAX_TIME_COST = 64


@dataclass(frozen=True)
class KdfParams:
    time_cost: int = KDF_TIME_COST
    memory_kib: int = KDF_MEMORY_KIB
    parallelism: int = KDF_PARALLELISM


@dataclass(frozen=True)
class ContainerHeader:
    version: int
    kdf: KdfParams
    salt: bytes
    nonce: bytes
    key_check: bytes
    raw: bytes

    @property
    def prefix(self) -> bytes:
        return self.raw[: _PREFIX.size]


def is_encrypted(data: bytes) -> bool:
    """True when the bytes start with the encrypted-container magic."""
    return bytes(data[: len(MAGIC)]) == MAGIC


@lru_cache(maxsize=64)
def _derive(password: str, salt: bytes, kdf: KdfParams) -> tuple[bytes, bytes]:
    material = hash_secret_raw(
        password.encode("utf-8"),
        salt,
        time_cost=kdf.time_cost,
        memory_cost=kdf.memory_kib,
        parallelism=kdf.parallelism,
        hash_len=64,
        type=Argon2Type.ID,
    )
    return material[:32], material[32:]


def _key_check(mac_key: bytes, prefix: bytes) -> bytes:
    return hmac.new(mac_key, prefix, "sha256").digest()[:KEY_CHECK_LEN]


def read_header(data: bytes) -> ContainerHeader:
    """Parse and sanity-check the header of an encrypted container.

    Raises:
        DecryptionError: Wrong magic, unknown version, truncated data, or
            out-of-range KDF parameters.
    """
    if len(data) < HEADER_LEN + 16:
        raise DecryptionError("file is too short to be an encrypted bank")
    magic, version, time_cost, memory_kib, parallelism, salt, nonce = _PREFIX.unpack_from(data)
    if magic != MAGIC:
        raise DecryptionError("not an encrypted bank")
    if version != FORMAT_VERSION:
        raise DecryptionError(f"unsupported container version {version}")
    if not (1 <= time_cost <= _MAX_TIME_COST and parallelism >= 1):
        raise DecryptionError("invalid key derivation parameters")
    if not (8 * parallelism <= memory_kib <= _MAX_MEMORY_KIB):
        raise DecryptionError("invalid key derivation parameters")

    raw = bytes(data[:HEADER_LEN])
    return ContainerHeader(
        version=version,
        kdf=KdfParams(time_cost=time_cost, memory_kib=memory_kib, parallelism=parallelism),
        salt=salt,
        nonce=nonce,
        key_check=raw[_PREFIX.size :],
        raw=raw,
    )


def encrypt(container: bytes, key: str, kdf: KdfParams | None = None) -> bytes:
    """Encrypt a container with a password-like key.

    Args:
        container: Plain archive bytes.
        key: Password or derived key string.
        kdf: Argon2id cost parameters; config defaults when None.

    Returns:
        Encrypted container bytes.
    """
    kdf = kdf or KdfParams()
    salt = os.urandom(SALT_LEN)
    nonce = os.urandom(NONCE_LEN)
    prefix = _PREFIX.pack(
        MAGIC, FORMAT_VERSION, kdf.time_cost, kdf.memory_kib, kdf.parallelism, salt, nonce
    )
    enc_key, mac_key = _derive(key, salt, kdf)
    header = prefix + _key_check(mac_key, prefix)
    ciphertext = AESGCM(enc_key).encrypt(nonce, bytes(container), header)
    logger.debug("Encrypted container: %d -> %d bytes", len(container), len(ciphertext))
    return header + ciphertext


def quick_match(container: bytes, key: str) -> bool:
    """Cheap header-only test of whether ``key`` opens the container.

    Never raises; malformed headers simply do not match.
    """
    try:
        header = read_header(container)
    except DecryptionError:
        return False
    _, mac_key = _derive(key, header.salt, header.kdf)
    return hmac.compare_digest(_key_check(mac_key, header.prefix), header.key_check)


def decrypt(container: bytes, key: str) -> bytes:
    """Decrypt a container.

    Raises:
        DecryptionError: Bad header, wrong key, or tampered ciphertext.
    """
    header = read_header(container)
    enc_key, mac_key = _derive(key, header.salt, header.kdf)
    if not hmac.compare_digest(_key_check(mac_key, header.prefix), header.key_check):
        raise DecryptionError("wrong key")
    try:
        return AESGCM(enc_key).decrypt(header.nonce, bytes(container[HEADER_LEN:]), header.raw)
    except InvalidTag as e:
        raise DecryptionError("container is corrupted or was tampered with", last_error=e) from e


__all__ = [
    "MAGIC",
    "HEADER_LEN",
    "KdfParams",
    "ContainerHeader",
    "is_encrypted",
    "read_header",
    "encrypt",
    "decrypt",
    "quick_match",
]
