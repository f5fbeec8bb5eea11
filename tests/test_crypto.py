"""Tests for padvault.crypto module."""

import struct

import pytest

from padvault import crypto
from padvault.errors import DecryptionError

PLAIN = b"PK\x03\x04" + b"container payload " * 20


@pytest.fixture
def encrypted():
    return crypto.encrypt(PLAIN, "correct horse")


class TestEncryptDecrypt:
    """Tests for whole-container encryption."""

    def test_roundtrip(self, encrypted):
        assert crypto.decrypt(encrypted, "correct horse") == PLAIN

    def test_output_layout(self, encrypted):
        assert encrypted.startswith(crypto.MAGIC)
        assert crypto.is_encrypted(encrypted)
        # AES-GCM adds a 16-byte tag
        assert len(encrypted) == crypto.HEADER_LEN + len(PLAIN) + 16

    def test_salt_and_nonce_are_random(self):
        a = crypto.encrypt(PLAIN, "k")
        b = crypto.encrypt(PLAIN, "k")
        assert a != b

    def test_kdf_params_read_back_from_header(self):
        kdf = crypto.KdfParams(time_cost=2, memory_kib=16, parallelism=1)
        data = crypto.encrypt(PLAIN, "k", kdf)
        header = crypto.read_header(data)
        assert header.kdf == kdf
        assert crypto.decrypt(data, "k") == PLAIN


class TestWrongKey:
    """Tests for key mismatch and tampering."""

    def test_quick_match(self, encrypted):
        assert crypto.quick_match(encrypted, "correct horse")
        assert not crypto.quick_match(encrypted, "battery staple")

    def test_decrypt_wrong_key_raises(self, encrypted):
        with pytest.raises(DecryptionError):
            crypto.decrypt(encrypted, "battery staple")

    def test_tampered_ciphertext_raises(self, encrypted):
        tampered = bytearray(encrypted)
        tampered[-1] ^= 0x01
        with pytest.raises(DecryptionError) as exc_info:
            crypto.decrypt(bytes(tampered), "correct horse")
        assert exc_info.value.last_error is not None

    def test_tampered_header_fails_key_check(self, encrypted):
        tampered = bytearray(encrypted)
        tampered[20] ^= 0x01  # inside the salt
        assert not crypto.quick_match(bytes(tampered), "correct horse")


class TestHeader:
    """Tests for header validation."""

    def test_plain_zip_is_not_encrypted(self):
        assert not crypto.is_encrypted(PLAIN)
        assert not crypto.quick_match(PLAIN, "k")

    def test_truncated_raises(self):
        with pytest.raises(DecryptionError):
            crypto.read_header(crypto.MAGIC + b"\x01")

    def test_unknown_version_raises(self, encrypted):
        data = bytearray(encrypted)
        data[4] = 99
        with pytest.raises(DecryptionError, match="version"):
            crypto.read_header(bytes(data))

    def test_absurd_memory_cost_rejected(self, encrypted):
        data = bytearray(encrypted)
        struct.pack_into(">I", data, 9, 0xFFFFFFFF)
        with pytest.raises(DecryptionError):
            crypto.read_header(bytes(data))
        assert not crypto.quick_match(bytes(data), "correct horse")
