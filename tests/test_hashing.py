"""Tests for padvault.utils.hashing module."""

from padvault.utils.hashing import bank_duplicate_signature, fnv1a_32, sha256_bytes


class TestSha256Bytes:
    """Tests for sha256_bytes function."""

    def test_empty_bytes(self):
        """Empty bytes should produce known SHA256 hash."""
        expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert sha256_bytes(b"") == expected

    def test_known_input(self):
        expected = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
        assert sha256_bytes(b"hello") == expected

    def test_returns_hex_only(self):
        """Hash should be hex digest only, no prefix."""
        result = sha256_bytes(b"test")
        assert not result.startswith("sha256:")
        assert len(result) == 64


class TestFnv1a:
    """Tests for fnv1a_32 function."""

    def test_empty_is_offset_basis(self):
        assert fnv1a_32("") == "811c9dc5"

    def test_known_vectors(self):
        # Published FNV-1a 32-bit test vectors
        assert fnv1a_32("a") == "e40c292c"
        assert fnv1a_32("foobar") == "bf9cf968"

    def test_always_eight_hex_chars(self):
        for text in ["x", "padvault", "日本語"]:
            digest = fnv1a_32(text)
            assert len(digest) == 8
            int(digest, 16)


class TestBankDuplicateSignature:
    """Tests for bank_duplicate_signature function."""

    def test_format(self):
        sig = bank_duplicate_signature("Drums", ["Kick", "Snare"])
        assert sig.startswith("sig:")
        assert sig.endswith(":2")
        assert len(sig.split(":")[1]) == 8

    def test_case_and_whitespace_insensitive(self):
        a = bank_duplicate_signature("  Drums ", ["KICK", " snare"])
        b = bank_duplicate_signature("drums", ["kick", "snare"])
        assert a == b

    def test_pad_order_matters(self):
        a = bank_duplicate_signature("Drums", ["Kick", "Snare"])
        b = bank_duplicate_signature("Drums", ["Snare", "Kick"])
        assert a != b

    def test_none_for_empty_name_or_pads(self):
        assert bank_duplicate_signature("", ["Kick"]) is None
        assert bank_duplicate_signature(None, ["Kick"]) is None
        assert bank_duplicate_signature("Drums", []) is None

    def test_non_string_pad_names_count(self):
        sig = bank_duplicate_signature("Drums", [None, "Kick"])
        assert sig.endswith(":2")
