"""
tests/test_passwords.py -- Unit tests for PasswordHasher (auth/passwords.py).

Coverage:
  - hash() output is bcrypt, salted, and verifies against its input
  - verify() returns False for wrong passwords and malformed hashes
  - verify_dummy() always returns False
  - the configured cost factor ends up in the hash prefix
"""

from __future__ import annotations

import pytest

from auth.passwords import PasswordHasher


class TestHash:
    def test_hash_is_not_plaintext(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("correct horse battery staple")
        assert hashed != "correct horse battery staple"
        assert hashed.startswith("$2")

    def test_same_password_gets_different_salt(self, hasher: PasswordHasher) -> None:
        """Two hashes of the same input must differ (per-call salt)."""
        assert hasher.hash("s3cret!") != hasher.hash("s3cret!")

    def test_rounds_in_hash_prefix(self) -> None:
        """The cost factor is encoded in the hash as $2b$NN$."""
        hashed = PasswordHasher(rounds=5).hash("pw")
        assert hashed.split("$")[2] == "05"


class TestVerify:
    def test_roundtrip(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("hunter22")
        assert hasher.verify("hunter22", hashed) is True

    def test_wrong_password(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("hunter22")
        assert hasher.verify("hunter23", hashed) is False

    def test_unicode_password(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("pässwörd-ß")
        assert hasher.verify("pässwörd-ß", hashed) is True
        assert hasher.verify("passwort-ss", hashed) is False

    @pytest.mark.parametrize("bad_hash", ["", "not-a-hash", "$2b$04$short"])
    def test_malformed_hash_returns_false(self, hasher: PasswordHasher, bad_hash: str) -> None:
        """A corrupt stored hash must never raise out of verify()."""
        assert hasher.verify("anything", bad_hash) is False

    def test_verify_dummy_is_always_false(self, hasher: PasswordHasher) -> None:
        assert hasher.verify_dummy("bennu_timing_dummy") is False
        assert hasher.verify_dummy("whatever") is False
