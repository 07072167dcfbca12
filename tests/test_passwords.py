"""Unit tests for auth/passwords.py -- CredentialHasher.

Covers:
- hash() produces a salted bcrypt hash that verify() accepts
- verify() rejects a wrong password with a plain False
- passwords longer than bcrypt's 72-byte window hash and verify without raising
- a malformed stored hash raises ValueError instead of reading as a failed login
- burn() runs without raising
"""

import pytest

from auth.passwords import CredentialHasher


@pytest.fixture(scope="module")
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


class TestHashAndVerify:
    def test_round_trip(self, hasher):
        stored = hasher.hash("Secret123")
        assert stored.startswith("$2")
        assert hasher.verify("Secret123", stored) is True

    def test_wrong_password_is_false(self, hasher):
        stored = hasher.hash("Secret123")
        assert hasher.verify("Secret124", stored) is False

    def test_same_password_gets_fresh_salt(self, hasher):
        """Two hashes of one password differ, so equal passwords are not visible in the table."""
        assert hasher.hash("Secret123") != hasher.hash("Secret123")

    def test_cost_factor_comes_from_rounds(self, hasher):
        assert hasher.hash("Secret123").split("$")[2] == "04"


class TestLongPasswords:
    def test_long_password_hashes_and_verifies(self, hasher):
        password = "Aa1" + "x" * 90
        stored = hasher.hash(password)
        assert hasher.verify(password, stored) is True

    def test_only_first_72_bytes_count(self, hasher):
        password = "Aa1" + "x" * 90
        stored = hasher.hash(password)
        assert hasher.verify(password[:72], stored) is True


class TestMalformedHash:
    def test_malformed_hash_raises(self, hasher):
        with pytest.raises(ValueError, match="malformed"):
            hasher.verify("Secret123", "not-a-bcrypt-hash")


def test_burn_does_not_raise(hasher):
    assert hasher.burn("anything at all") is None
