"""Unit tests for auth/passwords.py -- Argon2 credential hashing.

Covers:
- hash() output is a self-describing Argon2id PHC string
- verify() accepts the original password and rejects others
- Salt uniqueness: same password hashed twice gives different strings
- Malformed stored hashes raise MalformedHashError
- needs_rehash() detects outdated cost parameters
"""

import pytest

from auth.errors import MalformedHashError, MismatchError
from auth.passwords import CredentialHasher


class TestHashAndVerify:
    def test_hash_is_phc_argon2id(self, hasher: CredentialHasher) -> None:
        encoded = hasher.hash("hunter2")
        assert encoded.startswith("$argon2id$v=19$")
        assert "hunter2" not in encoded

    @pytest.mark.parametrize("password", ["correct-pw", "pässwörd", " spaced ", "x" * 200])
    def test_verify_accepts_original(self, hasher: CredentialHasher, password: str) -> None:
        hasher.verify(hasher.hash(password), password)

    def test_verify_rejects_other_password(self, hasher: CredentialHasher) -> None:
        stored = hasher.hash("correct-pw")
        with pytest.raises(MismatchError):
            hasher.verify(stored, "wrong-pw")

    def test_verify_is_case_and_whitespace_sensitive(self, hasher: CredentialHasher) -> None:
        stored = hasher.hash("Secret")
        for candidate in ("secret", "Secret ", " Secret"):
            with pytest.raises(MismatchError):
                hasher.verify(stored, candidate)

    def test_bytes_and_str_are_interchangeable(self, hasher: CredentialHasher) -> None:
        hasher.verify(hasher.hash(b"raw-bytes"), "raw-bytes")
        hasher.verify(hasher.hash("raw-bytes"), b"raw-bytes")

    def test_same_password_gets_fresh_salt(self, hasher: CredentialHasher) -> None:
        first = hasher.hash("same")
        second = hasher.hash("same")
        assert first != second
        hasher.verify(first, "same")
        hasher.verify(second, "same")


class TestMalformedHashes:
    @pytest.mark.parametrize(
        "stored",
        ["", "plaintext", "$2b$12$abcdefghijklmnopqrstuv", "$argon2id$garbage"],
    )
    def test_unparseable_hash_raises_malformed(self, hasher: CredentialHasher, stored: str) -> None:
        with pytest.raises(MalformedHashError):
            hasher.verify(stored, "anything")


class TestNeedsRehash:
    def test_current_parameters_do_not_need_rehash(self, hasher: CredentialHasher) -> None:
        assert hasher.needs_rehash(hasher.hash("pw")) is False

    def test_different_parameters_need_rehash(self, hasher: CredentialHasher) -> None:
        stronger = CredentialHasher(time_cost=2, memory_cost=2048, parallelism=1)
        assert stronger.needs_rehash(hasher.hash("pw")) is True

    def test_old_hash_still_verifies_under_new_parameters(self, hasher: CredentialHasher) -> None:
        stronger = CredentialHasher(time_cost=2, memory_cost=2048, parallelism=1)
        stronger.verify(hasher.hash("pw"), "pw")

    def test_malformed_hash_does_not_need_rehash(self, hasher: CredentialHasher) -> None:
        assert hasher.needs_rehash("not-a-hash") is False


def test_dummy_hash_is_cached(hasher: CredentialHasher) -> None:
    assert hasher.dummy_hash is hasher.dummy_hash
    with pytest.raises(MismatchError):
        hasher.verify(hasher.dummy_hash, "whatever")
