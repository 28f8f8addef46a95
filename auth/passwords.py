"""
auth/passwords.py -- Credential hashing and verification.

Security design decisions:
  Argon2id via argon2-cffi. Memory-hard, so GPU/ASIC brute force of a leaked
  users table is expensive. PasswordHasher generates a fresh 16-byte salt from
  os.urandom on every call and emits a PHC string
  ($argon2id$v=19$m=...,t=...,p=...$salt$hash), so the algorithm, version,
  cost parameters and salt all travel with the hash. verify() re-reads the
  parameters from the stored string, which keeps old hashes valid after the
  defaults change; needs_rehash() tells the login flow when to upgrade one.

  Comparison is constant time inside libargon2.

  The cost parameters come from Settings so tests can run with cheap ones.
  Production defaults are argon2-cffi's RFC 9106 low-memory profile.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from functools import cached_property, lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import HashingError as Argon2HashingError
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from auth.errors import HashingError, MalformedHashError, MismatchError
from core.config import get_settings

logger = logging.getLogger("gatehouse.auth")


class CredentialHasher:
    """Hash and verify passwords.

    Usage:
        hasher = CredentialHasher()
        stored = hasher.hash("correct horse")
        hasher.verify(stored, "correct horse")   # returns None
        hasher.verify(stored, "wrong")           # raises MismatchError
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._ph = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
        )

    def hash(self, password: str | bytes) -> str:
        """Return a PHC-encoded Argon2id hash of password with a fresh salt."""
        try:
            return self._ph.hash(password)
        except Argon2HashingError as exc:
            logger.error("Password hashing failed: %s", exc)
            raise HashingError("Password hashing failed.") from exc

    def verify(self, stored_hash: str, candidate: str | bytes) -> None:
        """Check candidate against stored_hash.

        Raises MalformedHashError if stored_hash is not a parseable Argon2 PHC
        string and MismatchError if the password does not match.
        """
        try:
            self._ph.verify(stored_hash, candidate)
        except VerifyMismatchError as exc:
            raise MismatchError() from exc
        except InvalidHashError as exc:
            raise MalformedHashError() from exc
        except VerificationError as exc:
            # Right prefix, but libargon2 could not decode the rest.
            raise MalformedHashError() from exc

    def needs_rehash(self, stored_hash: str) -> bool:
        """True if stored_hash was produced with different cost parameters."""
        try:
            return self._ph.check_needs_rehash(stored_hash)
        except InvalidHashError:
            return False

    @cached_property
    def dummy_hash(self) -> str:
        """Hash verified against when a login names an unknown user.

        Computed once per hasher so every verification runs at the same cost
        whether or not the username exists.
        """
        return self.hash("gatehouse_timing_dummy")


@lru_cache
def get_hasher() -> CredentialHasher:
    """Return the CredentialHasher configured from Settings."""
    settings = get_settings()
    return CredentialHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )
