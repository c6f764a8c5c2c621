"""
BastionAuth - Secret hashing

Argon2id hashing for API key secrets and HTTP Basic passwords.
"""

from __future__ import annotations

from argon2 import PasswordHasher as Argon2PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError


class TokenHasher:
    """
    Secret hasher using Argon2id.

    Argon2id is memory-hard and GPU-resistant. API key secrets are stored
    only as Argon2 hashes; the plaintext is shown once at issue time.

    Security parameters default to argon2-cffi's recommendations. Tests
    construct a cheaper hasher (``time_cost=1, memory_cost=8``).
    """

    def __init__(
        self,
        time_cost: int = 2,
        memory_cost: int = 65536,  # 64 MB
        parallelism: int = 4,
        hash_len: int = 32,
        salt_len: int = 16,
    ):
        self.hasher = Argon2PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_len,
            salt_len=salt_len,
        )

    def hash(self, secret: str) -> str:
        """
        Hash secret.

        Example output:
            $argon2id$v=19$m=65536,t=2,p=4$saltbase64$hashbase64
        """
        return self.hasher.hash(secret)

    def verify(self, secret_hash: str, secret: str) -> bool:
        """
        Verify secret against hash.

        Returns False on mismatch or on a malformed hash.
        """
        try:
            return self.hasher.verify(secret_hash, secret)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def check_needs_rehash(self, secret_hash: str) -> bool:
        try:
            return self.hasher.check_needs_rehash(secret_hash)
        except InvalidHashError:
            return True


__all__ = ["TokenHasher"]
