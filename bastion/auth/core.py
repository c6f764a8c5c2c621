"""
BastionAuth - Core types

Principal, API key credentials, and the credential store contract used by
the authentication guards.
"""

from __future__ import annotations

import asyncio
import hashlib
import secrets
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Protocol, runtime_checkable

from .hashing import TokenHasher


# ============================================================================
# Principal
# ============================================================================

@dataclass(frozen=True)
class Principal:
    """
    Authenticated identity bound to a request.

    Immutable once created. Resolved once per request by the authentication
    stage and read-only thereafter.

    Attributes:
        identifier: Stable principal id
        roles: Role names assigned on the credential
        permissions: Direct permission grants
        attributes: Free-form data (email, name, tier, ...)
    """
    identifier: str
    roles: FrozenSet[str] = frozenset()
    permissions: FrozenSet[str] = frozenset()
    attributes: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "roles", frozenset(self.roles))
        object.__setattr__(self, "permissions", frozenset(self.permissions))

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def get_attribute(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def with_attributes(self, **attributes: Any) -> "Principal":
        return replace(self, attributes={**self.attributes, **attributes})

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.identifier,
            "roles": sorted(self.roles),
            "permissions": sorted(self.permissions),
            "attributes": dict(self.attributes),
        }


# ============================================================================
# Credentials
# ============================================================================

@dataclass(frozen=True)
class ApiKeyCredential:
    """Stored API key: the secret is kept only as an Argon2 hash."""
    key_id: str
    principal_id: str
    secret_hash: str
    scopes: FrozenSet[str] = frozenset()
    expires_at: Optional[float] = None
    revoked: bool = False

    def is_usable(self, now: Optional[float] = None) -> bool:
        if self.revoked:
            return False
        if self.expires_at is None:
            return True
        return (now if now is not None else time.time()) < self.expires_at


@runtime_checkable
class CredentialStore(Protocol):
    """Lookup contract used by the guards."""

    async def get_principal(self, identifier: str) -> Optional[Principal]: ...

    async def get_principal_by_token(self, token: str) -> Optional[Principal]: ...

    async def get_api_key(self, key_id: str) -> Optional[ApiKeyCredential]: ...

    async def get_principal_by_password(self, identifier: str, password: str) -> Optional[Principal]: ...


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class MemoryCredentialStore:
    """
    In-memory credential storage for development/testing.

    Bearer tokens are indexed by SHA-256 digest; API key secrets and
    passwords are stored as Argon2 hashes.
    """

    def __init__(self, hasher: Optional[TokenHasher] = None):
        self.hasher = hasher or TokenHasher()
        self._principals: Dict[str, Principal] = {}
        self._tokens: Dict[str, str] = {}
        self._api_keys: Dict[str, ApiKeyCredential] = {}
        self._passwords: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    # Principals
    async def add_principal(self, principal: Principal) -> Principal:
        async with self._lock:
            self._principals[principal.identifier] = principal
            return principal

    async def get_principal(self, identifier: str) -> Optional[Principal]:
        return self._principals.get(identifier)

    # Passwords (HTTP Basic)
    async def set_password(self, principal_id: str, password: str) -> None:
        if principal_id not in self._principals:
            raise KeyError(f"Unknown principal {principal_id!r}")
        password_hash = self.hasher.hash(password)
        async with self._lock:
            self._passwords[principal_id] = password_hash

    async def get_principal_by_password(self, identifier: str, password: str) -> Optional[Principal]:
        password_hash = self._passwords.get(identifier)
        if password_hash is None or not self.hasher.verify(password_hash, password):
            return None
        return self._principals.get(identifier)

    # Bearer tokens
    async def issue_token(self, principal_id: str) -> str:
        """Issue an opaque bearer token for a known principal."""
        if principal_id not in self._principals:
            raise KeyError(f"Unknown principal {principal_id!r}")
        token = secrets.token_urlsafe(32)
        async with self._lock:
            self._tokens[_token_digest(token)] = principal_id
        return token

    async def revoke_token(self, token: str) -> bool:
        async with self._lock:
            return self._tokens.pop(_token_digest(token), None) is not None

    async def get_principal_by_token(self, token: str) -> Optional[Principal]:
        principal_id = self._tokens.get(_token_digest(token))
        if principal_id is None:
            return None
        return self._principals.get(principal_id)

    # API keys
    async def issue_api_key(
        self,
        principal_id: str,
        scopes: Iterable[str] = (),
        expires_at: Optional[float] = None,
    ) -> str:
        """
        Issue an API key.

        Returns:
            The plaintext ``<key_id>.<secret>``; only its hash is stored.
        """
        if principal_id not in self._principals:
            raise KeyError(f"Unknown principal {principal_id!r}")
        key_id = secrets.token_hex(8)
        secret = secrets.token_urlsafe(32)
        credential = ApiKeyCredential(
            key_id=key_id,
            principal_id=principal_id,
            secret_hash=self.hasher.hash(secret),
            scopes=frozenset(scopes),
            expires_at=expires_at,
        )
        async with self._lock:
            self._api_keys[key_id] = credential
        return f"{key_id}.{secret}"

    async def revoke_api_key(self, key_id: str) -> bool:
        async with self._lock:
            credential = self._api_keys.get(key_id)
            if credential is None:
                return False
            self._api_keys[key_id] = replace(credential, revoked=True)
            return True

    async def get_api_key(self, key_id: str) -> Optional[ApiKeyCredential]:
        return self._api_keys.get(key_id)


__all__ = [
    "Principal",
    "ApiKeyCredential",
    "CredentialStore",
    "MemoryCredentialStore",
]
