"""
BastionAuth - Guards

Each guard inspects one credential source and either returns a Principal or
None. Guards never raise for a missing or invalid credential; the
authentication stage decides what a total failure means.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional

from ..request import Request
from .core import CredentialStore, Principal
from .hashing import TokenHasher

logger = logging.getLogger("bastion.auth")


# ============================================================================
# Guard Base
# ============================================================================

class Guard:
    """
    Base guard. Subclasses implement ``authenticate``.

    ``challenge`` is the ``WWW-Authenticate`` value sent with a 401 when the
    guard is configured (None for guards without an HTTP auth scheme).
    """

    name = "guard"
    challenge: Optional[str] = None

    async def authenticate(self, request: Request) -> Optional[Principal]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


# ============================================================================
# Built-in Guards
# ============================================================================

class SessionGuard(Guard):
    """
    Session guard - principal id stored in the session.

    Args:
        store: Credential store used to load the principal
        session_key: Session key holding the principal id
    """

    name = "session"

    def __init__(self, store: CredentialStore, session_key: str = "principal_id"):
        self.store = store
        self.session_key = session_key

    async def authenticate(self, request: Request) -> Optional[Principal]:
        if request.session is None:
            return None
        principal_id = request.session.get(self.session_key)
        if not principal_id:
            return None
        return await self.store.get_principal(str(principal_id))


class BearerTokenGuard(Guard):
    """Bearer guard - ``Authorization: Bearer <token>``."""

    name = "bearer"

    def __init__(self, store: CredentialStore):
        self.store = store

    async def authenticate(self, request: Request) -> Optional[Principal]:
        auth_header = request.header("authorization")
        if not auth_header:
            return None
        scheme, _, token = auth_header.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            return None
        return await self.store.get_principal_by_token(token)


class ApiKeyGuard(Guard):
    """
    API key guard - ``X-API-Key: <key_id>.<secret>``.

    The secret is verified against the stored Argon2 hash. Revoked or
    expired keys are rejected.
    """

    name = "api_key"

    def __init__(self, store: CredentialStore, hasher: Optional[TokenHasher] = None,
                 header_name: str = "x-api-key"):
        self.store = store
        self.hasher = hasher or getattr(store, "hasher", None) or TokenHasher()
        self.header_name = header_name

    async def authenticate(self, request: Request) -> Optional[Principal]:
        api_key = request.header(self.header_name)
        if not api_key:
            return None
        key_id, sep, secret = api_key.partition(".")
        if not sep or not key_id or not secret:
            return None

        credential = await self.store.get_api_key(key_id)
        if credential is None or not credential.is_usable():
            return None
        if not self.hasher.verify(credential.secret_hash, secret):
            logger.debug("API key secret mismatch for key %s", key_id)
            return None

        principal = await self.store.get_principal(credential.principal_id)
        if principal is None:
            return None
        return principal.with_attributes(
            api_key_id=credential.key_id,
            api_key_scopes=sorted(credential.scopes),
        )


class BasicAuthGuard(Guard):
    """
    HTTP Basic guard - ``Authorization: Basic base64(<id>:<password>)``.

    The password is verified by the credential store against its Argon2
    hash. Malformed credentials are treated as absent.
    """

    name = "basic"

    def __init__(self, store: CredentialStore, realm: str = "bastion"):
        self.store = store
        self.realm = realm
        self.challenge = f'Basic realm="{realm}"'

    async def authenticate(self, request: Request) -> Optional[Principal]:
        auth_header = request.header("authorization")
        if not auth_header:
            return None
        scheme, _, encoded = auth_header.partition(" ")
        encoded = encoded.strip()
        if scheme.lower() != "basic" or not encoded:
            return None

        try:
            decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            logger.debug("Malformed Basic credentials")
            return None

        identifier, sep, password = decoded.partition(":")
        if not sep or not identifier:
            return None
        return await self.store.get_principal_by_password(identifier, password)


__all__ = ["Guard", "SessionGuard", "BearerTokenGuard", "ApiKeyGuard", "BasicAuthGuard"]
