"""
Security Stages - CSRF protection and response security headers.

Provides:
- CsrfTokenManager: per-session 40-character tokens
- CsrfStage: synchronizer-token validation for mutating requests
- SecurityHeadersStage: baseline hardening headers with overrides
"""

from __future__ import annotations

import hmac
import logging
import secrets
from typing import Dict, FrozenSet, Mapping, Optional
from urllib.parse import unquote

from ..faults import CSRFMismatchFault
from ..middleware import ExclusionPolicy, Handler, Stage
from ..request import Request
from ..response import Response
from ..sessions import Session


# ============================================================================
# CSRF Protection
# ============================================================================

class CsrfTokenManager:
    """
    Issues and validates CSRF tokens bound to a session.

    One token is active per session; ``generate_token`` overwrites any
    previous value.
    """

    SESSION_KEY = "_csrf_token"
    TOKEN_BYTES = 30  # token_urlsafe(30) -> 40 characters

    def __init__(self, session_key: str = SESSION_KEY):
        self.session_key = session_key

    def generate_token(self, session: Session) -> str:
        """Generate a new token and store it on the session."""
        token = secrets.token_urlsafe(self.TOKEN_BYTES)
        session.set(self.session_key, token)
        return token

    def get_token(self, session: Optional[Session]) -> Optional[str]:
        if session is None:
            return None
        return session.get(self.session_key)

    def ensure_token(self, session: Session) -> str:
        """Return the session token, generating one if absent."""
        return self.get_token(session) or self.generate_token(session)

    def validate(self, session: Optional[Session], submitted: Optional[str]) -> bool:
        """Constant-time comparison of the submitted token with the session token."""
        stored = self.get_token(session)
        if not stored or not submitted:
            return False
        return hmac.compare_digest(stored.encode(), submitted.encode())


class CsrfStage(Stage):
    """
    CSRF protection stage.

    Flow:
    1. Safe methods (GET/HEAD/OPTIONS) pass without validation
    2. Mutating methods must submit the session token via the
       ``X-CSRF-TOKEN`` header, the ``_token`` form field, or the
       URL-encoded ``X-XSRF-TOKEN`` header; otherwise 419
    3. On the way back the current token is exposed as a header and an
       ``XSRF-TOKEN`` cookie readable by client scripts

    Args:
        manager: Token manager
        header_name: Primary token header
        xsrf_header_name: Header carrying the URL-encoded cookie value
        form_field: Form/JSON field carrying the token
        cookie_name: Name of the script-readable cookie
        cookie_secure: Mark the cookie Secure
        cookie_samesite: SameSite attribute of the cookie
        exclusion: Requests that bypass CSRF handling
        logger: Logger (``bastion.security`` by default)
    """

    name = "csrf"

    SAFE_METHODS: FrozenSet[str] = frozenset({"GET", "HEAD", "OPTIONS"})

    def __init__(
        self,
        manager: Optional[CsrfTokenManager] = None,
        *,
        header_name: str = "X-CSRF-TOKEN",
        xsrf_header_name: str = "X-XSRF-TOKEN",
        form_field: str = "_token",
        cookie_name: str = "XSRF-TOKEN",
        cookie_secure: bool = True,
        cookie_samesite: str = "Lax",
        exclusion: Optional[ExclusionPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        self.manager = manager or CsrfTokenManager()
        self.header_name = header_name
        self.xsrf_header_name = xsrf_header_name
        self.form_field = form_field
        self.cookie_name = cookie_name
        self.cookie_secure = cookie_secure
        self.cookie_samesite = cookie_samesite
        self.logger = logger or logging.getLogger("bastion.security")

    def _submitted_token(self, request: Request) -> Optional[str]:
        token = request.header(self.header_name)
        if token:
            return token

        token = request.input(self.form_field)
        if isinstance(token, str) and token:
            return token

        token = request.header(self.xsrf_header_name)
        if token:
            return unquote(token)
        return None

    def _reject(self, request: Request, reason: str) -> Response:
        self.logger.warning(
            "CSRF token mismatch",
            extra={"context": {**request.context(), "reason": reason}},
        )
        return Response.from_fault(CSRFMismatchFault(reason=reason))

    async def process(self, request: Request, next_handler: Handler) -> Response:
        session = request.session

        if request.method not in self.SAFE_METHODS:
            if session is None:
                return self._reject(request, "no_session")
            submitted = self._submitted_token(request)
            if submitted is None:
                return self._reject(request, "missing")
            if not self.manager.validate(session, submitted):
                return self._reject(request, "mismatch")

        token = self.manager.ensure_token(session) if session is not None else None
        if token is not None:
            request.state["csrf_token"] = token

        response = await next_handler(request)

        if token is not None:
            response.set_header(self.header_name, token)
            response.set_cookie(
                self.cookie_name,
                token,
                secure=self.cookie_secure,
                httponly=False,
                samesite=self.cookie_samesite,
            )
        return response


# ============================================================================
# Security Headers
# ============================================================================

class SecurityHeadersStage(Stage):
    """
    Adds baseline security headers to every response.

    Headers already present on the response are never overwritten.
    ``Strict-Transport-Security`` is built from the ``hsts_*`` arguments and
    ``permissions_policy`` replaces the baseline policy. ``overrides``
    replace any baseline value; an empty override removes the header.

    Baseline:
    - X-Content-Type-Options: nosniff
    - X-Frame-Options: DENY
    - Referrer-Policy: strict-origin-when-cross-origin
    - Strict-Transport-Security: max-age=31536000; includeSubDomains
    - Permissions-Policy: camera=(), microphone=(), geolocation=(), ...
    - Cross-Origin-Opener/Embedder/Resource-Policy
    - Cache-Control: no-store, no-cache, must-revalidate
    - Pragma: no-cache
    """

    name = "security_headers"

    BASELINE: Mapping[str, str] = {
        "x-content-type-options": "nosniff",
        "x-frame-options": "DENY",
        "referrer-policy": "strict-origin-when-cross-origin",
        "strict-transport-security": "max-age=31536000; includeSubDomains",
        "permissions-policy": (
            "camera=(), microphone=(), geolocation=(), payment=(), usb=(), "
            "magnetometer=(), gyroscope=(), accelerometer=()"
        ),
        "cross-origin-opener-policy": "same-origin",
        "cross-origin-embedder-policy": "require-corp",
        "cross-origin-resource-policy": "same-origin",
        "cache-control": "no-store, no-cache, must-revalidate",
        "pragma": "no-cache",
    }

    def __init__(
        self,
        overrides: Optional[Mapping[str, Optional[str]]] = None,
        *,
        hsts_max_age: int = 31536000,
        hsts_include_subdomains: bool = True,
        hsts_preload: bool = False,
        permissions_policy: Optional[str] = None,
        exclusion: Optional[ExclusionPolicy] = None,
    ):
        super().__init__(exclusion=exclusion)
        if hsts_max_age < 0:
            raise ValueError("hsts_max_age must be >= 0")
        headers: Dict[str, str] = dict(self.BASELINE)
        headers["strict-transport-security"] = self.build_hsts(
            hsts_max_age, hsts_include_subdomains, hsts_preload
        )
        if permissions_policy:
            headers["permissions-policy"] = permissions_policy
        for header, value in (overrides or {}).items():
            key = header.lower()
            if value:
                headers[key] = value
            else:
                headers.pop(key, None)
        self._headers = headers

    @staticmethod
    def build_hsts(max_age: int, include_subdomains: bool = True, preload: bool = False) -> str:
        value = f"max-age={max_age}"
        if include_subdomains:
            value += "; includeSubDomains"
        if preload:
            value += "; preload"
        return value

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._headers)

    async def process(self, request: Request, next_handler: Handler) -> Response:
        response = await next_handler(request)
        for header, value in self._headers.items():
            response.headers.setdefault(header, value)
        return response


__all__ = [
    "CsrfTokenManager",
    "CsrfStage",
    "SecurityHeadersStage",
]
