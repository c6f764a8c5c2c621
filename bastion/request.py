"""
Request - The inbound HTTP request as seen by pipeline stages.

Provides:
- Case-insensitive header access
- Query, form-body and JSON payload mappings (mutable during the inbound pass)
- Client IP resolution with optional proxy-header support
- Content negotiation helpers used by the auth and cache stages
- Per-request ``state`` dict shared by stages
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from ._datastructures import HeaderSource, Headers, parse_cookie_header
from .patterns import redact

if TYPE_CHECKING:
    from .auth.core import Principal
    from .sessions import Session


class Request:
    """
    Inbound HTTP request.

    Args:
        method: HTTP method (upper-cased)
        path: URL path without query string
        headers: Header mapping or ASGI raw header pairs
        query: Query parameters (values may be str or list of str)
        body: Form body parameters (may nest arbitrarily)
        json: Decoded JSON payload, if any
        client: ``(host, port)`` tuple of the direct peer
        session: Session bound to the request, if any
        route_name: Name of the matched route, used by route-scoped limits
        trust_proxy: Honour ``X-Forwarded-For`` / ``Forwarded`` headers
    """

    def __init__(
        self,
        method: str = "GET",
        path: str = "/",
        headers: HeaderSource = None,
        query: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        json: Any = None,
        client: Optional[Tuple[str, int]] = None,
        *,
        session: Optional["Session"] = None,
        route_name: Optional[str] = None,
        scheme: str = "http",
        trust_proxy: bool = False,
    ):
        self.method = method.upper()
        self.path = path or "/"
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)
        self.query: Dict[str, Any] = dict(query or {})
        self.body: Dict[str, Any] = dict(body or {})
        self.json = json
        self.client = client
        self.session = session
        self.route_name = route_name
        self.scheme = scheme
        self.trust_proxy = trust_proxy
        self.principal: Optional["Principal"] = None
        self.state: Dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.path}>"

    # ========================================================================
    # Headers
    # ========================================================================

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get a header value (case-insensitive)."""
        return self.headers.get(name, default)

    def user_agent(self) -> str:
        return self.header("user-agent", "") or ""

    def cookies(self) -> Dict[str, str]:
        return parse_cookie_header(self.header("cookie"))

    def _build_url(self, query: Dict[str, Any]) -> str:
        host = self.header("host") or "localhost"
        url = f"{self.scheme}://{host}{self.path}"
        if query:
            url += "?" + urlencode(query, doseq=True)
        return url

    @property
    def url(self) -> str:
        """Full request URL reconstructed from scheme, host, path and query."""
        return self._build_url(self.query)

    @property
    def safe_url(self) -> str:
        """Request URL with sensitive query values replaced by ``[REDACTED]``."""
        return self._build_url(redact(self.query))

    # ========================================================================
    # Client IP (with proxy support)
    # ========================================================================

    def client_ip(self) -> str:
        """
        Get client IP address.

        Respects ``trust_proxy`` to parse forwarded headers.
        """
        if self.trust_proxy:
            forwarded_for = self.header("x-forwarded-for")
            if forwarded_for:
                first = forwarded_for.split(",")[0].strip()
                if first:
                    return first

            forwarded = self.header("forwarded")
            if forwarded:
                match = re.search(r"for=([^;,]+)", forwarded)
                if match:
                    ip_part = match.group(1).strip('"')
                    if ip_part.startswith("["):
                        return ip_part[1:].split("]", 1)[0]
                    # IPv4 with port; bare IPv6 has more than one colon.
                    if ip_part.count(":") == 1:
                        ip_part = ip_part.split(":", 1)[0]
                    return ip_part

        return self.client[0] if self.client else "0.0.0.0"

    # ========================================================================
    # Content Helpers
    # ========================================================================

    def accepts(self, *media_types: str) -> bool:
        """Check if the client explicitly accepts any of the given media types."""
        accept = (self.header("accept") or "").lower()
        return any(media_type.lower() in accept for media_type in media_types)

    def accepts_encoding(self, coding: str) -> bool:
        """
        Check ``Accept-Encoding`` for ``coding`` with a non-zero q-value.

        An explicit entry for the coding wins over ``*``.
        """
        header = self.header("accept-encoding")
        if not header:
            return False
        coding = coding.lower()
        wildcard: Optional[bool] = None
        for item in header.split(","):
            name, _, params = item.strip().partition(";")
            name = name.strip().lower()
            quality = 1.0
            for param in params.split(";"):
                key, _, value = param.strip().partition("=")
                if key.strip().lower() == "q":
                    try:
                        quality = float(value)
                    except ValueError:
                        quality = 0.0
            if name == coding:
                return quality > 0
            if name == "*":
                wildcard = quality > 0
        return bool(wildcard)

    def expects_html(self) -> bool:
        """True when ``Accept`` names ``text/html`` (browser navigation)."""
        return self.accepts("text/html")

    def input(self, name: str, default: Any = None) -> Any:
        """Look up a submitted field: form body first, then JSON object, then query."""
        if name in self.body:
            return self.body[name]
        if isinstance(self.json, dict) and name in self.json:
            return self.json[name]
        return self.query.get(name, default)

    def context(self) -> Dict[str, Any]:
        """
        Requester context attached to security and access log records.

        The URL carries the redacted query.
        """
        return {
            "ip": self.client_ip(),
            "method": self.method,
            "url": self.safe_url,
            "user_agent": self.user_agent(),
        }


__all__ = ["Request"]
