"""
Response - The outbound HTTP response produced by handlers and stages.

Provides:
- Lower-cased header mapping (multi-value for ``set-cookie``)
- Factories: json, html, text, redirect, from_fault
- Cookie and header helpers
- ASGI header preparation used by the adapter
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import orjson

if TYPE_CHECKING:
    from .faults import Fault


HeaderValue = Union[str, List[str]]


class Response:
    """
    HTTP response.

    Args:
        content: Body as bytes, str, or a dict/list (serialized as JSON)
        status: HTTP status code
        headers: Initial headers (names are lower-cased)
        media_type: Content-Type override
    """

    def __init__(
        self,
        content: Union[bytes, str, Mapping, Sequence, None] = b"",
        status: int = 200,
        headers: Optional[Mapping[str, Union[str, Sequence[str]]]] = None,
        media_type: Optional[str] = None,
    ):
        self.status = status
        self.fault: Optional["Fault"] = None

        self._headers: Dict[str, HeaderValue] = {}
        if headers:
            for key, value in headers.items():
                if isinstance(value, (list, tuple)):
                    self._headers[key.lower()] = list(value)
                else:
                    self._headers[key.lower()] = value

        if isinstance(content, (dict, list)):
            self.body = orjson.dumps(content)
            default_type = "application/json; charset=utf-8"
        elif isinstance(content, str):
            self.body = content.encode("utf-8")
            default_type = "text/plain; charset=utf-8"
        else:
            self.body = bytes(content or b"")
            default_type = "application/octet-stream"

        if media_type:
            self._headers["content-type"] = media_type
        elif "content-type" not in self._headers and self.body:
            self._headers["content-type"] = default_type

    def __repr__(self) -> str:
        return f"<Response {self.status} {self.content_type or '-'} {len(self.body)}B>"

    @property
    def headers(self) -> Dict[str, HeaderValue]:
        return self._headers

    @property
    def content_type(self) -> str:
        value = self._headers.get("content-type", "")
        return value if isinstance(value, str) else value[0]

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def json(
        cls,
        obj: Any,
        status: int = 200,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Response":
        """Create JSON response (orjson)."""
        return cls(
            content=orjson.dumps(obj),
            status=status,
            headers=headers,
            media_type="application/json; charset=utf-8",
        )

    @classmethod
    def html(cls, content: str, status: int = 200, **kwargs) -> "Response":
        """Create HTML response."""
        return cls(content=content, status=status, media_type="text/html; charset=utf-8", **kwargs)

    @classmethod
    def text(cls, content: str, status: int = 200, **kwargs) -> "Response":
        """Create plain text response."""
        return cls(content=content, status=status, media_type="text/plain; charset=utf-8", **kwargs)

    @classmethod
    def redirect(
        cls,
        url: str,
        status: int = 302,
        *,
        headers: Optional[Dict[str, str]] = None,
    ) -> "Response":
        """Create redirect response."""
        redirect_headers = {"location": url}
        if headers:
            redirect_headers.update(headers)
        return cls(content=b"", status=status, headers=redirect_headers)

    @classmethod
    def from_fault(
        cls,
        fault: "Fault",
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Response":
        """
        Create a JSON response from a Fault.

        The status comes from the fault class; the body is the fault's public
        rendering, so non-public faults never leak their message or metadata.
        The fault itself is attached as ``response.fault``.
        """
        response = cls.json(fault.to_public_dict(), status=fault.status, headers=headers)
        response.fault = fault
        return response

    # ========================================================================
    # Header Helpers
    # ========================================================================

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self._headers.get(name.lower())
        if value is None:
            return default
        return value if isinstance(value, str) else ", ".join(value)

    def set_header(self, name: str, value: str) -> None:
        """Set header (replaces existing)."""
        self._headers[name.lower()] = value

    def add_header(self, name: str, value: str) -> None:
        """Add header (supports multiple values)."""
        name_lower = name.lower()
        existing = self._headers.get(name_lower)
        if existing is None:
            self._headers[name_lower] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            self._headers[name_lower] = [existing, value]

    def append_vary(self, field_name: str) -> None:
        """Add a field to ``Vary`` unless it is already listed."""
        current = self.header("vary")
        if not current:
            self._headers["vary"] = field_name
            return
        listed = {part.strip().lower() for part in current.split(",")}
        if field_name.lower() not in listed and "*" not in listed:
            self._headers["vary"] = f"{current}, {field_name}"

    def unset_header(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: Optional[int] = None,
        path: str = "/",
        domain: Optional[str] = None,
        secure: bool = True,
        httponly: bool = True,
        samesite: Optional[str] = "Lax",
    ) -> None:
        """Set a cookie (appends a ``set-cookie`` header)."""
        cookie_parts = [f"{name}={value}"]
        if max_age is not None:
            cookie_parts.append(f"Max-Age={max_age}")
        cookie_parts.append(f"Path={path}")
        if domain:
            cookie_parts.append(f"Domain={domain}")
        if secure:
            cookie_parts.append("Secure")
        if httponly:
            cookie_parts.append("HttpOnly")
        if samesite:
            cookie_parts.append(f"SameSite={samesite}")
        self.add_header("set-cookie", "; ".join(cookie_parts))

    # ========================================================================
    # ASGI
    # ========================================================================

    def prepare_headers(self) -> List[Tuple[bytes, bytes]]:
        """Flatten headers to ASGI byte pairs, keeping Content-Length exact."""
        self._headers["content-length"] = str(len(self.body))
        raw: List[Tuple[bytes, bytes]] = []
        for name, value in self._headers.items():
            values = value if isinstance(value, list) else [value]
            for item in values:
                raw.append((name.encode("latin-1"), str(item).encode("latin-1")))
        return raw


__all__ = ["Response"]
