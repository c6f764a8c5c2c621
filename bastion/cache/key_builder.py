"""
BastionCache - Cache key builders.

Deterministic, fixed-length keys built from SHA-256 digests.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from ..request import Request


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class HashKeyBuilder:
    """
    Hash-based key builder.

    Pattern: ``{prefix}{namespace}:{sha256_hex}``
    """

    def __init__(self, prefix: str = "bastion:"):
        self.prefix = prefix

    def build(self, namespace: str, *parts: Any) -> str:
        material = "|".join(str(part) for part in parts)
        return f"{self.prefix}{namespace}:{_digest(material)}"

    def namespace_prefix(self, namespace: str) -> str:
        return f"{self.prefix}{namespace}:"


def _sorted_query(query: dict) -> Iterable[str]:
    for name in sorted(query):
        value = query[name]
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            yield f"{name}={item}"


class ResponseKeyBuilder(HashKeyBuilder):
    """
    Request fingerprint for the response cache.

    The fingerprint covers the method, path, sorted query, an authorization
    fingerprint (digest of the ``Authorization`` header plus principal id),
    the resolved API version (``request.state["api_version"]``) and the
    negotiated content coding, so two requests share an entry only when
    they would receive byte-identical responses.
    """

    namespace = "response"

    def auth_fingerprint(self, request: "Request") -> str:
        authorization = request.header("authorization") or ""
        principal_id = request.principal.identifier if request.principal else ""
        if not authorization and not principal_id:
            return "anonymous"
        return _digest(f"{authorization}|{principal_id}")

    def for_request(self, request: "Request", coding: str) -> str:
        return self.build(
            self.namespace,
            request.method,
            request.path,
            "&".join(_sorted_query(request.query)),
            self.auth_fingerprint(request),
            request.state.get("api_version", ""),
            coding,
        )


__all__ = ["HashKeyBuilder", "ResponseKeyBuilder"]
