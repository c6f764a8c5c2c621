"""
BastionCache - HTTP response caching stage.

Serves stored responses for repeat GET requests and stores cacheable
responses produced by the inner chain:

- Only GET is cached
- Only 2xx JSON or HTML responses are stored
- ``X-Cache: HIT`` / ``X-Cache: MISS`` on cached paths
- ``Cache-Control: public, max-age=<ttl>`` on stored responses
- Keys include the negotiated content coding, so gzip and identity
  variants of the same resource never collide
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional

import orjson

from ..faults import CacheFault
from ..middleware import ExclusionPolicy, Handler, Stage
from ..request import Request
from ..response import Response
from .core import CacheBackend
from .key_builder import ResponseKeyBuilder

logger = logging.getLogger("bastion.cache")

CACHEABLE_TYPES = ("application/json", "text/html")
_TRANSIENT_HEADERS = ("x-cache", "content-length", "x-response-time")


# ============================================================================
# Serialization
# ============================================================================

def serialize_response(response: Response) -> bytes:
    """Encode a response as bytes (orjson, body base64-encoded)."""
    headers: Dict[str, Any] = {
        name: value for name, value in response.headers.items() if name not in _TRANSIENT_HEADERS
    }
    return orjson.dumps({
        "status": response.status,
        "headers": headers,
        "body": base64.b64encode(response.body).decode("ascii"),
    })


def deserialize_response(data: bytes, key: str = "?") -> Response:
    """Decode bytes produced by ``serialize_response``."""
    try:
        payload = orjson.loads(data)
        body = base64.b64decode(payload["body"])
        return Response(content=body, status=payload["status"], headers=payload["headers"])
    except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise CacheFault("decode", key, str(exc)) from exc


def is_cacheable(response: Response) -> bool:
    if not 200 <= response.status < 300:
        return False
    content_type = response.content_type.lower()
    return any(content_type.startswith(kind) for kind in CACHEABLE_TYPES)


# ============================================================================
# Stage
# ============================================================================

class ResponseCacheStage(Stage):
    """
    Response cache stage.

    Args:
        backend: Shared cache backend
        ttl: Seconds a stored response stays fresh
        key_builder: Request fingerprint builder
        exclusion: Requests that bypass the cache entirely
    """

    name = "cache"

    def __init__(
        self,
        backend: CacheBackend,
        ttl: int = 3600,
        *,
        key_builder: Optional[ResponseKeyBuilder] = None,
        exclusion: Optional[ExclusionPolicy] = None,
    ):
        super().__init__(exclusion=exclusion)
        self.backend = backend
        self.ttl = ttl
        self.key_builder = key_builder or ResponseKeyBuilder()

    async def process(self, request: Request, next_handler: Handler) -> Response:
        if request.method != "GET":
            return await next_handler(request)

        coding = "gzip" if request.accepts_encoding("gzip") else "identity"
        key = self.key_builder.for_request(request, coding)

        entry = await self.backend.get(key)
        if entry is not None:
            try:
                cached = deserialize_response(entry.value, key)
            except CacheFault as fault:
                logger.warning(
                    "Discarding unreadable cache entry: %s",
                    fault.message,
                    extra={"context": {"key": key, "path": request.path}},
                )
                await self.backend.delete(key)
            else:
                cached.set_header("x-cache", "HIT")
                logger.debug("Cache hit for %s %s", request.method, request.path)
                return cached

        response = await next_handler(request)
        if not is_cacheable(response):
            return response

        response.set_header("cache-control", f"public, max-age={self.ttl}")
        await self.backend.set(key, serialize_response(response), ttl=self.ttl)
        response.set_header("x-cache", "MISS")
        return response


__all__ = [
    "ResponseCacheStage",
    "serialize_response",
    "deserialize_response",
    "is_cacheable",
]
